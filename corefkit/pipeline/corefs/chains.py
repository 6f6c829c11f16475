from __future__ import annotations
from typing import Dict, List, Literal, Optional, Tuple
from corefkit.pipeline.core import CorefChain, Mention


#: pairwise coreference scores, indexed by ``(i, j)`` with ``i < j``.
#: Pairs that were not scored are absent.
PairScores = Dict[Tuple[int, int], float]


def select_representative(mentions: List[Mention]) -> Mention:
    """Select the mention that best names an entity: the longest
    proper name, else the longest definite noun phrase, else the first
    mention.

    :param mentions: mentions of a chain, in document order
    """
    assert len(mentions) > 0
    for mention_type in ("proper_name", "definite_np"):
        candidates = [m for m in mentions if m.type == mention_type]
        if len(candidates) > 0:
            # max returns the first maximal element
            return max(candidates, key=lambda m: len(m.text))
    return mentions[0]


def build_chains(mentions: List[Mention], clusters: List[List[int]]) -> List[CorefChain]:
    """Convert clusters of mentions indices into coreference chains.

    Clusters with less than 2 mentions are dropped.  Chains ids are
    assigned in order of first appearance in the document.

    :param mentions: all clustered mentions
    :param clusters: a partition of (a subset of)
        ``range(len(mentions))``
    """
    seen = [idx for cluster in clusters for idx in cluster]
    assert len(seen) == len(set(seen)), "clusters are not a partition"

    clusters_mentions = [
        sorted(
            (mentions[i] for i in cluster), key=lambda m: (m.start_idx, m.end_idx)
        )
        for cluster in clusters
        if len(cluster) >= 2
    ]
    clusters_mentions = sorted(
        clusters_mentions, key=lambda ms: (ms[0].start_idx, ms[0].end_idx)
    )

    chains = []
    for chain_id, chain_mentions in enumerate(clusters_mentions):
        entity_type = next(
            (m.entity_type for m in chain_mentions if not m.entity_type is None), None
        )
        chains.append(
            CorefChain(
                chain_id,
                chain_mentions,
                select_representative(chain_mentions).text,
                entity_type,
            )
        )
    return chains


class ChainBuilder:
    """Aggregates pairwise coreference scores into coreference chains.

    .. note::

        derived classes must override :meth:`clusters`.
    """

    def clusters(self, mentions: List[Mention], scores: PairScores) -> List[List[int]]:
        """Partition mentions into clusters.

        :return: a partition of ``range(len(mentions))``
        """
        raise NotImplementedError

    def __call__(self, mentions: List[Mention], scores: PairScores) -> List[CorefChain]:
        return build_chains(mentions, self.clusters(mentions, scores))


class AverageLinkChainBuilder(ChainBuilder):
    """Greedy agglomerative clustering.

    Each mention starts in its own cluster.  At each round, the score
    of every pair of clusters is computed from the scores of all their
    cross-cluster mention pairs, and the best pair of clusters is
    merged if its score is at least ``min_score``.  Unscored pairs
    count as 0.
    """

    def __init__(
        self,
        min_score: float = 0.5,
        linkage: Literal["average", "best", "worst"] = "average",
    ) -> None:
        """
        :param min_score: minimum score for two clusters to be merged
        :param linkage: how cross-cluster pair scores are aggregated:
            mean (``'average'``), max (``'best'``) or min
            (``'worst'``).
        """
        self.min_score = min_score
        self.linkage = linkage

    def cluster_score(
        self, cluster_a: List[int], cluster_b: List[int], scores: PairScores
    ) -> float:
        pair_scores = [
            scores.get((min(i, j), max(i, j)), 0.0)
            for i in cluster_a
            for j in cluster_b
        ]
        if self.linkage == "best":
            return max(pair_scores)
        if self.linkage == "worst":
            return min(pair_scores)
        return sum(pair_scores) / len(pair_scores)

    def clusters(self, mentions: List[Mention], scores: PairScores) -> List[List[int]]:
        clusters = [[i] for i in range(len(mentions))]

        while len(clusters) > 1:
            best: Optional[Tuple[float, int, int]] = None
            for a in range(len(clusters)):
                for b in range(a + 1, len(clusters)):
                    score = self.cluster_score(clusters[a], clusters[b], scores)
                    if best is None or score > best[0]:
                        best = (score, a, b)
            assert not best is None
            score, a, b = best
            if score < self.min_score:
                break
            clusters[a] = sorted(clusters[a] + clusters[b])
            del clusters[b]

        return clusters


class GreedyAntecedentChainBuilder(ChainBuilder):
    """Left-to-right antecedent linking.

    Mentions are processed in document order.  Each mention is linked
    to its best scoring previous mention (ties going to the closest
    one) if that score is at least ``min_coref_score``, and joins its
    cluster.  Otherwise, it starts a new cluster.
    """

    def __init__(self, min_coref_score: float = 0.5) -> None:
        self.min_coref_score = min_coref_score

    def clusters(self, mentions: List[Mention], scores: PairScores) -> List[List[int]]:
        order = sorted(
            range(len(mentions)),
            key=lambda i: (mentions[i].start_idx, mentions[i].end_idx),
        )

        cluster_of: Dict[int, int] = {}
        clusters: List[List[int]] = []
        for rank, j in enumerate(order):
            antecedent = None
            best_score = self.min_coref_score
            for i in order[:rank]:
                score = scores.get((min(i, j), max(i, j)))
                if score is None:
                    continue
                # >= : later antecedents win ties
                if score >= best_score:
                    antecedent, best_score = i, score
            if antecedent is None:
                cluster_of[j] = len(clusters)
                clusters.append([j])
            else:
                cluster_of[j] = cluster_of[antecedent]
                clusters[cluster_of[j]].append(j)

        return clusters
