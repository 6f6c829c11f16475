from __future__ import annotations
from typing import Dict, List, Set, Tuple
import networkx as nx
from corefkit.pipeline.core import CorefChain


#: a chain, as a set of ``(start_idx, end_idx)`` mention bounds
Cluster = Set[Tuple[int, int]]

#: ``(precision, recall, f1)``
PRF = Tuple[float, float, float]


def _clusters(chains: List[CorefChain]) -> List[Cluster]:
    return [{(m.start_idx, m.end_idx) for m in chain.mentions} for chain in chains]


def _safe_div(num: float, denom: float) -> float:
    if denom == 0:
        return 0.0
    return num / denom


def _f1(precision: float, recall: float) -> float:
    return _safe_div(2 * precision * recall, precision + recall)


def _prf(p_num: float, p_denom: float, r_num: float, r_denom: float) -> PRF:
    precision = _safe_div(p_num, p_denom)
    recall = _safe_div(r_num, r_denom)
    return (precision, recall, _f1(precision, recall))


def _muc_counts(keys: List[Cluster], responses: List[Cluster]) -> Tuple[int, int]:
    """
    :return: ``(numerator, denominator)`` of MUC recall of ``keys``
        against ``responses`` (swap arguments for precision)
    """
    num, denom = 0, 0
    for key in keys:
        # number of response clusters the key is split into.  Mentions
        # absent from responses each count as their own partition.
        partitions = 0
        covered: Set[Tuple[int, int]] = set()
        for response in responses:
            if len(key & response) > 0:
                partitions += 1
                covered |= key & response
        partitions += len(key - covered)
        num += len(key) - partitions
        denom += len(key) - 1
    return num, denom


def muc(refs: List[CorefChain], preds: List[CorefChain]) -> PRF:
    """Link-based MUC metric (Vilain et al., 1995)"""
    keys, responses = _clusters(refs), _clusters(preds)
    r_num, r_denom = _muc_counts(keys, responses)
    p_num, p_denom = _muc_counts(responses, keys)
    return _prf(p_num, p_denom, r_num, r_denom)


def _b_cubed_counts(keys: List[Cluster], responses: List[Cluster]) -> Tuple[float, int]:
    mention_to_response = {m: r for r in responses for m in r}
    num = 0.0
    denom = 0
    for key in keys:
        for mention in key:
            response = mention_to_response.get(mention, {mention})
            num += len(key & response) / len(key)
            denom += 1
    return num, denom


def b_cubed(refs: List[CorefChain], preds: List[CorefChain]) -> PRF:
    """Mention-based B³ metric (Bagga and Baldwin, 1998)"""
    keys, responses = _clusters(refs), _clusters(preds)
    r_num, r_denom = _b_cubed_counts(keys, responses)
    p_num, p_denom = _b_cubed_counts(responses, keys)
    return _prf(p_num, p_denom, r_num, r_denom)


def _ceaf_similarity(keys: List[Cluster], responses: List[Cluster]) -> int:
    """Similarity of the optimal one-to-one alignment between key and
    response clusters, using the number of shared mentions as cluster
    similarity."""
    G = nx.Graph()
    for i, key in enumerate(keys):
        for j, response in enumerate(responses):
            common = len(key & response)
            if common > 0:
                G.add_edge(("key", i), ("response", j), weight=common)
    matching = nx.max_weight_matching(G)
    return sum(G.edges[u, v]["weight"] for u, v in matching)


def ceaf(refs: List[CorefChain], preds: List[CorefChain]) -> PRF:
    """Mention-based CEAF metric (Luo, 2005)"""
    keys, responses = _clusters(refs), _clusters(preds)
    similarity = _ceaf_similarity(keys, responses)
    return _prf(
        similarity,
        sum(len(r) for r in responses),
        similarity,
        sum(len(k) for k in keys),
    )


def conll_f1(refs: List[CorefChain], preds: List[CorefChain]) -> float:
    """Mean of MUC, B³ and CEAF F1 scores"""
    return (muc(refs, preds)[2] + b_cubed(refs, preds)[2] + ceaf(refs, preds)[2]) / 3


def score_coref_predictions(
    refs: List[List[CorefChain]], preds: List[List[CorefChain]]
) -> Dict[str, float]:
    """Score coreference predictions over several documents.

    Counts are aggregated over all documents before computing
    precision and recall (micro-average).

    :param refs: reference chains of each document
    :param preds: predicted chains of each document
    :return: a dict with keys ``'{metric}_{p,r,f1}'`` for metric in
        ``muc``, ``b3`` and ``ceaf``, and ``'conll_f1'``
    """
    assert len(refs) == len(preds)

    counts = {name: [0.0, 0.0, 0.0, 0.0] for name in ("muc", "b3", "ceaf")}
    for doc_refs, doc_preds in zip(refs, preds):
        keys, responses = _clusters(doc_refs), _clusters(doc_preds)

        r_num, r_denom = _muc_counts(keys, responses)
        p_num, p_denom = _muc_counts(responses, keys)
        _add(counts["muc"], p_num, p_denom, r_num, r_denom)

        r_num, r_denom = _b_cubed_counts(keys, responses)
        p_num, p_denom = _b_cubed_counts(responses, keys)
        _add(counts["b3"], p_num, p_denom, r_num, r_denom)

        similarity = _ceaf_similarity(keys, responses)
        _add(
            counts["ceaf"],
            similarity,
            sum(len(r) for r in responses),
            similarity,
            sum(len(k) for k in keys),
        )

    scores = {}
    for name, name_counts in counts.items():
        precision, recall, f1 = _prf(*name_counts)
        scores[f"{name}_p"] = precision
        scores[f"{name}_r"] = recall
        scores[f"{name}_f1"] = f1
    scores["conll_f1"] = (scores["muc_f1"] + scores["b3_f1"] + scores["ceaf_f1"]) / 3
    return scores


def _add(counts: List[float], *values: float):
    for i, value in enumerate(values):
        counts[i] += value
