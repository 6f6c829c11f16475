from __future__ import annotations
from typing import List, Optional, Sequence, Tuple
import torch
from corefkit.pipeline.core import Mention
from corefkit.pipeline.corefs.spans import FeedForwardScorer


#: width of a pair features vector.  Features vectors are zero padded
#: to this width.
FEATURES_NB = 20


def _padded(features: List[float]) -> List[float]:
    assert len(features) <= FEATURES_NB
    return features + [0.0] * (FEATURES_NB - len(features))


def span_pair_features(
    tokens: List[str], span_a: Tuple[int, int], span_b: Tuple[int, int]
) -> List[float]:
    """Surface features of a pair of spans.

    :param tokens: document tokens
    :param span_a: ``(start_idx, end_idx)`` of the first span
    :param span_b: ``(start_idx, end_idx)`` of the second span, which
        must not start before ``span_a``
    :return: a list of ``FEATURES_NB`` floats
    """
    a_start, a_end = span_a
    b_start, b_end = span_b
    a_tokens = [t.lower() for t in tokens[a_start : a_end + 1]]
    b_tokens = [t.lower() for t in tokens[b_start : b_end + 1]]
    distance = max(0, b_start - a_end)

    return _padded(
        [
            min(distance / 50.0, 1.0),
            float(distance < 5),
            len(a_tokens) / 10.0,
            len(b_tokens) / 10.0,
            float(len(a_tokens) == len(b_tokens)),
            float(a_tokens == b_tokens),
            float(len(set(a_tokens) & set(b_tokens)) > 0),
            float(a_tokens[-1] == b_tokens[-1]),
            a_start / 100.0,
            b_start / 100.0,
            float(a_start == 0),
            float(b_start == 0),
        ]
    )


def mention_pair_features(
    mention_a: Mention, mention_b: Mention, mentions_distance: int = 0
) -> List[float]:
    """Surface, positional and agreement features of a pair of
    detected mentions.

    :param mentions_distance: number of mentions between
        ``mention_a`` and ``mention_b``
    :return: a list of ``FEATURES_NB`` floats
    """
    a_text = mention_a.text.lower()
    b_text = mention_b.text.lower()
    sentence_distance = abs(mention_b.sentence_idx - mention_a.sentence_idx)
    token_distance = abs(mention_b.start_idx - mention_a.start_idx)

    if mention_a.entity_type is None or mention_b.entity_type is None:
        entity_type_agrees = True
    else:
        entity_type_agrees = mention_a.entity_type == mention_b.entity_type

    features = [
        min(sentence_distance / 5.0, 1.0),
        min(token_distance / 20.0, 1.0),
        min(mentions_distance / 50.0, 1.0),
        float(a_text == b_text),
        float(a_text in b_text or b_text in a_text),
        float(mention_a.tokens[-1].lower() == mention_b.tokens[-1].lower()),
    ]
    for mention in (mention_a, mention_b):
        features += [
            float(mention.type == "pronoun"),
            float(mention.type == "proper_name"),
            float(mention.type == "definite_np"),
        ]
    features += [
        float(mention_a.gender_agrees(mention_b)),
        float(mention_a.number_agrees(mention_b)),
        float(entity_type_agrees),
        float(sentence_distance == 0),
        float(mention_a.token_idx == 0),
        float(mention_b.token_idx == 0),
        float({mention_a.type, mention_b.type} == {"pronoun", "proper_name"}),
    ]
    return _padded(features)


def span_candidate_pairs(
    spans: Sequence[Tuple[int, int]], max_distance: int
) -> List[Tuple[int, int]]:
    """Pairs of spans eligible for scoring.

    :param spans: ``(start_idx, end_idx)`` of each span, in document
        order
    :param max_distance: maximum number of tokens between the end of
        the first span and the start of the second one
    :return: a list of ``(i, j)`` indices, with ``i < j``
    """
    return [
        (i, j)
        for j in range(len(spans))
        for i in range(j)
        if spans[j][0] - spans[i][1] <= max_distance
    ]


def mention_candidate_pairs(
    mentions: Sequence[Mention], max_sentence_distance: int
) -> List[Tuple[int, int]]:
    """Pairs of mentions eligible for scoring.

    :param mentions: mentions, in document order
    :return: a list of ``(i, j)`` indices, with ``i < j``
    """
    return [
        (i, j)
        for j in range(len(mentions))
        for i in range(j)
        if abs(mentions[j].sentence_idx - mentions[i].sentence_idx)
        <= max_sentence_distance
    ]


class PairScorer(FeedForwardScorer):
    """Scores whether two mentions are coreferent, using their
    representations and a pair features vector"""

    def __init__(
        self,
        repr_dim: int,
        hidden_dims: Optional[List[int]] = None,
        dropout: float = 0.3,
    ):
        super().__init__(2 * repr_dim + FEATURES_NB, hidden_dims or [512, 256], dropout)

    def forward(  # type: ignore[override]
        self, repr_a: torch.Tensor, repr_b: torch.Tensor, features: torch.Tensor
    ) -> torch.Tensor:
        """
        :param repr_a: ``(pairs_nb, repr_dim)``
        :param repr_b: ``(pairs_nb, repr_dim)``
        :param features: ``(pairs_nb, FEATURES_NB)``
        :return: ``(pairs_nb)``
        """
        return super().forward(torch.cat([repr_a, repr_b, features], dim=1))
