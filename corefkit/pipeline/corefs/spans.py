from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple
import torch
from torch import nn
from corefkit.utils import spans_indexs


@dataclass
class Span:
    """A contiguous range of tokens, candidate to be a mention.

    :ivar start_idx: absolute index of the first token
    :ivar end_idx: absolute index of the last token (inclusive)
    :ivar score: mention score, in ``[0, 1]``
    :ivar representation: ``(span_dim)``
    """

    start_idx: int
    end_idx: int
    score: float
    representation: Optional[torch.Tensor] = None

    def __len__(self) -> int:
        return self.end_idx - self.start_idx + 1

    def bounds(self) -> Tuple[int, int]:
        return (self.start_idx, self.end_idx)


def enumerate_spans(seq_size: int, max_span_width: int) -> List[Tuple[int, int]]:
    """Enumerate all spans of at most ``max_span_width`` tokens.

    >>> enumerate_spans(3, 2)
    [(0, 0), (1, 1), (2, 2), (0, 1), (1, 2)]

    :param seq_size: number of tokens of the document
    :return: a list of ``(start_idx, end_idx)``, ``end_idx`` being
        inclusive, ordered by width then by start.
    """
    if seq_size <= 0:
        return []
    return spans_indexs(range(seq_size), max_span_width)


def prune_spans(
    spans: List[Span], top_k: int = 50, min_span_score: float = 0.5
) -> List[Span]:
    """Keep the ``top_k`` best spans.

    Spans are ranked by decreasing score, then by increasing length,
    then by increasing start.  Spans scoring less than
    ``min_span_score`` are discarded even when they are in the top
    ``top_k``.

    :return: the kept spans, in document order
    """
    ranked = sorted(spans, key=lambda s: (-s.score, len(s), s.start_idx))
    kept = [s for s in ranked[:top_k] if s.score >= min_span_score]
    return sorted(kept, key=lambda s: s.bounds())


class FeedForwardScorer(nn.Module):
    """A feed-forward network outputting a probability"""

    def __init__(self, input_dim: int, hidden_dims: List[int], dropout: float = 0.3):
        super().__init__()
        layers = []
        for hidden_dim in hidden_dims:
            layers += [nn.Linear(input_dim, hidden_dim), nn.ReLU(), nn.Dropout(dropout)]
            input_dim = hidden_dim
        layers.append(nn.Linear(input_dim, 1))
        self.layers = nn.Sequential(*layers)

    def forward(self, inputs: torch.Tensor) -> torch.Tensor:
        """
        :param inputs: ``(batch_size, input_dim)``
        :return: ``(batch_size)``, with values in ``[0, 1]``
        """
        return torch.sigmoid(self.layers(inputs)).squeeze(-1)


class SpanScorer(FeedForwardScorer):
    """Scores how likely a span is a mention"""

    def __init__(
        self,
        span_dim: int,
        hidden_dims: Optional[List[int]] = None,
        dropout: float = 0.3,
    ):
        super().__init__(span_dim, hidden_dims or [256, 128], dropout)
