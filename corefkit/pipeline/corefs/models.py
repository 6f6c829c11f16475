from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Tuple
import torch
from torch import nn
from corefkit.pipeline.core import Mention
from corefkit.pipeline.corefs.config import TrainingConfig
from corefkit.pipeline.corefs.vocabulary import Vocabulary
from corefkit.pipeline.corefs.encoder import (
    BiLSTMEncoder,
    MentionEncoder,
    SpanRepresentation,
    mentions_batch,
)
from corefkit.pipeline.corefs.spans import SpanScorer
from corefkit.pipeline.corefs.pairs import (
    PairScorer,
    mention_pair_features,
    span_pair_features,
)


ModelKind = Literal["pipelined", "end_to_end"]


def _model_device(model: nn.Module) -> torch.device:
    return next(model.parameters()).device


class PipelinedCorefModel(nn.Module):
    """Mention-pair coreference model, scoring mentions supplied by an
    external mention detector.

    Sub-models: ``encoder`` (a :class:`.MentionEncoder`) and
    ``pair_scorer`` (a :class:`.PairScorer`).
    """

    kind: ModelKind = "pipelined"

    def __init__(
        self,
        vocab_size: int,
        embedding_dim: int = 100,
        hidden_size: int = 128,
        dropout: float = 0.3,
        context_window: int = 10,
        pair_scorer_hidden: Optional[List[int]] = None,
    ) -> None:
        super().__init__()
        self.hyperparameters: Dict[str, Any] = {
            "vocab_size": vocab_size,
            "embedding_dim": embedding_dim,
            "hidden_size": hidden_size,
            "dropout": dropout,
            "context_window": context_window,
            "pair_scorer_hidden": pair_scorer_hidden,
        }
        self.encoder = MentionEncoder(vocab_size, embedding_dim, hidden_size, dropout)
        self.pair_scorer = PairScorer(
            self.encoder.output_dim, pair_scorer_hidden, dropout
        )

    @staticmethod
    def from_config(vocab_size: int, config: TrainingConfig) -> PipelinedCorefModel:
        return PipelinedCorefModel(
            vocab_size,
            embedding_dim=config.embedding_dim,
            hidden_size=config.hidden_size,
            dropout=config.dropout,
            context_window=config.context_window,
            pair_scorer_hidden=config.pair_scorer_hidden,
        )

    def encode_mentions(
        self,
        vocabulary: Vocabulary,
        mentions: List[Tuple[List[str], Mention]],
        context_window: int,
    ) -> torch.Tensor:
        """
        :param mentions: a list of ``(document tokens, mention)``
        :return: ``(mentions_nb, encoder.output_dim)``
        """
        token_ids, lengths, mention_mask = mentions_batch(
            vocabulary, mentions, context_window, _model_device(self)
        )
        return self.encoder(token_ids, lengths, mention_mask)

    def score_pairs(
        self,
        mentions: List[Mention],
        mentions_repr: torch.Tensor,
        pairs: List[Tuple[int, int]],
    ) -> torch.Tensor:
        """
        :param mentions: mentions, in document order
        :param mentions_repr: ``(mentions_nb, encoder.output_dim)``
        :param pairs: ``(i, j)`` indices of pairs to score, ``i < j``
        :return: ``(pairs_nb)``
        """
        if len(pairs) == 0:
            return mentions_repr.new_zeros((0,))
        features = torch.tensor(
            [mention_pair_features(mentions[i], mentions[j], j - i) for i, j in pairs],
            dtype=mentions_repr.dtype,
            device=mentions_repr.device,
        )
        a_idx = torch.tensor([i for i, _ in pairs], device=mentions_repr.device)
        b_idx = torch.tensor([j for _, j in pairs], device=mentions_repr.device)
        return self.pair_scorer(mentions_repr[a_idx], mentions_repr[b_idx], features)


class SpanCorefModel(nn.Module):
    """End-to-end coreference model, jointly learning to detect mentions
    among all candidate spans and to score span pairs.

    Sub-models: ``encoder`` (a :class:`.BiLSTMEncoder`),
    ``span_representation`` (width embeddings, see
    :class:`.SpanRepresentation`), ``span_scorer`` and
    ``pair_scorer``.

    ``max_span_width`` and ``top_k_spans`` are kept in
    :attr:`hyperparameters` so that spans are enumerated and pruned at
    inference as during training.
    """

    kind: ModelKind = "end_to_end"

    def __init__(
        self,
        vocab_size: int,
        embedding_dim: int = 100,
        hidden_size: int = 256,
        dropout: float = 0.3,
        max_span_width: int = 10,
        top_k_spans: int = 50,
        width_embedding_dim: int = 20,
        span_scorer_hidden: Optional[List[int]] = None,
        pair_scorer_hidden: Optional[List[int]] = None,
    ) -> None:
        super().__init__()
        self.hyperparameters: Dict[str, Any] = {
            "vocab_size": vocab_size,
            "embedding_dim": embedding_dim,
            "hidden_size": hidden_size,
            "dropout": dropout,
            "max_span_width": max_span_width,
            "top_k_spans": top_k_spans,
            "width_embedding_dim": width_embedding_dim,
            "span_scorer_hidden": span_scorer_hidden,
            "pair_scorer_hidden": pair_scorer_hidden,
        }
        self.encoder = BiLSTMEncoder(vocab_size, embedding_dim, hidden_size, dropout)
        self.span_representation = SpanRepresentation(
            self.encoder.output_dim, max_span_width, width_embedding_dim
        )
        span_dim = self.span_representation.output_dim
        self.span_scorer = SpanScorer(span_dim, span_scorer_hidden, dropout)
        self.pair_scorer = PairScorer(span_dim, pair_scorer_hidden, dropout)

    @staticmethod
    def from_config(vocab_size: int, config: TrainingConfig) -> SpanCorefModel:
        return SpanCorefModel(
            vocab_size,
            embedding_dim=config.embedding_dim,
            hidden_size=config.hidden_size,
            dropout=config.dropout,
            max_span_width=config.max_span_width,
            top_k_spans=config.top_k_spans,
            width_embedding_dim=config.width_embedding_dim,
            span_scorer_hidden=config.span_scorer_hidden,
            pair_scorer_hidden=config.pair_scorer_hidden,
        )

    def encode(self, vocabulary: Vocabulary, tokens: List[str]) -> torch.Tensor:
        """
        :return: ``(len(tokens), encoder.output_dim)``
        """
        token_ids = torch.tensor(
            [vocabulary.ids(tokens)], dtype=torch.long, device=_model_device(self)
        )
        return self.encoder(token_ids.view(1, -1))[0]

    def represent_spans(
        self, states: torch.Tensor, spans: List[Tuple[int, int]]
    ) -> torch.Tensor:
        """
        :param states: ``(seq_size, encoder.output_dim)``
        :param spans: ``(start_idx, end_idx)`` of each span
        :return: ``(spans_nb, span_representation.output_dim)``
        """
        starts = torch.tensor([s for s, _ in spans], dtype=torch.long, device=states.device)
        ends = torch.tensor([e for _, e in spans], dtype=torch.long, device=states.device)
        return self.span_representation(states, starts, ends)

    def score_spans(self, spans_repr: torch.Tensor) -> torch.Tensor:
        """
        :param spans_repr: ``(spans_nb, span_dim)``
        :return: ``(spans_nb)``
        """
        if spans_repr.shape[0] == 0:
            return spans_repr.new_zeros((0,))
        return self.span_scorer(spans_repr)

    def score_pairs(
        self,
        tokens: List[str],
        spans: List[Tuple[int, int]],
        spans_repr: torch.Tensor,
        pairs: List[Tuple[int, int]],
    ) -> torch.Tensor:
        """
        :param tokens: document tokens
        :param spans: ``(start_idx, end_idx)`` of each span
        :param spans_repr: ``(spans_nb, span_dim)``
        :param pairs: ``(i, j)`` indices of pairs to score, with span
            ``i`` not starting after span ``j``
        :return: ``(pairs_nb)``
        """
        if len(pairs) == 0:
            return spans_repr.new_zeros((0,))
        features = torch.tensor(
            [span_pair_features(tokens, spans[i], spans[j]) for i, j in pairs],
            dtype=spans_repr.dtype,
            device=spans_repr.device,
        )
        a_idx = torch.tensor([i for i, _ in pairs], device=spans_repr.device)
        b_idx = torch.tensor([j for _, j in pairs], device=spans_repr.device)
        return self.pair_scorer(spans_repr[a_idx], spans_repr[b_idx], features)


#: model classes, by kind
MODEL_CLASSES = {
    "pipelined": PipelinedCorefModel,
    "end_to_end": SpanCorefModel,
}
