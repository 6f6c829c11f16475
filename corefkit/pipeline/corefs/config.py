from __future__ import annotations
from dataclasses import dataclass, field
from typing import Literal, List
from corefkit.pipeline.corefs.errors import ConfigurationError


Linkage = Literal["average", "best", "worst"]


def _check_probability(name: str, value: float):
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be in [0, 1] (got {value})")


def _check_positive(name: str, value: float):
    if not value > 0:
        raise ConfigurationError(f"{name} must be positive (got {value})")


def _check_non_negative(name: str, value: float):
    if value < 0:
        raise ConfigurationError(f"{name} must be non-negative (got {value})")


@dataclass(frozen=True)
class PipelinedResolverConfig:
    """Options of :class:`.PipelinedCoreferenceResolver`

    :ivar min_score: minimum cluster score for two clusters to be
        merged
    :ivar context_window: number of tokens taken on each side of a
        mention when encoding it
    :ivar max_sentence_distance: mentions further apart than this
        number of sentences are never scored
    :ivar linkage: how pair scores are aggregated into a cluster
        score.  See :class:`.AverageLinkChainBuilder`.
    """

    min_score: float = 0.5
    context_window: int = 10
    max_sentence_distance: int = 5
    linkage: Linkage = "average"

    def __post_init__(self):
        _check_probability("min_score", self.min_score)
        _check_positive("context_window", self.context_window)
        _check_positive("max_sentence_distance", self.max_sentence_distance)
        if not self.linkage in ("average", "best", "worst"):
            raise ConfigurationError(f"unknown linkage: {self.linkage}")


@dataclass(frozen=True)
class EndToEndResolverConfig:
    """Options of :class:`.EndToEndCoreferenceResolver`

    :ivar max_span_width: maximum width of enumerated spans, in tokens
    :ivar top_k_spans: maximum number of spans kept after pruning
    :ivar min_span_score: spans scoring below this are pruned
    :ivar min_coref_score: minimum score for a span to be linked to
        an antecedent
    :ivar max_distance: spans further apart than this number of
        tokens are never scored
    """

    max_span_width: int = 10
    top_k_spans: int = 50
    min_span_score: float = 0.5
    min_coref_score: float = 0.5
    max_distance: int = 100

    def __post_init__(self):
        _check_positive("max_span_width", self.max_span_width)
        _check_positive("top_k_spans", self.top_k_spans)
        _check_probability("min_span_score", self.min_span_score)
        _check_probability("min_coref_score", self.min_coref_score)
        _check_positive("max_distance", self.max_distance)


@dataclass(frozen=True)
class TrainingConfig:
    """Hyperparameters of a training run.

    Use :meth:`pipelined` or :meth:`end_to_end` to get the defaults of
    each strategy.
    """

    epochs: int = 20
    batch_size: int = 32
    learning_rate: float = 1e-3
    hidden_size: int = 128
    embedding_dim: int = 100
    dropout: float = 0.3
    patience: int = 3
    clip_norm: float = 5.0
    seed: int = 0
    #: pipelined only
    context_window: int = 10
    #: end-to-end only
    max_span_width: int = 10
    top_k_spans: int = 50
    width_embedding_dim: int = 20
    span_loss_weight: float = 0.3
    coref_loss_weight: float = 0.7
    span_scorer_hidden: List[int] = field(default_factory=lambda: [256, 128])
    pair_scorer_hidden: List[int] = field(default_factory=lambda: [512, 256])

    def __post_init__(self):
        for name in (
            "epochs",
            "batch_size",
            "learning_rate",
            "hidden_size",
            "embedding_dim",
            "patience",
            "clip_norm",
            "context_window",
            "max_span_width",
            "top_k_spans",
            "width_embedding_dim",
        ):
            _check_positive(name, getattr(self, name))
        _check_probability("dropout", self.dropout)
        _check_non_negative("span_loss_weight", self.span_loss_weight)
        _check_non_negative("coref_loss_weight", self.coref_loss_weight)
        for dim in self.span_scorer_hidden + self.pair_scorer_hidden:
            _check_positive("hidden layer size", dim)

    @staticmethod
    def pipelined(**kwargs) -> TrainingConfig:
        return TrainingConfig(**kwargs)

    @staticmethod
    def end_to_end(**kwargs) -> TrainingConfig:
        defaults = {
            "epochs": 25,
            "batch_size": 16,
            "learning_rate": 5e-4,
            "hidden_size": 256,
        }
        defaults.update(kwargs)
        return TrainingConfig(**defaults)
