from __future__ import annotations
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar, Union
import copy
from dataclasses import dataclass, field
import torch
from torch import nn
from torch.utils.data import DataLoader
from corefkit.pipeline.progress import ProgressReporter, get_progress_reporter, progress_
from corefkit.pipeline.corefs.bundle import CoreferenceBundle
from corefkit.pipeline.corefs.config import TrainingConfig
from corefkit.pipeline.corefs.datas import MentionPairExample, SpanExample
from corefkit.pipeline.corefs.models import PipelinedCorefModel, SpanCorefModel
from corefkit.pipeline.corefs.pairs import mention_pair_features
from corefkit.pipeline.corefs.vocabulary import Vocabulary


#: probabilities are clipped to ``[EPSILON, 1 - EPSILON]`` before
#: computing a logarithm
EPSILON = 1e-7


def binary_cross_entropy(probs: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
    """Mean binary cross-entropy.

    :param probs: ``(n)``, predicted probabilities
    :param labels: ``(n)``, with values in ``{0, 1}``
    :return: a scalar tensor.  When ``n == 0``, the loss is ``0``.
    """
    if probs.numel() == 0:
        return probs.new_zeros(())
    probs = torch.clamp(probs, EPSILON, 1.0 - EPSILON)
    labels = labels.to(probs.dtype)
    return -(labels * torch.log(probs) + (1.0 - labels) * torch.log(1.0 - probs)).mean()


class EarlyStopping:
    """Keep track of the best model according to a validation loss.

    The patience counter is reset each time the loss improves, and
    training should stop once it reaches ``patience``.
    """

    def __init__(self, patience: int) -> None:
        self.patience = patience
        self.counter = 0
        self.best_loss: Optional[float] = None
        self.best_epoch: Optional[int] = None
        self.best_state: Optional[dict] = None

    def update(self, epoch: int, loss: float, model: nn.Module) -> bool:
        """Register the validation loss of an epoch.

        :return: ``True`` if training should stop
        """
        if self.best_loss is None or loss < self.best_loss:
            self.best_loss = loss
            self.best_epoch = epoch
            self.best_state = copy.deepcopy(model.state_dict())
            self.counter = 0
            return False
        self.counter += 1
        return self.counter >= self.patience

    def restore(self, model: nn.Module):
        """Load the best registered parameters into ``model``"""
        if not self.best_state is None:
            model.load_state_dict(self.best_state)


@dataclass
class TrainingHistory:
    train_loss: List[float] = field(default_factory=list)
    dev_loss: List[float] = field(default_factory=list)
    #: epoch of the returned parameters (starting from 1)
    best_epoch: Optional[int] = None

    @property
    def epochs(self) -> int:
        return len(self.train_loss)


E = TypeVar("E")

LossFunction = Callable[[nn.Module, List[E]], torch.Tensor]


def evaluate_loss(
    model: nn.Module, loss_fn: LossFunction, examples: Sequence[E], batch_size: int
) -> float:
    """Mean loss of ``model`` on ``examples``, without any parameter
    update."""
    model.eval()
    total_loss = 0.0
    dataloader = DataLoader(
        examples, batch_size=batch_size, shuffle=False, collate_fn=list  # type: ignore
    )
    with torch.no_grad():
        for batch in dataloader:
            total_loss += float(loss_fn(model, batch)) * len(batch)
    return total_loss / max(1, len(examples))


def train_loop(
    model: nn.Module,
    loss_fn: LossFunction,
    train_examples: Sequence[E],
    dev_examples: Sequence[E],
    config: TrainingConfig,
    progress_reporter: Optional[ProgressReporter] = None,
) -> TrainingHistory:
    """Train ``model`` with early stopping.

    At each epoch, training examples are shuffled and split into
    batches of ``config.batch_size`` examples, and parameters are
    updated once per batch using Adam with gradient clipping.  The
    validation loss is then computed on ``dev_examples``.  Training
    stops after ``config.epochs`` epochs, or when the validation loss
    did not improve for ``config.patience`` epochs.

    .. note::

        When ``dev_examples`` is empty, the training loss is used as
        the validation loss.

    :param loss_fn: a function computing the loss of a batch of
        examples
    :return: training history.  ``model`` is left with the parameters
        of the best epoch, in eval mode.
    """
    progress_reporter = progress_reporter or get_progress_reporter(None)
    torch.manual_seed(config.seed)

    optimizer = torch.optim.Adam(model.parameters(), lr=config.learning_rate)
    early_stopping = EarlyStopping(config.patience)
    history = TrainingHistory()
    dataloader = DataLoader(
        train_examples,  # type: ignore
        batch_size=config.batch_size,
        # RandomSampler refuses empty datasets
        shuffle=len(train_examples) > 0,
        generator=torch.Generator().manual_seed(config.seed),
        collate_fn=list,
    )

    for epoch in progress_(progress_reporter, range(1, config.epochs + 1)):
        progress_reporter.update_message_(f"epoch {epoch}")

        model.train()
        epoch_loss = 0.0
        for batch in dataloader:
            optimizer.zero_grad()
            loss = loss_fn(model, batch)
            epoch_loss += float(loss) * len(batch)
            if not loss.requires_grad:
                continue
            loss.backward()
            torch.nn.utils.clip_grad_norm_(model.parameters(), config.clip_norm)
            optimizer.step()
        train_loss = epoch_loss / max(1, len(train_examples))

        if len(dev_examples) > 0:
            dev_loss = evaluate_loss(model, loss_fn, dev_examples, config.batch_size)
        else:
            dev_loss = train_loss

        history.train_loss.append(train_loss)
        history.dev_loss.append(dev_loss)
        progress_reporter.update_metrics_(train_loss=train_loss, dev_loss=dev_loss)

        if early_stopping.update(epoch, dev_loss, model):
            break

    early_stopping.restore(model)
    history.best_epoch = early_stopping.best_epoch
    model.eval()
    return history


def train_pipelined_model(
    train_examples: Sequence[MentionPairExample],
    dev_examples: Sequence[MentionPairExample],
    vocabulary: Vocabulary,
    config: Optional[TrainingConfig] = None,
    device: Union[str, torch.device] = "cpu",
    progress_reporter: Optional[ProgressReporter] = None,
) -> Tuple[CoreferenceBundle, TrainingHistory]:
    """Train a mention-pair coreference model.

    :param train_examples: see :func:`.create_mention_pair_examples`
    :param dev_examples: validation examples, used for early stopping
    :param vocabulary: usually built from training and validation
        documents with :meth:`.Vocabulary.build`
    :param config: defaults to :meth:`.TrainingConfig.pipelined`
    """
    config = config or TrainingConfig.pipelined()
    torch.manual_seed(config.seed)
    model = PipelinedCorefModel.from_config(len(vocabulary), config).to(device)

    def loss_fn(model: PipelinedCorefModel, batch: List[MentionPairExample]):
        mentions = [(ex.tokens, ex.mention_a) for ex in batch] + [
            (ex.tokens, ex.mention_b) for ex in batch
        ]
        # (2 * batch_size, repr_dim)
        mentions_repr = model.encode_mentions(vocabulary, mentions, config.context_window)
        features = torch.tensor(
            [
                mention_pair_features(ex.mention_a, ex.mention_b, ex.mentions_distance)
                for ex in batch
            ],
            dtype=mentions_repr.dtype,
            device=mentions_repr.device,
        )
        probs = model.pair_scorer(
            mentions_repr[: len(batch)], mentions_repr[len(batch) :], features
        )
        labels = torch.tensor([ex.label for ex in batch], device=probs.device)
        return binary_cross_entropy(probs, labels)

    history = train_loop(
        model, loss_fn, train_examples, dev_examples, config, progress_reporter
    )
    return CoreferenceBundle(model, vocabulary), history


def train_span_model(
    train_examples: Sequence[SpanExample],
    dev_examples: Sequence[SpanExample],
    vocabulary: Vocabulary,
    config: Optional[TrainingConfig] = None,
    device: Union[str, torch.device] = "cpu",
    progress_reporter: Optional[ProgressReporter] = None,
) -> Tuple[CoreferenceBundle, TrainingHistory]:
    """Train an end-to-end coreference model.

    The loss is a weighted sum of the span detection loss and of the
    coreference loss, both binary cross-entropies:
    ``config.span_loss_weight * span_loss + config.coref_loss_weight *
    coref_loss``.

    :param train_examples: see :func:`.create_span_examples`
    :param config: defaults to :meth:`.TrainingConfig.end_to_end`
    """
    config = config or TrainingConfig.end_to_end()
    torch.manual_seed(config.seed)
    model = SpanCorefModel.from_config(len(vocabulary), config).to(device)

    def loss_fn(model: SpanCorefModel, batch: List[SpanExample]):
        span_probs, span_labels = [], []
        pair_probs, pair_labels = [], []

        for ex in batch:
            # (seq_size, 2 * hidden_size)
            states = model.encode(vocabulary, ex.tokens)

            if len(ex.spans) > 0:
                spans_repr = model.represent_spans(states, ex.spans)
                span_probs.append(model.score_spans(spans_repr))
                span_labels += ex.span_labels

            if len(ex.pairs) > 0:
                pair_spans = sorted({span for pair in ex.pairs for span in pair})
                span_index = {span: i for i, span in enumerate(pair_spans)}
                pair_spans_repr = model.represent_spans(states, pair_spans)
                pair_probs.append(
                    model.score_pairs(
                        ex.tokens,
                        pair_spans,
                        pair_spans_repr,
                        [(span_index[a], span_index[b]) for a, b in ex.pairs],
                    )
                )
                pair_labels += ex.pair_labels

        device = next(model.parameters()).device
        span_loss = binary_cross_entropy(
            torch.cat(span_probs) if span_probs else torch.zeros(0, device=device),
            torch.tensor(span_labels, device=device),
        )
        coref_loss = binary_cross_entropy(
            torch.cat(pair_probs) if pair_probs else torch.zeros(0, device=device),
            torch.tensor(pair_labels, device=device),
        )
        return config.span_loss_weight * span_loss + config.coref_loss_weight * coref_loss

    history = train_loop(
        model, loss_fn, train_examples, dev_examples, config, progress_reporter
    )
    return CoreferenceBundle(model, vocabulary), history
