from typing import List
import math
import torch
from torch import nn
from corefkit.pipeline.core import Mention
from corefkit.pipeline.corefs.config import TrainingConfig
from corefkit.pipeline.corefs.datas import (
    CoreferenceDocument,
    MentionPairExample,
    create_mention_pair_examples,
    create_span_examples,
)
from corefkit.pipeline.corefs.trainer import (
    EarlyStopping,
    binary_cross_entropy,
    train_loop,
    train_pipelined_model,
    train_span_model,
)
from corefkit.pipeline.corefs.vocabulary import Vocabulary
from corefkit.pipeline.core import CorefChain


def test_bce_of_empty_batch_is_zero():
    assert float(binary_cross_entropy(torch.zeros(0), torch.zeros(0))) == 0.0


def test_bce_is_finite_for_saturated_probabilities():
    loss = binary_cross_entropy(torch.tensor([0.0, 1.0]), torch.tensor([1, 0]))
    assert math.isfinite(float(loss))
    assert float(loss) > 10


def test_early_stopping_counter_resets_on_improvement():
    model = nn.Linear(1, 1)
    early_stopping = EarlyStopping(patience=2)
    assert not early_stopping.update(1, 1.0, model)
    assert not early_stopping.update(2, 1.1, model)
    assert not early_stopping.update(3, 0.5, model)
    assert not early_stopping.update(4, 0.6, model)
    assert early_stopping.update(5, 0.7, model)
    assert early_stopping.best_epoch == 3


def test_training_stops_with_patience_and_restores_best_epoch():
    dev_losses = [0.9, 0.8, 0.85, 0.87]
    model = nn.Linear(1, 1)
    snapshots: List[torch.Tensor] = []

    def loss_fn(model: nn.Linear, batch: List[int]) -> torch.Tensor:
        if model.training:
            return ((model.weight.sum() - 10.0) ** 2).view(())
        # validation: one call per epoch
        snapshots.append(model.weight.detach().clone())
        return torch.tensor(dev_losses[len(snapshots) - 1], dtype=torch.float64)

    config = TrainingConfig(epochs=10, patience=2, batch_size=1, learning_rate=0.1)
    history = train_loop(model, loss_fn, [0], [0], config)

    assert history.epochs == 4
    assert history.dev_loss == [0.9, 0.8, 0.85, 0.87]
    assert history.best_epoch == 2
    assert torch.equal(model.weight, snapshots[1])
    assert not torch.equal(model.weight, snapshots[3])
    assert not model.training


def _toy_documents() -> List[CoreferenceDocument]:
    documents = []
    for name in ("John", "Mary", "Paul"):
        sentences = [[name, "works", "at", "Google", "."], ["He", "is", "happy", "."]]
        document = CoreferenceDocument(sentences)
        name_mention = document.mention(0, 0, type="proper_name")
        google = document.mention(3, 3, type="proper_name")
        he = document.mention(5, 5, type="pronoun", gender="male")
        other = document.mention(7, 7)
        document.coref_chains = [
            CorefChain(0, [name_mention, he], name),
            CorefChain(1, [google, other], "Google"),
        ]
        documents.append(document)
    return documents


def test_mention_pair_examples_are_labeled_from_chains():
    examples = create_mention_pair_examples(_toy_documents()[:1], negative_ratio=1.0)
    positives = [ex for ex in examples if ex.label == 1]
    negatives = [ex for ex in examples if ex.label == 0]
    assert {(ex.mention_a.text, ex.mention_b.text) for ex in positives} == {
        ("John", "He"),
        ("Google", "happy"),
    }
    assert len(negatives) == 2
    assert all(ex.mention_a.start_idx < ex.mention_b.start_idx for ex in examples)


def test_span_examples_contain_gold_spans():
    examples = create_span_examples(_toy_documents()[:1], max_span_width=3)
    assert len(examples) == 1
    labeled = dict(zip(examples[0].spans, examples[0].span_labels))
    assert labeled[(0, 0)] == 1
    assert labeled[(5, 5)] == 1
    assert ((0, 0), (5, 5)) in examples[0].pairs


def test_pipelined_training_runs():
    documents = _toy_documents()
    vocab = Vocabulary.build((d.tokens for d in documents), min_count=1)
    examples = create_mention_pair_examples(documents)
    config = TrainingConfig.pipelined(
        epochs=2,
        batch_size=4,
        hidden_size=8,
        embedding_dim=8,
        pair_scorer_hidden=[8],
        context_window=3,
    )
    bundle, history = train_pipelined_model(examples, examples[:2], vocab, config)
    assert bundle.kind == "pipelined"
    assert 1 <= history.epochs <= 2
    assert all(math.isfinite(loss) for loss in history.train_loss)


def test_span_training_runs():
    documents = _toy_documents()
    vocab = Vocabulary.build((d.tokens for d in documents), min_count=1)
    examples = create_span_examples(documents, max_span_width=3)
    config = TrainingConfig.end_to_end(
        epochs=2,
        batch_size=2,
        hidden_size=8,
        embedding_dim=8,
        max_span_width=3,
        width_embedding_dim=4,
        span_scorer_hidden=[8],
        pair_scorer_hidden=[8],
    )
    bundle, history = train_span_model(examples, [], vocab, config)
    assert bundle.kind == "end_to_end"
    # without validation examples, the training loss is used instead
    assert history.dev_loss == history.train_loss


def test_training_with_the_same_seed_is_reproducible():
    documents = _toy_documents()
    vocab = Vocabulary.build((d.tokens for d in documents), min_count=1)
    examples = create_mention_pair_examples(documents)
    config = TrainingConfig.pipelined(
        epochs=2,
        batch_size=3,
        hidden_size=8,
        embedding_dim=8,
        pair_scorer_hidden=[8],
        context_window=3,
        seed=7,
    )

    first, first_history = train_pipelined_model(examples, examples[:2], vocab, config)
    second, second_history = train_pipelined_model(examples, examples[:2], vocab, config)

    assert first_history.train_loss == second_history.train_loss
    first_state = first.model.state_dict()
    second_state = second.model.state_dict()
    assert first_state.keys() == second_state.keys()
    for name in first_state:
        assert torch.equal(first_state[name], second_state[name])


def test_train_loop_batches_follow_the_seed():
    seen_batches: List[List[List[int]]] = [[], []]

    def run(run_i: int):
        model = nn.Linear(1, 1)

        def loss_fn(model: nn.Linear, batch: List[int]) -> torch.Tensor:
            if model.training:
                seen_batches[run_i].append(list(batch))
            return (model.weight.sum() * 0.0 + float(len(batch))).view(())

        config = TrainingConfig(epochs=2, batch_size=3, patience=5, seed=3)
        train_loop(model, loss_fn, list(range(10)), [], config)

    run(0)
    run(1)
    assert seen_batches[0] == seen_batches[1]
    assert [len(batch) for batch in seen_batches[0][:4]] == [3, 3, 3, 1]
    assert sorted(i for batch in seen_batches[0][:4] for i in batch) == list(range(10))


def test_train_loop_accepts_no_examples():
    model = nn.Linear(1, 1)

    def loss_fn(model: nn.Linear, batch: List[int]) -> torch.Tensor:
        return model.weight.sum()

    history = train_loop(model, loss_fn, [], [], TrainingConfig(epochs=3, patience=1))
    assert history.train_loss == [0.0, 0.0]
    assert history.best_epoch == 1
