import json, os
import pytest
from pytest import fixture
import torch
from corefkit.pipeline.corefs.bundle import (
    CONFIG_FILE,
    VOCABULARY_FILE,
    CoreferenceBundle,
    load_bundle,
    save_bundle,
)
from corefkit.pipeline.corefs.config import TrainingConfig
from corefkit.pipeline.corefs.corefs import (
    EndToEndCoreferenceResolver,
    PipelinedCoreferenceResolver,
)
from corefkit.pipeline.corefs.datas import CoreferenceDocument
from corefkit.pipeline.corefs.errors import CorruptModelError, ModelNotFoundError
from corefkit.pipeline.corefs.mentions import StaticMentionDetector
from corefkit.pipeline.corefs.models import PipelinedCorefModel, SpanCorefModel
from corefkit.pipeline.corefs.vocabulary import Vocabulary


SENTENCES = [["Princess", "Liana", "felt", "sad", "."], ["She", "slept", "."]]


@fixture
def vocab() -> Vocabulary:
    return Vocabulary.build(SENTENCES, min_count=1)


@fixture
def pipelined_bundle(vocab: Vocabulary) -> CoreferenceBundle:
    torch.manual_seed(0)
    model = PipelinedCorefModel(
        len(vocab), embedding_dim=8, hidden_size=8, pair_scorer_hidden=[8]
    )
    return CoreferenceBundle(model, vocab)


@fixture
def e2e_bundle(vocab: Vocabulary) -> CoreferenceBundle:
    torch.manual_seed(0)
    model = SpanCorefModel(
        len(vocab),
        embedding_dim=8,
        hidden_size=8,
        max_span_width=2,
        width_embedding_dim=4,
        span_scorer_hidden=[8],
        pair_scorer_hidden=[8],
    )
    return CoreferenceBundle(model, vocab)


def test_bundle_files(tmp_path, e2e_bundle: CoreferenceBundle):
    save_bundle(e2e_bundle, str(tmp_path))
    assert sorted(os.listdir(tmp_path)) == sorted(
        [
            CONFIG_FILE,
            VOCABULARY_FILE,
            "encoder.pt",
            "span_representation.pt",
            "span_scorer.pt",
            "pair_scorer.pt",
        ]
    )
    with open(tmp_path / CONFIG_FILE) as f:
        assert json.load(f)["kind"] == "end_to_end"


def test_loaded_pipelined_bundle_gives_identical_predictions(
    tmp_path, pipelined_bundle: CoreferenceBundle
):
    document = CoreferenceDocument(SENTENCES)
    mentions = [document.mention(0, 1, type="proper_name"), document.mention(5, 5)]

    save_bundle(pipelined_bundle, str(tmp_path))
    loaded = load_bundle(str(tmp_path))
    assert loaded.kind == "pipelined"
    assert loaded.vocabulary == pipelined_bundle.vocabulary

    detector = StaticMentionDetector(mentions)
    before = PipelinedCoreferenceResolver(pipelined_bundle, detector)
    after = PipelinedCoreferenceResolver(loaded, detector)
    assert before.score_mention_pairs(
        document.tokens, mentions
    ) == after.score_mention_pairs(document.tokens, mentions)


def test_loaded_e2e_bundle_gives_identical_predictions(
    tmp_path, e2e_bundle: CoreferenceBundle
):
    document = CoreferenceDocument(SENTENCES)
    save_bundle(e2e_bundle, str(tmp_path))
    loaded = load_bundle(str(tmp_path))

    before = EndToEndCoreferenceResolver(e2e_bundle)
    after = EndToEndCoreferenceResolver(loaded)
    before_spans, _ = before.candidate_spans(document.tokens)
    after_spans, _ = after.candidate_spans(document.tokens)
    assert [(s.bounds(), s.score) for s in before_spans] == [
        (s.bounds(), s.score) for s in after_spans
    ]
    assert before.resolve(document) == after.resolve(document)


def test_missing_bundle_is_not_found(tmp_path):
    with pytest.raises(ModelNotFoundError):
        load_bundle(str(tmp_path / "nothing"))


def test_missing_bundle_file_is_not_found(tmp_path, pipelined_bundle):
    save_bundle(pipelined_bundle, str(tmp_path))
    os.remove(tmp_path / "pair_scorer.pt")
    with pytest.raises(ModelNotFoundError):
        load_bundle(str(tmp_path))


def test_truncated_weights_are_corrupt(tmp_path, pipelined_bundle):
    save_bundle(pipelined_bundle, str(tmp_path))
    with open(tmp_path / "encoder.pt", "wb") as f:
        f.write(b"not a torch file")
    with pytest.raises(CorruptModelError):
        load_bundle(str(tmp_path))


def test_invalid_config_is_corrupt(tmp_path, pipelined_bundle):
    save_bundle(pipelined_bundle, str(tmp_path))
    with open(tmp_path / CONFIG_FILE, "w") as f:
        f.write("{ kind: ")
    with pytest.raises(CorruptModelError):
        load_bundle(str(tmp_path))

    with open(tmp_path / CONFIG_FILE, "w") as f:
        json.dump({"kind": "unknown", "hyperparameters": {}}, f)
    with pytest.raises(CorruptModelError):
        load_bundle(str(tmp_path))


def test_mismatched_hyperparameters_are_corrupt(tmp_path, pipelined_bundle):
    save_bundle(pipelined_bundle, str(tmp_path))
    with open(tmp_path / CONFIG_FILE) as f:
        config = json.load(f)
    config["hyperparameters"]["hidden_size"] = 16
    with open(tmp_path / CONFIG_FILE, "w") as f:
        json.dump(config, f)
    with pytest.raises(CorruptModelError):
        load_bundle(str(tmp_path))


def test_training_span_settings_are_used_after_reload(tmp_path, vocab: Vocabulary):
    config = TrainingConfig.end_to_end(
        hidden_size=8,
        embedding_dim=8,
        max_span_width=2,
        top_k_spans=3,
        width_embedding_dim=4,
        span_scorer_hidden=[8],
        pair_scorer_hidden=[8],
    )
    bundle = CoreferenceBundle(SpanCorefModel.from_config(len(vocab), config), vocab)
    save_bundle(bundle, str(tmp_path))
    with open(tmp_path / CONFIG_FILE) as f:
        assert json.load(f)["hyperparameters"]["top_k_spans"] == 3

    resolver = EndToEndCoreferenceResolver(load_bundle(str(tmp_path)))
    assert resolver.config.max_span_width == 2
    assert resolver.config.top_k_spans == 3
    spans, _ = resolver.candidate_spans(CoreferenceDocument(SENTENCES).tokens)
    assert len(spans) <= 3
    assert all(len(span) <= 2 for span in spans)


def test_training_context_window_is_used_after_reload(tmp_path, vocab: Vocabulary):
    config = TrainingConfig.pipelined(
        hidden_size=8, embedding_dim=8, context_window=4, pair_scorer_hidden=[8]
    )
    bundle = CoreferenceBundle(
        PipelinedCorefModel.from_config(len(vocab), config), vocab
    )
    save_bundle(bundle, str(tmp_path))
    resolver = PipelinedCoreferenceResolver(
        load_bundle(str(tmp_path)), StaticMentionDetector([])
    )
    assert resolver.config.context_window == 4
