import math
from typing import List
import pytest
from pytest import fixture
import torch
from corefkit.pipeline.core import Mention, Pipeline
from corefkit.pipeline.corefs.bundle import CoreferenceBundle, save_bundle
from corefkit.pipeline.corefs.chains import PairScores
from corefkit.pipeline.corefs.config import (
    EndToEndResolverConfig,
    PipelinedResolverConfig,
)
from corefkit.pipeline.corefs.corefs import (
    EndToEndCoreferenceResolver,
    PipelinedCoreferenceResolver,
    resolve_from_path,
)
from corefkit.pipeline.corefs.datas import CoreferenceDocument
from corefkit.pipeline.corefs.errors import CoreferenceError
from corefkit.pipeline.corefs.mentions import MentionDetector, StaticMentionDetector
from corefkit.pipeline.corefs.models import PipelinedCorefModel, SpanCorefModel
from corefkit.pipeline.corefs.vocabulary import Vocabulary


SENTENCES = [
    ["John", "works", "at", "Google", "."],
    ["He", "is", "an", "engineer", "."],
]


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
        max_span_width=3,
        width_embedding_dim=4,
        span_scorer_hidden=[8],
        pair_scorer_hidden=[8],
    )
    return CoreferenceBundle(model, vocab)


def _document_mentions(document: CoreferenceDocument) -> List[Mention]:
    return [
        document.mention(0, 0, type="proper_name"),
        document.mention(3, 3, type="proper_name"),
        document.mention(5, 5, type="pronoun", gender="male"),
    ]


class FixedScoresResolver(PipelinedCoreferenceResolver):
    def __init__(self, scores: PairScores, *args, **kwargs):
        self.fixed_scores = scores
        super().__init__(*args, **kwargs)

    def score_mention_pairs(self, tokens, mentions) -> PairScores:
        return self.fixed_scores


def test_document_without_mentions_has_no_chains(pipelined_bundle, e2e_bundle):
    document = CoreferenceDocument(SENTENCES)
    resolver = PipelinedCoreferenceResolver(pipelined_bundle, StaticMentionDetector([]))
    resolved = resolver.resolve(document)
    assert resolved.coref_chains == []
    assert resolved.excluded_mentions == []

    resolver = EndToEndCoreferenceResolver(e2e_bundle)
    assert resolver.resolve(CoreferenceDocument([])).coref_chains == []


def test_pronoun_is_linked_to_its_antecedent(pipelined_bundle):
    document = CoreferenceDocument(SENTENCES)
    resolver = FixedScoresResolver(
        {(0, 1): 0.1, (0, 2): 0.9, (1, 2): 0.2},
        pipelined_bundle,
        StaticMentionDetector(_document_mentions(document)),
        PipelinedResolverConfig(min_score=0.5),
    )
    chains = resolver.resolve(document).coref_chains
    assert len(chains) == 1
    assert [m.text for m in chains[0].mentions] == ["John", "He"]
    assert chains[0].representative == "John"


def test_resolution_does_not_modify_the_input_document(pipelined_bundle):
    document = CoreferenceDocument(SENTENCES)
    resolver = FixedScoresResolver(
        {(0, 2): 0.9},
        pipelined_bundle,
        StaticMentionDetector(_document_mentions(document)),
    )
    resolved = resolver.resolve(document)
    assert len(resolved.coref_chains) == 1
    assert document.coref_chains == []


def test_unscored_mentions_are_excluded(pipelined_bundle):
    document = CoreferenceDocument(SENTENCES)
    resolver = FixedScoresResolver(
        {(0, 1): math.nan, (0, 2): 0.9, (1, 2): 0.2},
        pipelined_bundle,
        StaticMentionDetector(_document_mentions(document)),
    )
    resolved = resolver.resolve(document)
    assert [m.text for m in resolved.excluded_mentions] == ["John", "Google"]
    assert resolved.coref_chains == []


def test_pipelined_resolution_is_deterministic(pipelined_bundle):
    document = CoreferenceDocument(SENTENCES)
    resolver = PipelinedCoreferenceResolver(
        pipelined_bundle,
        StaticMentionDetector(_document_mentions(document)),
        PipelinedResolverConfig(min_score=0.0),
    )
    mentions = _document_mentions(document)
    scores = resolver.score_mention_pairs(document.tokens, mentions)
    assert set(scores.keys()) == {(0, 1), (0, 2), (1, 2)}
    assert all(0.0 <= s <= 1.0 for s in scores.values())
    assert scores == resolver.score_mention_pairs(document.tokens, mentions)
    assert resolver.resolve(document) == resolver.resolve(document)


def test_backend_failures_are_tagged_with_their_stage(pipelined_bundle, monkeypatch):
    def failing_score_pairs(*args, **kwargs):
        raise RuntimeError("shape mismatch")

    monkeypatch.setattr(pipelined_bundle.model, "score_pairs", failing_score_pairs)
    document = CoreferenceDocument(SENTENCES)
    resolver = PipelinedCoreferenceResolver(
        pipelined_bundle, StaticMentionDetector(_document_mentions(document))
    )
    with pytest.raises(CoreferenceError) as e:
        resolver.resolve(document)
    assert e.value.stage == "score"


def test_resolver_refuses_a_bundle_of_the_wrong_kind(pipelined_bundle, e2e_bundle):
    with pytest.raises(ValueError):
        EndToEndCoreferenceResolver(pipelined_bundle)
    with pytest.raises(ValueError):
        PipelinedCoreferenceResolver(e2e_bundle, StaticMentionDetector([]))


def test_end_to_end_chains_respect_pruning(e2e_bundle):
    config = EndToEndResolverConfig(
        max_span_width=3, top_k_spans=4, min_span_score=0.0, min_coref_score=0.0
    )
    resolver = EndToEndCoreferenceResolver(e2e_bundle, config)
    document = CoreferenceDocument(SENTENCES)

    spans, unscored = resolver.candidate_spans(document.tokens)
    assert unscored == []
    assert len(spans) == 4
    assert all(len(span) <= 3 for span in spans)

    resolved = resolver.resolve(document)
    mentions = [m for chain in resolved.coref_chains for m in chain.mentions]
    assert len(mentions) == len(set(mentions))
    assert len(mentions) <= 4
    assert resolver.resolve(document) == resolved


def test_end_to_end_pairs_respect_max_distance(e2e_bundle):
    config = EndToEndResolverConfig(
        max_span_width=1, top_k_spans=20, min_span_score=0.0, max_distance=2
    )
    resolver = EndToEndCoreferenceResolver(e2e_bundle, config)
    tokens = [token for sentence in SENTENCES for token in sentence]
    spans, _ = resolver.candidate_spans(tokens)
    scores = resolver.score_span_pairs(tokens, spans)
    assert len(scores) > 0
    for i, j in scores.keys():
        assert spans[j].start_idx - spans[i].end_idx <= 2


def test_resolver_runs_in_a_pipeline(pipelined_bundle):
    document = CoreferenceDocument(SENTENCES)
    resolver = FixedScoresResolver(
        {(0, 2): 0.9},
        pipelined_bundle,
        StaticMentionDetector(_document_mentions(document)),
    )
    pipeline = Pipeline([resolver], progress_report=None, warn=False)
    state = pipeline(tokens=document.tokens, sentences=SENTENCES)
    assert not state.corefs is None
    assert len(state.corefs) == 1
    assert state.chain_of(state.corefs[0].mentions[1]) == state.corefs[0]


def test_resolve_from_path(tmp_path, pipelined_bundle, e2e_bundle):
    document = CoreferenceDocument(SENTENCES)

    save_bundle(pipelined_bundle, str(tmp_path / "pipelined"))
    with pytest.raises(ValueError):
        resolve_from_path(str(tmp_path / "pipelined"), document)
    resolved = resolve_from_path(
        str(tmp_path / "pipelined"),
        document,
        StaticMentionDetector(_document_mentions(document)),
    )
    assert resolved.sentences == SENTENCES

    save_bundle(e2e_bundle, str(tmp_path / "e2e"))
    resolved = resolve_from_path(
        str(tmp_path / "e2e"), document, config=EndToEndResolverConfig(max_span_width=3)
    )
    assert resolved.sentences == SENTENCES


def test_bundle_models_are_in_eval_mode(pipelined_bundle, e2e_bundle):
    assert not pipelined_bundle.model.training
    assert not e2e_bundle.model.training


def test_resolvers_do_not_move_a_shared_bundle(e2e_bundle):
    first = EndToEndCoreferenceResolver(e2e_bundle)
    assert first.device == torch.device("cpu")
    with pytest.raises(ValueError):
        EndToEndCoreferenceResolver(e2e_bundle, device="cuda")
    assert next(e2e_bundle.model.parameters()).device == torch.device("cpu")
    assert EndToEndCoreferenceResolver(e2e_bundle, device="cpu").device == first.device


class NoneMentionDetector(MentionDetector):
    def detect(self, document, config):
        return None


def test_detector_without_mentions_list_is_rejected(pipelined_bundle):
    resolver = PipelinedCoreferenceResolver(pipelined_bundle, NoneMentionDetector())
    with pytest.raises(TypeError):
        resolver.resolve(CoreferenceDocument(SENTENCES))


def test_resolve_from_path_rejects_a_config_of_the_wrong_kind(
    tmp_path, pipelined_bundle, e2e_bundle
):
    document = CoreferenceDocument(SENTENCES)
    save_bundle(pipelined_bundle, str(tmp_path / "pipelined"))
    with pytest.raises(TypeError):
        resolve_from_path(
            str(tmp_path / "pipelined"),
            document,
            StaticMentionDetector(_document_mentions(document)),
            config=EndToEndResolverConfig(),
        )
    save_bundle(e2e_bundle, str(tmp_path / "e2e"))
    with pytest.raises(TypeError):
        resolve_from_path(
            str(tmp_path / "e2e"), document, config=PipelinedResolverConfig()
        )
