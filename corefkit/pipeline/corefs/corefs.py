from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Set, Tuple, Union
import math, sys
from dataclasses import replace
import torch
from corefkit.pipeline.core import Mention, PipelineStep
from corefkit.pipeline.corefs.bundle import CoreferenceBundle, load_bundle
from corefkit.pipeline.corefs.chains import (
    AverageLinkChainBuilder,
    GreedyAntecedentChainBuilder,
    PairScores,
)
from corefkit.pipeline.corefs.config import (
    EndToEndResolverConfig,
    PipelinedResolverConfig,
)
from corefkit.pipeline.corefs.datas import CoreferenceDocument
from corefkit.pipeline.corefs.errors import resolution_stage
from corefkit.pipeline.corefs.mentions import MentionDetector
from corefkit.pipeline.corefs.pairs import mention_candidate_pairs, span_candidate_pairs
from corefkit.pipeline.corefs.spans import Span, enumerate_spans, prune_spans


def _torch_device(device: Union[Literal["auto"], str, torch.device]) -> torch.device:
    if device == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(device)


def _bundle_device(
    bundle: CoreferenceBundle,
    device: Optional[Union[Literal["auto", "cuda", "cpu"], torch.device]],
) -> torch.device:
    """Check that ``device`` is the device of the bundle model.

    :param device: if ``None``, the device of the bundle model is used
    :raise ValueError: when ``device`` is not the device of the bundle
        model.  Resolvers never move a bundle model.
    """
    model_device = next(bundle.model.parameters()).device
    if device is None:
        return model_device
    device = _torch_device(device)
    if device.type != model_device.type or (
        not device.index is None and device.index != model_device.index
    ):
        raise ValueError(
            f"bundle model is on {model_device}, not on {device} (load the bundle with load_bundle(path, device='{device}') instead)"
        )
    return model_device


def bundle_resolver_config(
    bundle: CoreferenceBundle, **kwargs
) -> Union[PipelinedResolverConfig, EndToEndResolverConfig]:
    """The default resolver configuration of a bundle.  Mentions are
    encoded with the context window used during training, and spans
    are enumerated and pruned as during training.

    :param kwargs: other options of the resolver configuration
    :return: a :class:`.PipelinedResolverConfig` or an
        :class:`.EndToEndResolverConfig`, depending on the bundle kind
    """
    hyperparameters = bundle.model.hyperparameters
    if bundle.kind == "pipelined":
        return PipelinedResolverConfig(
            context_window=hyperparameters["context_window"], **kwargs
        )
    return EndToEndResolverConfig(
        max_span_width=hyperparameters["max_span_width"],
        top_k_spans=hyperparameters["top_k_spans"],
        **kwargs,
    )


def _without_unscored(
    mentions: List[Mention], scores: PairScores
) -> Tuple[List[Mention], PairScores, List[Mention]]:
    """Exclude mentions involved in a pair with a non-finite score.

    :return: ``(kept mentions, kept scores, excluded mentions)``.  Kept
        scores are re-indexed according to kept mentions.
    """
    unscored = {
        idx
        for (i, j), score in scores.items()
        if not math.isfinite(score)
        for idx in (i, j)
    }
    if len(unscored) == 0:
        return mentions, scores, []

    kept = [i for i in range(len(mentions)) if not i in unscored]
    new_index = {old_i: new_i for new_i, old_i in enumerate(kept)}
    kept_scores = {
        (new_index[i], new_index[j]): score
        for (i, j), score in scores.items()
        if i in new_index and j in new_index
    }
    excluded = [mentions[i] for i in sorted(unscored)]
    return [mentions[i] for i in kept], kept_scores, excluded


def _warn_excluded(excluded: List[Mention]):
    if len(excluded) > 0:
        print(
            f"[warning] {len(excluded)} mention(s) could not be scored and were excluded: {[m.text for m in excluded]}",
            file=sys.stderr,
        )


class PipelinedCoreferenceResolver(PipelineStep):
    """A mention-pair coreference resolver.

    Mentions are supplied by a :class:`.MentionDetector`.  Each
    mention is encoded using its context, every pair of mentions close
    enough is scored, and chains are built using greedy
    cluster-average agglomeration (see
    :class:`.AverageLinkChainBuilder`).
    """

    def __init__(
        self,
        bundle: CoreferenceBundle,
        mention_detector: MentionDetector,
        config: Optional[PipelinedResolverConfig] = None,
        device: Optional[Union[Literal["auto", "cuda", "cpu"], torch.device]] = None,
    ) -> None:
        """
        :param bundle: a bundle holding a :class:`.PipelinedCorefModel`
        :param mention_detector: supplies candidate mentions
        :param config: resolver options.  Defaults to
            :func:`bundle_resolver_config`.
        :param device: computation device.  It must be the device of
            the bundle model, which is used when ``device`` is ``None``.
        """
        if bundle.kind != "pipelined":
            raise ValueError(
                f"{self.__class__.__name__} needs a pipelined model (got {bundle.kind})"
            )
        self.bundle = bundle
        self.mention_detector = mention_detector
        self.config = config or bundle_resolver_config(bundle)  # type: ignore
        self.chain_builder = AverageLinkChainBuilder(
            self.config.min_score, self.config.linkage
        )
        self.device = _bundle_device(bundle, device)
        super().__init__()

    def score_mention_pairs(
        self, tokens: List[str], mentions: List[Mention]
    ) -> PairScores:
        """Score all pairs of mentions at most
        ``config.max_sentence_distance`` sentences apart.

        :param mentions: mentions, in document order
        """
        pairs = mention_candidate_pairs(mentions, self.config.max_sentence_distance)
        model = self.bundle.model
        with torch.no_grad():
            with resolution_stage("encode"):
                mentions_repr = model.encode_mentions(
                    self.bundle.vocabulary,
                    [(tokens, mention) for mention in mentions],
                    self.config.context_window,
                )
            with resolution_stage("score"):
                scores = model.score_pairs(mentions, mentions_repr, pairs)
        return dict(zip(pairs, scores.tolist()))

    def resolve(self, document: CoreferenceDocument) -> CoreferenceDocument:
        """Resolve coreference in ``document``.

        :return: a copy of ``document`` with predicted chains
        """
        mentions = self.mention_detector.detect(document, self.config)
        if mentions is None:
            raise TypeError(
                f"{self.mention_detector.__class__.__name__}.detect returned None instead of a list of mentions"
            )
        if len(mentions) == 0:
            return replace(document, coref_chains=[], excluded_mentions=[])

        mentions = sorted(mentions, key=lambda m: (m.start_idx, m.end_idx))
        scores = self.score_mention_pairs(document.tokens, mentions)
        mentions, scores, excluded = _without_unscored(mentions, scores)
        _warn_excluded(excluded)

        with resolution_stage("cluster"):
            chains = self.chain_builder(mentions, scores)

        return replace(document, coref_chains=chains, excluded_mentions=excluded)

    def __call__(
        self, tokens: List[str], sentences: Optional[List[List[str]]] = None, **kwargs
    ) -> Dict[str, Any]:
        document = self.resolve(CoreferenceDocument(sentences or [tokens]))
        return {
            "corefs": document.coref_chains,
            "excluded_mentions": document.excluded_mentions,
        }

    def needs(self) -> Set[str]:
        return {"tokens"}

    def optional_needs(self) -> Set[str]:
        return {"sentences"}

    def production(self) -> Set[str]:
        return {"corefs", "excluded_mentions"}


class EndToEndCoreferenceResolver(PipelineStep):
    """A span-based coreference resolver, loosely based on 'End-to-end
    Neural Coreference Resolution' (Lee et al. 2017).

    The document is encoded once.  All spans of at most
    ``config.max_span_width`` tokens are scored and pruned, every pair
    of remaining spans close enough is scored, and chains are built by
    linking each span to its best antecedent (see
    :class:`.GreedyAntecedentChainBuilder`).
    """

    def __init__(
        self,
        bundle: CoreferenceBundle,
        config: Optional[EndToEndResolverConfig] = None,
        device: Optional[Union[Literal["auto", "cuda", "cpu"], torch.device]] = None,
    ) -> None:
        """
        :param bundle: a bundle holding a :class:`.SpanCorefModel`
        :param config: resolver options.  Defaults to
            :func:`bundle_resolver_config`.
        :param device: computation device.  It must be the device of
            the bundle model, which is used when ``device`` is ``None``.
        """
        if bundle.kind != "end_to_end":
            raise ValueError(
                f"{self.__class__.__name__} needs an end-to-end model (got {bundle.kind})"
            )
        self.bundle = bundle
        self.config = config or bundle_resolver_config(bundle)  # type: ignore
        self.chain_builder = GreedyAntecedentChainBuilder(self.config.min_coref_score)
        self.device = _bundle_device(bundle, device)
        super().__init__()

    def candidate_spans(self, tokens: List[str]) -> Tuple[List[Span], List[Tuple[int, int]]]:
        """Enumerate, score and prune the spans of a document.

        :return: a tuple ``(pruned spans, unscored spans bounds)``
        """
        model = self.bundle.model
        bounds = enumerate_spans(len(tokens), self.config.max_span_width)
        with torch.no_grad():
            with resolution_stage("encode"):
                states = model.encode(self.bundle.vocabulary, tokens)
                spans_repr = model.represent_spans(states, bounds)
            with resolution_stage("score"):
                span_scores = model.score_spans(spans_repr).tolist()

        spans, unscored = [], []
        for (start, end), score, span_repr in zip(bounds, span_scores, spans_repr):
            if not math.isfinite(score):
                unscored.append((start, end))
                continue
            spans.append(Span(start, end, score, span_repr))

        pruned = prune_spans(spans, self.config.top_k_spans, self.config.min_span_score)
        return pruned, unscored

    def score_span_pairs(self, tokens: List[str], spans: List[Span]) -> PairScores:
        """Score all pairs of spans at most ``config.max_distance``
        tokens apart.

        :param spans: spans, in document order, with their
            representations
        """
        bounds = [span.bounds() for span in spans]
        pairs = span_candidate_pairs(bounds, self.config.max_distance)
        if len(pairs) == 0:
            return {}
        spans_repr = torch.stack([span.representation for span in spans])  # type: ignore
        with torch.no_grad():
            with resolution_stage("score"):
                scores = self.bundle.model.score_pairs(tokens, bounds, spans_repr, pairs)
        return dict(zip(pairs, scores.tolist()))

    def resolve(self, document: CoreferenceDocument) -> CoreferenceDocument:
        """Resolve coreference in ``document``.

        :return: a copy of ``document`` with predicted chains
        """
        tokens = document.tokens
        if len(tokens) == 0:
            return replace(document, coref_chains=[], excluded_mentions=[])

        spans, unscored = self.candidate_spans(tokens)
        excluded = [document.mention(start, end) for start, end in unscored]
        if len(spans) == 0:
            _warn_excluded(excluded)
            return replace(document, coref_chains=[], excluded_mentions=excluded)

        scores = self.score_span_pairs(tokens, spans)
        mentions = [document.mention(s.start_idx, s.end_idx) for s in spans]
        mentions, scores, excluded_from_pairs = _without_unscored(mentions, scores)
        excluded += excluded_from_pairs
        _warn_excluded(excluded)

        with resolution_stage("cluster"):
            chains = self.chain_builder(mentions, scores)

        return replace(document, coref_chains=chains, excluded_mentions=excluded)

    def __call__(
        self, tokens: List[str], sentences: Optional[List[List[str]]] = None, **kwargs
    ) -> Dict[str, Any]:
        document = self.resolve(CoreferenceDocument(sentences or [tokens]))
        return {
            "corefs": document.coref_chains,
            "excluded_mentions": document.excluded_mentions,
        }

    def needs(self) -> Set[str]:
        return {"tokens"}

    def optional_needs(self) -> Set[str]:
        return {"sentences"}

    def production(self) -> Set[str]:
        return {"corefs", "excluded_mentions"}


def resolve_from_path(
    path: str,
    document: CoreferenceDocument,
    mention_detector: Optional[MentionDetector] = None,
    config: Optional[Union[PipelinedResolverConfig, EndToEndResolverConfig]] = None,
    device: Union[Literal["auto", "cuda", "cpu"], torch.device] = "cpu",
) -> CoreferenceDocument:
    """Load a bundle and resolve coreference in a document with the
    resolver matching the bundle model.

    :param mention_detector: needed for pipelined models only
    :param config: resolver options, matching the bundle model kind
    :raise ModelNotFoundError:
    :raise CorruptModelError:
    """
    device = _torch_device(device)
    bundle = load_bundle(path, device=device)
    if bundle.kind == "pipelined":
        if mention_detector is None:
            raise ValueError("a mention detector is needed for pipelined models")
        if not config is None and not isinstance(config, PipelinedResolverConfig):
            raise TypeError(
                f"pipelined models need a PipelinedResolverConfig (got {config.__class__.__name__})"
            )
        return PipelinedCoreferenceResolver(
            bundle, mention_detector, config, device
        ).resolve(document)
    if not config is None and not isinstance(config, EndToEndResolverConfig):
        raise TypeError(
            f"end-to-end models need an EndToEndResolverConfig (got {config.__class__.__name__})"
        )
    return EndToEndCoreferenceResolver(bundle, config, device).resolve(document)
