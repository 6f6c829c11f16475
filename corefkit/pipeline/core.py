from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Tuple, Set, List, Optional, Union, Type
import sys

from corefkit.pipeline.progress import ProgressReporter, get_progress_reporter, progress_


MentionType = Literal["pronoun", "proper_name", "definite_np", "span"]
Gender = Literal["male", "female", "neutral", "plural"]
Number = Literal["singular", "plural"]


@dataclass
class Mention:
    """A text span believed to refer to an entity.

    ``start_idx`` and ``end_idx`` are absolute (document level) token
    indices, both inclusive.  ``token_idx`` is the index of the first
    token of the mention inside its sentence.
    """

    tokens: List[str]
    start_idx: int
    end_idx: int
    type: MentionType = "span"
    sentence_idx: int = 0
    token_idx: int = 0
    gender: Optional[Gender] = None
    number: Optional[Number] = None
    entity_type: Optional[str] = None

    @property
    def text(self) -> str:
        return " ".join(self.tokens)

    def __len__(self) -> int:
        return self.end_idx - self.start_idx + 1

    def gender_agrees(self, other: Mention) -> bool:
        """Unknown genders agree with anything."""
        if self.gender is None or other.gender is None:
            return True
        return self.gender == other.gender

    def number_agrees(self, other: Mention) -> bool:
        if self.number is None or other.number is None:
            return True
        return self.number == other.number

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mention):
            return NotImplemented
        return (
            self.tokens == other.tokens
            and self.start_idx == other.start_idx
            and self.end_idx == other.end_idx
        )

    def __hash__(self) -> int:
        return hash(tuple(self.tokens) + (self.start_idx, self.end_idx))


@dataclass
class CorefChain:
    """A set of mentions judged to denote the same entity.

    :ivar id: chain id, unique in a resolution run
    :ivar mentions: mentions, in document order
    :ivar representative: text of the mention that best names the
        entity
    :ivar entity_type: entity type of the first mention that has one
    """

    id: int
    mentions: List[Mention]
    representative: str
    entity_type: Optional[str] = None

    def __len__(self) -> int:
        return len(self.mentions)

    def __contains__(self, mention: Mention) -> bool:
        return mention in self.mentions


class PipelineStep:
    """A step of a :class:`Pipeline`.

    A step declares the state attributes it reads (:meth:`needs` and
    :meth:`optional_needs`) and the ones it writes
    (:meth:`production`).  When run, it receives the whole pipeline
    state as keyword arguments, and returns a dict of produced
    attributes.

    .. note::

        Derived classes must override ``__call__``, :meth:`needs` and
        :meth:`production`.
    """

    def __init__(self):
        self.lang = "eng"
        self.progress_reporter: ProgressReporter = get_progress_reporter(None)

    def _pipeline_init_(self, lang: str, progress_reporter: ProgressReporter, **kwargs):
        """Receive the settings shared by all the steps of a pipeline.

        :param lang: ISO 639-3 language code
        :raise ValueError: if ``lang`` is not supported by this step
        """
        supported_langs = self.supported_langs()
        if supported_langs != "any" and not lang in supported_langs:
            raise ValueError(
                f"{self.__class__.__name__} does not support lang {lang} (supported: {supported_langs})"
            )
        self.lang = lang
        self.progress_reporter = progress_reporter

    def __call__(self, **kwargs) -> Dict[str, Any]:
        raise NotImplementedError()

    def supported_langs(self) -> Union[Set[str], Literal["any"]]:
        return {"eng"}

    def needs(self) -> Set[str]:
        raise NotImplementedError()

    def optional_needs(self) -> Set[str]:
        """Attributes used if available"""
        return set()

    def production(self) -> Set[str]:
        raise NotImplementedError()


@dataclass
class PipelineState:
    """Attributes computed by the steps of a :class:`Pipeline`.  Steps
    may add attributes that are not declared here."""

    text: Optional[str] = None
    tokens: Optional[List[str]] = None
    #: token index of each character of ``text``
    char2token: Optional[List[int]] = None
    #: each sentence is a list of tokens
    sentences: Optional[List[List[str]]] = None
    corefs: Optional[List[CorefChain]] = None
    #: mentions that could not be scored during coreference resolution
    excluded_mentions: List[Mention] = field(default_factory=list)

    def chain_of(self, mention: Mention) -> Optional[CorefChain]:
        """
        :return: the coreference chain containing ``mention``, or
            ``None``
        """
        assert not self.corefs is None
        return next((chain for chain in self.corefs if mention in chain), None)


class Pipeline:
    """Runs a sequence of :class:`PipelineStep` over a shared
    :class:`PipelineState`.

    .. code-block:: python

        pipeline = Pipeline([NLTKTokenizer(), EndToEndCoreferenceResolver(bundle)])
        state = pipeline("Princess Liana felt sad. She went to sleep.")
        state.corefs
    """

    def __init__(
        self,
        steps: List[PipelineStep],
        lang: str = "eng",
        progress_report: Optional[Literal["tqdm"]] = "tqdm",
        warn: bool = True,
    ) -> None:
        """
        :param steps: steps, run in order
        :param lang: ISO 639-3 language code of processed texts
        :param progress_report: ``'tqdm'``, or ``None`` to disable
            progress reporting
        :param warn: if ``True``, print unsatisfied optional needs on
            stderr
        """
        self.steps = steps
        self.lang = lang
        self.progress_reporter = get_progress_reporter(progress_report)
        self.warn = warn

    def check_valid(self, *args: str) -> Tuple[bool, List[str]]:
        """Check that the needs of each step are produced by a previous
        step, or available from the start.

        :param args: names of attributes available before the first
            step (``'text'`` is always available)
        :return: ``(True, warnings)`` if the pipeline can be run,
            ``(False, errors)`` otherwise.  Warnings are about
            unsatisfied optional needs.
        """
        available = {"text", *args}
        warnings = []

        for i, step in enumerate(self.steps, start=1):
            step_name = f"step {i} ({step.__class__.__name__})"

            missing = step.needs() - available
            if len(missing) > 0:
                return (
                    False,
                    [
                        f"{step_name} is missing {sorted(missing)} (available: {sorted(available)})"
                    ],
                )

            missing_optional = step.optional_needs() - available
            if len(missing_optional) > 0:
                warnings.append(
                    f"{step_name} runs without optional {sorted(missing_optional)}"
                )

            available |= step.production()

        return (True, warnings)

    def _run_steps_(
        self, state: PipelineState, steps: List[PipelineStep]
    ) -> PipelineState:
        for step in progress_(self.progress_reporter, steps):
            self.progress_reporter.update_message_(step.__class__.__name__)
            for key, value in step(**vars(state)).items():
                setattr(state, key, value)
        return state

    def __call__(self, text: Optional[str] = None, **kwargs) -> PipelineState:
        """Run all steps.

        :param text: input text.  Can be omitted when the steps that
            need it are replaced by precomputed attributes.
        :param kwargs: precomputed attributes (for example ``tokens``
            and ``sentences``)
        :raise ValueError: if the pipeline is not valid (see
            :meth:`check_valid`)
        """
        is_valid, messages = self.check_valid(*kwargs.keys())
        if not is_valid:
            raise ValueError(messages)
        if self.warn:
            for message in messages:
                print(f"[warning] {message}", file=sys.stderr)

        steps_reporter = self.progress_reporter.get_subreporter()
        for step in self.steps:
            step._pipeline_init_(self.lang, progress_reporter=steps_reporter)

        state = PipelineState(text)
        for key, value in kwargs.items():
            setattr(state, key, value)

        return self._run_steps_(state, self.steps)

    def rerun_from(
        self, state: PipelineState, from_step: Union[str, Type[PipelineStep]]
    ) -> PipelineState:
        """Run again the steps starting from ``from_step`` (included),
        keeping the attributes computed by the previous ones.  Useful
        to try another coreference configuration on an already
        tokenized text.

        :param from_step: the class of a step, or the name of an
            attribute it produces (``'tokens'``, ``'corefs'``...)
        """
        for i, step in enumerate(self.steps):
            if step.__class__ == from_step or from_step in step.production():
                return self._run_steps_(state, self.steps[i:])
        raise ValueError(f"no step matches {from_step}")
