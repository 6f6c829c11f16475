from __future__ import annotations
from typing import List, Any
from corefkit.pipeline.core import Mention
from corefkit.pipeline.corefs.datas import CoreferenceDocument


class MentionDetector:
    """Supplies candidate mentions to
    :class:`.PipelinedCoreferenceResolver`.

    .. note::

        Derived classes must override :meth:`detect`, which should
        not modify the document and must return a (possibly empty)
        list.
    """

    def detect(self, document: CoreferenceDocument, config: Any) -> List[Mention]:
        """
        :param document: the document in which to detect mentions
        :param config: the configuration of the calling resolver
        :return: detected mentions
        """
        raise NotImplementedError


class StaticMentionDetector(MentionDetector):
    """Returns an already known list of mentions, for example mentions
    coming from an external parser."""

    def __init__(self, mentions: List[Mention]) -> None:
        self.mentions = mentions

    def detect(self, document: CoreferenceDocument, config: Any) -> List[Mention]:
        return [m for m in self.mentions if m.end_idx < len(document)]


class GoldMentionDetector(MentionDetector):
    """Returns the mentions of the document gold coreference chains.
    Useful to evaluate coreference independently of mention
    detection."""

    def detect(self, document: CoreferenceDocument, config: Any) -> List[Mention]:
        return document.mentions()
