from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import re, glob, os, random, sys
from dataclasses import dataclass, field
from more_itertools import flatten
from corefkit.pipeline.core import CorefChain, Mention, MentionType
from corefkit.pipeline.corefs.chains import select_representative
from corefkit.pipeline.corefs.spans import enumerate_spans
from corefkit.resources.pronouns.pronouns import (
    is_a_pronoun,
    pronoun_gender,
    pronoun_number,
)
from corefkit.utils import sentence_bounds, token_sentence_indexs


@dataclass
class CoreferenceDocument:
    """A tokenized document, with its coreference chains.

    :ivar sentences: document sentences, each sentence being a list
        of tokens
    :ivar coref_chains: coreference chains (gold chains when loaded
        from a corpus, predicted chains when returned by a resolver)
    :ivar excluded_mentions: mentions that a resolver could not score
    :ivar id: an optional document identifier
    """

    sentences: List[List[str]]
    coref_chains: List[CorefChain] = field(default_factory=list)
    excluded_mentions: List[Mention] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def tokens(self) -> List[str]:
        return list(flatten(self.sentences))

    def __len__(self) -> int:
        return sum(len(sentence) for sentence in self.sentences)

    def mentions(self) -> List[Mention]:
        """All mentions of the document chains, in document order"""
        return sorted(
            flatten(chain.mentions for chain in self.coref_chains),
            key=lambda m: (m.start_idx, m.end_idx),
        )

    def mention(self, start_idx: int, end_idx: int, **kwargs) -> Mention:
        """Create a :class:`Mention` of this document from its absolute
        token indices.

        :param kwargs: passed to :class:`Mention`
        """
        bounds = sentence_bounds(self.sentences)
        sentence_idx = next(
            i for i, (start, end) in enumerate(bounds) if start <= start_idx < end
        )
        return Mention(
            self.tokens[start_idx : end_idx + 1],
            start_idx,
            end_idx,
            sentence_idx=sentence_idx,
            token_idx=start_idx - bounds[sentence_idx][0],
            **kwargs,
        )


@dataclass
class MentionPairExample:
    """A labeled pair of mentions (pipelined training)

    :ivar tokens: tokens of the document of both mentions
    :ivar mentions_distance: number of mentions between
        ``mention_a`` and ``mention_b``
    """

    mention_a: Mention
    mention_b: Mention
    label: int
    tokens: List[str]
    mentions_distance: int = 0


@dataclass
class SpanExample:
    """Labeled spans and span pairs of a single document (end-to-end
    training)

    :ivar spans: ``(start_idx, end_idx)`` of candidate spans
    :ivar span_labels: ``1`` if the corresponding span is a gold
        mention, ``0`` otherwise
    :ivar pairs: pairs of spans, the first span of a pair preceding
        the second one
    :ivar pair_labels: ``1`` if the corresponding spans are
        coreferent, ``0`` otherwise
    """

    tokens: List[str]
    spans: List[Tuple[int, int]]
    span_labels: List[int]
    pairs: List[Tuple[Tuple[int, int], Tuple[int, int]]] = field(default_factory=list)
    pair_labels: List[int] = field(default_factory=list)


def infer_mention_type(tokens: List[str], pos_tags: List[str]) -> MentionType:
    """Guess the type of a mention from its tokens and their
    Penn Treebank part-of-speech tags."""
    if len(tokens) == 1 and (pos_tags[0].startswith("PRP") or is_a_pronoun(tokens[0])):
        return "pronoun"
    content_tags = [tag for tag in pos_tags if not tag in ("DT", "POS")]
    if len(content_tags) > 0 and all(tag.startswith("NNP") for tag in content_tags):
        return "proper_name"
    if tokens[0].lower() == "the":
        return "definite_np"
    return "span"


def _conll_mention(
    sentences: List[List[str]], pos_tags: List[str], start_idx: int, end_idx: int
) -> Mention:
    tokens = list(flatten(sentences))
    sentence_idx = token_sentence_indexs(sentences)[start_idx]
    sentence_start = sentence_bounds(sentences)[sentence_idx][0]
    mention_tokens = tokens[start_idx : end_idx + 1]
    mention_type = infer_mention_type(mention_tokens, pos_tags[start_idx : end_idx + 1])
    gender = number = None
    if mention_type == "pronoun":
        gender = pronoun_gender(mention_tokens[0])
        number = pronoun_number(mention_tokens[0])
    return Mention(
        mention_tokens,
        start_idx,
        end_idx,
        type=mention_type,
        sentence_idx=sentence_idx,
        token_idx=start_idx - sentence_start,
        gender=gender,
        number=number,
    )


def load_conll2012_documents(
    path: str,
    tokens_column: int = 3,
    pos_column: Optional[int] = 4,
    corefs_column: int = -1,
) -> List[CoreferenceDocument]:
    """Load documents from a CoNLL-2012 formatted file.

    :param tokens_column: index of the tokens column
    :param pos_column: index of the part-of-speech column, used to
        guess mentions types.  If ``None``, mentions types are guessed
        from tokens only.
    :param corefs_column: index of the coreference column
    """
    documents = []

    document_id: Optional[str] = None
    sentences: List[List[str]] = []
    sentence: List[str] = []
    tokens: List[str] = []
    pos_tags: List[str] = []
    # chain id => list of (start_idx, end_idx)
    chains: Dict[str, List[Tuple[int, int]]] = {}
    # chain id => stack of open mentions start index
    open_mentions: Dict[str, List[int]] = {}

    def end_sentence():
        if len(sentence) > 0:
            sentences.append(list(sentence))
            sentence.clear()

    with open(path) as f:

        for line in f:

            line = line.rstrip("\n")

            if line.startswith("#begin document"):
                match = re.match(r"#begin document \((.*)\);", line)
                document_id = match.group(1) if match else None
                sentences, sentence, tokens, pos_tags = [], [], [], []
                chains, open_mentions = {}, {}
                continue

            if line.startswith("#end document"):
                end_sentence()
                coref_chains = []
                for chain_i, chain_key in enumerate(chains.keys()):
                    mentions = sorted(
                        (
                            _conll_mention(sentences, pos_tags, start_idx, end_idx)
                            for start_idx, end_idx in chains[chain_key]
                        ),
                        key=lambda m: (m.start_idx, m.end_idx),
                    )
                    coref_chains.append(
                        CorefChain(
                            chain_i, mentions, select_representative(mentions).text
                        )
                    )
                documents.append(
                    CoreferenceDocument(sentences, coref_chains, id=document_id)
                )
                continue

            if line.startswith("#"):
                continue

            if re.fullmatch(r"\s*", line):
                end_sentence()
                continue

            splitted = line.split()

            token_idx = len(tokens)
            tokens.append(splitted[tokens_column])
            sentence.append(splitted[tokens_column])
            pos_tags.append(splitted[pos_column] if not pos_column is None else "-")

            # coreference datas are either a single dash ("-"), or
            # a list of annotations separated by pipes ("|").  An
            # annotation has the form "(?[0-9]+)?" : an opening
            # parenthesis starts a mention, a closing parenthesis ends
            # it, and the number is the id of the mention chain.
            coref_datas = splitted[corefs_column]
            if coref_datas in ("-", "_"):
                continue

            for coref_data in coref_datas.split("|"):
                chain_match = re.search(r"[0-9]+", coref_data)
                if chain_match is None:
                    continue
                chain_id = chain_match.group(0)

                if "(" in coref_data:
                    open_mentions.setdefault(chain_id, []).append(token_idx)

                if ")" in coref_data:
                    if len(open_mentions.get(chain_id, [])) == 0:
                        print(
                            f"[warning] {path}: unopened mention of chain {chain_id} at token {token_idx}",
                            file=sys.stderr,
                        )
                        continue
                    start_idx = open_mentions[chain_id].pop()
                    chains.setdefault(chain_id, []).append((start_idx, token_idx))

    return documents


def load_conll2012_directory(
    root_path: str, pattern: str = "**/*conll", **kwargs
) -> List[CoreferenceDocument]:
    """Load all CoNLL-2012 files of a directory.

    :param pattern: glob pattern of files to load, relative to
        ``root_path``
    :param kwargs: passed to :func:`load_conll2012_documents`
    """
    root_path = os.path.expanduser(root_path.rstrip("/"))
    if os.path.isfile(root_path):
        return load_conll2012_documents(root_path, **kwargs)
    paths = sorted(glob.glob(f"{root_path}/{pattern}", recursive=True))
    return list(flatten(load_conll2012_documents(p, **kwargs) for p in paths))


def create_mention_pair_examples(
    documents: List[CoreferenceDocument],
    max_distance: int = 3,
    negative_ratio: float = 1.0,
    seed: int = 0,
) -> List[MentionPairExample]:
    """Create pipelined training examples from gold chains.

    Positive examples are all pairs of mentions of the same chain at
    most ``max_distance`` sentences apart.  Negative examples are
    sampled from pairs of mentions of different chains, in the same
    distance bound.

    :param negative_ratio: number of negative examples per positive
        example
    """
    rng = random.Random(seed)
    examples = []

    for document in documents:
        tokens = document.tokens
        mentions_chain = [
            (mention, chain.id)
            for chain in document.coref_chains
            for mention in chain.mentions
        ]
        mentions_chain = sorted(
            mentions_chain, key=lambda mc: (mc[0].start_idx, mc[0].end_idx)
        )

        positives, negatives = [], []
        for j, (mention_b, chain_b) in enumerate(mentions_chain):
            for i, (mention_a, chain_a) in enumerate(mentions_chain[:j]):
                if abs(mention_b.sentence_idx - mention_a.sentence_idx) > max_distance:
                    continue
                label = int(chain_a == chain_b)
                example = MentionPairExample(
                    mention_a, mention_b, label, tokens, mentions_distance=j - i
                )
                (positives if label == 1 else negatives).append(example)

        negatives_nb = min(round(len(positives) * negative_ratio), len(negatives))
        examples += positives + rng.sample(negatives, negatives_nb)

    return examples


def create_span_examples(
    documents: List[CoreferenceDocument],
    max_span_width: int = 10,
    negative_span_ratio: float = 3.0,
    max_antecedent_distance: int = 50,
    negative_antecedent_ratio: float = 1.5,
    seed: int = 0,
) -> List[SpanExample]:
    """Create end-to-end training examples from gold chains.

    For each document, gold mentions are positive spans, and negative
    spans are sampled among the other candidate spans.  Each gold
    mention is paired with the previous (at most
    ``max_antecedent_distance``) gold mentions: pairs from the same
    chain are positive, and negative pairs are sampled among the
    others.

    :param negative_span_ratio: number of negative spans per gold
        mention
    :param negative_antecedent_ratio: number of negative antecedents
        per positive antecedent
    """
    rng = random.Random(seed)
    examples = []

    for document in documents:
        tokens = document.tokens

        mentions_chain = sorted(
            (
                (mention.start_idx, mention.end_idx, chain.id)
                for chain in document.coref_chains
                for mention in chain.mentions
                if mention.end_idx - mention.start_idx < max_span_width
            ),
        )
        gold_spans = {(start, end) for start, end, _ in mentions_chain}

        candidates = enumerate_spans(len(tokens), max_span_width)
        positive_spans = [s for s in candidates if s in gold_spans]
        negative_spans = [s for s in candidates if not s in gold_spans]
        negatives_nb = min(
            round(len(positive_spans) * negative_span_ratio), len(negative_spans)
        )
        spans = positive_spans + rng.sample(negative_spans, negatives_nb)
        span_labels = [1] * len(positive_spans) + [0] * negatives_nb

        pairs, pair_labels = [], []
        for j, (start_b, end_b, chain_b) in enumerate(mentions_chain):
            previous = mentions_chain[max(0, j - max_antecedent_distance) : j]
            positives = [(s, e) for s, e, c in previous if c == chain_b]
            negatives = [(s, e) for s, e, c in previous if c != chain_b]
            negatives_nb = min(
                round(len(positives) * negative_antecedent_ratio), len(negatives)
            )
            for antecedent in positives:
                pairs.append((antecedent, (start_b, end_b)))
                pair_labels.append(1)
            for antecedent in rng.sample(negatives, negatives_nb):
                pairs.append((antecedent, (start_b, end_b)))
                pair_labels.append(0)

        if len(spans) == 0 and len(pairs) == 0:
            continue
        examples.append(SpanExample(tokens, spans, span_labels, pairs, pair_labels))

    return examples
