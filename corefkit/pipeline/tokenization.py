from typing import Dict, Any, Set, List, Tuple
import nltk
from nltk.tokenize.destructive import NLTKWordTokenizer
from nltk.tokenize.punkt import PunktTokenizer
from corefkit.pipeline.core import PipelineStep


def make_char2token(text: str, token2chars: List[Tuple[int, int]]) -> List[int]:
    """Map each character of ``text`` to a token index.

    Characters between two tokens (whitespace, mostly) are mapped to
    the preceding token, characters before the first token to the
    first token.
    """
    if len(token2chars) == 0:
        return []
    c2t = [0] * len(text)
    token_i = 0
    for char_i in range(len(text)):
        while (
            token_i + 1 < len(token2chars) and token2chars[token_i + 1][0] <= char_i
        ):
            token_i += 1
        c2t[char_i] = token_i
    return c2t


class NLTKTokenizer(PipelineStep):
    """An English NLTK tokenizer, producing tokens and sentences"""

    def __init__(self):
        nltk.download("punkt_tab", quiet=True)
        self.word_tokenizer = NLTKWordTokenizer()
        self.sent_tokenizer = PunktTokenizer("english")
        super().__init__()

    def __call__(self, text: str, **kwargs) -> Dict[str, Any]:
        token2chars = []
        sentences = []
        for sent_start, sent_end in self.sent_tokenizer.span_tokenize(text):
            sent = text[sent_start:sent_end]
            spans = list(self.word_tokenizer.span_tokenize(sent))
            token2chars += [(start + sent_start, end + sent_start) for start, end in spans]
            sentences.append([sent[start:end] for start, end in spans])

        return {
            "tokens": [token for sentence in sentences for token in sentence],
            "char2token": make_char2token(text, token2chars),
            "sentences": sentences,
        }

    def needs(self) -> Set[str]:
        return {"text"}

    def production(self) -> Set[str]:
        return {"tokens", "char2token", "sentences"}
