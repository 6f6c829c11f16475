from __future__ import annotations
from typing import Dict, Iterable, List
from collections import Counter


class Vocabulary:
    """A stable ``token -> id`` mapping.

    Tokens are lowercased.  The first ids are reserved for special
    tokens (see :attr:`SPECIAL_TOKENS`), and unknown tokens are mapped
    to :attr:`UNK`.
    """

    PAD = "<PAD>"
    UNK = "<UNK>"
    START = "<START>"
    SPECIAL_TOKENS = [PAD, UNK, START]

    def __init__(self, token_to_id: Dict[str, int]) -> None:
        for i, special_token in enumerate(Vocabulary.SPECIAL_TOKENS):
            assert token_to_id.get(special_token) == i
        self.token_to_id = token_to_id

    @staticmethod
    def build(
        token_sequences: Iterable[List[str]],
        min_count: int = 2,
        max_size: int = 50000,
    ) -> Vocabulary:
        """Build a vocabulary from a corpus.

        :param token_sequences: an iterable of tokens lists (usually,
            training and validation documents)
        :param min_count: tokens appearing less than this number of
            times are left out
        :param max_size: maximum vocabulary size, special tokens
            included.  Most frequent tokens are kept first.
        """
        counter = Counter(
            token.lower() for tokens in token_sequences for token in tokens
        )
        kept = sorted(
            (token for token, count in counter.items() if count >= min_count),
            key=lambda token: (-counter[token], token),
        )
        kept = [t for t in kept if not t in Vocabulary.SPECIAL_TOKENS]
        kept = kept[: max(0, max_size - len(Vocabulary.SPECIAL_TOKENS))]
        tokens = Vocabulary.SPECIAL_TOKENS + kept
        return Vocabulary({token: i for i, token in enumerate(tokens)})

    @property
    def pad_id(self) -> int:
        return self.token_to_id[Vocabulary.PAD]

    @property
    def unk_id(self) -> int:
        return self.token_to_id[Vocabulary.UNK]

    def __len__(self) -> int:
        return len(self.token_to_id)

    def __contains__(self, token: str) -> bool:
        return token.lower() in self.token_to_id

    def __getitem__(self, token: str) -> int:
        return self.token_to_id.get(token.lower(), self.unk_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vocabulary):
            return NotImplemented
        return self.token_to_id == other.token_to_id

    def ids(self, tokens: List[str]) -> List[int]:
        return [self[token] for token in tokens]

    def to_dict(self) -> Dict[str, int]:
        return dict(self.token_to_id)

    @staticmethod
    def from_dict(token_to_id: Dict[str, int]) -> Vocabulary:
        return Vocabulary(dict(token_to_id))
