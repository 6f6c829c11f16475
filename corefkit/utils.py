from typing import List, Tuple, TypeVar, Collection, cast
from more_itertools import windowed
import torch

T = TypeVar("T")


def spans(seq: Collection[T], max_len: int) -> List[Tuple[T, ...]]:
    """All contiguous sub-sequences of ``seq`` of at most ``max_len``
    elements, shortest first, then in order of appearance.

    >>> spans("abc", 2)
    [('a',), ('b',), ('c',), ('a', 'b'), ('b', 'c')]
    """
    out_spans = []
    for span_len in range(1, min(len(seq), max_len) + 1):
        out_spans += [cast(Tuple[T, ...], span) for span in windowed(seq, span_len)]
    return out_spans


def spans_indexs(seq: Collection, max_len: int) -> List[Tuple[int, int]]:
    """Same as :func:`spans`, but returns ``(start, end)`` indices
    (both inclusive) instead of spans elements.
    """
    return [(span[0], span[-1]) for span in spans(range(len(seq)), max_len)]


def batch_index_select(
    input: torch.Tensor, dim: int, index: torch.Tensor
) -> torch.Tensor:
    """Batched version of :func:`torch.index_select`: the ``i``-th
    element of ``input`` is indexed with ``index[i]``.

    :param input: ``(B, *)``
    :param dim: the dimension to index (not the batch dimension)
    :param index: ``(B, I)``
    :return: a tensor of the same shape as ``input``, except in
        dimension ``dim`` where its size is ``I``
    """
    assert dim > 0
    view = [1] * input.dim()
    view[0] = input.shape[0]
    view[dim] = index.shape[1]
    expansion = list(input.shape)
    expansion[dim] = index.shape[1]
    return torch.gather(input, dim, index.view(view).expand(expansion))


def sentence_bounds(sentences: List[List[str]]) -> List[Tuple[int, int]]:
    """Return the boundaries of each sentence, in tokens.

    :return: a list of ``(start, end)`` tuples, ``end`` being
        exclusive.
    """
    bounds = []
    start = 0
    for sentence in sentences:
        end = start + len(sentence)
        bounds.append((start, end))
        start = end
    return bounds


def token_sentence_indexs(sentences: List[List[str]]) -> List[int]:
    """
    :return: a list of length ``sum(len(s) for s in sentences)``,
        with the sentence index of each token.
    """
    return [
        sent_i for sent_i, sentence in enumerate(sentences) for _ in sentence
    ]
