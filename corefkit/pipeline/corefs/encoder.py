from __future__ import annotations
from typing import List, Optional, Tuple
import torch
from torch import nn
from corefkit.pipeline.core import Mention
from corefkit.pipeline.corefs.vocabulary import Vocabulary
from corefkit.utils import batch_index_select


def reversed_positions(lengths: torch.Tensor, seq_size: int) -> torch.Tensor:
    """Compute, for a right-padded batch, the indices that reverse each
    sequence inside its own length.  Padding positions are left in
    place.

    >>> reversed_positions(torch.tensor([3, 1]), 4).tolist()
    [[2, 1, 0, 3], [0, 1, 2, 3]]

    :param lengths: ``(batch_size)``
    :return: ``(batch_size, seq_size)``
    """
    positions = torch.arange(seq_size, device=lengths.device).unsqueeze(0)
    lengths = lengths.unsqueeze(1)
    return torch.where(positions < lengths, lengths - 1 - positions, positions)


def masked_mean(states: torch.Tensor, mask: torch.Tensor) -> torch.Tensor:
    """
    :param states: ``(batch_size, seq_size, dim)``
    :param mask: ``(batch_size, seq_size)``
    :return: ``(batch_size, dim)``
    """
    mask = mask.to(states.dtype).unsqueeze(-1)
    # (batch_size, dim)
    summed = (states * mask).sum(dim=1)
    return summed / mask.sum(dim=1).clamp(min=1.0)


class BiLSTMEncoder(nn.Module):
    """Contextual token encoder.

    Token embeddings are fed to two independent LSTMs, one reading the
    sequence from left to right, and the other from right to left.
    Their outputs are concatenated, so the output dimension is
    ``2 * hidden_size``.
    """

    def __init__(
        self,
        vocab_size: int,
        embedding_dim: int = 100,
        hidden_size: int = 128,
        dropout: float = 0.3,
        pad_id: int = 0,
    ) -> None:
        super().__init__()
        self.hidden_size = hidden_size
        self.embedding = nn.Embedding(vocab_size, embedding_dim, padding_idx=pad_id)
        self.forward_lstm = nn.LSTM(embedding_dim, hidden_size, batch_first=True)
        self.backward_lstm = nn.LSTM(embedding_dim, hidden_size, batch_first=True)
        self.dropout = nn.Dropout(dropout)

    @property
    def output_dim(self) -> int:
        return 2 * self.hidden_size

    def forward(
        self, token_ids: torch.Tensor, lengths: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        """
        :param token_ids: ``(batch_size, seq_size)``
        :param lengths: ``(batch_size)``, length of each sequence when
            the batch is right-padded.  If ``None``, all sequences are
            supposed to be of length ``seq_size``.
        :return: ``(batch_size, seq_size, 2 * hidden_size)``
        """
        batch_size, seq_size = token_ids.shape
        if seq_size == 0:
            return torch.zeros(
                batch_size,
                0,
                self.output_dim,
                device=self.embedding.weight.device,
                dtype=self.embedding.weight.dtype,
            )
        if lengths is None:
            lengths = torch.full(
                (batch_size,), seq_size, dtype=torch.long, device=token_ids.device
            )

        # (batch_size, seq_size, embedding_dim)
        embedded = self.dropout(self.embedding(token_ids))

        # (batch_size, seq_size, hidden_size)
        forward_states, _ = self.forward_lstm(embedded)

        # right-to-left pass: reverse each sequence, run the LSTM and
        # put states back in their original order
        reversed_idx = reversed_positions(lengths, seq_size)
        backward_states, _ = self.backward_lstm(
            batch_index_select(embedded, 1, reversed_idx)
        )
        backward_states = batch_index_select(backward_states, 1, reversed_idx)

        return self.dropout(torch.cat([forward_states, backward_states], dim=2))


class SpanRepresentation(nn.Module):
    """Converts a span of encoded tokens into a fixed width vector:
    ``[start state, end state, mean of span states, width embedding]``
    """

    def __init__(
        self, input_dim: int, max_span_width: int = 10, width_embedding_dim: int = 20
    ) -> None:
        super().__init__()
        self.input_dim = input_dim
        self.max_span_width = max_span_width
        self.width_embeddings = nn.Embedding(max_span_width + 1, width_embedding_dim)

    @property
    def output_dim(self) -> int:
        return 3 * self.input_dim + self.width_embeddings.embedding_dim

    def forward(
        self, states: torch.Tensor, starts: torch.Tensor, ends: torch.Tensor
    ) -> torch.Tensor:
        """
        :param states: encoded document, ``(seq_size, input_dim)``
        :param starts: ``(spans_nb)``
        :param ends: ``(spans_nb)``, with ``starts <= ends < seq_size``
        :return: ``(spans_nb, output_dim)``
        """
        seq_size = states.shape[0]
        assert bool((starts <= ends).all())
        assert ends.numel() == 0 or int(ends.max()) < seq_size

        # (seq_size + 1, input_dim), prefix_sums[i] is the sum of the
        # first i states
        prefix_sums = torch.cat(
            [states.new_zeros(1, states.shape[1]), states.cumsum(0)]
        )
        lengths = (ends - starts + 1).to(states.dtype).unsqueeze(1)
        # (spans_nb, input_dim)
        means = (prefix_sums[ends + 1] - prefix_sums[starts]) / lengths
        # single token spans: the mean is the token state itself
        means = torch.where((starts == ends).unsqueeze(1), states[starts], means)

        widths = torch.clamp(ends - starts, 0, self.max_span_width)

        return torch.cat(
            [states[starts], states[ends], means, self.width_embeddings(widths)],
            dim=1,
        )


def mention_context(
    tokens: List[str], mention: Mention, context_window: int
) -> Tuple[List[str], int, int]:
    """Extract the bounded context of a mention.

    :return: a tuple ``(context tokens, mention start, mention end)``,
        mention indices being relative to the context.
    """
    context_start = max(0, mention.start_idx - context_window)
    context_end = min(len(tokens), mention.end_idx + 1 + context_window)
    return (
        tokens[context_start:context_end],
        mention.start_idx - context_start,
        mention.end_idx - context_start,
    )


def mentions_batch(
    vocabulary: Vocabulary,
    mentions: List[Tuple[List[str], Mention]],
    context_window: int,
    device: torch.device = torch.device("cpu"),
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Prepare a batch of mentions to be encoded by a
    :class:`MentionEncoder`.

    :param mentions: a list of ``(document tokens, mention)``
    :return: a tuple ``(token_ids, lengths, mention_mask)``, of shapes
        ``(batch_size, seq_size)``, ``(batch_size)`` and ``(batch_size,
        seq_size)``
    """
    contexts = [mention_context(tokens, m, context_window) for tokens, m in mentions]
    seq_size = max([len(c[0]) for c in contexts], default=0)

    token_ids = torch.full(
        (len(contexts), seq_size), vocabulary.pad_id, dtype=torch.long
    )
    mention_mask = torch.zeros(len(contexts), seq_size, dtype=torch.bool)
    for i, (context, start, end) in enumerate(contexts):
        token_ids[i, : len(context)] = torch.tensor(
            vocabulary.ids(context), dtype=torch.long
        )
        mention_mask[i, start : end + 1] = True
    lengths = torch.tensor([len(c[0]) for c in contexts], dtype=torch.long)

    return token_ids.to(device), lengths.to(device), mention_mask.to(device)


class MentionEncoder(nn.Module):
    """Encodes a mention using its bounded context.

    The context is encoded with a :class:`BiLSTMEncoder`.  States of
    the mention tokens and states of the whole context are mean-pooled
    separately, then projected to ``2 * hidden_size``.
    """

    def __init__(
        self,
        vocab_size: int,
        embedding_dim: int = 100,
        hidden_size: int = 128,
        dropout: float = 0.3,
    ) -> None:
        super().__init__()
        self.encoder = BiLSTMEncoder(vocab_size, embedding_dim, hidden_size, dropout)
        self.projection = nn.Linear(2 * self.encoder.output_dim, self.encoder.output_dim)
        self.dropout = nn.Dropout(dropout)

    @property
    def output_dim(self) -> int:
        return self.encoder.output_dim

    def forward(
        self,
        token_ids: torch.Tensor,
        lengths: torch.Tensor,
        mention_mask: torch.Tensor,
    ) -> torch.Tensor:
        """
        :param token_ids: ``(batch_size, seq_size)``
        :param lengths: ``(batch_size)``
        :param mention_mask: ``(batch_size, seq_size)``
        :return: ``(batch_size, output_dim)``
        """
        seq_size = token_ids.shape[1]
        # (batch_size, seq_size, 2 * hidden_size)
        states = self.encoder(token_ids, lengths)

        positions = torch.arange(seq_size, device=token_ids.device).unsqueeze(0)
        context_mask = positions < lengths.unsqueeze(1)

        pooled = torch.cat(
            [masked_mean(states, mention_mask), masked_mean(states, context_mask)],
            dim=1,
        )
        return torch.tanh(self.projection(self.dropout(pooled)))
