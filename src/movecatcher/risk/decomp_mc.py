"""
DecompMC: decomposition Monte-Carlo risk progression.

The progression is a short integer sequence whose end-sum is the lot factor for
the next entry of one logical system:

    next_lot() = seq[0] + seq[-1]

    loss -> append seq[0] + seq[-1]  (factor grows, never shrinks)
    win  -> drop both ends, then rebalance:
              fewer than 2 left: bank their sum in `stock`, restart at [0, 1]
              otherwise: spread seq[0] + stock evenly over seq[1:], seq[0] = 0,
                         the undivided remainder stays in `stock`

The sequence is also what the order comment carries, so a restarted process can
rebuild the progression from a live position.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

INITIAL_SEQUENCE = (0, 1)


@dataclass
class DecompMC:
    seq: List[int] = field(default_factory=lambda: list(INITIAL_SEQUENCE))
    stock: int = 0
    streak: int = 0

    def next_lot(self) -> int:
        """Lot factor for the next entry (always >= 1)."""
        return max(1, self.seq[0] + self.seq[-1])

    def on_trade(self, win: bool) -> None:
        if win:
            self._on_win()
        else:
            self._on_loss()

    def _on_loss(self) -> None:
        self.seq.append(self.seq[0] + self.seq[-1])
        self.streak = 0

    def _on_win(self) -> None:
        self.streak += 1
        remaining = self.seq[1:-1]
        if len(remaining) < 2:
            self.stock += sum(remaining)
            self.seq = list(INITIAL_SEQUENCE)
            return

        pool = remaining[0] + self.stock
        slots = len(remaining) - 1
        share, leftover = divmod(pool, slots)
        remaining[0] = 0
        for i in range(1, len(remaining)):
            remaining[i] += share
        self.seq = remaining
        self.stock = leftover

    def restore_sequence(self, seq: Sequence[int]) -> None:
        """Adopt a sequence recovered from an order comment."""
        values = [int(v) for v in seq]
        if len(values) < 2:
            raise ValueError(f"sequence needs at least 2 elements: {values}")
        self.seq = values

    def serialize(self) -> str:
        return f"{self.stock}|{self.streak}|" + ",".join(str(v) for v in self.seq)

    @classmethod
    def deserialize(cls, data: str) -> "DecompMC":
        parts = data.split("|")
        if len(parts) != 3:
            raise ValueError(f"expected 'stock|streak|seq', got {data!r}")
        seq = [int(p) for p in parts[2].split(",") if p.strip()]
        if len(seq) < 2:
            raise ValueError(f"sequence needs at least 2 elements: {data!r}")
        return cls(seq=seq, stock=int(parts[0]), streak=int(parts[1]))
