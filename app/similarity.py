from __future__ import annotations

from typing import Dict, List, Sequence

from signature import cell_signature, signatures_match

STREAK_WEIGHT = 0.5


def row_similarity(row_a: Sequence[str], row_b: Sequence[str], slot_order: Sequence[int]) -> float:
    """Shared-slot count plus a bonus for the longest contiguous shared run.

    Contiguous runs merge into wide blocks, so they outrank the same number
    of scattered matches.
    """
    return _score(
        [cell_signature(_at(row_a, idx)) for idx in slot_order],
        [cell_signature(_at(row_b, idx)) for idx in slot_order],
    )


def _at(row: Sequence[str], idx: int) -> str:
    return row[idx] if 0 <= idx < len(row) else ""


def _score(sigs_a: Sequence[str], sigs_b: Sequence[str]) -> float:
    matches = 0
    streak = 0
    best_streak = 0
    for sig_a, sig_b in zip(sigs_a, sigs_b):
        if signatures_match(sig_a, sig_b):
            matches += 1
            streak += 1
            best_streak = max(best_streak, streak)
        else:
            streak = 0
    return matches + best_streak * STREAK_WEIGHT


class SignatureTable:
    """Signatures of every row over a fixed slot order, computed once."""

    def __init__(self, cells: Sequence[Sequence[str]], slot_order: Sequence[int]) -> None:
        self.slot_order = list(slot_order)
        self.rows: List[List[str]] = [
            [cell_signature(_at(row, idx)) for idx in self.slot_order] for row in cells
        ]
        self._cache: Dict[tuple, float] = {}

    def signature(self, row: int, position: int) -> str:
        return self.rows[row][position]

    def similarity(self, row_a: int, row_b: int) -> float:
        key = (row_a, row_b) if row_a <= row_b else (row_b, row_a)
        if key not in self._cache:
            self._cache[key] = _score(self.rows[row_a], self.rows[row_b])
        return self._cache[key]
