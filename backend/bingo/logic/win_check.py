"""Win-claim predicates.

The state machine only sees the WinPredicate protocol: given the cells the
player marked, the full call history and the claimed pattern, answer whether
the claim stands. Pattern geometry is not checked by any implementation here.
"""

from collections.abc import Sequence
from typing import Protocol

from bingo.logic.enums import WinCheckMode
from bingo.logic.models import CalledNumber

# Marked-cell value clients use for the free centre square.
FREE_CELL = 0
MIN_MARKED_CELLS = 5


class WinPredicate(Protocol):
    def __call__(
        self,
        *,
        marked_cells: Sequence[int],
        called_numbers: Sequence[CalledNumber],
        pattern: str,
    ) -> bool: ...


class TrustingWinPredicate:
    """Accept every claim."""

    def __call__(
        self,
        *,
        marked_cells: Sequence[int],  # noqa: ARG002
        called_numbers: Sequence[CalledNumber],  # noqa: ARG002
        pattern: str,  # noqa: ARG002
    ) -> bool:
        return True


class CalledCellsWinPredicate:
    """Accept a claim when every marked cell has actually been called.

    The free cell always counts as called. At least ``min_marked`` distinct
    cells must be marked.
    """

    def __init__(self, min_marked: int = MIN_MARKED_CELLS) -> None:
        self._min_marked = min_marked

    def __call__(
        self,
        *,
        marked_cells: Sequence[int],
        called_numbers: Sequence[CalledNumber],
        pattern: str,  # noqa: ARG002
    ) -> bool:
        marked = set(marked_cells)
        if len(marked) < self._min_marked:
            return False
        called = {n.value for n in called_numbers} | {FREE_CELL}
        return marked <= called


def build_win_predicate(mode: WinCheckMode) -> WinPredicate:
    if mode is WinCheckMode.CALLED_CELLS:
        return CalledCellsWinPredicate()
    return TrustingWinPredicate()
