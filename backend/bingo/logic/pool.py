"""The read-only pool of callable numbers.

Loaded once at startup, either from a JSON seed file (an array of
``{"value": int, "category": str}`` objects) or generated as the standard
75-ball pool.
"""

from dataclasses import dataclass, field
from pathlib import Path

import structlog
from pydantic import TypeAdapter

from bingo.logic.enums import NumberCategory
from bingo.logic.models import CalledNumber

logger = structlog.get_logger()

STANDARD_POOL_SIZE = 75
_COLUMN_SIZE = 15
_COLUMN_ORDER = (NumberCategory.B, NumberCategory.I, NumberCategory.N, NumberCategory.G, NumberCategory.O)

_pool_adapter: TypeAdapter[list[CalledNumber]] = TypeAdapter(list[CalledNumber])


@dataclass(frozen=True)
class NumberPool:
    entries: tuple[CalledNumber, ...]
    _by_value: dict[int, CalledNumber] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.entries:
            raise ValueError("number pool must not be empty")
        by_value = {n.value: n for n in self.entries}
        if len(by_value) != len(self.entries):
            raise ValueError("number pool values must be unique")
        object.__setattr__(self, "_by_value", by_value)

    @property
    def size(self) -> int:
        return len(self.entries)

    def get(self, value: int) -> CalledNumber | None:
        return self._by_value.get(value)

    def contains(self, number: CalledNumber) -> bool:
        return self._by_value.get(number.value) == number

    def remaining(self, called_values: set[int]) -> list[CalledNumber]:
        return [n for n in self.entries if n.value not in called_values]


def category_for(value: int) -> NumberCategory:
    """Column letter of ``value`` on a standard 75-ball card."""
    if not 1 <= value <= STANDARD_POOL_SIZE:
        raise ValueError(f"{value} is outside the standard 1-{STANDARD_POOL_SIZE} range")
    return _COLUMN_ORDER[(value - 1) // _COLUMN_SIZE]


def standard_pool() -> NumberPool:
    return NumberPool(
        tuple(CalledNumber(value=v, category=category_for(v)) for v in range(1, STANDARD_POOL_SIZE + 1)),
    )


def load_number_pool(path: Path | str | None) -> NumberPool:
    """Read the pool from a JSON seed file, or build the standard pool when no path is set.

    A missing or malformed file raises; the server must not start with a bad pool.
    """
    if path is None:
        return standard_pool()
    raw = Path(path).read_bytes()
    pool = NumberPool(tuple(_pool_adapter.validate_json(raw)))
    logger.info("number pool loaded", path=str(path), size=pool.size)
    return pool
