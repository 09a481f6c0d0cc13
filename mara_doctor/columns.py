"""Worksheet column positions as a small value type.

All letter/index conversion goes through :class:`Column` so that the layout
code never does character arithmetic on column letters.
"""

from __future__ import annotations

from dataclasses import dataclass

from openpyxl.utils import column_index_from_string, get_column_letter


@dataclass(frozen=True, order=True)
class Column:
    index: int

    def __post_init__(self) -> None:
        if self.index < 1:
            raise ValueError(f"Column index must be >= 1, got {self.index}")

    @classmethod
    def from_letter(cls, letter: str) -> "Column":
        return cls(column_index_from_string(letter.strip().upper()))

    @property
    def letter(self) -> str:
        return get_column_letter(self.index)

    def shifted(self, offset: int) -> "Column":
        return Column(self.index + offset)

    def next(self) -> "Column":
        return self.shifted(1)

    def address(self, row: int) -> str:
        return f"{self.letter}{row}"

    def __str__(self) -> str:
        return self.letter
