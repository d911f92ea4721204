"""
Win Evaluator

Pure predicates deciding whether a card's marks complete a line
(one full row) or the whole card.
"""

from typing import AbstractSet, List, Optional, Sequence, Set

from .board import BoardConfig
from .card_generator import FREE_CELL

Row = Sequence[Optional[int]]


def card_numbers(card: Sequence[Row]) -> Set[int]:
    """All number cells of a card (free and empty cells excluded)."""
    return {cell for row in card for cell in row if cell is not None and cell != FREE_CELL}


def is_row_complete(row: Row, marked: AbstractSet[int], config: BoardConfig) -> bool:
    """
    Check one row.

    A row only counts when it has exactly the configured number of
    filled cells, which rejects malformed cards.
    """
    filled = [cell for cell in row if cell is not None]
    if len(filled) != config.numbers_per_row:
        return False
    return all(cell == FREE_CELL or cell in marked for cell in filled)


def completed_rows(card: Sequence[Row], marked: AbstractSet[int], config: BoardConfig) -> List[int]:
    """Indexes of the rows whose numbers are all marked."""
    return [index for index, row in enumerate(card) if is_row_complete(row, marked, config)]


def has_line(card: Sequence[Row], marked: AbstractSet[int], config: BoardConfig) -> bool:
    return bool(completed_rows(card, marked, config))


def has_full_card(card: Sequence[Row], marked: AbstractSet[int], config: BoardConfig) -> bool:
    numbers = card_numbers(card)
    if not numbers:
        return False
    return all(is_row_complete(row, marked, config) for row in card)
