"""
Board Configuration

This module describes the supported bingo boards: how many rows a card
has, which number range each column draws from, how many cells of a row
are filled and where the free cells sit.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..errors import ValidationError


@dataclass(frozen=True)
class ColumnRange:
    """Inclusive number range for one card column."""
    low: int
    high: int
    letter: str = ""

    @property
    def size(self) -> int:
        return self.high - self.low + 1

    def __contains__(self, number: int) -> bool:
        return self.low <= number <= self.high


@dataclass(frozen=True)
class BoardConfig:
    """
    Layout rules for one bingo variant.

    numbers_per_row counts every filled cell of a row, free cells included.
    """
    name: str
    rows: int
    columns: Tuple[ColumnRange, ...]
    numbers_per_row: int
    free_cells: Tuple[Tuple[int, int], ...] = ()
    max_per_column: Optional[int] = None

    def __post_init__(self):
        if self.rows < 1 or not self.columns:
            raise ValueError(f"Board {self.name} needs at least one row and one column")
        if not 0 < self.numbers_per_row <= self.cols:
            raise ValueError(f"Board {self.name} cannot fill {self.numbers_per_row} cells in {self.cols} columns")
        for row, col in self.free_cells:
            if not (0 <= row < self.rows and 0 <= col < self.cols):
                raise ValueError(f"Free cell ({row}, {col}) is outside board {self.name}")
        required = self.rows * self.numbers_per_row - len(self.free_cells)
        if required > sum(self.column_capacity(col) for col in range(self.cols)):
            raise ValueError(f"Board {self.name} columns cannot hold {required} numbers")

    @property
    def cols(self) -> int:
        return len(self.columns)

    @property
    def min_number(self) -> int:
        return min(column.low for column in self.columns)

    @property
    def max_numbers(self) -> int:
        """Highest number that can be drawn, which is also the pool size for 1-based boards."""
        return max(column.high for column in self.columns)

    @property
    def numbers_per_card(self) -> int:
        return self.rows * self.numbers_per_row - len(self.free_cells)

    def is_free_cell(self, row: int, col: int) -> bool:
        return (row, col) in self.free_cells

    def column_capacity(self, col: int) -> int:
        """How many numbers column `col` can hold on a single card."""
        limit = self.max_per_column if self.max_per_column is not None else self.rows
        open_rows = self.rows - sum(1 for _, c in self.free_cells if c == col)
        return min(limit, open_rows, self.columns[col].size)

    def column_for(self, number: int) -> int:
        """
        Get the column index a number belongs to.

        Raises:
            ValueError: If the number is outside every column range
        """
        for index, column in enumerate(self.columns):
            if number in column:
                return index
        raise ValueError(f"Number {number} is not on a {self.name} board")

    def to_dict(self) -> Dict[str, Any]:
        return {"variant": self.name, "maxNumbers": self.max_numbers}


BINGO_90 = BoardConfig(
    name="bingo90",
    rows=3,
    columns=(
        ColumnRange(1, 9),
        ColumnRange(10, 19),
        ColumnRange(20, 29),
        ColumnRange(30, 39),
        ColumnRange(40, 49),
        ColumnRange(50, 59),
        ColumnRange(60, 69),
        ColumnRange(70, 79),
        ColumnRange(80, 90),
    ),
    numbers_per_row=5,
    max_per_column=3,
)

BINGO_75 = BoardConfig(
    name="bingo75",
    rows=5,
    columns=(
        ColumnRange(1, 15, "B"),
        ColumnRange(16, 30, "I"),
        ColumnRange(31, 45, "N"),
        ColumnRange(46, 60, "G"),
        ColumnRange(61, 75, "O"),
    ),
    numbers_per_row=5,
    free_cells=((2, 2),),
)

BOARDS: Dict[str, BoardConfig] = {
    BINGO_90.name: BINGO_90,
    BINGO_75.name: BINGO_75,
}

_BOARDS_BY_SIZE: Dict[int, BoardConfig] = {board.max_numbers: board for board in BOARDS.values()}


def get_board(name: str) -> BoardConfig:
    """
    Look up a preset board by name.

    Raises:
        ValidationError: If the name is unknown
    """
    board = BOARDS.get(str(name).lower())
    if board is None:
        raise ValidationError(f"Unknown board variant: {name}")
    return board


def board_config_from_dict(data: Optional[Dict[str, Any]], default: str = BINGO_90.name) -> BoardConfig:
    """
    Resolve a client supplied config into a board.

    Accepts {"variant": "bingo90"}, the older {"maxNumbers": 75} form,
    or nothing at all (default board).

    Args:
        data: Config mapping from the client or from storage
        default: Board name used when no variant is given

    Returns:
        BoardConfig: Matching preset board
    """
    if data is None:
        return get_board(default)
    if not isinstance(data, dict):
        raise ValidationError("config must be an object")

    variant = data.get("variant")
    max_numbers = data.get("maxNumbers")

    if variant is not None:
        board = get_board(variant)
        if max_numbers is not None and max_numbers != board.max_numbers:
            raise ValidationError(f"maxNumbers {max_numbers} does not match board {board.name}")
        return board

    if max_numbers is not None:
        if isinstance(max_numbers, bool) or not isinstance(max_numbers, int):
            raise ValidationError("maxNumbers must be an integer")
        board = _BOARDS_BY_SIZE.get(max_numbers)
        if board is None:
            supported = ", ".join(str(size) for size in sorted(_BOARDS_BY_SIZE))
            raise ValidationError(f"Unsupported maxNumbers {max_numbers} (supported: {supported})")
        return board

    return get_board(default)
