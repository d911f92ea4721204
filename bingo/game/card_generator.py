"""
Card Generator

Generates bingo cards for any BoardConfig.

A card is a rows x cols grid. Each cell holds a number, None for an
empty cell, or FREE_CELL for a free space. Every row has exactly
numbers_per_row filled cells, numbers never repeat, each number sits
in its column's range, and column numbers ascend top to bottom.
"""

import random
from typing import List, Optional, Sequence

from .board import BoardConfig, BINGO_90
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)

FREE_CELL = 0
MAX_GENERATION_ATTEMPTS = 50

Card = List[List[Optional[int]]]
Layout = List[List[bool]]


def generate_card(config: BoardConfig = BINGO_90, rng: Optional[random.Random] = None) -> Card:
    """
    Generate a random card for a board.

    Random layouts are retried a bounded number of times; if none of
    them fits the row rule the deterministic cyclic layout is used.

    Args:
        config: Board to generate for
        rng: Random source (a fresh Random when omitted)

    Returns:
        Card: Grid of numbers, None (empty) and FREE_CELL
    """
    rng = rng or random.Random()

    layout = None
    for _ in range(MAX_GENERATION_ATTEMPTS):
        layout = _random_layout(config, rng)
        if layout is not None:
            break
    else:
        logger.warning(
            f"Random card layout failed {MAX_GENERATION_ATTEMPTS} times - board: {config.name}, "
            "using cyclic layout"
        )
        layout = _cyclic_layout(config)

    return _fill_layout(config, layout, rng)


def _blank_layout(config: BoardConfig) -> Layout:
    layout = [[False] * config.cols for _ in range(config.rows)]
    for row, col in config.free_cells:
        layout[row][col] = True
    return layout


def _distribute_column_counts(config: BoardConfig, rng: random.Random) -> List[int]:
    """Spread the card's numbers over columns at random, respecting column capacity."""
    capacity = [config.column_capacity(col) for col in range(config.cols)]
    counts = [0] * config.cols
    for _ in range(config.numbers_per_card):
        open_cols = [col for col in range(config.cols) if counts[col] < capacity[col]]
        counts[rng.choice(open_cols)] += 1
    return counts


def _random_layout(config: BoardConfig, rng: random.Random) -> Optional[Layout]:
    """
    Build one random layout, or None when the rows do not come out even.

    Columns with the most numbers are placed first; each column goes to
    the open rows that still need the most cells.
    """
    layout = _blank_layout(config)
    need = [config.numbers_per_row - sum(row) for row in layout]
    counts = _distribute_column_counts(config, rng)

    order = sorted(range(config.cols), key=lambda col: (-counts[col], rng.random()))
    for col in order:
        count = counts[col]
        if count == 0:
            continue
        open_rows = [row for row in range(config.rows) if not layout[row][col] and need[row] > 0]
        if len(open_rows) < count:
            return None
        open_rows.sort(key=lambda row: (-need[row], rng.random()))
        for row in open_rows[:count]:
            layout[row][col] = True
            need[row] -= 1

    if any(sum(row) != config.numbers_per_row for row in layout):
        return None
    return layout


def _cyclic_layout(config: BoardConfig) -> Layout:
    """
    Deterministic layout: rows take the next open columns in turn.

    One cell per row per column keeps every column within its capacity
    for the supported boards.
    """
    layout = _blank_layout(config)
    counts = [0] * config.cols
    capacity = [config.column_capacity(col) for col in range(config.cols)]
    col = 0
    for row in range(config.rows):
        need = config.numbers_per_row - sum(layout[row])
        scanned = 0
        while need > 0 and scanned < config.cols:
            if not layout[row][col] and counts[col] < capacity[col]:
                layout[row][col] = True
                counts[col] += 1
                need -= 1
            col = (col + 1) % config.cols
            scanned += 1
        if need:
            raise RuntimeError(f"Board {config.name} cannot be laid out")
    return layout


def _fill_layout(config: BoardConfig, layout: Layout, rng: random.Random) -> Card:
    card: Card = [[None] * config.cols for _ in range(config.rows)]
    for col, column in enumerate(config.columns):
        rows = [
            row for row in range(config.rows)
            if layout[row][col] and not config.is_free_cell(row, col)
        ]
        numbers = sorted(rng.sample(range(column.low, column.high + 1), len(rows)))
        for row, number in zip(rows, numbers):
            card[row][col] = number
    for row, col in config.free_cells:
        card[row][col] = FREE_CELL
    return card


def card_problems(card: Sequence[Sequence[Optional[int]]], config: BoardConfig) -> List[str]:
    """
    List the ways a card breaks the board rules.

    Returns:
        List[str]: Problem descriptions, empty when the card is valid
    """
    problems: List[str] = []
    if len(card) != config.rows or any(len(row) != config.cols for row in card):
        return [f"card is not {config.rows}x{config.cols}"]

    seen = set()
    for r, row in enumerate(card):
        filled = sum(1 for cell in row if cell is not None)
        if filled != config.numbers_per_row:
            problems.append(f"row {r} has {filled} filled cells, expected {config.numbers_per_row}")
        for c, cell in enumerate(row):
            if config.is_free_cell(r, c):
                if cell != FREE_CELL:
                    problems.append(f"cell ({r}, {c}) should be free")
                continue
            if cell is None:
                continue
            if cell == FREE_CELL:
                problems.append(f"unexpected free cell at ({r}, {c})")
            else:
                try:
                    home = config.column_for(cell)
                except ValueError:
                    problems.append(f"{cell} is outside column {c} range (not on a {config.name} board)")
                else:
                    if home != c:
                        problems.append(f"{cell} is outside column {c} range (belongs in column {home})")
            if cell in seen:
                problems.append(f"{cell} appears more than once")
            seen.add(cell)

    for c in range(config.cols):
        column = [
            card[r][c] for r in range(config.rows)
            if card[r][c] is not None and not config.is_free_cell(r, c)
        ]
        if column != sorted(column):
            problems.append(f"column {c} is not ascending")
    return problems
