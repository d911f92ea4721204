from bingo.game.board import BINGO_75, BINGO_90
from bingo.game.card_generator import FREE_CELL
from bingo.game.win_evaluator import (
    card_numbers, completed_rows, has_full_card, has_line, is_row_complete
)

# Hand-made 90-ball card, five numbers per row
CARD_90 = [
    [1, None, 21, None, 41, None, 61, None, 81],
    [None, 12, None, 32, None, 52, None, 72, 82],
    [3, 13, 23, None, 43, None, None, 73, None],
]

CARD_75 = [
    [1, 16, 31, 46, 61],
    [2, 17, 32, 47, 62],
    [3, 18, FREE_CELL, 48, 63],
    [4, 19, 34, 49, 64],
    [5, 20, 35, 50, 65],
]


def test_card_numbers_skips_empty_and_free_cells():
    assert card_numbers(CARD_90) == {1, 21, 41, 61, 81, 12, 32, 52, 72, 82, 3, 13, 23, 43, 73}
    assert FREE_CELL not in card_numbers(CARD_75)
    assert len(card_numbers(CARD_75)) == 24


def test_row_complete_only_when_every_number_marked():
    row = CARD_90[0]
    assert not is_row_complete(row, {1, 21, 41, 61}, BINGO_90)
    assert is_row_complete(row, {1, 21, 41, 61, 81}, BINGO_90)
    # Extra marks elsewhere do not matter
    assert is_row_complete(row, {1, 21, 41, 61, 81, 12, 90}, BINGO_90)


def test_malformed_row_never_completes():
    """A row with the wrong number of filled cells is rejected even if fully marked."""
    short_row = [1, None, 21, None, 41, None, 61, None, None]
    assert not is_row_complete(short_row, {1, 21, 41, 61}, BINGO_90)


def test_free_cell_counts_as_marked():
    assert is_row_complete(CARD_75[2], {3, 18, 48, 63}, BINGO_75)
    assert not is_row_complete(CARD_75[2], {3, 18, 48}, BINGO_75)


def test_has_line_and_completed_rows():
    marked = {12, 32, 52, 72, 82}
    assert has_line(CARD_90, marked, BINGO_90)
    assert completed_rows(CARD_90, marked, BINGO_90) == [1]
    assert not has_line(CARD_90, {1, 12, 3}, BINGO_90)


def test_full_card():
    everything = card_numbers(CARD_90)
    assert has_full_card(CARD_90, everything, BINGO_90)
    assert not has_full_card(CARD_90, everything - {73}, BINGO_90)
    assert has_full_card(CARD_75, card_numbers(CARD_75), BINGO_75)
