from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from cell_codec import CellContent  # noqa: E402
from signature import cell_signature, signatures_match  # noqa: E402
from similarity import SignatureTable, row_similarity  # noqa: E402


def test_signature_ignores_order_and_note() -> None:
    assert cell_signature("Milk, Feed") == cell_signature("Feed, Milk\nsome note")
    assert cell_signature("Feed, Milk") == "Feed||Milk"


def test_signature_accepts_decoded_content() -> None:
    assert cell_signature(CellContent(tasks=["B", "A"])) == cell_signature("A, B")


def test_signature_of_empty_cell_is_blank() -> None:
    assert cell_signature("") == ""
    assert cell_signature(None) == ""
    assert cell_signature("-") == ""


def test_signature_keeps_duplicates() -> None:
    assert cell_signature("A, A") != cell_signature("A")


def test_signatures_match_requires_non_empty() -> None:
    assert signatures_match("A", "A")
    assert not signatures_match("", "")
    assert not signatures_match("A", "B")


@pytest.mark.parametrize(
    "row_a,row_b,expected",
    [
        (["A", "B", "C"], ["A", "B", "C"], 3 + 1.5),
        (["A", "", "C"], ["A", "", "C"], 2 + 0.5),
        (["A", "X", "C"], ["A", "B", "C"], 2 + 0.5),
        (["", ""], ["", ""], 0.0),
        (["A", "B"], ["C", "D"], 0.0),
    ],
)
def test_row_similarity(row_a, row_b, expected) -> None:
    assert row_similarity(row_a, row_b, range(len(row_a))) == pytest.approx(expected)


def test_row_similarity_is_symmetric_and_respects_slot_order() -> None:
    row_a = ["A", "B", "X", "D"]
    row_b = ["A", "B", "Y", "D"]
    assert row_similarity(row_a, row_b, [0, 1, 2, 3]) == row_similarity(row_b, row_a, [0, 1, 2, 3])
    # Reordering slots so the matches are contiguous raises the streak bonus.
    assert row_similarity(row_a, row_b, [0, 1, 3, 2]) > row_similarity(row_a, row_b, [0, 1, 2, 3])


def test_signature_table_matches_direct_scoring() -> None:
    cells = [["A", "B", ""], ["A", "B", "C"], ["", "B", "C"]]
    table = SignatureTable(cells, [0, 1, 2])
    for a in range(3):
        for b in range(3):
            assert table.similarity(a, b) == row_similarity(cells[a], cells[b], [0, 1, 2])
    assert table.signature(1, 2) == "C"
