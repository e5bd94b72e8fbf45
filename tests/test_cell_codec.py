from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from cell_codec import (  # noqa: E402
    CellContent,
    decode_cell,
    encode_cell,
    normalize_cell_value,
    split_cell_tasks,
    task_base_name,
    task_detail,
)


class CellCodecTests(unittest.TestCase):
    def test_decode_splits_tasks_and_note(self) -> None:
        content = decode_cell("Feed goats, Clean barn\nbring the spare gloves")
        self.assertEqual(content.tasks, ["Feed goats", "Clean barn"])
        self.assertEqual(content.note, "bring the spare gloves")

    def test_decode_tolerates_empty_and_none(self) -> None:
        self.assertEqual(decode_cell(None), CellContent())
        self.assertEqual(decode_cell(""), CellContent())
        self.assertEqual(decode_cell("   \n  "), CellContent())

    def test_decode_drops_blank_segments_and_placeholder(self) -> None:
        content = decode_cell(" Feed goats ,, - ,Milk ")
        self.assertEqual(content.tasks, ["Feed goats", "Milk"])

    def test_decode_keeps_duplicates_in_order(self) -> None:
        self.assertEqual(decode_cell("Milk, Feed, Milk").tasks, ["Milk", "Feed", "Milk"])

    def test_round_trip(self) -> None:
        samples = [
            CellContent(),
            CellContent(tasks=["Feed goats"]),
            CellContent(tasks=["Feed goats", "Clean barn"], note="gloves in shed"),
            CellContent(tasks=[], note="day off"),
        ]
        for content in samples:
            with self.subTest(content=content):
                self.assertEqual(decode_cell(encode_cell(content)), content)

    def test_encode_omits_empty_note(self) -> None:
        self.assertEqual(encode_cell(CellContent(tasks=["A", "B"])), "A, B")
        self.assertEqual(encode_cell(CellContent(tasks=["A"], note="  ")), "A")

    def test_note_only_cell_does_not_become_a_task(self) -> None:
        raw = encode_cell(CellContent(note="call vet"))
        self.assertEqual(decode_cell(raw).tasks, [])
        self.assertEqual(decode_cell(normalize_cell_value(raw)).note, "call vet")

    def test_task_base_name_and_detail(self) -> None:
        self.assertEqual(task_base_name("  Feed goats \nextra hay"), "Feed goats")
        self.assertEqual(task_detail("Feed goats\n extra hay "), "extra hay")
        self.assertEqual(task_base_name(None), "")
        self.assertEqual(task_detail("Feed goats"), "")

    def test_split_cell_tasks_attaches_note(self) -> None:
        self.assertEqual(split_cell_tasks("A, B\nnote"), ["A\nnote", "B\nnote"])
        self.assertEqual(split_cell_tasks("A, -"), ["A"])

    def test_normalize_cell_value(self) -> None:
        self.assertEqual(normalize_cell_value(" - "), "")
        self.assertEqual(normalize_cell_value("   "), "")
        self.assertEqual(normalize_cell_value("Milk  \n"), "Milk")


if __name__ == "__main__":
    unittest.main()
