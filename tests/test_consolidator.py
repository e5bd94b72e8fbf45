from __future__ import annotations

import random
import sys
import unittest
from pathlib import Path
from typing import List

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from consolidator import (  # noqa: E402
    TEAM_LABEL,
    MergeGeometry,
    assignees_for_task,
    compute_merge_geometry,
    consolidate,
    meal_assignments,
    order_rows,
    pick_primary_person,
    tasks_for_person,
)
from matrix import ScheduleMatrix, Slot  # noqa: E402


def _matrix(people: List[str], slot_ids: List[str], cells: List[List[str]]) -> ScheduleMatrix:
    return ScheduleMatrix(people=people, slots=[Slot.from_key(slot_id) for slot_id in slot_ids], cells=cells)


def _coverage(geometry: MergeGeometry) -> List[List[int]]:
    grid = [[0] * geometry.num_cols for _ in range(geometry.num_rows)]
    for row, col, span_down, span_across in geometry.blocks():
        for r in range(row, row + span_down):
            for c in range(col, col + span_across):
                grid[r][c] += 1
    return grid


class MergeGeometryTests(unittest.TestCase):
    def assertTiles(self, geometry: MergeGeometry) -> None:
        for row in _coverage(geometry):
            self.assertTrue(all(count == 1 for count in row), msg=f"coverage {row}")

    def test_example_schedule(self) -> None:
        matrix = _matrix(["Ana", "Bo"], ["AM", "PM"], [["Feed goats", "Clean barn"], ["Feed goats", ""]])
        layout = consolidate(matrix)
        spans = {(block.row, block.col): (block.row_span, block.col_span) for block in layout.blocks}
        self.assertEqual(layout.people, ["Ana", "Bo"])
        self.assertEqual(spans, {(0, 0): (2, 1), (0, 1): (1, 1), (1, 1): (1, 1)})
        self.assertEqual(layout.block_at(1, 0).people, ["Ana", "Bo"])
        self.assertTiles(layout.geometry)

    def test_all_empty_matrix_is_all_single_cells(self) -> None:
        cells = [["", "", ""] for _ in range(4)]
        geometry = compute_merge_geometry(cells, [0, 1, 2, 3], [0, 1, 2])
        self.assertEqual(len(list(geometry.blocks())), 12)
        self.assertTrue(all(rs == 1 and cs == 1 for _, _, rs, cs in geometry.blocks()))

    def test_identical_matrix_is_one_block(self) -> None:
        cells = [["Milk, Feed"] * 3, ["Feed, Milk"] * 3, ["Milk, Feed\nnote"] * 3]
        geometry = compute_merge_geometry(cells, [0, 1, 2], [0, 1, 2])
        self.assertEqual(list(geometry.blocks()), [(0, 0, 3, 3)])

    def test_no_merge_across_empty_cells(self) -> None:
        geometry = compute_merge_geometry([["A"], [""], ["A"]], [0, 1, 2], [0])
        self.assertEqual(list(geometry.blocks()), [(0, 0, 1, 1), (1, 0, 1, 1), (2, 0, 1, 1)])
        geometry = compute_merge_geometry([["", ""], ["", ""]], [0, 1], [0, 1])
        self.assertTrue(all(rs == 1 and cs == 1 for _, _, rs, cs in geometry.blocks()))

    def test_horizontal_merge_needs_matching_row_span(self) -> None:
        geometry = compute_merge_geometry([["A", "A"], ["A", ""]], [0, 1], [0, 1])
        self.assertEqual(list(geometry.blocks()), [(0, 0, 2, 1), (0, 1, 1, 1), (1, 1, 1, 1)])

    def test_horizontal_merge_within_single_rows(self) -> None:
        geometry = compute_merge_geometry([["A", "A"], ["B", "B"]], [0, 1], [0, 1])
        self.assertEqual(list(geometry.blocks()), [(0, 0, 1, 2), (1, 0, 1, 2)])

    def test_random_matrices_always_tile(self) -> None:
        choices = ["", "", "A", "B", "A, B", "B, A\nnote", "-"]
        for seed in range(25):
            rng = random.Random(seed)
            rows = rng.randint(1, 7)
            cols = rng.randint(1, 6)
            cells = [[rng.choice(choices) for _ in range(cols)] for _ in range(rows)]
            order = order_rows(cells, list(range(cols)), rng.randint(-1, rows - 1))
            with self.subTest(seed=seed):
                self.assertEqual(sorted(order), list(range(rows)))
                self.assertTiles(compute_merge_geometry(cells, order, list(range(cols))))


class RowOrderTests(unittest.TestCase):
    def test_similar_rows_become_adjacent(self) -> None:
        cells = [["A", "B"], ["X", "Y"], ["A", "B"]]
        self.assertEqual(order_rows(cells, [0, 1]), [0, 2, 1])

    def test_viewer_row_is_placed_first(self) -> None:
        matrix = _matrix(["Ana", "Bo", "Cy"], ["AM"], [["A"], ["B"], ["B"]])
        layout = consolidate(matrix, viewer="cy")
        self.assertEqual(layout.people[0], "Cy")
        self.assertEqual(layout.people[1], "Bo")
        self.assertEqual(layout.viewer, "cy")

    def test_unknown_viewer_falls_back_to_first_row(self) -> None:
        matrix = _matrix(["Ana", "Bo"], ["AM"], [["A"], ["B"]])
        layout = consolidate(matrix, viewer="Nobody")
        self.assertEqual(layout.people, ["Ana", "Bo"])
        self.assertIsNone(layout.viewer)

    def test_ordering_is_deterministic(self) -> None:
        matrix = _matrix(
            ["Ana", "Bo", "Cy", "Di"],
            ["1 | AM", "2 | Mid", "3 | PM"],
            [["A", "B", ""], ["A", "", "C"], ["A", "B", "C"], ["", "B", "C"]],
        )
        first = consolidate(matrix, viewer="Di").to_dict()
        second = consolidate(matrix, viewer="Di").to_dict()
        self.assertEqual(first, second)

    def test_empty_matrix(self) -> None:
        layout = consolidate(ScheduleMatrix())
        self.assertEqual(layout.blocks, [])
        self.assertEqual(order_rows([], []), [])


class BlockItemTests(unittest.TestCase):
    def setUp(self) -> None:
        self.matrix = _matrix(
            ["Ana", "Bo", "Cy"],
            ["1 | Morning (8am - 12pm)", "2 | Lunch (12pm - 1pm)", "3 | Afternoon (1pm - 5pm)"],
            [
                ["Feed, Milk", "Cook", "Fence"],
                ["Feed", "Cook", ""],
                ["", "Serve", "Fence\nbring pliers"],
            ],
        )

    def test_lunch_slot_is_excluded_from_grid(self) -> None:
        layout = consolidate(self.matrix)
        self.assertEqual([slot.label for slot in layout.slots], ["Morning", "Afternoon"])
        self.assertEqual(layout.geometry.slot_indices, [0, 2])

    def test_items_report_actual_assignees(self) -> None:
        layout = consolidate(self.matrix, viewer="Bo")
        ana_row = layout.people.index("Ana")
        block = layout.block_at(ana_row, 0)
        by_name = {item.name: item for item in block.items}
        self.assertEqual(by_name["Feed"].assignees, ["Ana", "Bo"])
        self.assertEqual(by_name["Feed"].primary_person, "Bo")
        self.assertEqual(by_name["Milk"].assignees, ["Ana"])
        self.assertEqual(by_name["Milk"].primary_person, "Ana")

    def test_notes_do_not_block_merging(self) -> None:
        layout = consolidate(self.matrix)
        cy_row = layout.people.index("Cy")
        self.assertEqual(layout.block_at(cy_row, 1).people, ["Ana", "Cy"])
        self.assertEqual(assignees_for_task(self.matrix, 2, "Fence"), ["Ana", "Cy"])

    def test_items_carry_note_as_detail(self) -> None:
        layout = consolidate(_matrix(["Cy"], ["PM"], [["Fence\nbring pliers"]]))
        item = layout.blocks[0].items[0]
        self.assertEqual(item.name, "Fence")
        self.assertEqual(item.detail, "bring pliers")
        self.assertEqual(item.primary_person, "Cy")

    def test_pick_primary_person(self) -> None:
        self.assertEqual(pick_primary_person([], "Ana"), TEAM_LABEL)
        self.assertEqual(pick_primary_person(["Ana", "Bo"], "bo"), "Bo")
        self.assertEqual(pick_primary_person(["Ana", "Bo"], None), "Ana")

    def test_meal_assignments(self) -> None:
        meals = meal_assignments(self.matrix)
        summary = {(meal.label, meal.task): meal.people for meal in meals}
        self.assertEqual(summary, {("Lunch", "Cook"): ["Ana", "Bo"], ("Lunch", "Serve"): ["Cy"]})
        self.assertEqual(meals[0].time_range, "12pm - 1pm")

    def test_tasks_for_person(self) -> None:
        tasks = tasks_for_person(self.matrix, "ana")
        self.assertEqual([(entry.slot.label, entry.task) for entry in tasks], [
            ("Morning", "Feed"),
            ("Morning", "Milk"),
            ("Afternoon", "Fence"),
        ])
        self.assertEqual(tasks[0].group_names, ["Ana", "Bo"])
        self.assertEqual(tasks_for_person(self.matrix, "Nobody"), [])


if __name__ == "__main__":
    unittest.main()
