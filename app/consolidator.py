"""Row ordering and merge geometry for the compact schedule grid.

Rows are placed greedily so people with similar days end up adjacent, then
cells are merged vertically (same slot, consecutive rows, same task set) and
horizontally (same row group, consecutive slots, same task sets row by row).
The resulting rectangles always tile the grid exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from cell_codec import CellContent, decode_cell, split_cell_tasks, task_base_name, task_detail
from matrix import ScheduleMatrix, Slot
from signature import signatures_match
from similarity import SignatureTable

VIEWER_BOOST = 2.25
TEAM_LABEL = "Team"


@dataclass
class MergeGeometry:
    row_order: List[int]
    slot_indices: List[int]
    row_span: List[List[int]]
    col_span: List[List[int]]
    visible: List[List[bool]]

    @property
    def num_rows(self) -> int:
        return len(self.row_order)

    @property
    def num_cols(self) -> int:
        return len(self.slot_indices)

    def blocks(self) -> Iterator[Tuple[int, int, int, int]]:
        for row in range(self.num_rows):
            for col in range(self.num_cols):
                if self.visible[row][col]:
                    yield row, col, self.row_span[row][col], self.col_span[row][col]


@dataclass
class BlockItem:
    task: str
    name: str
    detail: str
    assignees: List[str]
    primary_person: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "name": self.name,
            "detail": self.detail,
            "assignees": list(self.assignees),
            "primaryPerson": self.primary_person,
        }


@dataclass
class GridBlock:
    row: int
    col: int
    row_span: int
    col_span: int
    person: str
    slot_id: str
    raw: str
    content: CellContent
    people: List[str] = field(default_factory=list)
    items: List[BlockItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.raw.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "col": self.col,
            "rowSpan": self.row_span,
            "colSpan": self.col_span,
            "person": self.person,
            "slotId": self.slot_id,
            "raw": self.raw,
            "tasks": list(self.content.tasks),
            "note": self.content.note,
            "people": list(self.people),
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class BoardLayout:
    people: List[str]
    slots: List[Slot]
    geometry: MergeGeometry
    blocks: List[GridBlock]
    viewer: Optional[str] = None

    def block_at(self, row: int, col: int) -> Optional[GridBlock]:
        for block in self.blocks:
            if block.row <= row < block.row + block.row_span and block.col <= col < block.col + block.col_span:
                return block
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "people": list(self.people),
            "slots": [slot.to_dict() for slot in self.slots],
            "rowOrder": list(self.geometry.row_order),
            "viewer": self.viewer,
            "blocks": [block.to_dict() for block in self.blocks],
        }


@dataclass
class MealAssignment:
    slot_id: str
    label: str
    time_range: str
    task: str
    people: List[str]


@dataclass
class PersonTask:
    slot: Slot
    task: str
    group_names: List[str]


def order_rows(
    cells: Sequence[Sequence[str]],
    slot_indices: Sequence[int],
    viewer_index: int = -1,
    *,
    table: Optional[SignatureTable] = None,
) -> List[int]:
    """Greedy nearest-neighbour placement of rows.

    The viewer's row (when present) is placed first and pulls similar rows
    toward the top. Ties keep first-seen order so the result is stable.
    """
    table = table or SignatureTable(cells, slot_indices)
    remaining = list(range(len(cells)))
    order: List[int] = []
    if not remaining:
        return order
    has_viewer = 0 <= viewer_index < len(cells)
    if has_viewer:
        remaining.remove(viewer_index)
        order.append(viewer_index)
    else:
        order.append(remaining.pop(0))

    while remaining:
        best_pos = 0
        best_score = -1.0
        for pos, candidate in enumerate(remaining):
            score = sum(table.similarity(placed, candidate) for placed in order)
            if has_viewer:
                score += VIEWER_BOOST * table.similarity(viewer_index, candidate)
            if score > best_score:
                best_score = score
                best_pos = pos
        order.append(remaining.pop(best_pos))
    return order


def compute_merge_geometry(
    cells: Sequence[Sequence[str]],
    row_order: Sequence[int],
    slot_indices: Sequence[int],
    *,
    table: Optional[SignatureTable] = None,
) -> MergeGeometry:
    table = table or SignatureTable(cells, slot_indices)
    num_rows = len(row_order)
    num_cols = len(slot_indices)
    row_span = [[1] * num_cols for _ in range(num_rows)]
    col_span = [[1] * num_cols for _ in range(num_rows)]
    visible = [[True] * num_cols for _ in range(num_rows)]

    def sig(visual_row: int, col: int) -> str:
        return table.signature(row_order[visual_row], col)

    # Vertical runs per slot column.
    for col in range(num_cols):
        row = 0
        while row < num_rows:
            base = sig(row, col)
            if not base:
                row += 1
                continue
            end = row + 1
            while end < num_rows and signatures_match(sig(end, col), base):
                end += 1
            row_span[row][col] = end - row
            for covered in range(row + 1, end):
                visible[covered][col] = False
            row = end

    # Horizontal extension of the surviving anchors.
    for row in range(num_rows):
        col = 0
        while col < num_cols:
            if not visible[row][col] or not sig(row, col):
                col += 1
                continue
            span_down = row_span[row][col]
            width = 1
            next_col = col + 1
            while next_col < num_cols:
                if not visible[row][next_col] or row_span[row][next_col] != span_down:
                    break
                if not all(
                    signatures_match(sig(row + offset, col), sig(row + offset, next_col))
                    for offset in range(span_down)
                ):
                    break
                visible[row][next_col] = False
                width += 1
                next_col += 1
            col_span[row][col] = width
            col += width

    return MergeGeometry(
        row_order=list(row_order),
        slot_indices=list(slot_indices),
        row_span=row_span,
        col_span=col_span,
        visible=visible,
    )


def assignees_for_task(matrix: ScheduleMatrix, slot_index: int, task: str) -> List[str]:
    base = task_base_name(task)
    if not base:
        return []
    names: List[str] = []
    for row, person in enumerate(matrix.people):
        candidates = split_cell_tasks(matrix.cells[row][slot_index])
        if any(task_base_name(candidate) == base for candidate in candidates) and person not in names:
            names.append(person)
    return names


def pick_primary_person(group: Sequence[str], viewer: Optional[str] = None) -> str:
    if not group:
        return TEAM_LABEL
    me = (viewer or "").strip().lower()
    if me:
        for person in group:
            if person.lower() == me:
                return person
    return group[0]


def consolidate(
    matrix: ScheduleMatrix,
    viewer: Optional[str] = None,
    *,
    include_meals: bool = False,
) -> BoardLayout:
    slot_indices = list(range(matrix.num_cols)) if include_meals else matrix.work_slot_indices()
    table = SignatureTable(matrix.cells, slot_indices)
    viewer_index = matrix.viewer_index(viewer)
    row_order = order_rows(matrix.cells, slot_indices, viewer_index, table=table)
    geometry = compute_merge_geometry(matrix.cells, row_order, slot_indices, table=table)

    blocks: List[GridBlock] = []
    for row, col, span_down, span_across in geometry.blocks():
        real_row = row_order[row]
        slot_index = slot_indices[col]
        raw = matrix.cells[real_row][slot_index]
        items = []
        for task in split_cell_tasks(raw):
            assignees = assignees_for_task(matrix, slot_index, task)
            items.append(
                BlockItem(
                    task=task,
                    name=task_base_name(task),
                    detail=task_detail(task),
                    assignees=assignees,
                    primary_person=pick_primary_person(assignees, viewer),
                )
            )
        blocks.append(
            GridBlock(
                row=row,
                col=col,
                row_span=span_down,
                col_span=span_across,
                person=matrix.people[real_row],
                slot_id=matrix.slots[slot_index].id,
                raw=raw,
                content=decode_cell(raw),
                people=[matrix.people[row_order[row + offset]] for offset in range(span_down)],
                items=items,
            )
        )

    return BoardLayout(
        people=[matrix.people[idx] for idx in row_order],
        slots=[matrix.slots[idx] for idx in slot_indices],
        geometry=geometry,
        blocks=blocks,
        viewer=viewer if viewer_index != -1 else None,
    )


def meal_assignments(matrix: ScheduleMatrix) -> List[MealAssignment]:
    result: List[MealAssignment] = []
    for slot_index in matrix.meal_slot_indices():
        slot = matrix.slots[slot_index]
        task_map: Dict[str, List[str]] = {}
        for row, person in enumerate(matrix.people):
            for task in split_cell_tasks(matrix.cells[row][slot_index]):
                people = task_map.setdefault(task_base_name(task), [])
                if person not in people:
                    people.append(person)
        for task, people in task_map.items():
            result.append(
                MealAssignment(
                    slot_id=slot.id,
                    label=slot.label,
                    time_range=slot.time_range,
                    task=task,
                    people=people,
                )
            )
    return result


def tasks_for_person(matrix: ScheduleMatrix, person: Optional[str]) -> List[PersonTask]:
    row = matrix.viewer_index(person)
    if row == -1:
        return []
    result: List[PersonTask] = []
    for slot_index in matrix.work_slot_indices():
        for task in split_cell_tasks(matrix.cells[row][slot_index]):
            result.append(
                PersonTask(
                    slot=matrix.slots[slot_index],
                    task=task,
                    group_names=assignees_for_task(matrix, slot_index, task),
                )
            )
    return result
