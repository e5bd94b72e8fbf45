"""Encode and decode the raw text stored in one schedule cell.

A cell holds a comma separated list of task references on its first line and
an optional free-text note on the following lines::

    Feed goats, Clean barn
    bring the spare gloves

Decoding never raises. Hand-edited or legacy values degrade to whatever task
list can be recovered from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

TASK_SEPARATOR = ", "
PLACEHOLDER_TASK = "-"


@dataclass
class CellContent:
    tasks: List[str] = field(default_factory=list)
    note: str = ""

    def copy(self) -> "CellContent":
        return CellContent(tasks=list(self.tasks), note=self.note)

    @property
    def is_empty(self) -> bool:
        return not self.tasks and not self.note


def task_base_name(task: Optional[str]) -> str:
    if not task:
        return ""
    return task.split("\n", 1)[0].strip()


def _is_placeholder(task: str) -> bool:
    return task_base_name(task) == PLACEHOLDER_TASK


def decode_cell(raw: Optional[str]) -> CellContent:
    if not raw or not raw.strip():
        return CellContent()
    first_line, _, rest = raw.partition("\n")
    note = rest.strip()
    tasks = [segment.strip() for segment in first_line.split(",")]
    tasks = [task for task in tasks if task and not _is_placeholder(task)]
    return CellContent(tasks=tasks, note=note)


def encode_cell(content: CellContent) -> str:
    line = TASK_SEPARATOR.join(content.tasks).strip()
    note = (content.note or "").strip()
    if not note:
        return line
    # A note-only cell keeps its leading newline so it never decodes as a task.
    return f"{line}\n{note}"


def split_cell_tasks(raw: Optional[str]) -> List[str]:
    """Task references as displayed, each carrying the cell note as detail."""
    content = decode_cell(raw)
    if not content.note:
        return list(content.tasks)
    return [f"{task}\n{content.note}" for task in content.tasks]


def task_detail(task: Optional[str]) -> str:
    if not task or "\n" not in task:
        return ""
    return task.split("\n", 1)[1].strip()


def normalize_cell_value(raw: Optional[str]) -> str:
    if not raw or not raw.strip():
        return ""
    if _is_placeholder(raw.strip()):
        return ""
    return raw.rstrip()
