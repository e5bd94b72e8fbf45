from __future__ import annotations

from typing import Union

from cell_codec import CellContent, decode_cell, task_base_name

SIGNATURE_DELIMITER = "||"


def cell_signature(cell: Union[CellContent, str, None]) -> str:
    """Order-independent fingerprint of the task names in a cell.

    Notes and task order are ignored; they change what a block shows, not
    whether two cells can share a block. Empty cells map to ``""``.
    """
    content = cell if isinstance(cell, CellContent) else decode_cell(cell)
    bases = sorted(base for base in (task_base_name(task) for task in content.tasks) if base)
    return SIGNATURE_DELIMITER.join(bases)


def signatures_match(sig_a: str, sig_b: str) -> bool:
    return bool(sig_a) and sig_a == sig_b
