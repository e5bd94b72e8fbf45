from __future__ import annotations

import csv
import datetime
import json
import logging
import math
from pathlib import Path
from typing import List, Optional

from cell_codec import normalize_cell_value
from database import get_schedule_matrix, load_matrix
from matrix import ScheduleMatrix, Slot, parse_slot_meta
from settings import get_settings

logger = logging.getLogger(__name__)

EXPORT_DIR = get_settings().data_dir / "exports"
PERSON_HEADER = "Person"


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _export_path(suffix: str, file_path: Optional[Path]) -> Path:
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        return file_path
    EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    return EXPORT_DIR / f"schedule_{_timestamp()}.{suffix}"


# ---------------------------------------------------------------------------
# JSON


def export_matrix_json(session, file_path: Optional[Path] = None) -> Path:
    matrix = get_schedule_matrix(session)
    target = _export_path("json", file_path)
    slots = []
    for position, slot in enumerate(matrix.slots):
        entry = slot.to_dict()
        entry["order"] = None if math.isinf(slot.order) else slot.order
        entry["position"] = position
        slots.append(entry)
    payload = {
        "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "scheduleDate": matrix.schedule_date,
        "people": matrix.people,
        "slots": slots,
        "cells": matrix.cells,
    }
    target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("Exported %s people x %s slots to %s", matrix.num_rows, matrix.num_cols, target)
    return target


def read_matrix_json(file_path: Path) -> ScheduleMatrix:
    data = json.loads(file_path.read_text(encoding="utf-8"))
    slots: List[Slot] = []
    for entry in data.get("slots", []):
        slot = Slot.from_dict(entry)
        if entry.get("order") is not None:
            slot.order = float(entry["order"])
        slots.append(slot)
    matrix = ScheduleMatrix(
        people=[str(name) for name in data.get("people", [])],
        slots=slots,
        cells=[[str(value or "") for value in row] for row in data.get("cells", [])],
        schedule_date=data.get("scheduleDate"),
    )
    matrix.cells = [[normalize_cell_value(value) for value in row] for row in matrix.cells]
    return matrix


def import_matrix_json(session, file_path: Path, *, actor: str = "import") -> int:
    matrix = read_matrix_json(file_path)
    written = load_matrix(session, matrix, actor=actor)
    logger.info("Imported %s cell(s) from %s", written, file_path)
    return written


# ---------------------------------------------------------------------------
# CSV


def csv_column_key(slot: Slot) -> str:
    """Header for a slot column that reads back to the same label, range and meal flag.

    Slot ids already in the ``"order | Label (range)"`` form are kept as they are.
    A meal slot whose label does not name a meal loses its meal flag.
    """
    meta = parse_slot_meta(slot.id)
    if (meta["label"], meta["time_range"], meta["is_meal"]) == (slot.label, slot.time_range, slot.is_meal):
        return slot.id
    key = slot.label or slot.id
    if slot.time_range:
        key = f"{key} ({slot.time_range})"
    if not math.isinf(slot.order) and float(slot.order).is_integer() and slot.order >= 0:
        key = f"{int(slot.order)} | {key}"
    return key


def export_matrix_csv(session, file_path: Optional[Path] = None) -> Path:
    matrix = get_schedule_matrix(session)
    target = _export_path("csv", file_path)
    with target.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow([PERSON_HEADER] + [csv_column_key(slot) for slot in matrix.slots])
        for person, row in zip(matrix.people, matrix.cells):
            writer.writerow([person] + list(row))
    logger.info("Exported schedule CSV to %s", target)
    return target


def read_matrix_csv(file_path: Path) -> ScheduleMatrix:
    with file_path.open("r", newline="", encoding="utf-8-sig") as handle:
        rows = list(csv.reader(handle))
    if not rows:
        return ScheduleMatrix()
    header = rows[0]
    if not header or header[0].strip().lower() != PERSON_HEADER.lower():
        raise ValueError(f"First CSV column must be '{PERSON_HEADER}'")
    slot_keys = [key.strip() for key in header[1:]]
    slots = [Slot.from_key(key) for key in slot_keys if key]
    people: List[str] = []
    cells: List[List[str]] = []
    for row in rows[1:]:
        if not row or not row[0].strip():
            continue
        people.append(row[0].strip())
        values = row[1 : len(slot_keys) + 1]
        cells.append([normalize_cell_value(value) for value, key in zip(values, slot_keys) if key])
    return ScheduleMatrix(people=people, slots=slots, cells=cells)


def import_matrix_csv(session, file_path: Path, *, actor: str = "import") -> int:
    matrix = read_matrix_csv(file_path)
    written = load_matrix(session, matrix, actor=actor)
    logger.info("Imported %s cell(s) from %s", written, file_path)
    return written
