from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

MEAL_PATTERN = re.compile(r"breakfast|lunch|dinner", re.IGNORECASE)
_ORDER_PATTERN = re.compile(r"^(\d+)\s*\|\s*(.+)$")
_RANGE_SUFFIX_PATTERN = re.compile(r"^(.+?)\s*\((.+)\)\s*$")
_TIME_RANGE_PATTERN = re.compile(
    r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\s*[-–]\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)?",
    re.IGNORECASE,
)


@dataclass
class Slot:
    id: str
    label: str
    time_range: str = ""
    is_meal: bool = False
    order: float = math.inf

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "timeRange": self.time_range,
            "isMeal": self.is_meal,
        }

    @classmethod
    def from_key(cls, key: str) -> "Slot":
        meta = parse_slot_meta(key)
        return cls(id=key, **meta)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Slot":
        slot_id = str(payload.get("id") or "")
        label = payload.get("label") or slot_id
        return cls(
            id=slot_id,
            label=str(label),
            time_range=str(payload.get("timeRange") or payload.get("time_range") or ""),
            is_meal=bool(payload.get("isMeal", payload.get("is_meal", False))),
        )


@dataclass(frozen=True)
class CellRef:
    person: str
    slot_id: str

    @property
    def key(self) -> str:
        return cell_key(self.person, self.slot_id)


@dataclass
class ScheduleMatrix:
    people: List[str] = field(default_factory=list)
    slots: List[Slot] = field(default_factory=list)
    cells: List[List[str]] = field(default_factory=list)
    versions: List[List[int]] = field(default_factory=list)
    schedule_date: Optional[str] = None
    message: Optional[str] = None

    def __post_init__(self) -> None:
        # Pad or trim ragged snapshots to people x slots.
        width = len(self.slots)
        rows: List[List[str]] = []
        for idx in range(len(self.people)):
            source = self.cells[idx] if idx < len(self.cells) else []
            rows.append([(source[col] if col < len(source) else "") or "" for col in range(width)])
        self.cells = rows
        if len(self.versions) != len(self.people) or any(len(row) != width for row in self.versions):
            self.versions = [[0] * width for _ in self.people]

    @property
    def num_rows(self) -> int:
        return len(self.people)

    @property
    def num_cols(self) -> int:
        return len(self.slots)

    def copy(self) -> "ScheduleMatrix":
        return ScheduleMatrix(
            people=list(self.people),
            slots=list(self.slots),
            cells=[list(row) for row in self.cells],
            versions=[list(row) for row in self.versions],
            schedule_date=self.schedule_date,
            message=self.message,
        )

    def find_coord(self, person: Optional[str], slot_id: Optional[str]) -> Optional[Tuple[int, int]]:
        if not person or not slot_id:
            return None
        try:
            row = self.people.index(person)
        except ValueError:
            return None
        for col, slot in enumerate(self.slots):
            if slot.id == slot_id:
                return row, col
        return None

    def cell(self, person: str, slot_id: str) -> str:
        coord = self.find_coord(person, slot_id)
        if coord is None:
            return ""
        row, col = coord
        return self.cells[row][col]

    def version(self, person: str, slot_id: str) -> int:
        coord = self.find_coord(person, slot_id)
        if coord is None:
            return 0
        row, col = coord
        return self.versions[row][col]

    def viewer_index(self, viewer: Optional[str]) -> int:
        needle = (viewer or "").strip().lower()
        if not needle:
            return -1
        for idx, person in enumerate(self.people):
            if person.lower() == needle:
                return idx
        return -1

    def work_slot_indices(self) -> List[int]:
        return [idx for idx, slot in enumerate(self.slots) if not slot.is_meal]

    def meal_slot_indices(self) -> List[int]:
        return [idx for idx, slot in enumerate(self.slots) if slot.is_meal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "people": list(self.people),
            "slots": [slot.to_dict() for slot in self.slots],
            "cells": [list(row) for row in self.cells],
            "versions": [list(row) for row in self.versions],
            "scheduleDate": self.schedule_date,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScheduleMatrix":
        return cls(
            people=[str(person) for person in payload.get("people") or []],
            slots=[Slot.from_dict(item) for item in payload.get("slots") or []],
            cells=[[str(value or "") for value in row] for row in payload.get("cells") or []],
            versions=[[int(value or 0) for value in row] for row in payload.get("versions") or []],
            schedule_date=payload.get("scheduleDate"),
            message=payload.get("message"),
        )


def cell_key(person: str, slot_id: str) -> str:
    return f"{person}-{slot_id}"


def parse_slot_meta(key: str) -> Dict[str, Any]:
    """Split a slot column key such as ``"2 | Morning (8am - 12pm)"``."""
    order_match = _ORDER_PATTERN.match(key.strip())
    order = float(order_match.group(1)) if order_match else math.inf
    without_order = (order_match.group(2) if order_match else key).strip()
    range_match = _RANGE_SUFFIX_PATTERN.match(without_order)
    label = (range_match.group(1) if range_match else without_order).strip()
    time_range = (range_match.group(2) if range_match else "").strip()
    return {
        "label": label,
        "time_range": time_range,
        "is_meal": bool(MEAL_PATTERN.search(label)),
        "order": order,
    }


def sort_slots(slots: Iterable[Slot]) -> List[Slot]:
    return sorted(slots, key=lambda slot: (slot.order, slot.label))


def _to_minutes(hour: int, minute: int, meridiem: Optional[str], fallback: Optional[str] = None) -> int:
    marker = (meridiem or fallback or "").lower()
    if marker == "pm" and hour < 12:
        hour += 12
    if marker == "am" and hour == 12:
        hour = 0
    return hour * 60 + minute


def parse_time_range(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    match = _TIME_RANGE_PATTERN.search(value)
    if not match:
        return None
    h1, m1, ampm1, h2, m2, ampm2 = match.groups()
    start = _to_minutes(int(h1), int(m1 or 0), ampm1)
    end = _to_minutes(int(h2), int(m2 or 0), ampm2, ampm1)
    return start, end


def current_slot_id(slots: Iterable[Slot], minutes_now: int) -> Optional[str]:
    for slot in slots:
        window = parse_time_range(slot.time_range)
        if not window:
            continue
        start, end = window
        if start <= minutes_now < end:
            return slot.id
    return None
