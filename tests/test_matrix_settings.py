from __future__ import annotations

import logging
import math
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import logger as board_logger  # noqa: E402
import settings  # noqa: E402
from matrix import (  # noqa: E402
    ScheduleMatrix,
    Slot,
    current_slot_id,
    parse_slot_meta,
    parse_time_range,
    sort_slots,
)


def test_parse_slot_meta() -> None:
    meta = parse_slot_meta("2 | Morning (8am - 12pm)")
    assert meta == {"label": "Morning", "time_range": "8am - 12pm", "is_meal": False, "order": 2.0}
    lunch = parse_slot_meta("Lunch")
    assert lunch["is_meal"] is True
    assert math.isinf(lunch["order"])


def test_sort_slots_puts_unordered_last() -> None:
    slots = [Slot.from_key("Extra"), Slot.from_key("3 | PM"), Slot.from_key("1 | AM")]
    assert [slot.label for slot in sort_slots(slots)] == ["AM", "PM", "Extra"]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("8am - 12pm", (8 * 60, 12 * 60)),
        ("1pm - 5", (13 * 60, 17 * 60)),
        ("12:30pm-1:15pm", (12 * 60 + 30, 13 * 60 + 15)),
        ("12am - 6am", (0, 6 * 60)),
        ("whenever", None),
        ("", None),
    ],
)
def test_parse_time_range(value, expected) -> None:
    assert parse_time_range(value) == expected


def test_current_slot_id() -> None:
    slots = [Slot.from_key("1 | AM (8am - 12pm)"), Slot.from_key("2 | PM (1pm - 5pm)"), Slot.from_key("Notes")]
    assert current_slot_id(slots, 9 * 60) == "1 | AM (8am - 12pm)"
    assert current_slot_id(slots, 12 * 60 + 30) is None
    assert current_slot_id(slots, 16 * 60 + 59) == "2 | PM (1pm - 5pm)"


def test_matrix_pads_ragged_rows_and_resets_versions() -> None:
    matrix = ScheduleMatrix(
        people=["Ana", "Bo"],
        slots=[Slot(id="AM", label="AM"), Slot(id="PM", label="PM")],
        cells=[["Feed"]],
        versions=[[3]],
    )
    assert matrix.cells == [["Feed", ""], ["", ""]]
    assert matrix.versions == [[0, 0], [0, 0]]
    assert matrix.find_coord("Bo", "PM") == (1, 1)
    assert matrix.find_coord("Bo", "Night") is None
    assert matrix.viewer_index("  ana ") == 0


def test_matrix_dict_round_trip() -> None:
    matrix = ScheduleMatrix(
        people=["Ana"],
        slots=[Slot.from_key("1 | Breakfast (7am - 8am)")],
        cells=[["Cook"]],
        versions=[[2]],
        schedule_date="2024-05-01",
    )
    restored = ScheduleMatrix.from_dict(matrix.to_dict())
    assert restored.cells == matrix.cells
    assert restored.versions == [[2]]
    assert restored.slots[0].is_meal


def test_settings_from_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("SHIFT_BOARD_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SHIFT_BOARD_VIEWER", " Ana ")
    monkeypatch.delenv("SHIFT_BOARD_ACTOR", raising=False)
    monkeypatch.delenv("SHIFT_BOARD_DATABASE_URL", raising=False)
    monkeypatch.setenv("SHIFT_BOARD_POLL_SECONDS", "30")
    loaded = settings.reload_settings()
    try:
        assert loaded.viewer == "Ana"
        assert loaded.actor == "Ana"
        assert loaded.poll_seconds == 30
        assert loaded.database_url.endswith("/schedule.db")
        assert loaded.log_file == tmp_path / "logs" / "board.log"
    finally:
        monkeypatch.undo()
        settings.reload_settings()


def test_settings_collects_errors(monkeypatch) -> None:
    monkeypatch.setenv("SHIFT_BOARD_POLL_SECONDS", "soon")
    monkeypatch.setenv("SHIFT_BOARD_LOG_LEVEL", "chatty")
    with pytest.raises(ValueError) as excinfo:
        settings.reload_settings()
    message = str(excinfo.value)
    assert "SHIFT_BOARD_POLL_SECONDS" in message
    assert "SHIFT_BOARD_LOG_LEVEL" in message
    monkeypatch.undo()
    settings.reload_settings()


def test_setup_logging_writes_json_lines(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("SHIFT_BOARD_DATA_DIR", str(tmp_path))
    loaded = settings.reload_settings()
    root = logging.getLogger()
    previous_handlers = root.handlers[:]
    previous_level = root.level
    try:
        board_logger.setup_logging(loaded, force=True)
        logging.getLogger("tests").info("hello", extra={"details": {"cell": "Ana-AM"}})
        for handler in root.handlers:
            handler.flush()
        line = loaded.log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert '"message": "hello"' in line
        assert '"cell": "Ana-AM"' in line
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
        board_logger._configured = False
        monkeypatch.undo()
        settings.reload_settings()
