"""FastAPI wrapper on the schedule board database.

Exposes the full-snapshot read and per-cell update the board uses, plus the
consolidated grid layout for clients that do not merge cells themselves.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# Ensure flat absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from consolidator import consolidate, meal_assignments, tasks_for_person  # noqa: E402
from database import SessionLocal, get_schedule_matrix, init_database, update_cell_tasks  # noqa: E402
from logger import setup_logging  # noqa: E402
from matrix import ScheduleMatrix  # noqa: E402
from settings import get_settings  # noqa: E402

logger = logging.getLogger(__name__)

EMPTY_SCHEDULE_MESSAGE = "No schedule has been assigned yet."


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    init_database()
    yield


app = FastAPI(title="Shift Board API", version="0.1", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _load_matrix(db: Session) -> ScheduleMatrix:
    try:
        matrix = get_schedule_matrix(db)
    except SQLAlchemyError:
        logger.exception("Schedule read failed")
        return ScheduleMatrix(message=EMPTY_SCHEDULE_MESSAGE)
    if not matrix.people or not matrix.slots:
        matrix.message = EMPTY_SCHEDULE_MESSAGE
    return matrix


def _text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/schedule")
def read_schedule(db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(_load_matrix(db).to_dict()))


@app.post("/api/v1/schedule/update")
def update_schedule_cell(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    person = (_text(payload, "person") or "").strip()
    slot_id = (_text(payload, "slotId") or "").strip()
    if not person or not slot_id:
        raise HTTPException(status_code=400, detail="person and slotId are required")
    replace_value = _text(payload, "replaceValue")
    add_task = _text(payload, "addTask")
    remove_task = _text(payload, "removeTask")
    if replace_value is None and not add_task and not remove_task:
        raise HTTPException(status_code=400, detail="replaceValue, addTask or removeTask is required")
    actor = _text(payload, "actor") or get_settings().actor
    try:
        value, version = update_cell_tasks(
            db,
            person,
            slot_id,
            replace_value=replace_value,
            add_task=add_task,
            remove_task=remove_task,
            actor=actor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        logger.exception("Cell update failed for %s / %s", person, slot_id)
        raise HTTPException(status_code=500, detail="Failed to save schedule update") from exc
    logger.info("Cell %s-%s updated by %s (version %s)", person, slot_id, actor, version)
    return JSONResponse(content=jsonable_encoder({"success": True, "value": value, "version": version}))


@app.get("/api/v1/schedule/layout")
def schedule_layout(viewer: Optional[str] = Query(default=None), db=Depends(get_db)) -> JSONResponse:
    matrix = _load_matrix(db)
    layout = consolidate(matrix, viewer or get_settings().viewer)
    payload = layout.to_dict()
    payload["meals"] = [
        {
            "slotId": meal.slot_id,
            "label": meal.label,
            "timeRange": meal.time_range,
            "task": meal.task,
            "people": meal.people,
        }
        for meal in meal_assignments(matrix)
    ]
    payload["message"] = matrix.message
    return JSONResponse(content=jsonable_encoder(payload))


@app.get("/api/v1/schedule/people/{person}/tasks")
def person_tasks(person: str, db=Depends(get_db)) -> JSONResponse:
    matrix = _load_matrix(db)
    if matrix.viewer_index(person) == -1:
        raise HTTPException(status_code=404, detail="Person not found")
    tasks = [
        {
            "slot": item.slot.to_dict(),
            "task": item.task,
            "groupNames": item.group_names,
        }
        for item in tasks_for_person(matrix, person)
    ]
    return JSONResponse(content=jsonable_encoder({"person": person, "tasks": tasks}))
