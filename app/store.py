"""Read/write contract between the edit engine and wherever the schedule lives."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import get_schedule_matrix, replace_cell_value
from matrix import ScheduleMatrix

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A cell write or snapshot read was rejected; ``message`` is user-facing."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass
class CellWrite:
    value: str
    version: int


class MatrixStore:
    async def fetch_matrix(self) -> ScheduleMatrix:
        raise NotImplementedError

    async def persist_cell(self, person: str, slot_id: str, raw_value: str) -> CellWrite:
        raise NotImplementedError


class DatabaseMatrixStore(MatrixStore):
    def __init__(self, session_factory: Callable, actor: str = "board") -> None:
        self.session_factory = session_factory
        self.actor = actor
        # SQLite allows one writer; worker threads take turns.
        self._lock = threading.Lock()

    def _fetch(self) -> ScheduleMatrix:
        with self._lock, self.session_factory() as session:
            return get_schedule_matrix(session)

    def _persist(self, person: str, slot_id: str, raw_value: str) -> CellWrite:
        with self._lock, self.session_factory() as session:
            value, version = replace_cell_value(session, person, slot_id, raw_value, actor=self.actor)
        return CellWrite(value=value, version=version)

    async def fetch_matrix(self) -> ScheduleMatrix:
        try:
            return await asyncio.to_thread(self._fetch)
        except SQLAlchemyError as exc:
            logger.exception("Schedule fetch failed")
            raise PersistenceError("Could not load the schedule.") from exc

    async def persist_cell(self, person: str, slot_id: str, raw_value: str) -> CellWrite:
        try:
            return await asyncio.to_thread(self._persist, person, slot_id, raw_value)
        except ValueError as exc:
            raise PersistenceError(str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.exception("Cell write failed for %s / %s", person, slot_id)
            raise PersistenceError(f"Failed to save {person} / {slot_id}.") from exc


def create_default_store(actor: Optional[str] = None) -> DatabaseMatrixStore:
    from database import SessionLocal
    from settings import get_settings

    return DatabaseMatrixStore(SessionLocal, actor=actor or get_settings().actor)
