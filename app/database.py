from __future__ import annotations

import datetime
import json
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from cell_codec import decode_cell, encode_cell, normalize_cell_value, task_base_name
from matrix import ScheduleMatrix, Slot, parse_slot_meta, sort_slots
from settings import get_settings

SETTINGS = get_settings()
DATA_DIR = SETTINGS.data_dir
DATA_DIR.mkdir(parents=True, exist_ok=True)
SCHEDULE_DATABASE_URL = SETTINGS.database_url
SCHEDULE_DATE_SETTING = "Selected Schedule"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for the schedule board tables living in schedule.db."""

    pass


class SchedulePerson(Base):
    __tablename__ = "schedule_people"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    cells: Mapped[List["ScheduleCell"]] = relationship(back_populates="person", cascade="all, delete-orphan")


class ScheduleSlot(Base):
    __tablename__ = "schedule_slots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slot_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    label: Mapped[str] = mapped_column(String(120), nullable=False)
    time_range: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    is_meal: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[float | None] = mapped_column(Float, nullable=True)

    cells: Mapped[List["ScheduleCell"]] = relationship(back_populates="slot", cascade="all, delete-orphan")

    def to_slot(self) -> Slot:
        return Slot(
            id=self.slot_key,
            label=self.label,
            time_range=self.time_range or "",
            is_meal=bool(self.is_meal),
            order=self.sort_order if self.sort_order is not None else math.inf,
        )


class ScheduleCell(Base):
    __tablename__ = "schedule_cells"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("schedule_people.id", ondelete="CASCADE"), nullable=False)
    slot_id: Mapped[int] = mapped_column(ForeignKey("schedule_slots.id", ondelete="CASCADE"), nullable=False)
    value: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    person: Mapped[SchedulePerson] = relationship(back_populates="cells")
    slot: Mapped[ScheduleSlot] = relationship(back_populates="cells")

    __table_args__ = (UniqueConstraint("person_id", "slot_id", name="uq_schedule_cell_person_slot"),)


class ScheduleSetting(Base):
    __tablename__ = "schedule_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(String(200), nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Cell")
    target_key: Mapped[str | None] = mapped_column(String(250), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


def _connect_args(url: str) -> Dict[str, Any]:
    # Store writes run on worker threads (asyncio.to_thread).
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


schedule_engine = create_engine(
    SCHEDULE_DATABASE_URL,
    echo=False,
    future=True,
    connect_args=_connect_args(SCHEDULE_DATABASE_URL),
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)


def init_database(engine=None) -> None:
    Base.metadata.create_all(engine or schedule_engine)


def _get_person(session, name: str) -> Optional[SchedulePerson]:
    return session.scalars(select(SchedulePerson).where(SchedulePerson.name == name)).first()


def _get_slot(session, slot_key: str) -> Optional[ScheduleSlot]:
    return session.scalars(select(ScheduleSlot).where(ScheduleSlot.slot_key == slot_key)).first()


def _resolve_cell(session, person: str, slot_key: str) -> ScheduleCell:
    db_person = _get_person(session, person)
    if not db_person:
        raise ValueError(f"Person row not found: {person}")
    db_slot = _get_slot(session, slot_key)
    if not db_slot:
        raise ValueError(f"Slot not found: {slot_key}")
    stmt = select(ScheduleCell).where(
        ScheduleCell.person_id == db_person.id,
        ScheduleCell.slot_id == db_slot.id,
    )
    cell = session.scalars(stmt).first()
    if not cell:
        cell = ScheduleCell(person_id=db_person.id, slot_id=db_slot.id, value="", version=0)
        session.add(cell)
        session.flush()
    return cell


def upsert_person(session, name: str, position: Optional[int] = None) -> SchedulePerson:
    name = (name or "").strip()
    if not name:
        raise ValueError("Person name is required.")
    person = _get_person(session, name)
    if not person:
        if position is None:
            current = session.scalars(select(SchedulePerson.position).order_by(SchedulePerson.position.desc())).first()
            position = (current + 1) if current is not None else 0
        person = SchedulePerson(name=name, position=position)
        session.add(person)
    elif position is not None:
        person.position = position
    session.commit()
    session.refresh(person)
    return person


def upsert_slot(
    session,
    slot_key: str,
    *,
    label: Optional[str] = None,
    time_range: Optional[str] = None,
    is_meal: Optional[bool] = None,
    order: Optional[float] = None,
) -> ScheduleSlot:
    if not slot_key:
        raise ValueError("Slot key is required.")
    meta = parse_slot_meta(slot_key)
    slot = _get_slot(session, slot_key)
    if not slot:
        slot = ScheduleSlot(slot_key=slot_key)
        session.add(slot)
    slot.label = label if label is not None else (slot.label or meta["label"])
    slot.time_range = time_range if time_range is not None else (slot.time_range or meta["time_range"])
    slot.is_meal = int(is_meal if is_meal is not None else meta["is_meal"])
    resolved_order = order if order is not None else meta["order"]
    slot.sort_order = None if resolved_order is None or math.isinf(resolved_order) else float(resolved_order)
    session.commit()
    session.refresh(slot)
    return slot


def get_schedule_date(session) -> Optional[str]:
    setting = session.scalars(select(ScheduleSetting).where(ScheduleSetting.name == SCHEDULE_DATE_SETTING)).first()
    return setting.value if setting and setting.value else None


def set_schedule_date(session, value: Optional[str]) -> None:
    setting = session.scalars(select(ScheduleSetting).where(ScheduleSetting.name == SCHEDULE_DATE_SETTING)).first()
    if not setting:
        setting = ScheduleSetting(name=SCHEDULE_DATE_SETTING)
        session.add(setting)
    setting.value = value or ""
    session.commit()


def get_schedule_matrix(session) -> ScheduleMatrix:
    people = session.scalars(select(SchedulePerson).order_by(SchedulePerson.position, SchedulePerson.id)).all()
    db_slots = sort_slots_rows(session.scalars(select(ScheduleSlot)).all())
    slot_positions = {slot.id: idx for idx, slot in enumerate(db_slots)}
    person_positions = {person.id: idx for idx, person in enumerate(people)}
    cells = [[""] * len(db_slots) for _ in people]
    versions = [[0] * len(db_slots) for _ in people]
    for cell in session.scalars(select(ScheduleCell)):
        row = person_positions.get(cell.person_id)
        col = slot_positions.get(cell.slot_id)
        if row is None or col is None:
            continue
        cells[row][col] = normalize_cell_value(cell.value)
        versions[row][col] = cell.version
    return ScheduleMatrix(
        people=[person.name for person in people],
        slots=[slot.to_slot() for slot in db_slots],
        cells=cells,
        versions=versions,
        schedule_date=get_schedule_date(session),
    )


def sort_slots_rows(rows: List[ScheduleSlot]) -> List[ScheduleSlot]:
    by_key = {row.slot_key: row for row in rows}
    return [by_key[slot.id] for slot in sort_slots(row.to_slot() for row in rows)]


def replace_cell_value(session, person: str, slot_key: str, value: str, *, actor: str = "system") -> Tuple[str, int]:
    cell = _resolve_cell(session, person, slot_key)
    previous = cell.value
    cell.value = (value or "").rstrip()
    cell.version = (cell.version or 0) + 1
    cell.updated_by = actor
    session.commit()
    record_audit_log(
        session,
        actor,
        "cell_replace",
        target_key=f"{person}-{slot_key}",
        payload={"from": previous, "to": cell.value, "version": cell.version},
    )
    return cell.value, cell.version


def update_cell_tasks(
    session,
    person: str,
    slot_key: str,
    *,
    replace_value: Optional[str] = None,
    add_task: Optional[str] = None,
    remove_task: Optional[str] = None,
    actor: str = "system",
) -> Tuple[str, int]:
    """Apply an add/remove/replace request to a single cell.

    Add and remove compare task names case-insensitively; adding a task that
    is already present is a no-op, as is removing one that is missing.
    """
    if replace_value is not None and not add_task and not remove_task:
        return replace_cell_value(session, person, slot_key, replace_value, actor=actor)
    cell = _resolve_cell(session, person, slot_key)
    content = decode_cell(replace_value if replace_value is not None else cell.value)
    if remove_task:
        needle = task_base_name(str(remove_task)).lower()
        content.tasks = [task for task in content.tasks if task_base_name(task).lower() != needle]
    if add_task:
        candidate = str(add_task).strip()
        if candidate and not any(task_base_name(task).lower() == candidate.lower() for task in content.tasks):
            content.tasks.append(candidate)
    return replace_cell_value(session, person, slot_key, encode_cell(content), actor=actor)


def load_matrix(session, matrix: ScheduleMatrix, *, actor: str = "system", replace: bool = True) -> int:
    """Write a whole matrix into the store, returning the number of non-empty cells."""
    if replace:
        session.execute(delete(ScheduleCell))
        session.execute(delete(SchedulePerson))
        session.execute(delete(ScheduleSlot))
        session.commit()
        session.expunge_all()
    for position, name in enumerate(matrix.people):
        upsert_person(session, name, position=position)
    for position, slot in enumerate(matrix.slots):
        order = slot.order if not math.isinf(slot.order) else position
        upsert_slot(
            session,
            slot.id,
            label=slot.label,
            time_range=slot.time_range,
            is_meal=slot.is_meal,
            order=order,
        )
    written = 0
    for row, name in enumerate(matrix.people):
        for col, slot in enumerate(matrix.slots):
            value = normalize_cell_value(matrix.cells[row][col])
            if not value:
                continue
            cell = _resolve_cell(session, name, slot.id)
            cell.value = value
            cell.version = (cell.version or 0) + 1
            cell.updated_by = actor
            written += 1
    session.commit()
    if matrix.schedule_date:
        set_schedule_date(session, matrix.schedule_date)
    record_audit_log(session, actor, "matrix_load", target_type="Schedule", payload={"cells": written})
    return written


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Cell",
    target_key: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_key=target_key,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log
