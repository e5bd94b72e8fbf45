"""Optimistic edits to the in-memory schedule with queued per-cell writes.

Every gesture updates the matrix immediately and then persists only the cells
it touched. Writes for one cell key run one at a time; edits that arrive while
a write is in flight collapse into a single buffered value so the last local
edit is the one that lands. Refetches replace the matrix except for cells that
still have local work pending or whose confirmed version is newer than the
snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from cell_codec import decode_cell, encode_cell, task_base_name
from matrix import CellRef, ScheduleMatrix, cell_key
from store import MatrixStore, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Unable to save this change. Please retry."


@dataclass(frozen=True)
class TaskLocation:
    person: str
    slot_id: str
    index: Optional[int] = None

    @property
    def ref(self) -> CellRef:
        return CellRef(self.person, self.slot_id)


def _clamp(index: Optional[int], length: int) -> int:
    if index is None:
        return length
    return max(0, min(int(index), length))


def _locate(tasks: List[str], index: Optional[int], name: str) -> Optional[int]:
    if index is not None:
        return index if 0 <= index < len(tasks) else None
    base = task_base_name(name)
    for position, task in enumerate(tasks):
        if task_base_name(task) == base:
            return position
    return None


class EditTransactionManager:
    def __init__(
        self,
        store: MatrixStore,
        matrix: Optional[ScheduleMatrix] = None,
        *,
        on_message: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store
        self.matrix = matrix or ScheduleMatrix()
        self.on_message = on_message
        self.on_change = on_change
        self.last_error: Optional[str] = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._buffered: Dict[str, Tuple[str, str, str]] = {}
        self._confirmed: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Pending-write state

    @property
    def pending_keys(self) -> Set[str]:
        return set(self._inflight) | set(self._buffered)

    def is_saving(self, person: str, slot_id: str) -> bool:
        return cell_key(person, slot_id) in self.pending_keys

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._inflight or self._buffered)

    def forget_confirmed_versions(self) -> None:
        """Let the next refresh win everywhere, e.g. after the store was replaced wholesale."""
        self._confirmed.clear()

    # ------------------------------------------------------------------
    # Edits

    def move_task(
        self,
        task_name: str,
        destination: TaskLocation,
        source: Optional[TaskLocation] = None,
    ) -> List[CellRef]:
        """Move a task reference into ``destination``, removing it from ``source``.

        Without a source this is a plain insertion. A source lookup that finds
        nothing leaves the source cell untouched; the destination still gets
        the task. Returns the cells that were rewritten.
        """
        name = (task_name or "").strip()
        if not name:
            return []
        dest_coord = self.matrix.find_coord(destination.person, destination.slot_id)
        if dest_coord is None:
            return []

        dest_content = decode_cell(self.matrix.cells[dest_coord[0]][dest_coord[1]])
        insert_at = _clamp(destination.index, len(dest_content.tasks))
        touched: List[Tuple[CellRef, str]] = []

        if source is not None:
            source_coord = self.matrix.find_coord(source.person, source.slot_id)
            if source_coord is not None:
                same_cell = source_coord == dest_coord
                source_content = dest_content if same_cell else decode_cell(
                    self.matrix.cells[source_coord[0]][source_coord[1]]
                )
                removed_at = _locate(source_content.tasks, source.index, name)
                if removed_at is not None:
                    source_content.tasks.pop(removed_at)
                    if same_cell:
                        if removed_at < insert_at:
                            insert_at -= 1
                    else:
                        touched.append((source.ref, encode_cell(source_content)))

        dest_content.tasks.insert(insert_at, name)
        touched.append((destination.ref, encode_cell(dest_content)))
        return self._apply(touched, action="move")

    def remove_task(
        self,
        cell: CellRef,
        task: Optional[str] = None,
        index: Optional[int] = None,
    ) -> List[CellRef]:
        coord = self.matrix.find_coord(cell.person, cell.slot_id)
        if coord is None:
            return []
        content = decode_cell(self.matrix.cells[coord[0]][coord[1]])
        if index is None and not task:
            return []
        position = _locate(content.tasks, index, task or "")
        if position is None:
            return []
        content.tasks.pop(position)
        return self._apply([(cell, encode_cell(content))], action="remove")

    def add_task(self, cell: CellRef, task_name: str, index: Optional[int] = None) -> List[CellRef]:
        return self.move_task(task_name, TaskLocation(cell.person, cell.slot_id, index))

    def _apply(self, touched: List[Tuple[CellRef, str]], *, action: str) -> List[CellRef]:
        refs: List[CellRef] = []
        for ref, value in touched:
            row, col = self.matrix.find_coord(ref.person, ref.slot_id)
            self.matrix.cells[row][col] = value
            refs.append(ref)
        logger.info("Applied %s to %s", action, ", ".join(ref.key for ref in refs))
        for ref, value in touched:
            self._enqueue_write(ref.person, ref.slot_id, value)
        self._notify_change()
        return refs

    # ------------------------------------------------------------------
    # Write queue

    def _enqueue_write(self, person: str, slot_id: str, value: str) -> None:
        key = cell_key(person, slot_id)
        if key in self._inflight:
            # Newest value wins; it goes out once the in-flight write settles.
            self._buffered[key] = (person, slot_id, value)
            return
        self._inflight[key] = asyncio.get_running_loop().create_task(self._drain(key, person, slot_id, value))

    async def _drain(self, key: str, person: str, slot_id: str, value: str) -> None:
        try:
            while True:
                await self._write_once(key, person, slot_id, value)
                queued = self._buffered.pop(key, None)
                if queued is None:
                    break
                person, slot_id, value = queued
        finally:
            self._inflight.pop(key, None)
            self._buffered.pop(key, None)
            self._notify_change()

    async def _write_once(self, key: str, person: str, slot_id: str, value: str) -> None:
        try:
            result = await self.store.persist_cell(person, slot_id, value)
        except PersistenceError as exc:
            self._confirmed.pop(key, None)
            self._report(exc.message or DEFAULT_FAILURE_MESSAGE)
            logger.warning("Write failed for %s: %s", key, exc.message)
            return
        except Exception:
            # Keep draining so a buffered value still goes out after a transport error.
            self._confirmed.pop(key, None)
            self._report(DEFAULT_FAILURE_MESSAGE)
            logger.exception("Unexpected error while saving %s", key)
            return
        self._confirmed[key] = max(result.version, self._confirmed.get(key, 0))
        coord = self.matrix.find_coord(person, slot_id)
        if coord is not None:
            row, col = coord
            self.matrix.versions[row][col] = max(self.matrix.versions[row][col], result.version)
        logger.debug("Saved %s at version %s", key, result.version)

    async def wait_idle(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # ------------------------------------------------------------------
    # Refetch

    async def refresh(self) -> ScheduleMatrix:
        """Fetch a full snapshot and merge it with local state."""
        try:
            snapshot = await self.store.fetch_matrix()
        except PersistenceError as exc:
            self._report(exc.message)
            logger.warning("Refresh failed: %s", exc.message)
            return self.matrix
        self.matrix = self.reconcile(snapshot)
        self._notify_change()
        return self.matrix

    def reconcile(self, snapshot: ScheduleMatrix) -> ScheduleMatrix:
        merged = snapshot.copy()
        pending = self.pending_keys
        kept = 0
        for row, person in enumerate(merged.people):
            for col, slot in enumerate(merged.slots):
                key = cell_key(person, slot.id)
                local = self.matrix.find_coord(person, slot.id)
                if local is None:
                    continue
                stale = merged.versions[row][col] < self._confirmed.get(key, 0)
                if key in pending or stale:
                    local_row, local_col = local
                    merged.cells[row][col] = self.matrix.cells[local_row][local_col]
                    merged.versions[row][col] = max(
                        merged.versions[row][col], self.matrix.versions[local_row][local_col]
                    )
                    kept += 1
        if kept:
            logger.info("Kept %s local cell(s) over the refetched snapshot", kept)
        return merged

    # ------------------------------------------------------------------

    def _report(self, message: str) -> None:
        self.last_error = message
        if self.on_message:
            self.on_message(message)

    def _notify_change(self) -> None:
        if self.on_change:
            self.on_change()
