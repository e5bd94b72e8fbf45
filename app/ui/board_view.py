from __future__ import annotations

import asyncio
import datetime
import json
import logging
from typing import Dict, Optional

from PySide6.QtCore import QMimeData, Qt, QTimer
from PySide6.QtGui import QColor, QFont
from PySide6.QtWidgets import (
    QAbstractItemView,
    QComboBox,
    QGroupBox,
    QHBoxLayout,
    QHeaderView,
    QInputDialog,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QMessageBox,
    QPushButton,
    QSplitter,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from cell_codec import decode_cell, task_base_name
from consolidator import BoardLayout, GridBlock, consolidate, meal_assignments, tasks_for_person
from matrix import CellRef, current_slot_id
from transactions import EditTransactionManager, TaskLocation

logger = logging.getLogger(__name__)

TASK_MIME_TYPE = "application/x-shift-board-task"
BLOCK_COLOR = QColor("#1c2333")
VIEWER_COLOR = QColor("#2b3a22")
SAVING_COLOR = QColor("#3a3320")
EMPTY_COLOR = QColor("#111217")
CURRENT_SLOT_COLOR = QColor("#f5b942")


class CellTaskList(QListWidget):
    """Tasks of the selected cell; rows can be dragged onto the board."""

    def __init__(self, parent=None) -> None:
        super().__init__(parent)
        self.cell: Optional[CellRef] = None
        self.setDragEnabled(True)
        self.setSelectionMode(QAbstractItemView.SingleSelection)

    def mimeData(self, items) -> QMimeData:
        mime = QMimeData()
        if not items or self.cell is None:
            return mime
        item = items[0]
        payload = {
            "taskName": item.data(Qt.UserRole),
            "fromPerson": self.cell.person,
            "fromSlotId": self.cell.slot_id,
            "fromIndex": self.row(item),
        }
        mime.setData(TASK_MIME_TYPE, json.dumps(payload).encode("utf-8"))
        return mime


class BoardTable(QTableWidget):
    def __init__(self, on_drop, parent=None) -> None:
        super().__init__(parent)
        self.on_drop = on_drop
        self.setAcceptDrops(True)
        self.viewport().setAcceptDrops(True)
        self.setDragDropMode(QAbstractItemView.DropOnly)
        self.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self.setSelectionMode(QAbstractItemView.SingleSelection)
        self.setWordWrap(True)

    def dragEnterEvent(self, event) -> None:
        if event.mimeData().hasFormat(TASK_MIME_TYPE):
            event.acceptProposedAction()
        else:
            event.ignore()

    def dragMoveEvent(self, event) -> None:
        if event.mimeData().hasFormat(TASK_MIME_TYPE):
            event.acceptProposedAction()
        else:
            event.ignore()

    def dropEvent(self, event) -> None:
        if not event.mimeData().hasFormat(TASK_MIME_TYPE):
            event.ignore()
            return
        pos = event.position().toPoint()
        # rowAt/columnAt resolve the covered position inside a span, not its anchor.
        row = self.rowAt(pos.y())
        col = self.columnAt(pos.x())
        if row < 0 or col < 0:
            event.ignore()
            return
        payload = json.loads(bytes(event.mimeData().data(TASK_MIME_TYPE)).decode("utf-8"))
        self.on_drop(payload, row, col)
        event.acceptProposedAction()


class ScheduleBoardPage(QWidget):
    def __init__(
        self,
        manager: EditTransactionManager,
        *,
        viewer: Optional[str] = None,
        poll_seconds: int = 45,
    ) -> None:
        super().__init__()
        self.manager = manager
        self.viewer = viewer
        self.layout_data: Optional[BoardLayout] = None
        self.selected_block: Optional[GridBlock] = None
        self._background: set = set()

        self.manager.on_change = self.render
        self.manager.on_message = self._show_message

        self._build_ui()

        self.poll_timer = QTimer(self)
        self.poll_timer.setInterval(poll_seconds * 1000)
        self.poll_timer.timeout.connect(self.request_refresh)
        self.poll_timer.start()
        QTimer.singleShot(0, self.request_refresh)

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setSpacing(12)
        layout.addLayout(self._build_header())

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(self._build_grid())
        splitter.addWidget(self._build_side_panel())
        splitter.setStretchFactor(0, 4)
        splitter.setStretchFactor(1, 1)
        layout.addWidget(splitter, 1)

        self.status_label = QLabel("")
        self.status_label.setWordWrap(True)
        self.status_label.setStyleSheet("color:#f5b942;")
        layout.addWidget(self.status_label)

    def _build_header(self) -> QHBoxLayout:
        header = QHBoxLayout()
        header.setSpacing(8)
        self.title_label = QLabel("<h2>Schedule</h2>")
        header.addWidget(self.title_label)
        self.date_label = QLabel("")
        self.date_label.setStyleSheet("color:#c9cede;")
        header.addWidget(self.date_label)
        header.addStretch()
        viewer_text = f"Viewing as <b>{self.viewer}</b>" if self.viewer else "No viewer selected"
        header.addWidget(QLabel(viewer_text))
        self.saving_label = QLabel("")
        header.addWidget(self.saving_label)
        self.refresh_button = QPushButton("Refresh")
        self.refresh_button.clicked.connect(self.request_refresh)
        header.addWidget(self.refresh_button)
        return header

    def _build_grid(self) -> QWidget:
        container = QGroupBox("Board")
        grid_layout = QVBoxLayout(container)
        self.table = BoardTable(self._handle_drop)
        self.table.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
        self.table.verticalHeader().setSectionResizeMode(QHeaderView.ResizeToContents)
        self.table.cellClicked.connect(self._handle_cell_clicked)
        grid_layout.addWidget(self.table)
        return container

    def _build_side_panel(self) -> QWidget:
        panel = QWidget()
        column = QVBoxLayout(panel)
        column.setSpacing(8)

        cell_box = QGroupBox("Selected cell")
        cell_layout = QVBoxLayout(cell_box)
        self.cell_label = QLabel("Click a block to edit its tasks.")
        self.cell_label.setWordWrap(True)
        cell_layout.addWidget(self.cell_label)
        self.person_picker = QComboBox()
        self.person_picker.currentIndexChanged.connect(self._populate_cell_tasks)
        cell_layout.addWidget(self.person_picker)
        self.cell_tasks = CellTaskList()
        cell_layout.addWidget(self.cell_tasks)
        buttons = QHBoxLayout()
        self.add_button = QPushButton("Add task")
        self.add_button.clicked.connect(self._handle_add_task)
        buttons.addWidget(self.add_button)
        self.remove_button = QPushButton("Remove")
        self.remove_button.clicked.connect(self._handle_remove_task)
        buttons.addWidget(self.remove_button)
        cell_layout.addLayout(buttons)
        column.addWidget(cell_box)

        my_box = QGroupBox("My tasks")
        my_layout = QVBoxLayout(my_box)
        self.my_tasks = QListWidget()
        my_layout.addWidget(self.my_tasks)
        column.addWidget(my_box)

        meal_box = QGroupBox("Meals")
        meal_layout = QVBoxLayout(meal_box)
        self.meal_label = QLabel("No meal assignments.")
        self.meal_label.setWordWrap(True)
        meal_layout.addWidget(self.meal_label)
        column.addWidget(meal_box)
        column.addStretch()
        self._update_action_states()
        return panel

    # ------------------------------------------------------------------
    # Data flow

    def request_refresh(self) -> None:
        self._spawn(self.manager.refresh())

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def render(self) -> None:
        matrix = self.manager.matrix
        self.layout_data = consolidate(matrix, self.viewer)
        layout = self.layout_data
        self.date_label.setText(matrix.schedule_date or "")
        if matrix.message and not matrix.people:
            self.status_label.setText(matrix.message)

        self.table.clearSpans()
        self.table.clearContents()
        self.table.setRowCount(len(layout.people))
        self.table.setColumnCount(len(layout.slots))
        self.table.setHorizontalHeaderLabels(
            [f"{slot.label}\n{slot.time_range}" if slot.time_range else slot.label for slot in layout.slots]
        )
        self.table.setVerticalHeaderLabels(layout.people)

        now = datetime.datetime.now()
        active_slot = current_slot_id(layout.slots, now.hour * 60 + now.minute)
        for col, slot in enumerate(layout.slots):
            header_item = self.table.horizontalHeaderItem(col)
            if header_item is not None and slot.id == active_slot:
                header_item.setForeground(CURRENT_SLOT_COLOR)

        for block in layout.blocks:
            self.table.setItem(block.row, block.col, self._block_item(block))
            if block.row_span > 1 or block.col_span > 1:
                self.table.setSpan(block.row, block.col, block.row_span, block.col_span)

        self._render_side_lists()
        self._refresh_selected_block()
        pending = len(self.manager.pending_keys)
        self.saving_label.setText(f"Saving {pending} cell(s)…" if pending else "")

    def _block_item(self, block: GridBlock) -> QTableWidgetItem:
        lines = []
        tips = []
        for entry in block.items:
            lines.append(entry.name)
            others = [name for name in entry.assignees if name != entry.primary_person]
            tip = f"{entry.name}: {entry.primary_person}"
            if others:
                tip += f" with {', '.join(others)}"
            if entry.detail:
                tip += f"\n{entry.detail}"
            tips.append(tip)
        if block.content.note and not block.items:
            lines.append(block.content.note)
        item = QTableWidgetItem("\n".join(lines))
        item.setToolTip("\n\n".join(tips))
        item.setTextAlignment(Qt.AlignCenter)

        saving = any(self.manager.is_saving(person, block.slot_id) for person in block.people)
        if saving:
            item.setBackground(SAVING_COLOR)
            font = QFont()
            font.setItalic(True)
            item.setFont(font)
        elif block.is_empty:
            item.setBackground(EMPTY_COLOR)
        elif self.viewer and any(person.lower() == self.viewer.lower() for person in block.people):
            item.setBackground(VIEWER_COLOR)
        else:
            item.setBackground(BLOCK_COLOR)
        return item

    def _render_side_lists(self) -> None:
        matrix = self.manager.matrix
        self.my_tasks.clear()
        for entry in tasks_for_person(matrix, self.viewer):
            others = [name for name in entry.group_names if name.lower() != (self.viewer or "").lower()]
            text = f"{entry.slot.label}: {task_base_name(entry.task)}"
            if others:
                text += f" (with {', '.join(others)})"
            self.my_tasks.addItem(QListWidgetItem(text))

        meals = meal_assignments(matrix)
        if not meals:
            self.meal_label.setText("No meal assignments.")
        else:
            self.meal_label.setText(
                "\n".join(f"{meal.label}: {meal.task} - {', '.join(meal.people)}" for meal in meals)
            )

    # ------------------------------------------------------------------
    # Selection

    def _handle_cell_clicked(self, row: int, col: int) -> None:
        if self.layout_data is None:
            return
        self.selected_block = self.layout_data.block_at(row, col)
        self._populate_person_picker(self.layout_data.people[row])

    def _refresh_selected_block(self) -> None:
        if self.selected_block is None or self.layout_data is None:
            self._populate_cell_tasks()
            return
        current = self.person_picker.currentText()
        slot_id = self.selected_block.slot_id
        self.selected_block = None
        for block in self.layout_data.blocks:
            if block.slot_id == slot_id and current in block.people:
                self.selected_block = block
                break
        self._populate_person_picker(current)

    def _populate_person_picker(self, preferred: Optional[str] = None) -> None:
        self.person_picker.blockSignals(True)
        self.person_picker.clear()
        if self.selected_block is not None:
            for person in self.selected_block.people:
                self.person_picker.addItem(person, person)
            if preferred:
                index = self.person_picker.findData(preferred)
                if index >= 0:
                    self.person_picker.setCurrentIndex(index)
        self.person_picker.blockSignals(False)
        self._populate_cell_tasks()

    def _selected_cell(self) -> Optional[CellRef]:
        if self.selected_block is None:
            return None
        person = self.person_picker.currentData()
        if not person:
            return None
        return CellRef(person, self.selected_block.slot_id)

    def _populate_cell_tasks(self) -> None:
        cell = self._selected_cell()
        self.cell_tasks.clear()
        self.cell_tasks.cell = cell
        if cell is None:
            self.cell_label.setText("Click a block to edit its tasks.")
            self._update_action_states()
            return
        slot_label = next((slot.label for slot in self.manager.matrix.slots if slot.id == cell.slot_id), cell.slot_id)
        self.cell_label.setText(f"{cell.person} - {slot_label}")
        content = decode_cell(self.manager.matrix.cell(cell.person, cell.slot_id))
        for task in content.tasks:
            item = QListWidgetItem(task)
            item.setData(Qt.UserRole, task_base_name(task))
            self.cell_tasks.addItem(item)
        self._update_action_states()

    def _update_action_states(self) -> None:
        has_cell = self.cell_tasks.cell is not None
        self.add_button.setEnabled(has_cell)
        self.remove_button.setEnabled(has_cell and self.cell_tasks.count() > 0)
        self.person_picker.setEnabled(has_cell and self.person_picker.count() > 1)

    # ------------------------------------------------------------------
    # Gestures

    def _handle_drop(self, payload: Dict, row: int, col: int) -> None:
        if self.layout_data is None:
            return
        person = self.layout_data.people[row]
        slot_id = self.layout_data.slots[col].id
        source = None
        if payload.get("fromPerson") and payload.get("fromSlotId"):
            source = TaskLocation(payload["fromPerson"], payload["fromSlotId"], payload.get("fromIndex"))
        logger.debug("Drop %s onto %s / %s", payload.get("taskName"), person, slot_id)
        self.manager.move_task(payload.get("taskName", ""), TaskLocation(person, slot_id), source)

    def _handle_add_task(self) -> None:
        cell = self._selected_cell()
        if cell is None:
            return
        name, ok = QInputDialog.getText(self, "Add task", f"Task for {cell.person}:")
        if not ok or not name.strip():
            return
        self.manager.add_task(cell, name.strip())

    def _handle_remove_task(self) -> None:
        cell = self._selected_cell()
        if cell is None:
            return
        row = self.cell_tasks.currentRow()
        if row < 0:
            QMessageBox.information(self, "Remove task", "Select a task to remove.")
            return
        self.manager.remove_task(cell, index=row)

    def _show_message(self, message: str) -> None:
        self.status_label.setText(message)

    def stop_polling(self) -> None:
        self.poll_timer.stop()
