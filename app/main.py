from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from PySide6 import QtAsyncio
from PySide6.QtGui import QCloseEvent
from PySide6.QtWidgets import (
    QApplication,
    QFileDialog,
    QHBoxLayout,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QVBoxLayout,
    QWidget,
)
from sqlalchemy.exc import SQLAlchemyError

from database import SessionLocal, init_database
from data_exchange import (
    EXPORT_DIR,
    export_matrix_csv,
    export_matrix_json,
    import_matrix_csv,
    import_matrix_json,
)
from logger import setup_logging
from settings import BoardSettings, get_settings
from store import create_default_store
from transactions import EditTransactionManager
from ui.board_view import ScheduleBoardPage

logger = logging.getLogger(__name__)

THEME_STYLESHEET = """
QWidget {
    background-color: #090a0e;
    color: #f5f6fa;
    font-family: 'Segoe UI', sans-serif;
    font-size: 14px;
}

QGroupBox {
    background-color: #111217;
    border: 1px solid #1c1d23;
    border-radius: 12px;
    margin-top: 20px;
    padding: 16px;
}

QGroupBox::title {
    color: #f9d24a;
    font-weight: 600;
    subcontrol-origin: margin;
    subcontrol-position: top left;
    margin-left: 14px;
    padding: 2px 10px;
}

QPushButton {
    background-color: #f5b942;
    color: #0b0b0f;
    border-radius: 10px;
    padding: 8px 18px;
    font-weight: 600;
    border: none;
}

QPushButton:hover {
    background-color: #ffd36a;
}

QPushButton:disabled {
    background-color: #262730;
    color: #7d7f8f;
}

QComboBox, QLineEdit {
    background-color: #15161c;
    border: 1px solid #25262d;
    border-radius: 10px;
    padding: 6px 12px;
}

QTableWidget {
    background-color: #14151c;
    border: 1px solid #1c1d23;
    gridline-color: #26272f;
    selection-background-color: #f5b942;
    selection-color: #0b0b0f;
}

QHeaderView::section {
    background-color: #111217;
    color: #c9cede;
    padding: 6px;
    border: none;
}
"""


class MainWindow(QMainWindow):
    def __init__(self, manager: EditTransactionManager, settings: BoardSettings, session_factory) -> None:
        super().__init__()
        self.manager = manager
        self.settings = settings
        self.session_factory = session_factory
        self.setWindowTitle("Shift Board")
        self.setMinimumSize(1100, 720)
        self._build_ui()

    def _build_ui(self) -> None:
        central = QWidget()
        layout = QVBoxLayout(central)
        self.board = ScheduleBoardPage(
            self.manager,
            viewer=self.settings.viewer,
            poll_seconds=self.settings.poll_seconds,
        )
        layout.addWidget(self.board, 1)

        controls = QHBoxLayout()
        controls.addStretch()
        for label, handler in (
            ("Import JSON", lambda: self._handle_import("json")),
            ("Import CSV", lambda: self._handle_import("csv")),
            ("Export JSON", lambda: self._handle_export("json")),
            ("Export CSV", lambda: self._handle_export("csv")),
        ):
            button = QPushButton(label)
            button.clicked.connect(handler)
            controls.addWidget(button)
        layout.addLayout(controls)
        self.setCentralWidget(central)

    def _handle_import(self, kind: str) -> None:
        if self.manager.has_pending_writes:
            QMessageBox.information(self, "Import", "Wait for pending saves to finish before importing.")
            return
        pattern = "JSON files (*.json)" if kind == "json" else "CSV files (*.csv)"
        path, _ = QFileDialog.getOpenFileName(self, "Import schedule", str(EXPORT_DIR), pattern)
        if not path:
            return
        confirm = QMessageBox.question(
            self,
            "Import schedule",
            "Importing replaces the whole schedule. Continue?",
            QMessageBox.Yes | QMessageBox.No,
            QMessageBox.No,
        )
        if confirm != QMessageBox.Yes:
            return
        importer = import_matrix_json if kind == "json" else import_matrix_csv
        try:
            with self.session_factory() as session:
                written = importer(session, Path(path), actor=self.settings.actor)
        except (OSError, ValueError, SQLAlchemyError) as exc:
            logger.exception("Import failed for %s", path)
            QMessageBox.critical(self, "Import failed", str(exc))
            return
        self.manager.forget_confirmed_versions()
        QMessageBox.information(self, "Import schedule", f"Imported {written} filled cell(s).")
        self.board.request_refresh()

    def _handle_export(self, kind: str) -> None:
        exporter = export_matrix_json if kind == "json" else export_matrix_csv
        try:
            with self.session_factory() as session:
                target = exporter(session)
        except (OSError, SQLAlchemyError) as exc:
            logger.exception("Export failed")
            QMessageBox.critical(self, "Export failed", str(exc))
            return
        QMessageBox.information(self, "Export schedule", f"Saved to {target}")

    def closeEvent(self, event: QCloseEvent) -> None:
        self.board.stop_polling()
        pending = self.manager.pending_keys
        if pending:
            logger.warning("Closing with %s unsaved cell(s): %s", len(pending), ", ".join(sorted(pending)))
        super().closeEvent(event)


def launch_app(settings: Optional[BoardSettings] = None) -> int:
    settings = settings or get_settings()
    setup_logging(settings)
    init_database()

    app = QApplication(sys.argv)
    app.setStyleSheet(THEME_STYLESHEET)
    manager = EditTransactionManager(create_default_store(settings.actor))
    window = MainWindow(manager, settings, SessionLocal)
    window.show()
    logger.info("Shift board started (viewer=%s)", settings.viewer or "-")
    QtAsyncio.run(handle_sigint=True)
    return 0


if __name__ == "__main__":
    sys.exit(launch_app())
