import logging
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler
from PySide6.QtWidgets import QApplication

from .core.config import config_path
from .gui.wizard import DkpWeeklyWizard

STYLESHEET = """
QWidget {
    font-family: "Georgia", "Times New Roman", serif;
    color: #f0e6d2;
    background-color: #1d1a18;
}
QWizard, QDialog {
    background-color: #1d1a18;
}
QWizard::header {
    background-color: #1d1a18;
    border-bottom: 1px solid #3a322b;
}
QWizard QLabel#qt_wizard_title,
QWizard QLabel#qt_wizard_subtitle {
    background-color: #1d1a18;
    color: #e8d9b5;
}
QWizard QDialogButtonBox {
    background-color: #1d1a18;
    border-top: 1px solid #3a322b;
}
QProgressBar {
    border: 1px solid #4a4036;
    border-radius: 6px;
    background-color: #2a2521;
    text-align: center;
    color: #f0e6d2;
    height: 16px;
}
QProgressBar::chunk {
    background-color: #8a6a3f;
    border-radius: 6px;
}
QFrame#FixPanel {
    background-color: #26211d;
    border: 1px solid #5a4a39;
    border-radius: 10px;
}
QLabel#StatusIndicator {
    background-color: #3a322b;
    border: 1px solid #5a4a39;
    border-radius: 8px;
    color: #f5efdf;
    font-weight: bold;
}
QLabel#StatusIndicator[state="ok"] {
    background-color: #2d7a3f;
    border-color: #3e9b57;
}
QLabel#StatusIndicator[state="error"] {
    background-color: #8a3b2f;
    border-color: #b24a39;
}
QLabel#StatusIndicator[state="working"] {
    background-color: #7a5c3a;
    border-color: #9a6f45;
}
QLabel#TestStatusText, QLabel#ProgressLabel {
    color: #d7c49a;
}
QLabel#SectionTitle {
    font-size: 16px;
    font-weight: bold;
    color: #e8d9b5;
}
QLabel#ErrorHeader {
    font-size: 14px;
    font-weight: bold;
    color: #f0c36d;
}
QLineEdit, QPlainTextEdit, QTextEdit, QComboBox, QDateEdit, QSpinBox {
    background-color: #2a2521;
    border: 1px solid #4a4036;
    border-radius: 6px;
    padding: 6px;
    color: #f5efdf;
}
QComboBox QAbstractItemView {
    background-color: #2a2521;
    selection-background-color: #4a3a2b;
    color: #f5efdf;
}
QTableWidget {
    background-color: #2a2521;
    gridline-color: #4a4036;
    color: #f5efdf;
    border: 1px solid #4a4036;
}
QHeaderView::section {
    background-color: #26211d;
    color: #e8d9b5;
    padding: 4px 6px;
    border: 1px solid #3a322b;
}
QTextEdit#ContextView {
    background-color: #211d19;
    border: 1px dashed #5a4a39;
}
QPlainTextEdit#RetypeInput {
    font-family: "Consolas", "Courier New", monospace;
}
QPushButton {
    background-color: #3b2e23;
    border: 1px solid #7a5c3a;
    border-radius: 6px;
    padding: 6px 10px;
    color: #f0e4c8;
}
QPushButton:hover {
    background-color: #4a3a2b;
}
QPushButton:disabled {
    color: #6f665c;
    background-color: #2a2622;
    border-color: #3a322b;
}
"""


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    def qt_message_handler(mode, context, message):
        level = logging.INFO
        if mode == QtMsgType.QtWarningMsg:
            level = logging.WARNING
        elif mode == QtMsgType.QtCriticalMsg:
            level = logging.ERROR
        elif mode == QtMsgType.QtFatalMsg:
            level = logging.CRITICAL
        logging.log(level, "Qt: %s", message)

    qInstallMessageHandler(qt_message_handler)


def main() -> int:
    _setup_logging()

    app = QApplication(sys.argv)
    logging.info("Python: %s", sys.version.replace("\n", " "))
    logging.info("Settings file: %s", config_path())
    logging.info("Qt platform: %s", app.platformName())
    app.setStyleSheet(STYLESHEET)
    wizard = DkpWeeklyWizard()
    wizard.resize(960, 760)
    wizard.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
