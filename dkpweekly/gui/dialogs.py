from dataclasses import dataclass
from typing import Optional

from PySide6.QtWidgets import (
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QLabel,
    QLineEdit,
    QMessageBox,
    QSpinBox,
    QVBoxLayout,
)


@dataclass
class NewBoss:
    alias: str
    boss: str
    points: int


class AddBossDialog(QDialog):
    def __init__(self, token: str = "", parent=None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Add Boss")
        self._result: Optional[NewBoss] = None

        layout = QVBoxLayout(self)
        if token:
            layout.addWidget(QLabel(f"Unknown boss token: {token}"))

        form = QFormLayout()
        self.alias_input = QLineEdit()
        self.alias_input.setText(token)
        self.alias_input.setPlaceholderText("Token as written in the export")
        form.addRow("Token", self.alias_input)

        self.boss_input = QLineEdit()
        self.boss_input.setText(token.lstrip("/"))
        self.boss_input.setPlaceholderText("Canonical boss name")
        form.addRow("Boss", self.boss_input)

        self.points_input = QSpinBox()
        self.points_input.setRange(-1000, 10000)
        self.points_input.setValue(0)
        form.addRow("Points", self.points_input)
        layout.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._on_accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _on_accept(self) -> None:
        boss = self.boss_input.text().strip()
        if not boss:
            QMessageBox.warning(self, "Missing boss", "Enter a canonical boss name.")
            return
        self._result = NewBoss(
            alias=self.alias_input.text().strip(),
            boss=boss,
            points=int(self.points_input.value()),
        )
        self.accept()

    def get_boss(self) -> Optional[NewBoss]:
        return self._result
