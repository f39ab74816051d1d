# medsync/adapters/notifier.py
from __future__ import annotations

import logging
from typing import Dict

from medsync.core.logging_utils import kv
from medsync.core.models import MedicationRecord


class LoggingNotifier:
    """Headless alert sink: alerts go to the log and stay listed until dismissed."""

    def __init__(self) -> None:
        self.active: Dict[int, MedicationRecord] = {}
        self.log = logging.getLogger("medsync.notifier")

    def alert(self, record: MedicationRecord) -> None:
        self.active[record.id] = record
        self.log.warning(
            "alert.show " + kv(id=record.id, title=f"Time for {record.name}", notes=record.notes)
        )

    def dismiss(self, medication_id: int) -> None:
        if self.active.pop(medication_id, None) is not None:
            self.log.info("alert.dismiss " + kv(id=medication_id))
