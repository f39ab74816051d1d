# medsync/core/errors.py
from __future__ import annotations

from typing import Optional


class MedSyncError(Exception):
    """Base class for all medsync failures."""


class NetworkError(MedSyncError):
    """Fetch failed: no connectivity, transport failure, or undecodable body."""


class UploadError(MedSyncError):
    """Upload was not acknowledged. status is None for transport failures."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class ValidationError(MedSyncError):
    """Outgoing payload violates the remote store contract."""


class SchedulingError(MedSyncError):
    def __init__(self, medication_id: int, reason: str):
        super().__init__(f"medication {medication_id}: {reason}")
        self.medication_id = medication_id
        self.reason = reason


class RefreshError(MedSyncError):
    """Refresh failed and there is no cached data to fall back to."""


class UnknownMedicationError(MedSyncError):
    def __init__(self, medication_id: int):
        super().__init__(medication_id)
        self.medication_id = medication_id

    def __str__(self) -> str:
        return f"unknown medication id {self.medication_id}"
