# medsync/core/models.py
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

_TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class MedicationRecord:
    """
    One medication as held on the device.

    id/name/time_to_take/notes/weekdays are owned by the server dataset;
    is_taken/last_taken_timestamp are owned by the device; is_dirty marks
    device state that still has to be uploaded.
    """

    id: int
    name: str
    time_to_take: str  # HH:MM, 24h
    notes: Optional[str] = None
    weekdays: Optional[FrozenSet[int]] = None  # 1=Mon..7=Sun; None = every day
    is_taken: bool = False
    last_taken_timestamp: int = 0  # epoch ms, 0 = unset
    is_dirty: bool = False

    # -- derived ----------------------------------------------------------
    def applies_on(self, day: date) -> bool:
        """True when the weekday mask allows this medication on `day`."""
        if not self.weekdays:
            return True
        return day.isoweekday() in self.weekdays

    def server_signature(self) -> Tuple[Any, ...]:
        return (
            self.id,
            self.name,
            self.time_to_take,
            self.notes,
            tuple(sorted(self.weekdays or ())),
        )

    def with_device_state_of(
        self, existing: "MedicationRecord", *, keep_dirty: bool
    ) -> "MedicationRecord":
        """Server fields from self, device fields from `existing`."""
        return replace(
            self,
            is_taken=existing.is_taken,
            last_taken_timestamp=existing.last_taken_timestamp,
            is_dirty=existing.is_dirty if keep_dirty else False,
        )

    # -- wire format ------------------------------------------------------
    @classmethod
    def from_server_json(cls, raw: Dict[str, Any]) -> "MedicationRecord":
        """
        Decode one entry of the remote dataset. Device-owned keys that may be
        present in the stored file are ignored.
        Raises ValueError on structurally invalid entries.
        """
        if not isinstance(raw, dict):
            raise ValueError(
                f"medication entry must be an object, got {type(raw).__name__}"
            )
        mid = raw.get("id")
        if not isinstance(mid, int) or isinstance(mid, bool):
            raise ValueError(f"medication id must be an integer (got {mid!r})")
        name = raw.get("name")
        if not isinstance(name, str):
            raise ValueError(f"medication {mid}: name must be a string")
        ttt = raw.get("timeToTake")
        if not isinstance(ttt, str):
            raise ValueError(f"medication {mid}: timeToTake must be a string")
        notes = raw.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise ValueError(f"medication {mid}: notes must be a string or null")
        return cls(
            id=mid,
            name=name,
            time_to_take=ttt,
            notes=notes,
            weekdays=parse_weekdays(raw.get("weekdays")),
        )

    def to_json(self) -> Dict[str, Any]:
        """Upload representation; outgoing copies are always marked clean."""
        return {
            "id": self.id,
            "name": self.name,
            "timeToTake": self.time_to_take,
            "notes": self.notes,
            "weekdays": sorted(self.weekdays) if self.weekdays else None,
            "isTaken": self.is_taken,
            "lastTakenTimestamp": self.last_taken_timestamp,
            "isDirty": False,
        }


def parse_weekdays(value: Any) -> Optional[FrozenSet[int]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError(f"weekdays must be a list of integers (got {value!r})")
    days = set()
    for d in value:
        if not isinstance(d, int) or isinstance(d, bool) or not 1 <= d <= 7:
            raise ValueError(f"weekday must be an integer in 1..7 (got {d!r})")
        days.add(d)
    return frozenset(days) if days else None


def parse_hhmm(s: str) -> Tuple[int, int]:
    """Parse 'HH:MM' into (hour, minute). Raises ValueError when invalid."""
    m = _TIME_RE.match(s or "")
    if not m:
        raise ValueError(f"invalid time {s!r} (expected HH:MM)")
    hh, mm = int(m.group(1)), int(m.group(2))
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"invalid time {s!r} (out of range)")
    return hh, mm


def sort_records(records: Iterable[MedicationRecord]) -> List[MedicationRecord]:
    # "HH:MM" is fixed width, so string order is time order
    return sorted(records, key=lambda r: (r.time_to_take, r.id))


def decode_dataset(body: Any) -> List[MedicationRecord]:
    """Decode `{"medications": [...]}`. Raises ValueError on a bad shape."""
    if not isinstance(body, dict) or not isinstance(body.get("medications"), list):
        raise ValueError("dataset must be an object with a 'medications' array")
    records = [MedicationRecord.from_server_json(m) for m in body["medications"]]
    ids = [r.id for r in records]
    if len(ids) != len(set(ids)):
        raise ValueError("dataset contains duplicate medication ids")
    return records


def encode_dataset(records: Iterable[MedicationRecord]) -> Dict[str, Any]:
    return {"medications": [r.to_json() for r in records]}
