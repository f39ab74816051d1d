# medsync/tests/conftest.py
import sys
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

# This file is at <project_root>/medsync/tests/conftest.py
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from medsync.core.cache import MedicationCache  # noqa: E402
from medsync.core.clock import Clock  # noqa: E402
from medsync.core.errors import NetworkError, UploadError  # noqa: E402
from medsync.core.models import MedicationRecord  # noqa: E402
from medsync.core.remote import UploadAck  # noqa: E402

KYIV = ZoneInfo("Europe/Kyiv")
# 2024-01-01 is a Monday
MONDAY_9AM = datetime(2024, 1, 1, 9, 0, tzinfo=KYIV)


def rec(mid, name="Med", time="08:00", **kw) -> MedicationRecord:
    return MedicationRecord(id=mid, name=name, time_to_take=time, **kw)


def ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


class FakeRemote:
    """In-memory remote store: scripted fetch results, recorded uploads."""

    def __init__(self, records=None):
        self.records = list(records or [])
        self.fetch_error = None
        self.upload_error = None
        self.fetch_calls = 0
        self.uploads = []  # list of (snapshot, token)
        self.during_upload = None  # optional coroutine fn run mid-upload

    async def fetch(self):
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.records)

    async def upload(self, records, token=None):
        snapshot = list(records)
        self.uploads.append((snapshot, token))
        if self.during_upload is not None:
            await self.during_upload()
        if self.upload_error is not None:
            raise self.upload_error
        return UploadAck(success=True, message="Data saved successfully", timestamp="2024-01-01T09:00:00+02:00")

    def fail_fetch(self, msg="offline"):
        self.fetch_error = NetworkError(msg)

    def fail_upload(self, status=500):
        self.upload_error = UploadError(f"upload rejected: HTTP {status}", status)


class FakeAlarms:
    """Captures register/cancel calls of the alarm capability."""

    def __init__(self):
        self.jobs = {}  # id -> (when, payload)
        self.cancelled = []
        self.refuse = set()

    def register(self, medication_id, when, payload):
        if medication_id in self.refuse:
            raise PermissionError("exact alarms not permitted")
        self.jobs[medication_id] = (when, payload)

    def cancel(self, medication_id):
        self.cancelled.append(medication_id)
        self.jobs.pop(medication_id, None)


class FakeNotifier:
    def __init__(self):
        self.alerts = []
        self.dismissed = []

    def alert(self, record):
        self.alerts.append(record.id)

    def dismiss(self, medication_id):
        self.dismissed.append(medication_id)


class FixedClock(Clock):
    """Clock frozen at a given instant; set() and advance() move it."""

    def __init__(self, tz, at: datetime):
        super().__init__(tz)
        self._at = at

    def now(self) -> datetime:
        return self._at.astimezone(self.tz)

    def set(self, at: datetime) -> None:
        self._at = at

    def advance(self, delta) -> None:
        self._at = self._at + delta


class FakeScheduler:
    """Mock scheduler that captures add_job calls without executing them."""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger=None, id=None, replace_existing=True, **kwargs):
        self.jobs.append({"func": func, "trigger": trigger, "id": id, **kwargs})


@pytest.fixture
def clock():
    return FixedClock(KYIV, MONDAY_9AM)


@pytest_asyncio.fixture
async def cache(tmp_path):
    c = MedicationCache(str(tmp_path / "medications.db"))
    await c.open()
    yield c
    await c.close()


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def fake_alarms():
    return FakeAlarms()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()
