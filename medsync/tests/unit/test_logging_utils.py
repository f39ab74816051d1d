# medsync/tests/unit/test_logging_utils.py
import logging
from datetime import datetime

import pytest

from conftest import KYIV
from medsync.core.logging_utils import kv, setup_logging


def test_kv_formats_timestamps_and_id_sets():
    at = datetime(2024, 1, 2, 8, 0, tzinfo=KYIV)
    assert kv(id=3, at=at, ids=frozenset({5, 1})) == "id=3 at=2024-01-02T08:00:00+02:00 ids=[1, 5]"


def test_kv_repr_for_plain_values():
    assert kv(name="Aspirin", status=None) == "name='Aspirin' status=None"


@pytest.fixture
def restore_loggers():
    names = ("medsync", "apscheduler", "aiosqlite")
    saved = {n: (logging.getLogger(n).level, list(logging.getLogger(n).handlers)) for n in names}
    yield
    for n, (level, handlers) in saved.items():
        lg = logging.getLogger(n)
        for h in lg.handlers:
            if h not in handlers:
                h.close()
        lg.setLevel(level)
        lg.handlers[:] = handlers


def test_setup_logging_writes_debug_trace_to_audit_file(tmp_path, restore_loggers):
    class Cfg:
        AUDIT_LOG_FILE = str(tmp_path / "logs" / "audit.log")
        LOG_LEVEL = "WARNING"

    log = setup_logging(Cfg)
    logging.getLogger("medsync.sync").debug("sync.upload.start " + kv(dirty=1))
    for h in log.handlers:
        h.flush()

    _, console_h = log.handlers
    assert console_h.level == logging.WARNING
    assert logging.getLogger("apscheduler").level == logging.WARNING
    assert "sync.upload.start dirty=1" in (tmp_path / "logs" / "audit.log").read_text()
