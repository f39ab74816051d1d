# medsync/tests/unit/test_merge.py
from datetime import date

from conftest import rec
from medsync.core.reconciler import merge, visible_on


def test_merge_preserves_device_state_and_takes_server_fields():
    existing = [rec(1, name="Old", time="08:00", notes="a", is_taken=True, last_taken_timestamp=111)]
    fetched = [rec(1, name="New", time="09:30", notes="b")]
    [m] = merge(existing, fetched)
    assert (m.name, m.time_to_take, m.notes) == ("New", "09:30", "b")
    assert m.is_taken is True
    assert m.last_taken_timestamp == 111
    assert m.is_dirty is False


def test_merge_removes_vanished_ids_and_adds_new_ones():
    existing = [rec(1), rec(2), rec(3)]
    fetched = [rec(1), rec(3), rec(4)]
    assert sorted(r.id for r in merge(existing, fetched)) == [1, 3, 4]


def test_merge_keeps_unsynced_edit_dirty():
    existing = [rec(1, is_taken=True, last_taken_timestamp=5, is_dirty=True), rec(2)]
    fetched = [rec(1, name="Renamed"), rec(2)]
    merged = {r.id: r for r in merge(existing, fetched)}
    assert merged[1].is_dirty is True
    assert merged[1].is_taken is True
    assert merged[2].is_dirty is False


def test_new_records_come_in_clean_and_untaken():
    [m] = merge([], [rec(9)])
    assert (m.is_taken, m.last_taken_timestamp, m.is_dirty) == (False, 0, False)


def test_visible_on_applies_weekday_mask():
    monday = date(2024, 1, 1)
    records = [
        rec(1),
        rec(2, weekdays=frozenset({1, 4})),
        rec(3, weekdays=frozenset({3, 5})),
    ]
    assert [r.id for r in visible_on(records, monday)] == [1, 2]
    # the view never mutates its input
    assert len(records) == 3
