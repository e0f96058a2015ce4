from __future__ import annotations

from dataclasses import replace

import pytest

from chat_sync.domain.value_objects.enums import EventSource, MessageDirection, MessageStatus
from chat_sync.domain.value_objects.ids import Pending, TempMessageId
from chat_sync.services.reconciler import EventReconciler
from tests.conftest import make_message


def _pending(temp_id: str = "t1", seconds: float = 0.0):
    base = make_message("x", direction=MessageDirection.OUTBOUND, status=MessageStatus.SENDING, seconds=seconds)
    return replace(base, ref=Pending(TempMessageId(temp_id)))


@pytest.fixture
def reconciler():
    return EventReconciler("c1")


def test_same_id_through_every_transport_is_one_entry(reconciler):
    reconciler.merge_history([make_message("m1")])
    reconciler.apply(make_message("m1"), EventSource.PUSH)
    reconciler.apply(make_message("m1"), EventSource.FEED)
    assert [m.id for m in reconciler.messages] == ["m1"]


def test_duplicate_returns_false(reconciler):
    assert reconciler.apply(make_message("m1")) is True
    assert reconciler.apply(make_message("m1")) is False


def test_ordered_by_timestamp_with_arrival_tiebreak(reconciler):
    reconciler.apply(make_message("late", seconds=10))
    reconciler.apply(make_message("early", seconds=1))
    reconciler.apply(make_message("tie-a", seconds=5))
    reconciler.apply(make_message("tie-b", seconds=5))
    assert [m.id for m in reconciler.messages] == ["early", "tie-a", "tie-b", "late"]


def test_update_in_place_preserves_position(reconciler):
    reconciler.merge_history([make_message("m1", seconds=1), make_message("m2", seconds=2)])
    updated = make_message("m2", seconds=99, status=MessageStatus.DELIVERED, content="edited")
    assert reconciler.apply(updated) is True
    assert [m.id for m in reconciler.messages] == ["m1", "m2"]
    m2 = reconciler.get("m2")
    assert m2.status == MessageStatus.DELIVERED
    assert m2.content == "edited"


def test_status_never_regresses(reconciler):
    reconciler.apply(make_message("m1"))
    reconciler.apply_status(["m1"], MessageStatus.READ)
    assert reconciler.apply_status(["m1"], MessageStatus.DELIVERED) == []
    reconciler.apply(make_message("m1", status=MessageStatus.DELIVERED))
    assert reconciler.get("m1").status == MessageStatus.READ


def test_status_for_unknown_id_is_ignored(reconciler):
    assert reconciler.apply_status(["ghost"], MessageStatus.READ) == []
    assert len(reconciler) == 0


def test_pending_messages_are_rejected_by_apply(reconciler):
    with pytest.raises(ValueError):
        reconciler.apply(_pending())


def test_confirm_swaps_at_same_position(reconciler):
    reconciler.apply(make_message("before", seconds=-1))
    reconciler.insert_optimistic(_pending("t1"))
    reconciler.apply(make_message("after", seconds=1))
    confirmed = make_message("m9", direction=MessageDirection.OUTBOUND, seconds=30)
    assert reconciler.confirm("t1", confirmed) is True
    assert [m.id for m in reconciler.messages] == ["before", "m9", "after"]
    assert "t1" not in reconciler
    assert reconciler.is_retired("t1")
    assert reconciler.server_id_for("t1") == "m9"


def test_confirm_after_echo_merges_into_existing(reconciler):
    reconciler.insert_optimistic(_pending("t1"))
    reconciler.apply(make_message("m1", direction=MessageDirection.OUTBOUND, status=MessageStatus.DELIVERED))
    assert len(reconciler) == 2
    reconciler.confirm("t1", make_message("m1", direction=MessageDirection.OUTBOUND))
    assert [m.id for m in reconciler.messages] == ["m1"]
    assert reconciler.get("m1").status == MessageStatus.DELIVERED


def test_confirm_keeps_status_already_past_sent(reconciler):
    reconciler.insert_optimistic(_pending("t1"))
    reconciler.apply_status(["t1"], MessageStatus.READ)
    assert reconciler.confirm("t1", make_message("m1", direction=MessageDirection.OUTBOUND)) is True
    assert [m.id for m in reconciler.messages] == ["m1"]
    assert reconciler.get("m1").status == MessageStatus.READ
    assert reconciler.get("m1").is_confirmed


def test_echo_after_confirm_is_dropped(reconciler):
    reconciler.insert_optimistic(_pending("t1"))
    reconciler.confirm("t1", make_message("m1", direction=MessageDirection.OUTBOUND))
    assert reconciler.apply(make_message("m1", direction=MessageDirection.OUTBOUND)) is False
    assert len(reconciler) == 1


def test_temp_id_retires_exactly_once(reconciler):
    reconciler.insert_optimistic(_pending("t1"))
    assert reconciler.confirm("t1", make_message("m1")) is True
    assert reconciler.confirm("t1", make_message("m2")) is False
    with pytest.raises(ValueError):
        reconciler.insert_optimistic(_pending("t1"))


def test_mark_failed_only_from_sending(reconciler):
    reconciler.insert_optimistic(_pending("t1"))
    failed = reconciler.mark_failed("t1")
    assert failed.status == MessageStatus.FAILED
    assert reconciler.mark_failed("t1") is None


def test_remove_and_retire(reconciler):
    reconciler.insert_optimistic(_pending("t1"))
    reconciler.remove("t1")
    reconciler.retire("t1")
    assert len(reconciler) == 0
    assert reconciler.is_retired("t1")
