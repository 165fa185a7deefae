"""Unit tests for the ordered message log."""

import pytest

from carechat.api.schemas import Message
from carechat.chat.message_log import MessageLog


def _msg(msg_id: str, sender: str = "user") -> Message:
    return Message(id=msg_id, sender=sender, content=f"content {msg_id}")


class TestAppend:

    def test_insertion_order_kept(self):
        log = MessageLog()
        for i in range(3):
            log.append(_msg(str(i)))
        assert [m.id for m in log] == ["0", "1", "2"]

    def test_duplicate_id_rejected(self):
        log = MessageLog([_msg("a")])
        with pytest.raises(ValueError):
            log.append(_msg("a"))

    def test_seeded_duplicates_rejected(self):
        with pytest.raises(ValueError):
            MessageLog([_msg("a"), _msg("a")])


class TestRemove:

    def test_removes_only_target(self):
        log = MessageLog([_msg("a"), _msg("b"), _msg("c")])
        removed = log.remove("b")
        assert removed.id == "b"
        assert [m.id for m in log] == ["a", "c"]
        assert "b" not in log

    def test_missing_id_returns_none(self):
        log = MessageLog([_msg("a")])
        assert log.remove("zzz") is None
        assert len(log) == 1


class TestListeners:

    def test_notified_on_every_length_change(self):
        log = MessageLog()
        lengths = []
        log.subscribe(lengths.append)
        log.append(_msg("a"))
        log.append(_msg("b"))
        log.remove("a")
        assert lengths == [1, 2, 1]

    def test_unsubscribe(self):
        log = MessageLog()
        lengths = []
        unsubscribe = log.subscribe(lengths.append)
        unsubscribe()
        log.append(_msg("a"))
        assert lengths == []

    def test_snapshot_is_a_copy(self):
        log = MessageLog([_msg("a")])
        snap = log.snapshot()
        snap.clear()
        assert len(log) == 1
