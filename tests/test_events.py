"""
事件通知测试
"""
import pytest

from salesforce_sync.monitor.events import EventNotifier, Severity, SyncEvent


class TestEventNotifier:
    """事件通知器测试"""

    def test_observers_receive_events(self):
        notifier = EventNotifier()
        received = []
        notifier.subscribe(received.append)

        notifier.notice("Pulled {count} records", count=3)
        notifier.error("Push failed", exception=RuntimeError("boom"))

        assert [e.severity for e in received] == [Severity.NOTICE, Severity.ERROR]
        assert received[0].render() == "Pulled 3 records"
        assert isinstance(received[1].exception, RuntimeError)

    def test_min_severity(self):
        notifier = EventNotifier.from_level_name("warning")
        received = []
        notifier.subscribe(received.append)

        assert notifier.notice("ignored") is None
        notifier.warning("kept")

        assert len(received) == 1
        assert received[0].severity == Severity.WARNING

    def test_failing_observer_does_not_break_others(self):
        notifier = EventNotifier()
        received = []

        def broken(event):
            raise RuntimeError("observer down")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)
        notifier.error("still delivered")

        assert len(received) == 1

    def test_unknown_severity(self):
        with pytest.raises(ValueError):
            Severity.from_name("fatal")

    def test_render_missing_placeholder(self):
        event = SyncEvent(Severity.NOTICE, "Mapping {mapping}", context={"other": 1})
        assert event.render() == "Mapping {mapping}"
        assert event.to_dict()["severity"] == "notice"
