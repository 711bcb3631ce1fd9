"""Tests for SubscriptionReconciler."""

from polybook.datafeed.subscriptions import SubscriptionReconciler


class FakeSender:
    def __init__(self, is_open: bool = True) -> None:
        self.is_open = is_open
        self.frames: list[dict] = []

    def send_json(self, payload) -> bool:
        self.frames.append(payload)
        return True


class TestReconcile:
    def test_diff_is_minimal(self):
        sender = FakeSender()
        reconciler = SubscriptionReconciler(sender)
        reconciler.set_desired({"A", "B"})
        sender.frames.clear()

        removed, added = reconciler.set_desired({"B", "C"})

        assert sender.frames == [
            {"assets_ids": ["A"], "type": "unsubscribe"},
            {"assets_ids": ["C"], "type": "market"},
        ]
        assert removed == {"A"}
        assert added == {"C"}
        assert reconciler.subscribed == {"B", "C"}

    def test_one_frame_per_direction(self):
        sender = FakeSender()
        reconciler = SubscriptionReconciler(sender)
        reconciler.set_desired({"A", "B", "C"})

        assert sender.frames == [{"assets_ids": ["A", "B", "C"], "type": "market"}]

    def test_no_change_sends_nothing(self):
        sender = FakeSender()
        reconciler = SubscriptionReconciler(sender)
        reconciler.set_desired({"A"})
        sender.frames.clear()

        reconciler.set_desired({"A"})

        assert sender.frames == []

    def test_deferred_while_closed(self):
        sender = FakeSender(is_open=False)
        reconciler = SubscriptionReconciler(sender)

        removed, added = reconciler.set_desired({"A"})

        assert sender.frames == []
        assert removed == added == frozenset()
        assert reconciler.desired == {"A"}
        assert reconciler.subscribed == frozenset()

        sender.is_open = True
        reconciler.reconcile()

        assert sender.frames == [{"assets_ids": ["A"], "type": "market"}]
        assert reconciler.subscribed == {"A"}

    def test_reset_resubscribes_from_scratch(self):
        sender = FakeSender()
        reconciler = SubscriptionReconciler(sender)
        reconciler.set_desired({"A", "B"})
        sender.frames.clear()

        reconciler.reset()
        reconciler.reconcile()

        assert sender.frames == [{"assets_ids": ["A", "B"], "type": "market"}]

    def test_deselect_everything(self):
        sender = FakeSender()
        reconciler = SubscriptionReconciler(sender)
        reconciler.set_desired({"A"})
        sender.frames.clear()

        reconciler.set_desired(())

        assert sender.frames == [{"assets_ids": ["A"], "type": "unsubscribe"}]
        assert reconciler.subscribed == frozenset()
        assert not reconciler.wants("A")
