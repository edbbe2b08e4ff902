"""Unit tests for momentum.process.reminders."""

from concurrent.futures import Future
from datetime import timedelta

from conftest import TODAY, TOMORROW
from momentum.integrations.notifications import NotificationBatch
from momentum.process.reminders import DueDateReminders


def delivered_batch(recipients, notification_type, message):
    futures = []
    for _ in dict.fromkeys(recipients):
        future = Future()
        future.set_result(True)
        futures.append(future)
    return NotificationBatch(futures)


class TestDueDateReminders:
    def test_notifies_assignees_of_tasks_due_tomorrow(self, session_factory, notifier, teams, clock, make_task):
        notifier.notify_many.side_effect = delivered_batch
        make_task(name="Due", assignees=["alice", "bob"], team_id="t1", due_date=TOMORROW)
        make_task(name="Later", due_date=TODAY + timedelta(days=5))
        make_task(name="Done", due_date=TOMORROW, is_archived=True)

        sent = DueDateReminders(session_factory, notifier, teams=teams, clock=clock).run()

        assert sent == 2
        notifier.notify_many.assert_called_once()
        recipients, notification_type, message = notifier.notify_many.call_args.args
        assert recipients == ["alice", "bob"]
        assert notification_type == "task_due_reminder"
        assert message["data"]["teamName"] == "Home"

    def test_one_task_failure_does_not_stop_others(self, session_factory, notifier, clock, make_task):
        calls = []

        def flaky(recipients, notification_type, message):
            calls.append(message["data"]["taskName"])
            if len(calls) == 1:
                raise RuntimeError("executor shut down")
            return delivered_batch(recipients, notification_type, message)

        notifier.notify_many.side_effect = flaky
        make_task(name="First", due_date=TOMORROW)
        make_task(name="Second", due_date=TOMORROW)

        sent = DueDateReminders(session_factory, notifier, clock=clock).run()
        assert len(calls) == 2
        assert sent == 1

    def test_nothing_due(self, session_factory, notifier, clock):
        assert DueDateReminders(session_factory, notifier, clock=clock).run() == 0
        notifier.notify_many.assert_not_called()
