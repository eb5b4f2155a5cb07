"""
OR Scheduling Agent - Notification Sink and Authorizer Tests

Run with: pytest agents/or_scheduling/tests/test_notifications.py -v
"""

import logging

import pytest

from agents.or_scheduling.auth import Action, AllowAllAuthorizer, RoleAuthorizer
from agents.or_scheduling.exceptions import AuthorizationError
from agents.or_scheduling.models import Actor, StaffRole
from agents.or_scheduling.notifications import (
    FanOutNotificationSink,
    InMemoryNotificationSink,
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    NotificationType,
)


def make_notification(title="Surgery scheduled", type=NotificationType.INFO):
    return Notification(facility_id="test-hospital", title=title, message="details", type=type)


class TestNotificationSinks:
    def test_in_memory_history_is_bounded(self):
        sink = InMemoryNotificationSink(max_history=3)
        for i in range(5):
            sink.send(make_notification(title=f"n{i}"))

        assert [n.title for n in sink.recent()] == ["n2", "n3", "n4"]
        assert [n.title for n in sink.recent(limit=1)] == ["n4"]

    def test_warnings_are_logged_at_warning_level(self, caplog):
        with caplog.at_level(logging.INFO, logger="agents.or_scheduling.notifications"):
            LoggingNotificationSink().send(make_notification(type=NotificationType.EMERGENCY))
            LoggingNotificationSink().send(make_notification(type=NotificationType.SUCCESS))

        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]

    def test_fan_out_survives_a_failing_sink(self):
        class Broken(NotificationSink):
            def send(self, notification):
                raise ConnectionError("push gateway unreachable")

        feed = InMemoryNotificationSink()
        FanOutNotificationSink([Broken(), feed]).send(make_notification())

        assert len(feed.recent()) == 1

    def test_serialisation(self):
        data = make_notification(type=NotificationType.WARNING).to_dict()
        assert data["type"] == "warning"
        assert data["category"] == "schedule"


class TestAuthorizers:
    def test_allow_all(self):
        AllowAllAuthorizer().authorize(None, Action.APPROVE)

    @pytest.mark.parametrize("role,action", [
        (StaffRole.OR_MANAGER, Action.APPROVE),
        (StaffRole.SCHEDULER, Action.AUTO_PLACE),
        (StaffRole.SURGEON, Action.TRANSITION),
    ])
    def test_permitted(self, role, action):
        RoleAuthorizer().authorize(Actor("u1", role), action)

    @pytest.mark.parametrize("actor,action", [
        (None, Action.PLACE),
        (Actor("u1"), Action.PLACE),
        (Actor("u1", StaffRole.NURSE), Action.TRANSITION),
        (Actor("u1", StaffRole.SURGEON), Action.PLACE),
        (Actor("u1", StaffRole.SCHEDULER), Action.APPROVE),
    ])
    def test_denied(self, actor, action):
        with pytest.raises(AuthorizationError):
            RoleAuthorizer().authorize(actor, action)

    def test_custom_permission_table(self):
        authorizer = RoleAuthorizer({StaffRole.NURSE: frozenset({Action.TRANSITION})})
        authorizer.authorize(Actor("u1", StaffRole.NURSE), Action.TRANSITION)
        with pytest.raises(AuthorizationError):
            authorizer.authorize(Actor("u2", StaffRole.OR_MANAGER), Action.TRANSITION)
