"""
Smoke tests for the demo scenarios run by ``cli.py demo``.
"""

from notifications.demo import run_guest_responses_demo, run_invite_sent_demo, run_settings_demo
from shared.models import NotificationType


def test_guest_responses_demo(capsys):
    notifications = run_guest_responses_demo()

    assert {n.type for n in notifications} == {NotificationType.GUEST_CONFIRMED, NotificationType.GUEST_DECLINED}
    output = capsys.readouterr().out
    assert "RESULT: 2 notifications, 2 unread" in output
    assert "[ana's browser]" in output


def test_invite_sent_demo(capsys):
    notifications = run_invite_sent_demo()

    assert [n.type for n in notifications] == [NotificationType.INVITE_SENT]
    assert "User not connected via WebSocket" in capsys.readouterr().out


def test_settings_demo(capsys):
    notifications = run_settings_demo()

    assert len(notifications) == 1
    assert "Emails logged: 0" in capsys.readouterr().out
