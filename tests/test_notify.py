import datetime
import httpx
from unittest.mock import MagicMock, patch
from kitroom.core.notify import Notifier
from kitroom.core.api import KitroomAPI
from kitroom.core.models import Request
from conftest import make_item


def test_without_a_relay_events_are_only_logged():
    with patch("kitroom.core.notify.httpx.Client") as client:
        assert Notifier(url="").notify("request_created", {"request_id": 1}) is False
        client.assert_not_called()

def test_unknown_events_are_dropped():
    with patch("kitroom.core.notify.httpx.Client") as client:
        assert Notifier(url="http://relay").notify("party", {}) is False
        client.assert_not_called()

def test_event_is_posted_to_the_relay():
    with patch("kitroom.core.notify.httpx.Client") as client:
        post = client.return_value.__enter__.return_value.post
        assert Notifier(url="http://relay/hook", timeout=2).notify(
            "request_approved", {"request_id": 3}) is True
        post.assert_called_once()
        args, kwargs = post.call_args
        assert args == ("http://relay/hook",)
        assert kwargs["json"] == {"event": "request_approved", "payload": {"request_id": 3}}
        assert kwargs["timeout"] == 2

def test_relay_errors_are_swallowed():
    with patch("kitroom.core.notify.httpx.Client") as client:
        post = client.return_value.__enter__.return_value.post
        post.side_effect = httpx.ConnectError("relay down")
        assert Notifier(url="http://relay").notify("penalty_assigned", {}) is False

def test_failing_notifier_does_not_undo_the_request(db_session, user):
    item = make_item(db_session)
    tomorrow = datetime.date.today() + datetime.timedelta(days=1)
    broken = MagicMock()
    broken.notify.side_effect = RuntimeError("mail queue full")
    with patch.object(KitroomAPI, "notifier", broken):
        request = KitroomAPI.create_request(db_session, user.id, item_id=item.id,
                                            start_date=tomorrow, end_date=tomorrow)
    broken.notify.assert_called_once()
    assert broken.notify.call_args[0][0] == "request_created"
    assert db_session.get(Request, request.id) is not None
