import json
import os
import unittest
import urllib.error
from unittest import mock

os.environ.setdefault("SHOPFLOOR_AUDIT_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SHOPFLOOR_SYNC_ON_STARTUP", "false")
os.environ.setdefault("SHOPFLOOR_TIMEZONE", "Asia/Taipei")
os.environ.setdefault("REMOTE_API_URL", "http://remote.invalid/exec")

from pydantic import BaseModel

from shopfloor.schemas.remote import CancelBookingCommand, TransferItemsCommand, parse_command
from shopfloor.services.errors import PayloadParseError, RemoteError
from shopfloor.services.remote_backend_service import RemoteBackendClient


def fake_response(payload, status=200):
    response = mock.MagicMock()
    response.__enter__.return_value = response
    response.status = status
    response.read.return_value = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return response


class RemoteBackendClientTests(unittest.TestCase):
    def setUp(self):
        self.client = RemoteBackendClient(base_url="http://remote.invalid/exec/", timeout=None)

    @mock.patch("urllib.request.urlopen")
    def test_fetch_all_is_a_plain_get(self, urlopen):
        urlopen.return_value = fake_response({"data": {"venues": []}})
        payload = self.client.fetch_all_sync()
        self.assertEqual(payload, {"data": {"venues": []}})
        request = urlopen.call_args.args[0]
        self.assertEqual(request.get_method(), "GET")
        self.assertEqual(request.full_url, "http://remote.invalid/exec")
        self.assertNotIn("timeout", urlopen.call_args.kwargs)

    @mock.patch("urllib.request.urlopen")
    def test_send_posts_action_body_as_text_plain(self, urlopen):
        urlopen.return_value = fake_response({"status": "success"})
        command = TransferItemsCommand(sessionId="s1", from_="A", to="B", time="2024/06/01 10:00")
        response = self.client.send_sync(command)
        self.assertEqual(response.status, "success")

        request = urlopen.call_args.args[0]
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(request.get_header("Content-type"), "text/plain;charset=utf-8")
        self.assertEqual(
            json.loads(request.data.decode("utf-8")),
            {"action": "transferResource", "sessionId": "s1", "from": "A", "to": "B", "time": "2024/06/01 10:00"},
        )

    @mock.patch("urllib.request.urlopen")
    def test_unknown_actions_never_leave_the_process(self, urlopen):
        class PurgeCommand(BaseModel):
            action: str = "deleteEverything"

        with self.assertRaises(PayloadParseError):
            self.client.send_sync(PurgeCommand())
        urlopen.assert_not_called()

    @mock.patch("urllib.request.urlopen")
    def test_timeout_is_forwarded_when_configured(self, urlopen):
        urlopen.return_value = fake_response({"status": "success"})
        RemoteBackendClient(base_url="http://remote.invalid/exec", timeout=5.0).send_sync(
            CancelBookingCommand(id="bk1", password="12345")
        )
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 5.0)

    @mock.patch("urllib.request.urlopen")
    def test_error_status_becomes_remote_error_with_message(self, urlopen):
        urlopen.return_value = fake_response({"status": "error", "message": "密碼錯誤"})
        with self.assertRaises(RemoteError) as ctx:
            self.client.send_sync(CancelBookingCommand(id="bk1", password="12345"))
        self.assertEqual(str(ctx.exception), "密碼錯誤")

    @mock.patch("urllib.request.urlopen")
    def test_transport_failures_become_remote_errors(self, urlopen):
        cases = [
            urllib.error.URLError("connection refused"),
            urllib.error.HTTPError("http://remote.invalid/exec", 500, "boom", {}, None),
            TimeoutError("timed out"),
        ]
        for exc in cases:
            with self.subTest(exc=type(exc).__name__):
                urlopen.side_effect = exc
                with self.assertRaises(RemoteError):
                    self.client.fetch_all_sync()

    @mock.patch("urllib.request.urlopen")
    def test_unreadable_bodies_become_remote_errors(self, urlopen):
        urlopen.return_value = fake_response(b"<html>oops</html>")
        with self.assertRaises(RemoteError):
            self.client.fetch_all_sync()

        urlopen.return_value = fake_response({"ok": True})
        with self.assertRaises(RemoteError):
            self.client.send_sync(CancelBookingCommand(id="bk1", password="12345"))


class RemoteSchemaTests(unittest.TestCase):
    def test_commands_are_a_closed_union(self):
        command = parse_command({"action": "cancelVenue", "id": "bk1", "password": "12345", "datesToRemove": ["2024-06-02"]})
        self.assertIsInstance(command, CancelBookingCommand)
        with self.assertRaises(PayloadParseError):
            parse_command({"action": "deleteEverything"})
        with self.assertRaises(PayloadParseError):
            parse_command({"action": "cancelVenue", "id": "bk1", "password": "12345", "extra": 1})


class RemoteBackendAsyncTests(unittest.IsolatedAsyncioTestCase):
    @mock.patch("urllib.request.urlopen")
    async def test_async_send_runs_in_a_worker_thread(self, urlopen):
        urlopen.return_value = fake_response({"status": "success", "url": "https://img/e1_0.jpg"})
        client = RemoteBackendClient(base_url="http://remote.invalid/exec", timeout=None)
        response = await client.send(CancelBookingCommand(id="bk1", password="12345"))
        self.assertEqual(response.model_extra, {"url": "https://img/e1_0.jpg"})


if __name__ == "__main__":
    unittest.main()
