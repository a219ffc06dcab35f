import asyncio
import copy
import json

from shopfloor.schemas.remote import RemoteResponse, command_body
from shopfloor.services.errors import RemoteError


class FakeRemoteBackend:
    """In-memory stand-in for the sheet backend, applying writes the way it does."""

    def __init__(self, venues=None, sessions=None, history=None):
        self.data = {
            "venues": list(venues or []),
            "resourceSessions": list(sessions or []),
            "resourceHistory": list(history or []),
        }
        self.sent = []
        self.fetches = 0
        self.fail_message = None
        self.gate: asyncio.Event | None = None

    async def fetch_all(self):
        self.fetches += 1
        return {"data": copy.deepcopy(self.data)}

    async def send(self, command):
        body = command_body(command)
        self.sent.append(body)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_message is not None:
            raise RemoteError(self.fail_message)
        self._apply(body)
        return RemoteResponse(status="success")

    def _session(self, session_id):
        for row in self.data["resourceSessions"]:
            if row["id"] == session_id:
                return row
        raise RemoteError(f"session {session_id} not found")

    def _apply(self, body):
        payload = {key: value for key, value in body.items() if key != "action"}
        action = body["action"]
        if action == "bookVenue":
            self.data["venues"].append(payload)
        elif action == "cancelVenue":
            for row in list(self.data["venues"]):
                if row["id"] != payload["id"]:
                    continue
                if payload["datesToRemove"]:
                    row["excludedDates"] = sorted(set(row.get("excludedDates") or []) | set(payload["datesToRemove"]))
                else:
                    self.data["venues"].remove(row)
        elif action == "borrowResource":
            self.data["resourceSessions"].insert(0, payload)
        elif action == "transferResource":
            session = self._session(payload["sessionId"])
            session["transferLogs"].append({"from": payload["from"], "to": payload["to"], "time": payload["time"]})
        elif action == "returnResource":
            session = self._session(payload["sessionId"])
            for item_id, detail in payload["itemDetails"].items():
                session["returnedItems"][item_id] = {
                    **detail,
                    "returner": payload["returner"],
                    "time": payload["returnTime"],
                }
            self.data["resourceHistory"].insert(
                0,
                {
                    "id": f"h{len(self.data['resourceHistory']) + 1}",
                    "sessionId": session["id"],
                    "borrower": session["borrower"],
                    "borrowTime": session["borrowTime"],
                    "returner": payload["returner"],
                    "returnTime": payload["returnTime"],
                    "notes": payload["notes"],
                    "transferLogs": json.dumps(session["transferLogs"], ensure_ascii=False),
                    "status_json": json.dumps(payload["itemDetails"], ensure_ascii=False),
                },
            )
            if all(item_id in session["returnedItems"] for item_id in session["items"]):
                self.data["resourceSessions"].remove(session)
