from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from shopfloor.models.catalog import MAX_PHOTOS_PER_ITEM, RESOURCES, RESOURCES_BY_ID, requires_return_photo, serialize_resource
from shopfloor.models.records import (
    BorrowSession,
    HistoryEntry,
    ItemReturnDetail,
    ReturnedItemState,
    TransferLog,
    dump_record,
)
from shopfloor.services.errors import LocalValidationError
from shopfloor.services.normalize_service import format_timestamp
from shopfloor.settings import local_now


@dataclass
class ReturnOutcome:
    updated_session: BorrowSession
    history_entry: HistoryEntry
    session_closed: bool


def current_holder(session: BorrowSession) -> str:
    if session.transferLogs:
        return session.transferLogs[-1].to
    return session.borrower


def outstanding_items(session: BorrowSession) -> list[str]:
    return [item_id for item_id in session.items if item_id not in session.returnedItems]


def is_closed(session: BorrowSession) -> bool:
    return all(item_id in session.returnedItems for item_id in session.items)


def transfer_session(session: BorrowSession, new_holder: str, now: datetime | None = None) -> BorrowSession:
    holder = (new_holder or "").strip()
    if not holder:
        raise LocalValidationError("MissingHolder", "newHolder is required.")
    updated = session.model_copy(deep=True)
    updated.transferLogs = [
        *session.transferLogs,
        TransferLog(from_=current_holder(session), to=holder, time=format_timestamp(now or local_now())),
    ]
    return updated


def return_session_items(
    session: BorrowSession,
    item_details: dict[str, ReturnedItemState],
    returner: str,
    notes: str = "",
    now: datetime | None = None,
) -> ReturnOutcome:
    """Merge one return event into `session` and snapshot it into a HistoryEntry.

    The HistoryEntry only lists the items handed back in this call; the
    transfer chain is copied as it stands, so later handoffs never alter it.
    """
    returner_name = (returner or "").strip()
    if not returner_name:
        raise LocalValidationError("MissingField", "returner is required.")
    if not item_details:
        raise LocalValidationError("EmptySelection", "Select at least one item to return.")
    for item_id, detail in item_details.items():
        if item_id not in session.items:
            raise LocalValidationError("ItemNotInSession", f"Item {item_id} is not part of session {session.id}.")
        if item_id in session.returnedItems:
            raise LocalValidationError("ItemAlreadyReturned", f"Item {item_id} has already been returned.")
        if len(detail.photos) > MAX_PHOTOS_PER_ITEM:
            raise LocalValidationError("TooManyPhotos", f"At most {MAX_PHOTOS_PER_ITEM} photos per item.")
        if requires_return_photo(item_id) and not detail.photos:
            raise LocalValidationError("PhotoRequired", f"Item {item_id} must be returned with at least one photo.")

    stamp = format_timestamp(now or local_now())
    updated = session.model_copy(deep=True)
    for item_id, detail in item_details.items():
        updated.returnedItems[item_id] = ItemReturnDetail(
            isIntact=detail.isIntact,
            photos=list(detail.photos),
            returner=returner_name,
            time=stamp,
        )

    entry = HistoryEntry(
        id=uuid.uuid4().hex[:9],
        sessionId=session.id,
        borrower=session.borrower,
        borrowTime=session.borrowTime,
        returner=returner_name,
        returnTime=stamp,
        notes=notes or "",
        transferLogs=list(session.transferLogs),
        items={
            item_id: ReturnedItemState(isIntact=detail.isIntact, photos=list(detail.photos))
            for item_id, detail in item_details.items()
        },
    )
    return ReturnOutcome(updated_session=updated, history_entry=entry, session_closed=is_closed(updated))


def find_double_custody(sessions: list[BorrowSession]) -> dict[str, list[str]]:
    """Items that are open in more than one session, mapped to those session ids."""
    seen: dict[str, list[str]] = {}
    for session in sessions:
        for item_id in outstanding_items(session):
            seen.setdefault(item_id, []).append(session.id)
    return {item_id: ids for item_id, ids in seen.items() if len(ids) > 1}


class CustodyLedger:
    def __init__(self, sessions: list[BorrowSession] | None = None, history: list[HistoryEntry] | None = None):
        self._sessions: list[BorrowSession] = []
        self._history: list[HistoryEntry] = []
        self.replace_all(sessions or [], history or [])

    def sessions(self) -> list[BorrowSession]:
        return [session.model_copy(deep=True) for session in self._sessions]

    def history(self, limit: int | None = None) -> list[HistoryEntry]:
        rows = list(self._history)
        if limit is not None:
            rows = rows[: max(limit, 0)]
        return [entry.model_copy(deep=True) for entry in rows]

    def get(self, session_id: str) -> BorrowSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session.model_copy(deep=True)
        return None

    def require(self, session_id: str) -> BorrowSession:
        session = self.get(session_id)
        if session is None:
            raise LocalValidationError("SessionNotFound", f"Borrow session {session_id} not found.")
        return session

    def borrowed_item_ids(self) -> set[str]:
        return {item_id for session in self._sessions for item_id in outstanding_items(session)}

    def open_session_for(self, item_id: str) -> BorrowSession | None:
        for session in self._sessions:
            if item_id in session.items and item_id not in session.returnedItems:
                return session.model_copy(deep=True)
        return None

    def holder_of(self, item_id: str) -> str | None:
        session = self.open_session_for(item_id)
        return current_holder(session) if session else None

    def borrow(
        self,
        items: list[str],
        borrower: str,
        dept: str = "",
        now: datetime | None = None,
        session_id: str | None = None,
    ) -> BorrowSession:
        borrower_name = (borrower or "").strip()
        if not borrower_name:
            raise LocalValidationError("MissingField", "borrower is required.")
        if not items:
            raise LocalValidationError("EmptySelection", "Select at least one item to borrow.")
        if len(set(items)) != len(items):
            raise LocalValidationError("DuplicateItem", "Each item can only be selected once.")
        unknown = [item_id for item_id in items if item_id not in RESOURCES_BY_ID]
        if unknown:
            raise LocalValidationError("UnknownItem", f"Unknown items: {', '.join(unknown)}")
        busy = sorted(set(items) & self.borrowed_item_ids())
        if busy:
            raise LocalValidationError("ItemUnavailable", f"Items already borrowed: {', '.join(busy)}")

        session = BorrowSession(
            id=session_id or uuid.uuid4().hex[:9],
            items=list(items),
            borrower=borrower_name,
            dept=(dept or "").strip(),
            borrowTime=format_timestamp(now or local_now()),
            transferLogs=[],
            returnedItems={},
        )
        self._sessions.insert(0, session.model_copy(deep=True))
        return session

    def transfer(self, session_id: str, new_holder: str, now: datetime | None = None) -> BorrowSession:
        updated = transfer_session(self.require(session_id), new_holder, now)
        self._put(updated)
        return updated

    def return_items(
        self,
        session_id: str,
        item_details: dict[str, ReturnedItemState],
        returner: str,
        notes: str = "",
        now: datetime | None = None,
    ) -> ReturnOutcome:
        outcome = return_session_items(self.require(session_id), item_details, returner, notes, now)
        if outcome.session_closed:
            self._sessions = [session for session in self._sessions if session.id != session_id]
        else:
            self._put(outcome.updated_session)
        self._history.insert(0, outcome.history_entry.model_copy(deep=True))
        return outcome

    def resource_board(self) -> list[dict]:
        rows = []
        for item in RESOURCES:
            payload = serialize_resource(item)
            holder = self.holder_of(item.id)
            payload["borrowed"] = holder is not None
            payload["holder"] = holder
            rows.append(payload)
        return rows

    def replace_all(self, sessions: list[BorrowSession], history: list[HistoryEntry]) -> None:
        self._sessions = [session.model_copy(deep=True) for session in sessions if not is_closed(session)]
        # Stamps are "YYYY/MM/DD HH:MM", so string order is time order.
        ordered = sorted(history, key=lambda entry: entry.returnTime, reverse=True)
        self._history = [entry.model_copy(deep=True) for entry in ordered]

    def snapshot(self) -> tuple[list[BorrowSession], list[HistoryEntry]]:
        return self.sessions(), self.history()

    def restore(self, snapshot: tuple[list[BorrowSession], list[HistoryEntry]]) -> None:
        sessions, history = snapshot
        self.replace_all(sessions, history)

    def restore_session(self, session_id: str, snapshot: tuple[list[BorrowSession], list[HistoryEntry]]) -> None:
        """Roll one session back to its snapshot state without touching other sessions."""
        sessions, history = snapshot
        remaining = [session for session in self._sessions if session.id != session_id]
        for position, session in enumerate(sessions):
            if session.id == session_id:
                remaining.insert(min(position, len(remaining)), session.model_copy(deep=True))
                break
        self._sessions = remaining
        known = {entry.id for entry in history}
        self._history = [
            entry for entry in self._history if entry.sessionId != session_id or entry.id in known
        ]

    def _put(self, updated: BorrowSession) -> None:
        for index, session in enumerate(self._sessions):
            if session.id == updated.id:
                self._sessions[index] = updated.model_copy(deep=True)
                return
        raise KeyError(updated.id)


def serialize_session(session: BorrowSession) -> dict:
    payload = dump_record(session)
    payload["currentHolder"] = current_holder(session)
    payload["outstandingItems"] = outstanding_items(session)
    return payload
