from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from shopfloor.models.records import Booking, BorrowSession, ReturnedItemState
from shopfloor.schemas.bookings import BookingCreateRequest
from shopfloor.schemas.remote import (
    BookVenueCommand,
    BorrowItemsCommand,
    CancelBookingCommand,
    RemoteResponse,
    ReturnImage,
    ReturnItemsCommand,
    TransferItemsCommand,
    UploadImageCommand,
)
from shopfloor.services.audit_service import AuditTrail
from shopfloor.services.booking_service import CancellationProposal, apply_cancellation, build_booking, require_cancellation
from shopfloor.services.custody_service import CustodyLedger, ReturnOutcome
from shopfloor.services.errors import LocalValidationError, MutationInFlightError, PayloadParseError, RemoteError
from shopfloor.services.image_service import build_return_images, prepare_upload
from shopfloor.services.normalize_service import RemoteDataset, format_timestamp, normalize_dataset
from shopfloor.services.reservation_store import ReservationStore
from shopfloor.settings import local_now

LOGGER = logging.getLogger("shopfloor.sync")

MAX_FAILURES = 50


@dataclass
class SyncFailure:
    action: str
    entityKey: str
    message: str
    occurredAt: str


@dataclass
class PendingMutation:
    result: Any
    task: asyncio.Task


class SyncCoordinator:
    """Optimistic writes against the remote backend.

    Each mutation snapshots the store and the ledger, applies locally and
    returns at once. The remote call runs as a task on the running loop: on
    success the whole state is reloaded from the remote, on failure the
    snapshot of that one entity is put back and a SyncFailure is recorded.
    Only one unsettled mutation per entity key is allowed.
    """

    def __init__(
        self,
        client: Any,
        store: ReservationStore | None = None,
        ledger: CustodyLedger | None = None,
        audit: AuditTrail | None = None,
        max_failures: int = MAX_FAILURES,
    ):
        self.client = client
        self.store = store if store is not None else ReservationStore()
        self.ledger = ledger if ledger is not None else CustodyLedger()
        self.audit = audit
        self._pending: dict[str, asyncio.Task] = {}
        self._failures: deque[SyncFailure] = deque(maxlen=max_failures)
        self._issued_generation = 0
        self._applied_generation = 0
        self.last_reload_at: str | None = None

    @property
    def pending_keys(self) -> list[str]:
        return sorted(self._pending)

    def failures(self) -> list[SyncFailure]:
        return list(self._failures)

    async def _audit(self, entity_key: str, action: str, details: str | None = None) -> None:
        if self.audit is not None:
            await asyncio.to_thread(self.audit.record, entity_key, action, details)

    def _snapshot(self) -> tuple:
        return self.store.snapshot(), self.ledger.snapshot()

    def _restore(self, snapshot: tuple) -> None:
        bookings, custody = snapshot
        self.store.restore(bookings)
        self.ledger.restore(custody)

    def _restore_entity(self, entity_key: str, snapshot: tuple) -> None:
        """Roll back only the booking or session named by `entity_key`."""
        bookings, custody = snapshot
        kind, _, entity_id = entity_key.partition(":")
        if kind == "booking":
            self.store.restore_one(entity_id, bookings)
        elif kind == "session":
            self.ledger.restore_session(entity_id, custody)
        else:
            raise ValueError(f"Unknown entity key {entity_key!r}")

    async def reload(self) -> RemoteDataset:
        self._issued_generation += 1
        generation = self._issued_generation
        LOGGER.info("Reconciliation #%s started", generation)
        payload = await self.client.fetch_all()
        dataset = normalize_dataset(payload)
        if generation < self._applied_generation:
            LOGGER.info(
                "Reconciliation #%s discarded; #%s is already applied",
                generation,
                self._applied_generation,
            )
            return dataset
        self._applied_generation = generation
        self.store.replace_all(dataset.bookings)
        self.ledger.replace_all(dataset.sessions, dataset.history)
        self.last_reload_at = format_timestamp(local_now())
        LOGGER.info(
            "Reconciliation #%s applied: %s bookings, %s sessions, %s history, %s skipped",
            generation,
            len(dataset.bookings),
            len(dataset.sessions),
            len(dataset.history),
            dataset.skipped,
        )
        return dataset

    def mutate(
        self,
        entity_key: str,
        local_mutation: Callable[[], Any],
        remote_operation: Callable[[Any], Awaitable[Any]],
        action: str,
    ) -> PendingMutation:
        """Apply `local_mutation` now and settle `remote_operation(result)` in the background.

        Must be called from inside a running event loop. A local exception
        leaves the state untouched and propagates to the caller.
        """
        if entity_key in self._pending:
            raise MutationInFlightError(entity_key)
        loop = asyncio.get_running_loop()
        snapshot = self._snapshot()
        try:
            result = local_mutation()
            remote_call = remote_operation(result)
        except Exception:
            self._restore(snapshot)
            raise
        LOGGER.info("Applied %s on %s optimistically", action, entity_key)

        task = loop.create_task(self._settle(entity_key, action, snapshot, remote_call))
        self._pending[entity_key] = task
        return PendingMutation(result=result, task=task)

    async def _settle(self, entity_key: str, action: str, snapshot: tuple, remote_call: Awaitable[Any]) -> bool:
        try:
            await self._audit(entity_key, f"{action}:apply")
            try:
                await remote_call
            except Exception as exc:
                # Other entities may have settled since the snapshot; leave them alone.
                self._restore_entity(entity_key, snapshot)
                message = str(exc) or exc.__class__.__name__
                self._failures.append(
                    SyncFailure(
                        action=action,
                        entityKey=entity_key,
                        message=message,
                        occurredAt=format_timestamp(local_now()),
                    )
                )
                LOGGER.warning("Rolled back %s on %s: %s", action, entity_key, message)
                await self._audit(entity_key, f"{action}:rollback", message)
                return False

            LOGGER.info("Remote confirmed %s on %s", action, entity_key)
            await self._audit(entity_key, f"{action}:confirm")
            try:
                await self.reload()
            except (RemoteError, PayloadParseError) as exc:
                # The write went through; the optimistic state stands until the next reload.
                LOGGER.warning("Reconciliation after %s on %s failed: %s", action, entity_key, exc)
            return True
        finally:
            self._pending.pop(entity_key, None)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending.values()), return_exceptions=True)

    def create_booking(self, draft: BookingCreateRequest) -> PendingMutation:
        booking = build_booking(self.store, draft)

        def apply() -> Booking:
            self.store.add(booking)
            return booking

        def send(created: Booking) -> Awaitable[RemoteResponse]:
            return self.client.send(BookVenueCommand(**created.model_dump()))

        return self.mutate(f"booking:{booking.id}", apply, send, "bookVenue")

    def cancel_booking(
        self,
        booking_id: str,
        dates: list[date],
        password: str,
        now: datetime | None = None,
    ) -> PendingMutation:
        def apply() -> CancellationProposal:
            booking = self.store.get(booking_id)
            if booking is None:
                raise LocalValidationError("BookingNotFound", f"Booking {booking_id} not found.")
            proposal = require_cancellation(booking, dates, password, now)
            apply_cancellation(self.store, booking_id, proposal)
            return proposal

        def send(proposal: CancellationProposal) -> Awaitable[RemoteResponse]:
            command = CancelBookingCommand(
                id=booking_id,
                password=password,
                datesToRemove=[] if proposal.full_deletion else proposal.dates,
            )
            return self.client.send(command)

        return self.mutate(f"booking:{booking_id}", apply, send, "cancelVenue")

    def borrow(self, items: list[str], borrower: str, dept: str = "", now: datetime | None = None) -> PendingMutation:
        session_id = uuid.uuid4().hex[:9]

        def apply() -> BorrowSession:
            return self.ledger.borrow(items, borrower, dept, now, session_id=session_id)

        def send(session: BorrowSession) -> Awaitable[RemoteResponse]:
            command = BorrowItemsCommand(
                id=session.id,
                items=session.items,
                borrower=session.borrower,
                dept=session.dept,
                borrowTime=session.borrowTime,
            )
            return self.client.send(command)

        return self.mutate(f"session:{session_id}", apply, send, "borrowResource")

    def transfer(self, session_id: str, new_holder: str, now: datetime | None = None) -> PendingMutation:
        def apply() -> BorrowSession:
            return self.ledger.transfer(session_id, new_holder, now)

        def send(session: BorrowSession) -> Awaitable[RemoteResponse]:
            handoff = session.transferLogs[-1]
            command = TransferItemsCommand(sessionId=session.id, from_=handoff.from_, to=handoff.to, time=handoff.time)
            return self.client.send(command)

        return self.mutate(f"session:{session_id}", apply, send, "transferResource")

    def return_items(
        self,
        session_id: str,
        item_details: dict[str, ReturnedItemState],
        returner: str,
        notes: str = "",
        now: datetime | None = None,
    ) -> PendingMutation:
        def apply() -> tuple[ReturnOutcome, list[dict[str, str]]]:
            images = build_return_images({item_id: detail.photos for item_id, detail in item_details.items()})
            outcome = self.ledger.return_items(session_id, item_details, returner, notes, now)
            return outcome, images

        def send(applied: tuple[ReturnOutcome, list[dict[str, str]]]) -> Awaitable[RemoteResponse]:
            outcome, images = applied
            entry = outcome.history_entry
            command = ReturnItemsCommand(
                sessionId=session_id,
                returner=entry.returner,
                returnTime=entry.returnTime,
                itemDetails=entry.items,
                notes=entry.notes,
                images=[ReturnImage(**image) for image in images],
            )
            return self.client.send(command)

        pending = self.mutate(f"session:{session_id}", apply, send, "returnResource")
        pending.result = pending.result[0]
        return pending

    async def upload_image(self, file_name: str, mime_type: str, payload: str) -> RemoteResponse:
        prepared = prepare_upload(file_name, mime_type, payload)
        LOGGER.info("Uploading image %s", prepared["fileName"])
        return await self.client.send(UploadImageCommand(**prepared))
