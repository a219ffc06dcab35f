import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from shopfloor.db.deps import get_audit_db
from shopfloor.db.session import SessionLocalAudit
from shopfloor.models.catalog import ALL_VENUES, CONFIDENTIAL_VENUES, GENERAL_VENUES, TIME_SLOTS
from shopfloor.models.records import ReturnedItemState, dump_record
from shopfloor.schemas.bookings import BookingCreateRequest, CancelBookingRequest
from shopfloor.schemas.resources import BorrowRequest, ImageUploadRequest, ReturnRequest, TransferRequest
from shopfloor.services.audit_service import AuditTrail, recent_audit
from shopfloor.services.booking_service import (
    bookings_for_applicant,
    cancellable_dates,
    monthly_used_days,
    serialize_booking,
    slot_board,
    valid_dates,
)
from shopfloor.services.custody_service import serialize_session
from shopfloor.services.errors import LocalValidationError, MutationInFlightError, PayloadParseError, RemoteError
from shopfloor.services.remote_backend_service import RemoteBackendClient
from shopfloor.services.sync_service import SyncCoordinator
from shopfloor.settings import CORS_ALLOW_CREDENTIALS, CORS_ALLOW_ORIGINS, HISTORY_VIEW_LIMIT, SYNC_ON_STARTUP

LOGGER = logging.getLogger("shopfloor.api")
NOT_FOUND_REASONS = {"BookingNotFound", "SessionNotFound"}

_COORDINATOR: SyncCoordinator | None = None


def get_coordinator() -> SyncCoordinator:
    global _COORDINATOR
    if _COORDINATOR is None:
        _COORDINATOR = SyncCoordinator(RemoteBackendClient(), audit=AuditTrail(SessionLocalAudit))
    return _COORDINATOR


@asynccontextmanager
async def lifespan(app: FastAPI):
    AuditTrail(SessionLocalAudit).ensure_schema()
    if SYNC_ON_STARTUP:
        try:
            await get_coordinator().reload()
        except (RemoteError, PayloadParseError, RuntimeError) as exc:
            LOGGER.error("Initial reconciliation failed: %s", exc)
    yield
    if _COORDINATOR is not None:
        await _COORDINATOR.drain()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)


def _local_error(exc: LocalValidationError) -> HTTPException:
    status_code = 404 if exc.reason in NOT_FOUND_REASONS else 400
    return HTTPException(status_code=status_code, detail={"reason": exc.reason, "message": exc.message})


def _in_flight_error(exc: MutationInFlightError) -> HTTPException:
    return HTTPException(status_code=409, detail={"reason": "MutationInFlight", "message": str(exc)})


def _history_limit(limit: int | None) -> int:
    if limit is None:
        return HISTORY_VIEW_LIMIT
    return max(1, min(limit, HISTORY_VIEW_LIMIT))


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_audit_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/state")
def get_state(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return {
        "bookings": [serialize_booking(booking) for booking in coordinator.store.all()],
        "sessions": [serialize_session(session) for session in coordinator.ledger.sessions()],
        "history": [dump_record(entry) for entry in coordinator.ledger.history(HISTORY_VIEW_LIMIT)],
        "pendingKeys": coordinator.pending_keys,
        "failures": [asdict(failure) for failure in coordinator.failures()],
        "lastReloadAt": coordinator.last_reload_at,
    }


@app.post("/api/sync/reload")
async def reload_state(coordinator: SyncCoordinator = Depends(get_coordinator)):
    try:
        dataset = await coordinator.reload()
    except (RemoteError, PayloadParseError) as exc:
        LOGGER.warning("Manual reconciliation failed: %s", exc)
        raise HTTPException(status_code=503, detail=f"remote_unavailable: {exc}") from exc
    return {
        "bookings": len(dataset.bookings),
        "sessions": len(dataset.sessions),
        "history": len(dataset.history),
        "skipped": dataset.skipped,
        "lastReloadAt": coordinator.last_reload_at,
    }


@app.get("/api/sync/failures")
def get_sync_failures(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return [asdict(failure) for failure in coordinator.failures()]


@app.get("/api/venues")
def get_venues():
    return {
        "general": GENERAL_VENUES,
        "confidential": CONFIDENTIAL_VENUES,
        "timeSlots": TIME_SLOTS,
    }


@app.get("/api/venues/usage")
def get_venue_usage(
    year: int = Query(..., ge=1970),
    month: int = Query(..., ge=1, le=12),
    venue: str | None = None,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    if venue is not None and venue not in ALL_VENUES:
        raise HTTPException(status_code=404, detail="Venue not found")
    return {
        "year": year,
        "month": month,
        "venue": venue,
        "usedDays": monthly_used_days(coordinator.store, year, month, venue),
    }


@app.get("/api/venues/{venue}/slots")
def get_venue_slots(venue: str, date_value: date = Query(..., alias="date"), coordinator: SyncCoordinator = Depends(get_coordinator)):
    if venue not in ALL_VENUES:
        raise HTTPException(status_code=404, detail="Venue not found")
    return {
        "venue": venue,
        "date": date_value.isoformat(),
        "slots": slot_board(coordinator.store, venue, date_value),
    }


@app.get("/api/bookings")
def get_bookings(
    applicant: str | None = None,
    date_value: date | None = Query(None, alias="date"),
    venue: str | None = None,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    if applicant:
        return bookings_for_applicant(coordinator.store, applicant.strip())
    if date_value is not None:
        rows = coordinator.store.covering(date_value, venue)
    elif venue:
        rows = coordinator.store.for_venue(venue)
    else:
        rows = coordinator.store.all()
    return [serialize_booking(booking) for booking in rows]


@app.post("/api/bookings")
async def create_booking(payload: BookingCreateRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    try:
        pending = coordinator.create_booking(payload)
    except LocalValidationError as exc:
        raise _local_error(exc) from exc
    except MutationInFlightError as exc:
        raise _in_flight_error(exc) from exc
    return {"booking": serialize_booking(pending.result), "sync": "pending"}


@app.get("/api/bookings/{booking_id}/cancellable-dates")
def get_cancellable_dates(booking_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    booking = coordinator.store.get(booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return {
        "bookingId": booking.id,
        "validDates": [day.isoformat() for day in valid_dates(booking)],
        "cancellableDates": [day.isoformat() for day in cancellable_dates(booking)],
    }


@app.post("/api/bookings/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    payload: CancelBookingRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    try:
        pending = coordinator.cancel_booking(booking_id, payload.dates, payload.password)
    except LocalValidationError as exc:
        raise _local_error(exc) from exc
    except MutationInFlightError as exc:
        raise _in_flight_error(exc) from exc
    proposal = pending.result
    return {
        "bookingId": booking_id,
        "fullDeletion": proposal.full_deletion,
        "cancelledDates": [day.isoformat() for day in proposal.dates],
        "booking": serialize_booking(proposal.resulting_booking) if proposal.resulting_booking else None,
        "sync": "pending",
    }


@app.get("/api/resources")
def get_resources(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return coordinator.ledger.resource_board()


@app.post("/api/resources/borrow")
async def borrow_resources(payload: BorrowRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    try:
        pending = coordinator.borrow(payload.items, payload.borrower, payload.dept)
    except LocalValidationError as exc:
        raise _local_error(exc) from exc
    except MutationInFlightError as exc:
        raise _in_flight_error(exc) from exc
    return {"session": serialize_session(pending.result), "sync": "pending"}


@app.get("/api/resources/sessions")
def get_sessions(coordinator: SyncCoordinator = Depends(get_coordinator)):
    return [serialize_session(session) for session in coordinator.ledger.sessions()]


@app.post("/api/resources/sessions/{session_id}/transfer")
async def transfer_session(
    session_id: str,
    payload: TransferRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    try:
        pending = coordinator.transfer(session_id, payload.newHolder)
    except LocalValidationError as exc:
        raise _local_error(exc) from exc
    except MutationInFlightError as exc:
        raise _in_flight_error(exc) from exc
    return {"session": serialize_session(pending.result), "sync": "pending"}


@app.post("/api/resources/sessions/{session_id}/return")
async def return_session_items(
    session_id: str,
    payload: ReturnRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    item_details = {
        item_id: ReturnedItemState(isIntact=detail.isIntact, photos=list(detail.photos))
        for item_id, detail in payload.itemDetails.items()
    }
    try:
        pending = coordinator.return_items(session_id, item_details, payload.returner, payload.notes)
    except LocalValidationError as exc:
        raise _local_error(exc) from exc
    except MutationInFlightError as exc:
        raise _in_flight_error(exc) from exc
    outcome = pending.result
    return {
        "session": None if outcome.session_closed else serialize_session(outcome.updated_session),
        "historyEntry": dump_record(outcome.history_entry),
        "sessionClosed": outcome.session_closed,
        "sync": "pending",
    }


@app.get("/api/resources/history")
def get_history(limit: int | None = Query(None, ge=1), coordinator: SyncCoordinator = Depends(get_coordinator)):
    return [dump_record(entry) for entry in coordinator.ledger.history(_history_limit(limit))]


@app.post("/api/images/upload")
async def upload_image(payload: ImageUploadRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    try:
        response = await coordinator.upload_image(payload.fileName, payload.mimeType, payload.base64)
    except LocalValidationError as exc:
        raise _local_error(exc) from exc
    except RemoteError as exc:
        raise HTTPException(status_code=502, detail=f"upload_failed: {exc}") from exc
    return response.model_dump()


@app.get("/api/audit")
def get_audit(limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_audit_db)):
    return recent_audit(db, limit)
