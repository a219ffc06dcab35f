from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from shopfloor.models.catalog import END_OF_DAY, TIME_SLOTS
from shopfloor.models.records import Booking, BorrowSession, HistoryEntry, ItemReturnDetail, ReturnedItemState, TransferLog
from shopfloor.settings import LOCAL_TZ
from shopfloor.services.errors import PayloadParseError

LOGGER = logging.getLogger("shopfloor.normalize")

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M"


@dataclass
class RemoteDataset:
    bookings: list[Booking] = field(default_factory=list)
    sessions: list[BorrowSession] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    skipped: int = 0


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def _parse_iso(raw: str) -> datetime:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise PayloadParseError(f"Unrecognized timestamp: {raw!r}") from exc


def _to_local(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(LOCAL_TZ).replace(tzinfo=None)


def normalize_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return _to_local(raw).date()
    if isinstance(raw, date):
        return raw
    text = str(raw or "").strip()
    if not text:
        raise PayloadParseError("Empty date value.")
    if "T" in text:
        return _to_local(_parse_iso(text)).date()
    parts = text.replace("/", "-").split(" ")[0].split("-")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise PayloadParseError(f"Unrecognized date: {raw!r}")
    try:
        return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError as exc:
        raise PayloadParseError(f"Unrecognized date: {raw!r}") from exc


def _snap_to_slot(hour: int, minute: int, end_of_range: bool = False) -> str:
    snapped = ((hour * 60 + minute + 15) // 30) * 30
    if snapped >= 24 * 60:
        # Late times stay on the same day instead of wrapping to 00:00.
        return END_OF_DAY if end_of_range else TIME_SLOTS[-1]
    return f"{snapped // 60:02d}:{snapped % 60:02d}"


def normalize_time(raw: Any, end_of_range: bool = False) -> str:
    """Reduce any clock representation to the nearest half-hour mark, e.g. '08:30'.

    With `end_of_range`, times rounding past the last slot become END_OF_DAY.
    """
    if isinstance(raw, datetime):
        moment = _to_local(raw)
        return _snap_to_slot(moment.hour, moment.minute, end_of_range)
    text = str(raw or "").strip()
    if end_of_range and text == END_OF_DAY:
        return END_OF_DAY
    if "T" in text:
        moment = _to_local(_parse_iso(text))
        return _snap_to_slot(moment.hour, moment.minute, end_of_range)
    parts = text.split(":")
    if len(parts) < 2 or not parts[0].isdigit() or not parts[1].isdigit():
        raise PayloadParseError(f"Unrecognized time: {raw!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise PayloadParseError(f"Time out of range: {raw!r}")
    return _snap_to_slot(hour, minute, end_of_range)


def normalize_timestamp(raw: Any) -> str:
    if isinstance(raw, datetime):
        return format_timestamp(_to_local(raw))
    text = str(raw or "").strip()
    if "T" in text:
        try:
            return format_timestamp(_to_local(_parse_iso(text)))
        except PayloadParseError:
            LOGGER.warning("Keeping unparsable timestamp as-is: %r", raw)
    return text


def _normalize_password(raw: Any) -> str:
    if isinstance(raw, bool) or raw is None:
        return ""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, int):
        # Spreadsheet backends drop leading zeros from numeric cells.
        return f"{raw:05d}"
    return str(raw).strip()


def _load_json_blob(raw: Any, expected: type, label: str, record_id: str) -> Any:
    if isinstance(raw, expected):
        return raw
    if raw in (None, ""):
        return expected()
    if not isinstance(raw, str):
        raise PayloadParseError(f"{label} of {record_id} has unexpected type {type(raw).__name__}")
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise PayloadParseError(f"{label} of {record_id} is not valid JSON") from exc
    if not isinstance(parsed, expected):
        raise PayloadParseError(f"{label} of {record_id} is not a {expected.__name__}")
    return parsed


def _lenient_blob(raw: Any, expected: type, label: str, record_id: str) -> Any:
    try:
        return _load_json_blob(raw, expected, label, record_id)
    except PayloadParseError as exc:
        LOGGER.error("Recovered malformed %s: %s", label, exc)
        return expected()


def dates_in_range(start: date, end: date) -> list[date]:
    days: list[date] = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def _normalize_excluded_dates(raw: Any, start: date, end: date, booking_id: str) -> list[date]:
    values: Any = raw
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            values = _lenient_blob(text, list, "excludedDates", booking_id)
        else:
            values = [part for part in text.split(",") if part.strip()]
    if not isinstance(values, list):
        values = []

    out: set[date] = set()
    for value in values:
        try:
            day = normalize_date(value)
        except PayloadParseError:
            LOGGER.warning("Dropping unparsable excluded date %r of booking %s", value, booking_id)
            continue
        if day < start or day > end:
            LOGGER.warning("Dropping excluded date %s outside range of booking %s", day, booking_id)
            continue
        out.add(day)
    return sorted(out)


def normalize_booking(row: Any) -> Booking:
    if not isinstance(row, dict):
        raise PayloadParseError("Booking record is not an object.")
    booking_id = str(row.get("id") or "").strip()
    venue = str(row.get("venue") or "").strip()
    if not booking_id or not venue:
        raise PayloadParseError("Booking record lacks id or venue.")
    start = normalize_date(row.get("startDate"))
    end = normalize_date(row.get("endDate"))
    return Booking(
        id=booking_id,
        venue=venue,
        startDate=start,
        endDate=end,
        startTime=normalize_time(row.get("startTime")),
        endTime=normalize_time(row.get("endTime"), end_of_range=True),
        applicant=str(row.get("applicant") or "").strip(),
        dept=str(row.get("dept") or row.get("department") or "").strip(),
        carModel=str(row.get("carModel") or "").strip(),
        purpose=str(row.get("purpose") or "").strip(),
        password=_normalize_password(row.get("password")),
        excludedDates=_normalize_excluded_dates(row.get("excludedDates"), start, end, booking_id),
    )


def _normalize_transfer_logs(raw: Any, record_id: str) -> list[TransferLog]:
    rows = _lenient_blob(raw, list, "transferLogs", record_id)
    logs: list[TransferLog] = []
    for entry in rows:
        if not isinstance(entry, dict):
            continue
        try:
            logs.append(
                TransferLog(
                    from_=str(entry.get("from") or ""),
                    to=str(entry.get("to") or ""),
                    time=normalize_timestamp(entry.get("time")),
                )
            )
        except ValidationError:
            LOGGER.warning("Dropping malformed transfer log of %s", record_id)
    return logs


def normalize_session(row: Any) -> BorrowSession:
    if not isinstance(row, dict):
        raise PayloadParseError("Session record is not an object.")
    session_id = str(row.get("id") or "").strip()
    if not session_id:
        raise PayloadParseError("Session record lacks id.")
    items = [str(item) for item in _load_json_blob(row.get("items"), list, "items", session_id)]
    if not items:
        raise PayloadParseError(f"Session {session_id} has no items.")

    returned_raw = _lenient_blob(row.get("returnedItems"), dict, "returnedItems", session_id)
    returned: dict[str, ItemReturnDetail] = {}
    for item_id, detail in returned_raw.items():
        if item_id not in items:
            LOGGER.warning("Dropping return detail for %s not borrowed in session %s", item_id, session_id)
            continue
        if not isinstance(detail, dict):
            continue
        try:
            returned[item_id] = ItemReturnDetail(
                isIntact=bool(detail.get("isIntact", True)),
                photos=[str(photo) for photo in detail.get("photos") or []],
                returner=str(detail.get("returner") or ""),
                time=normalize_timestamp(detail.get("time")),
            )
        except ValidationError:
            LOGGER.warning("Dropping malformed return detail for %s in session %s", item_id, session_id)

    return BorrowSession(
        id=session_id,
        items=items,
        borrower=str(row.get("borrower") or ""),
        dept=str(row.get("dept") or ""),
        borrowTime=normalize_timestamp(row.get("borrowTime")),
        transferLogs=_normalize_transfer_logs(row.get("transferLogs"), session_id),
        returnedItems=returned,
    )


def normalize_history(row: Any) -> HistoryEntry:
    if not isinstance(row, dict):
        raise PayloadParseError("History record is not an object.")
    session_id = str(row.get("sessionId") or "").strip()
    entry_id = str(row.get("id") or "").strip() or uuid.uuid4().hex[:9]

    raw_items = row.get("status_json") if "status_json" in row else row.get("items")
    items_map = _lenient_blob(raw_items, dict, "status_json", entry_id)
    items: dict[str, ReturnedItemState] = {}
    for item_id, detail in items_map.items():
        if not isinstance(detail, dict):
            continue
        items[str(item_id)] = ReturnedItemState(
            isIntact=bool(detail.get("isIntact", True)),
            photos=[str(photo) for photo in detail.get("photos") or []],
        )

    return HistoryEntry(
        id=entry_id,
        sessionId=session_id,
        borrower=str(row.get("borrower") or ""),
        borrowTime=normalize_timestamp(row.get("borrowTime")),
        returner=str(row.get("returner") or ""),
        returnTime=normalize_timestamp(row.get("returnTime")),
        notes=str(row.get("notes") or ""),
        transferLogs=_normalize_transfer_logs(row.get("transferLogs"), entry_id),
        items=items,
    )


def _section(payload: dict, key: str) -> list:
    rows = payload.get(key)
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise PayloadParseError(f"'{key}' is not a list.")
    return rows


def normalize_dataset(payload: Any) -> RemoteDataset:
    """Turn a GET_ALL_DATA response into normalized records.

    Malformed records are skipped and logged; only an unrecognizable
    top-level shape aborts the whole load.
    """
    if not isinstance(payload, dict):
        raise PayloadParseError("GET_ALL_DATA payload is not an object.")
    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload

    dataset = RemoteDataset()
    for row in _section(body, "venues"):
        try:
            dataset.bookings.append(normalize_booking(row))
        except (PayloadParseError, ValidationError) as exc:
            dataset.skipped += 1
            LOGGER.warning("Skipping booking record: %s", exc)
    for row in _section(body, "resourceSessions"):
        try:
            dataset.sessions.append(normalize_session(row))
        except (PayloadParseError, ValidationError) as exc:
            dataset.skipped += 1
            LOGGER.warning("Skipping session record: %s", exc)
    for row in _section(body, "resourceHistory"):
        try:
            dataset.history.append(normalize_history(row))
        except (PayloadParseError, ValidationError) as exc:
            dataset.skipped += 1
            LOGGER.warning("Skipping history record: %s", exc)
    return dataset
