from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from shopfloor.models.records import ReturnedItemState, TransferLog
from shopfloor.services.errors import PayloadParseError

GET_ALL_DATA = "getAll"
BOOK_VENUE = "bookVenue"
CANCEL_BOOKING = "cancelVenue"
BORROW_ITEMS = "borrowResource"
TRANSFER_ITEMS = "transferResource"
RETURN_ITEMS = "returnResource"
UPLOAD_IMAGE = "uploadImage"


class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class BookVenueCommand(_Command):
    action: Literal["bookVenue"] = BOOK_VENUE
    id: str
    venue: str
    startDate: date
    endDate: date
    startTime: str
    endTime: str
    applicant: str
    dept: str = ""
    carModel: str = ""
    purpose: str = ""
    password: str
    excludedDates: List[date] = []


class CancelBookingCommand(_Command):
    action: Literal["cancelVenue"] = CANCEL_BOOKING
    id: str
    password: str
    # Empty means the whole booking goes.
    datesToRemove: List[date] = []


class BorrowItemsCommand(_Command):
    action: Literal["borrowResource"] = BORROW_ITEMS
    id: str
    items: List[str]
    borrower: str
    dept: str = ""
    borrowTime: str
    transferLogs: List[TransferLog] = []
    returnedItems: Dict[str, Any] = {}


class TransferItemsCommand(_Command):
    action: Literal["transferResource"] = TRANSFER_ITEMS
    sessionId: str
    from_: str = Field(alias="from")
    to: str
    time: str


class ReturnImage(_Command):
    name: str
    base64: str


class ReturnItemsCommand(_Command):
    action: Literal["returnResource"] = RETURN_ITEMS
    sessionId: str
    returner: str
    returnTime: str
    itemDetails: Dict[str, ReturnedItemState]
    notes: str = ""
    images: List[ReturnImage] = []


class UploadImageCommand(_Command):
    action: Literal["uploadImage"] = UPLOAD_IMAGE
    fileName: str
    mimeType: str
    base64: str


RemoteCommand = Annotated[
    Union[
        BookVenueCommand,
        CancelBookingCommand,
        BorrowItemsCommand,
        TransferItemsCommand,
        ReturnItemsCommand,
        UploadImageCommand,
    ],
    Field(discriminator="action"),
]
_COMMAND_ADAPTER: TypeAdapter = TypeAdapter(RemoteCommand)


class RemoteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Literal["success", "error"]
    message: Optional[str] = None


def command_body(command: BaseModel) -> dict:
    return command.model_dump(mode="json", by_alias=True)


def parse_command(payload: Any) -> Any:
    try:
        return _COMMAND_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise PayloadParseError(f"Unrecognized remote request: {exc.error_count()} validation error(s)") from exc


def parse_response(payload: Any) -> RemoteResponse:
    try:
        return RemoteResponse.model_validate(payload)
    except ValidationError as exc:
        raise PayloadParseError("Unrecognized remote response shape.") from exc
