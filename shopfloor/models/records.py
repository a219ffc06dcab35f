from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class Booking(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    venue: str
    startDate: date
    endDate: date
    startTime: str
    endTime: str
    applicant: str = ""
    dept: str = ""
    carModel: str = ""
    purpose: str = ""
    password: str = ""
    excludedDates: list[date] = Field(default_factory=list)


class TransferLog(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    from_: str = Field(alias="from")
    to: str
    time: str


class ReturnedItemState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    isIntact: bool = True
    photos: list[str] = Field(default_factory=list)


class ItemReturnDetail(ReturnedItemState):
    returner: str
    time: str


class BorrowSession(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    items: list[str]
    borrower: str
    dept: str = ""
    borrowTime: str
    transferLogs: list[TransferLog] = Field(default_factory=list)
    returnedItems: dict[str, ItemReturnDetail] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    """Audit snapshot of one return event; never edited once created."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    sessionId: str
    borrower: str
    borrowTime: str
    returner: str
    returnTime: str
    notes: str = ""
    transferLogs: list[TransferLog] = Field(default_factory=list)
    items: dict[str, ReturnedItemState] = Field(default_factory=dict)


def dump_record(record: BaseModel, exclude: set[str] | None = None) -> dict:
    return record.model_dump(mode="json", by_alias=True, exclude=exclude)
