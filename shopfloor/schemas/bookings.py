from datetime import date
from typing import List

from pydantic import BaseModel, ConfigDict


class BookingCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

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


class CancelBookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    password: str
    dates: List[date] = []
