from typing import Dict, List

from pydantic import BaseModel, ConfigDict


class BorrowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: List[str] = []
    borrower: str
    dept: str = ""


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    newHolder: str


class ReturnItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    isIntact: bool = True
    photos: List[str] = []


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returner: str
    notes: str = ""
    itemDetails: Dict[str, ReturnItemDto] = {}


class ImageUploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fileName: str
    mimeType: str = "image/jpeg"
    base64: str
