from __future__ import annotations

import base64
import binascii

from shopfloor.models.catalog import MAX_PHOTOS_PER_ITEM
from shopfloor.services.errors import LocalValidationError

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def split_data_url(photo: str) -> tuple[str, str]:
    """Return (mime type, bare base64) for a data URL or an already bare payload."""
    raw = (photo or "").strip()
    if not raw:
        raise LocalValidationError("InvalidImage", "Empty image payload.")
    mime_type = "image/jpeg"
    b64_data = raw
    if raw.startswith("data:"):
        parts = raw.split(",", 1)
        if len(parts) != 2 or not parts[0].startswith("data:image/"):
            raise LocalValidationError("InvalidImage", "Invalid data URL payload.")
        meta, b64_data = parts
        mime_type = meta[len("data:"):].split(";", 1)[0] or mime_type
    try:
        base64.b64decode(b64_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise LocalValidationError("InvalidImage", "Invalid base64 image data.") from exc
    return mime_type, b64_data


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get((mime_type or "").lower(), "jpg")


def build_return_images(photos_by_item: dict[str, list[str]]) -> list[dict[str, str]]:
    images: list[dict[str, str]] = []
    for item_id, photos in photos_by_item.items():
        if len(photos) > MAX_PHOTOS_PER_ITEM:
            raise LocalValidationError("TooManyPhotos", f"At most {MAX_PHOTOS_PER_ITEM} photos per item.")
        for index, photo in enumerate(photos):
            _, b64_data = split_data_url(photo)
            # Photos are re-encoded as JPEG before they reach this service.
            images.append({"name": f"{item_id}_{index}.jpg", "base64": b64_data})
    return images


def prepare_upload(file_name: str, mime_type: str, payload: str) -> dict[str, str]:
    name = (file_name or "").strip()
    if not name:
        raise LocalValidationError("MissingField", "fileName is required.")
    detected_mime, b64_data = split_data_url(payload)
    resolved_mime = (mime_type or "").strip() or detected_mime
    if not resolved_mime.startswith("image/"):
        raise LocalValidationError("InvalidImage", "Only image uploads are accepted.")
    if "." not in name:
        name = f"{name}.{extension_for(resolved_mime)}"
    return {"fileName": name, "mimeType": resolved_mime, "base64": b64_data}
