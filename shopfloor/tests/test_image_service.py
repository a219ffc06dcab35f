import os
import unittest

os.environ.setdefault("SHOPFLOOR_AUDIT_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SHOPFLOOR_SYNC_ON_STARTUP", "false")
os.environ.setdefault("REMOTE_API_URL", "http://remote.invalid/exec")

from shopfloor.services.errors import LocalValidationError
from shopfloor.services.image_service import build_return_images, prepare_upload, split_data_url

PNG_URL = "data:image/png;base64,iVBORw0KGgo="


class ImageServiceTests(unittest.TestCase):
    def test_data_url_is_split_into_mime_and_payload(self):
        self.assertEqual(split_data_url(PNG_URL), ("image/png", "iVBORw0KGgo="))
        self.assertEqual(split_data_url("iVBORw0KGgo="), ("image/jpeg", "iVBORw0KGgo="))

    def test_invalid_payloads_are_rejected(self):
        for raw in ("", "data:text/plain;base64,aGk=", "data:image/png;base64,***"):
            with self.subTest(raw=raw):
                with self.assertRaises(LocalValidationError) as ctx:
                    split_data_url(raw)
                self.assertEqual(ctx.exception.reason, "InvalidImage")

    def test_return_images_are_named_by_item_and_index(self):
        images = build_return_images({"t1": [PNG_URL, PNG_URL], "e2": []})
        self.assertEqual([image["name"] for image in images], ["t1_0.jpg", "t1_1.jpg"])
        self.assertTrue(all(not image["base64"].startswith("data:") for image in images))

    def test_more_than_four_photos_per_item_is_rejected(self):
        with self.assertRaises(LocalValidationError) as ctx:
            build_return_images({"t1": [PNG_URL] * 5})
        self.assertEqual(ctx.exception.reason, "TooManyPhotos")

    def test_prepare_upload_fills_extension_and_mime(self):
        self.assertEqual(
            prepare_upload("badge", "", PNG_URL),
            {"fileName": "badge.png", "mimeType": "image/png", "base64": "iVBORw0KGgo="},
        )
        with self.assertRaises(LocalValidationError):
            prepare_upload("doc.pdf", "application/pdf", "aGk=")
        with self.assertRaises(LocalValidationError):
            prepare_upload(" ", "image/png", PNG_URL)


if __name__ == "__main__":
    unittest.main()
