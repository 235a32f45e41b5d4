"""
Product image storage on the local filesystem.

Files land in `<upload_dir>/products/<uuid><ext>` and are served by the
static mount at `/uploads`.
"""

import asyncio
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile
from loguru import logger

from bazaar.core.config import settings
from bazaar.core.exceptions import ValidationError

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class ImageStorage:
    """
    Validates and stores uploaded product images.

    Usage:
        storage = ImageStorage()
        urls = await storage.save_product_images(files)
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.upload_dir)
        self.max_bytes = settings.upload_max_size_mb * 1024 * 1024

    @property
    def products_dir(self) -> Path:
        return self.root / "products"

    def _extension(self, upload: UploadFile) -> str:
        suffix = Path(upload.filename or "").suffix.lower()
        if suffix in EXTENSIONS.values() or suffix == ".jpeg":
            return suffix
        return EXTENSIONS.get(upload.content_type, "")

    async def save_product_images(self, files: list[UploadFile]) -> list[str]:
        """
        Store images and return their public URLs.

        Every file is checked before anything is written, so a bad file
        rejects the whole batch.

        Raises:
            ValidationError: too many files, wrong type or too large
        """
        if not files:
            raise ValidationError("No images provided")
        if len(files) > settings.upload_max_files:
            raise ValidationError(f"At most {settings.upload_max_files} images per upload")

        payloads: list[tuple[UploadFile, bytes]] = []
        for upload in files:
            if upload.content_type not in settings.upload_allowed_types:
                raise ValidationError("Only image files (JPEG, PNG, WebP) are allowed")
            data = await upload.read()
            if len(data) > self.max_bytes:
                raise ValidationError(
                    f"{upload.filename} exceeds {settings.upload_max_size_mb} MB"
                )
            payloads.append((upload, data))

        await asyncio.to_thread(self.products_dir.mkdir, parents=True, exist_ok=True)

        urls = []
        for upload, data in payloads:
            name = f"{uuid4()}{self._extension(upload)}"
            await asyncio.to_thread((self.products_dir / name).write_bytes, data)
            urls.append(f"/uploads/products/{name}")

        logger.info(f"Stored {len(urls)} product images")
        return urls


def get_image_storage() -> ImageStorage:
    """Dependency provider, overridden in tests."""
    return ImageStorage()
