"""
Storage Service - Saves expense proof files (receipts) to local disk

The returned reference is opaque to the wallet logic; it is stored on the
ledger row as-is.
"""
import secrets
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from app.core.config import settings
from app.core.exceptions import InvalidProofFileError
from app.core.logging import get_logger

logger = get_logger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "application/pdf": ".pdf",
}

_CHUNK_SIZE = 64 * 1024


class StorageService:
    """Stores uploaded proofs under UPLOAD_DIR"""

    def __init__(self, upload_dir: Optional[str] = None, max_file_size: Optional[int] = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.max_file_size = max_file_size or settings.MAX_FILE_SIZE

    def _extension_for(self, upload: UploadFile) -> str:
        # the extension always follows the declared content type
        return ALLOWED_CONTENT_TYPES[upload.content_type]

    async def save_proof(self, upload: Optional[UploadFile]) -> str:
        """
        Persist an uploaded proof and return its reference ("proofs/<name>").

        Returns "" when no file was sent.

        Raises:
            InvalidProofFileError: disallowed type or file larger than MAX_FILE_SIZE
        """
        if upload is None or not upload.filename:
            return ""

        if upload.content_type not in ALLOWED_CONTENT_TYPES:
            raise InvalidProofFileError(
                "Unsupported proof file type",
                details={"content_type": upload.content_type},
            )

        target_dir = self.upload_dir / "proofs"
        target_dir.mkdir(parents=True, exist_ok=True)
        name = f"{secrets.token_hex(16)}{self._extension_for(upload)}"
        target = target_dir / name

        size = 0
        try:
            with target.open("wb") as fh:
                while chunk := await upload.read(_CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_file_size:
                        raise InvalidProofFileError(
                            "Proof file is too large",
                            details={"max_bytes": self.max_file_size},
                        )
                    fh.write(chunk)
        except InvalidProofFileError:
            target.unlink(missing_ok=True)
            raise

        logger.info(
            "Proof stored",
            extra_data={"reference": f"proofs/{name}", "size_bytes": size},
        )
        return f"proofs/{name}"

    def discard(self, reference: str) -> None:
        """Remove a stored proof; used when the expense it belongs to is not recorded"""
        if not reference:
            return
        path = self.upload_dir / reference
        path.unlink(missing_ok=True)
        logger.info("Proof discarded", extra_data={"reference": reference})
