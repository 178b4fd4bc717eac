"""Evidence file intake for new incidents."""

import secrets
import time
from pathlib import Path

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.exceptions import ValidationError
from incident_hub.common.logging import get_logger

logger = get_logger("uploads")

ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".pdf"})
PUBLIC_PREFIX = "/uploads"
_CHUNK = 64 * 1024


def _stored_name(original: str) -> str:
    ext = Path(original).suffix.lower()
    return f"{int(time.time() * 1000)}_{secrets.token_hex(16)}{ext}"


async def save_evidence(
    files: list[UploadFile] | None, settings: IncidentHubSettings,
) -> list[str]:
    """Validate and store uploads, returning their public paths.

    Nothing is left on disk when any file is rejected.
    """
    files = [f for f in (files or []) if f is not None and f.filename]
    if len(files) > settings.max_evidence_files:
        raise ValidationError(f"At most {settings.max_evidence_files} evidence files are allowed")
    for upload in files:
        if Path(upload.filename).suffix.lower() not in ALLOWED_EXTENSIONS:
            raise ValidationError("Invalid file type. Allowed: jpg, png, pdf")

    target_dir = Path(settings.upload_dir)
    await run_in_threadpool(target_dir.mkdir, parents=True, exist_ok=True)

    written: list[Path] = []
    try:
        for upload in files:
            path = target_dir / _stored_name(upload.filename)
            size = 0
            out = await run_in_threadpool(path.open, "wb")
            written.append(path)
            try:
                while chunk := await upload.read(_CHUNK):
                    size += len(chunk)
                    if size > settings.max_upload_bytes:
                        raise ValidationError(
                            f"File {upload.filename} exceeds {settings.max_upload_bytes} bytes"
                        )
                    await run_in_threadpool(out.write, chunk)
            finally:
                await run_in_threadpool(out.close)
    except Exception:
        for path in written:
            path.unlink(missing_ok=True)
        raise

    logger.info("Stored %d evidence file(s)", len(written))
    return [f"{PUBLIC_PREFIX}/{path.name}" for path in written]


def discard_evidence(paths: list[str], settings: IncidentHubSettings) -> None:
    """Remove stored files by their public paths."""
    target_dir = Path(settings.upload_dir)
    for public in paths:
        (target_dir / Path(public).name).unlink(missing_ok=True)
