"""Turn uploaded files into evidence items with base64 payloads."""
import base64
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Type

from refund_agents.schemas.case import (
    AudioEvidence,
    BinaryEvidence,
    ImageEvidence,
    LinkEvidence,
    PdfEvidence,
    UploadStatus,
    VideoEvidence,
)

logger = logging.getLogger(__name__)


class EvidenceTooLarge(ValueError):
    """Raised when an upload exceeds the configured size limit."""


@dataclass(frozen=True)
class PendingUpload:
    filename: str
    mime_type: str
    read: Callable[[], Awaitable[bytes]]
    size: Optional[int] = None


def evidence_class_for_mime(mime_type: str) -> Type[BinaryEvidence]:
    mime_type = (mime_type or "").lower()
    if "pdf" in mime_type:
        return PdfEvidence
    if mime_type.startswith("audio/"):
        return AudioEvidence
    if mime_type.startswith("video/"):
        return VideoEvidence
    return ImageEvidence


def new_pending_item(upload: PendingUpload) -> BinaryEvidence:
    evidence_class = evidence_class_for_mime(upload.mime_type)
    return evidence_class(
        id=uuid.uuid4().hex,
        mime_type=upload.mime_type or "application/octet-stream",
        display_name=upload.filename,
        upload_status=UploadStatus.PENDING,
        upload_progress=0,
    )


def new_link_item(url: str) -> LinkEvidence:
    url = url.strip()
    return LinkEvidence(id=uuid.uuid4().hex, display_name=url, url=url)


async def encode_upload(upload: PendingUpload, max_bytes: int) -> str:
    content = await upload.read()
    if len(content) > max_bytes:
        raise EvidenceTooLarge(f"{upload.filename} exceeds {max_bytes} bytes")
    return base64.b64encode(content).decode("ascii")
