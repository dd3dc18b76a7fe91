"""
Attachment handlers: image, PDF document and voice note.

Each handler fetches the file from Telegram once and maps any failure to
AttachmentProcessingError. There is no retry here; the user resends instead.
"""

import io
import mimetypes
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from PyPDF2 import PdfReader

from listingbot.logging_config import get_logger
from listingbot.services.errors import AttachmentProcessingError, UnsupportedAttachmentError
from listingbot.services.llm.base import AIProvider
from listingbot.services.media_store import LocalMediaStore
from listingbot.services.telegram_service import TelegramService

logger = get_logger("media_service")

IMAGE_NAMESPACE = "property-images"
IMAGE_ANALYSIS_PROMPT = (
    "Please analyze this property image and extract any visible details about the property. "
    "Focus on: architectural style, condition, key features, and any visible amenities."
)
PDF_MIME_TYPE = "application/pdf"


@dataclass
class ImageAnalysis:
    url: str
    analysis: str
    object_id: str


def is_pdf(mime_type: Optional[str], file_name: Optional[str]) -> bool:
    if mime_type:
        return mime_type.split(";")[0].strip().lower() == PDF_MIME_TYPE
    return bool(file_name) and file_name.lower().endswith(".pdf")


def _guess_extension(file_path: str, mime_type: Optional[str], default: str) -> str:
    suffix = PurePosixPath(file_path).suffix
    if suffix:
        return suffix.lower()
    if mime_type:
        ext = mimetypes.guess_extension(mime_type.split(";")[0].strip())
        if ext:
            return ext
    return default


def extract_pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n".join(page for page in pages if page).strip()


class MediaPipeline:
    def __init__(
        self,
        telegram: TelegramService,
        ai: AIProvider,
        store: LocalMediaStore,
        *,
        fetch_timeout_seconds: float = 30.0,
        max_bytes: int = 10 * 1024 * 1024,
    ):
        self.telegram = telegram
        self.ai = ai
        self.store = store
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.max_bytes = max_bytes

    async def _fetch(self, file_id: str) -> tuple[bytes, str]:
        file_path = await run_in_threadpool(self.telegram.get_file_path, file_id)
        data = await self.telegram.download_file(
            file_path,
            max_bytes=self.max_bytes,
            timeout_seconds=self.fetch_timeout_seconds,
        )
        if not data:
            raise ValueError(f"Empty download for {file_id}")
        return data, file_path

    def _fail(self, kind: str, file_id: str, exc: Exception) -> AttachmentProcessingError:
        logger.error(
            f"Failed to process {kind} attachment: {exc}",
            extra={"context": {"kind": kind, "file_id": file_id, "error": repr(exc)}},
            exc_info=True,
        )
        return AttachmentProcessingError(kind, str(exc))

    async def process_image(self, file_id: str, listing_id: Optional[str] = None) -> ImageAnalysis:
        """
        Upload the photo and ask the vision model about it.

        The model gets a short-lived link; the returned `url` is the permanent
        one. Without a listing id the upload is ephemeral and removed after
        analysis.
        """
        try:
            data, file_path = await self._fetch(file_id)
            object_name = f"{listing_id}-{file_id[-16:]}" if listing_id else None
            stored = await run_in_threadpool(
                self.store.upload,
                data,
                IMAGE_NAMESPACE,
                object_name,
                extension=_guess_extension(file_path, None, ".jpg"),
            )
        except Exception as exc:
            raise self._fail("image", file_id, exc) from exc

        try:
            vision_url = self.store.build_signed_url(stored.object_id)
            analysis = await run_in_threadpool(self.ai.analyze_image, vision_url, IMAGE_ANALYSIS_PROMPT)
        except Exception as exc:
            await self.discard(stored.object_id)
            raise self._fail("image", file_id, exc) from exc

        if not listing_id:
            await self.discard(stored.object_id)
        return ImageAnalysis(url=stored.url, analysis=analysis, object_id=stored.object_id)

    async def discard(self, object_id: str) -> None:
        """Best-effort removal of an upload nothing will reference."""
        try:
            await run_in_threadpool(self.store.delete, object_id)
        except Exception as exc:
            logger.warning(f"Could not delete media {object_id}: {exc}")

    async def process_document(
        self,
        file_id: str,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> str:
        """Extract plain text from a PDF document."""
        if not is_pdf(mime_type, file_name):
            raise UnsupportedAttachmentError("document", f"unsupported document type {mime_type or file_name}")
        try:
            data, _ = await self._fetch(file_id)
            text = await run_in_threadpool(extract_pdf_text, data)
        except Exception as exc:
            raise self._fail("document", file_id, exc) from exc
        if not text:
            raise self._fail("document", file_id, ValueError("PDF contains no extractable text"))
        return text

    async def process_voice(self, file_id: str, mime_type: Optional[str] = None) -> str:
        """Transcribe a voice note."""
        try:
            data, file_path = await self._fetch(file_id)
            filename = f"voice{_guess_extension(file_path, mime_type, '.ogg')}"
            return await run_in_threadpool(
                lambda: self.ai.transcribe_audio(audio_bytes=data, filename=filename, mime_type=mime_type)
            )
        except Exception as exc:
            raise self._fail("voice", file_id, exc) from exc
