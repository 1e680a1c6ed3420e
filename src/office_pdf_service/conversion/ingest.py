import logging
import os
import random
import re
import time
from collections.abc import AsyncIterable
from pathlib import Path

from .errors import SizeExceeded, UnsupportedFileType
from .formdata import MultipartFileReader
from .interfaces import StagedFile

MAX_UPLOAD_BYTES = 100 * 1024 * 1024
CHUNK = 1024 * 1024
DEFAULT_STREAM_NAME = "unknown.docx"

ALLOWED_MIME = frozenset({
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",  # docx
    "application/msword",  # doc
    "application/vnd.ms-excel",  # xls
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",  # xlsx
    "application/vnd.ms-powerpoint",  # ppt
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",  # pptx
    "application/octet-stream",  # some clients default to this
})
ALLOWED_EXTENSIONS = frozenset({".docx", ".doc", ".xls", ".xlsx", ".ppt", ".pptx"})

_UNSAFE = re.compile(r"[^A-Za-z0-9.\-_]")


def decode_declared_name(name: str) -> str:
    """Undo latin-1 mojibake on a declared filename.

    Multipart parsers and raw headers hand UTF-8 names over as latin-1
    text. Names that are not valid in that reading are returned as-is.
    """
    try:
        return name.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name


def sanitize_filename(name: str) -> str:
    return _UNSAFE.sub("_", name)


def unique_prefix() -> str:
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"


def is_allowed(filename: str, content_type: str | None) -> bool:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    _, ext = os.path.splitext(filename.lower())
    return ct in ALLOWED_MIME or ext in ALLOWED_EXTENSIONS


class UploadIngestor:
    """Streams inbound bytes into the staging directory.

    The size ceiling is enforced while writing; an oversized, failed or
    cancelled upload never leaves a partial file behind.
    """

    def __init__(
        self,
        upload_dir: str | Path,
        *,
        max_bytes: int = MAX_UPLOAD_BYTES,
        logger: logging.Logger | None = None,
    ) -> None:
        self._dir = Path(upload_dir).resolve()
        self._max_bytes = max_bytes
        self._log = logger or logging.getLogger(__name__)

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    async def ingest(
        self,
        chunks: AsyncIterable[bytes],
        declared_name: str | None,
        content_type: str | None = None,
    ) -> StagedFile:
        display_name = decode_declared_name(declared_name or DEFAULT_STREAM_NAME)
        safe_name = sanitize_filename(display_name)
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / f"{unique_prefix()}-{safe_name}"
        self._log.info("ingesting upload %r -> %s", display_name, path.name)

        size_bytes = 0
        try:
            with path.open("wb") as f_out:
                async for chunk in chunks:
                    b = bytes(chunk)
                    size_bytes += len(b)
                    if size_bytes > self._max_bytes:
                        raise SizeExceeded(
                            f"file exceeds the {self._max_bytes // (1024 * 1024)} MB upload limit"
                        )
                    f_out.write(b)
        except BaseException:
            path.unlink(missing_ok=True)
            self._log.warning("upload %r aborted after %d bytes; partial file removed", display_name, size_bytes)
            raise

        self._log.info("staged %s (%d bytes)", path.name, size_bytes)
        return StagedFile(
            path=path,
            original_name=safe_name,
            byte_size=size_bytes,
            declared_name=display_name,
            content_type=content_type or "application/octet-stream",
        )

    def check_allowed(self, filename: str | None, content_type: str | None) -> None:
        if not filename:
            raise UnsupportedFileType("no file uploaded or file field is empty")
        if not is_allowed(filename, content_type):
            _, ext = os.path.splitext(filename.lower())
            self._log.error("rejected upload %r with content-type %s", filename, content_type)
            raise UnsupportedFileType(
                f"unsupported file type: {ext or '(none)'}; only doc, docx, xls, xlsx, ppt, pptx are accepted"
            )

    async def ingest_multipart(self, content_type: str, body: AsyncIterable[bytes], field: str = "file") -> StagedFile:
        """Multipart strategy: allow-list check on the part headers, then stream the part to disk.

        The body is parsed as it arrives; nothing past the size ceiling is read.
        """
        reader = MultipartFileReader(content_type, body, field=field)
        if not await reader.open():
            raise UnsupportedFileType("no file uploaded or file field is empty")
        self.check_allowed(reader.filename, reader.content_type)
        return await self.ingest(reader.chunks(), reader.filename, reader.content_type)

    async def ingest_stream(self, chunks: AsyncIterable[bytes], header_name: str | None) -> StagedFile:
        """Raw-body strategy: the original name travels in a header."""
        return await self.ingest(chunks, header_name or DEFAULT_STREAM_NAME, "application/octet-stream")
