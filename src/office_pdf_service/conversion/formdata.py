"""Incremental multipart/form-data reading for file uploads.

Only the first part that carries a filename under the expected field name
is surfaced. Its bytes are handed over as the request body arrives, so a
consumer that stops iterating also stops reading the request.
"""

from collections.abc import AsyncIterable, AsyncIterator

import python_multipart
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import parse_options_header

from .errors import MalformedUpload, UnsupportedFileType


class MultipartFileReader:
    def __init__(self, content_type: str, body: AsyncIterable[bytes], *, field: str = "file") -> None:
        media_type, params = parse_options_header(content_type)
        if media_type != b"multipart/form-data":
            raise UnsupportedFileType("no file uploaded; send multipart/form-data or application/octet-stream")
        boundary = params.get(b"boundary")
        if not boundary:
            raise MalformedUpload("multipart body has no boundary")

        self.filename: str | None = None
        self.content_type: str | None = None
        self._field = field.encode("latin-1")
        self._body = aiter(body)
        self._exhausted = False
        self._header_name = b""
        self._header_value = b""
        self._headers: dict[bytes, bytes] = {}
        self._found = False
        self._in_file = False
        self._file_done = False
        self._pending: list[bytes] = []

        try:
            self._parser = python_multipart.MultipartParser(
                boundary,
                {
                    "on_part_begin": self._on_part_begin,
                    "on_part_data": self._on_part_data,
                    "on_part_end": self._on_part_end,
                    "on_header_field": self._on_header_field,
                    "on_header_value": self._on_header_value,
                    "on_header_end": self._on_header_end,
                    "on_headers_finished": self._on_headers_finished,
                },
            )
        except FormParserError as e:
            raise MalformedUpload("malformed multipart body", detail=str(e)) from e

    # parser callbacks -------------------------------------------------

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_name.lower()] = self._header_value
        self._header_name = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition"))
        if self._found or options.get(b"name") != self._field or b"filename" not in options:
            self._in_file = False
            return
        self._found = True
        self._in_file = True
        # raw header bytes; UTF-8 names are repaired by the ingestor
        self.filename = options[b"filename"].decode("latin-1")
        part_type = self._headers.get(b"content-type")
        self.content_type = part_type.decode("latin-1") if part_type else None

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._in_file:
            self._pending.append(bytes(data[start:end]))

    def _on_part_end(self) -> None:
        if self._in_file:
            self._in_file = False
            self._file_done = True

    # reading ----------------------------------------------------------

    async def _feed(self) -> bool:
        """Push the next body chunk through the parser; False once the body is exhausted."""
        if self._exhausted:
            return False
        try:
            chunk = await anext(self._body)
        except StopAsyncIteration:
            self._exhausted = True
            self._parser.finalize()
            return False
        try:
            self._parser.write(chunk)
        except FormParserError as e:
            raise MalformedUpload("malformed multipart body", detail=str(e)) from e
        return True

    async def open(self) -> bool:
        """Read until the file part's headers arrive. False if the body has none."""
        while not self._found:
            if not await self._feed():
                return False
        return True

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            while self._pending:
                yield self._pending.pop(0)
            if self._file_done or not await self._feed():
                return
