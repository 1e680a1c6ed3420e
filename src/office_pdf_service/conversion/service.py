import asyncio
import logging
from collections.abc import AsyncIterator
from pathlib import Path

from .disk import format_bytes
from .errors import ArtifactNotFound, ConversionTimeout, EmptyArtifact, InsufficientDiskSpace
from .interfaces import ConversionRequest, ConversionResult, DiskProbeGateway, StagedFile, StorageGateway
from .invoker import ConversionInvoker

STREAM_CHUNK = 64 * 1024


class ConvertedDocument:
    """A produced PDF handed to the caller, plus the files to clean up.

    ``iter_bytes`` removes the staged input and the output directory when
    the stream ends, fails or is cancelled. ``cleanup`` can be called any
    number of times; only the first call touches the filesystem.
    """

    def __init__(
        self,
        request: ConversionRequest,
        result: ConversionResult,
        storage: StorageGateway,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.request = request
        self.result = result
        self._storage = storage
        self._log = logger or logging.getLogger(__name__)
        self._cleaned = False

    @property
    def path(self) -> Path:
        return self.result.path

    @property
    def size(self) -> int:
        return self.result.size

    @property
    def download_name(self) -> str:
        stem = Path(self.request.staged.original_name).stem
        if not stem.strip("."):
            stem = "converted"
        return f"{stem}.pdf"

    @property
    def cleaned(self) -> bool:
        return self._cleaned

    async def iter_bytes(self, chunk_size: int = STREAM_CHUNK, *, deadline: float | None = None) -> AsyncIterator[bytes]:
        """Yield the PDF in chunks.

        ``deadline`` is an event-loop time; once it passes the stream stops
        with ``ConversionTimeout``.
        """
        loop = asyncio.get_running_loop()
        try:
            with self.path.open("rb") as f:
                while chunk := await asyncio.to_thread(f.read, chunk_size):
                    if deadline is not None and loop.time() > deadline:
                        self._log.warning("streaming %s stopped at the request deadline", self.path.name)
                        raise ConversionTimeout("response streaming exceeded the request deadline")
                    yield chunk
        except OSError as e:
            self._log.error("streaming %s failed: %s", self.path.name, e)
            raise
        finally:
            self.cleanup()

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        _release(self._storage, self.request, self._log)


def _release(storage: StorageGateway, request: ConversionRequest, log: logging.Logger) -> None:
    log.info("cleaning up %s and %s", request.staged.path.name, request.output_dir)
    storage.remove(request.staged.path)
    storage.remove(request.output_dir)


class ConversionOrchestrator:
    """Runs one conversion request from staged input to a readable PDF.

    Steps run strictly in order: disk preflight, engine invocation,
    artifact validation. Any failure removes whatever the request created
    and surfaces one classified error.
    """

    def __init__(
        self,
        storage: StorageGateway,
        probe: DiskProbeGateway,
        invoker: ConversionInvoker,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._storage = storage
        self._probe = probe
        self._invoker = invoker
        self._log = logger or logging.getLogger(__name__)

    @property
    def invoker(self) -> ConversionInvoker:
        return self._invoker

    @property
    def storage(self) -> StorageGateway:
        return self._storage

    async def convert(self, staged: StagedFile) -> ConvertedDocument:
        self._log.info("starting conversion of %s (%d bytes)", staged.declared_name or staged.original_name, staged.byte_size)
        try:
            request = ConversionRequest(staged=staged, output_dir=self._storage.new_output_dir(staged))
        except OSError:
            self.discard(staged)
            raise
        try:
            await self._preflight(request)
            result = await self._invoker.convert(staged, request.output_dir)
            self._validate(result)
        except BaseException as e:
            self._log.error("conversion of %s failed: %s", staged.original_name, e)
            _release(self._storage, request, self._log)
            raise
        self._log.info("conversion succeeded: %s (%d bytes)", result.path.name, result.size)
        return ConvertedDocument(request, result, self._storage, logger=self._log)

    def discard(self, staged: StagedFile) -> None:
        """Remove a staged input that never reached ``convert``."""
        self._storage.remove(staged.path)

    async def _preflight(self, request: ConversionRequest) -> None:
        required = request.required_free_bytes
        check = await asyncio.to_thread(self._probe.check, self._storage.output_root, required)
        if not check.sufficient:
            raise InsufficientDiskSpace(format_bytes(check.free_bytes), format_bytes(required))
        if check.warning:
            self._log.warning("proceeding without a reliable disk check: %s", check.warning)

    def _validate(self, result: ConversionResult) -> None:
        if not result.path.is_file():
            raise ArtifactNotFound(f"converted file does not exist: {result.path.name}")
        if result.path.stat().st_size == 0 or result.size == 0:
            raise EmptyArtifact("converted file is empty")
