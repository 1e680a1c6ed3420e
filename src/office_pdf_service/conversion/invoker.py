import asyncio
import logging
import os
import shlex
import signal
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ArtifactNotFound, ConversionFailed, ConversionTimeout
from .interfaces import ConversionResult, DirectorySnapshot, Launcher, StagedFile
from .resolver import ArtifactResolver

CONVERSION_TIMEOUT_SEC = 120
VERSION_TIMEOUT_SEC = 30


class InvocationState:
    IDLE = "idle"
    SNAPSHOT_TAKEN = "snapshot_taken"
    INVOKING = "invoking"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


_TRANSITIONS: dict[str, set[str]] = {
    InvocationState.IDLE: {InvocationState.SNAPSHOT_TAKEN, InvocationState.FAILED},
    InvocationState.SNAPSHOT_TAKEN: {InvocationState.INVOKING, InvocationState.FAILED},
    InvocationState.INVOKING: {InvocationState.SUCCEEDED, InvocationState.TIMED_OUT, InvocationState.FAILED},
    InvocationState.SUCCEEDED: set(),
    InvocationState.TIMED_OUT: set(),
    InvocationState.FAILED: set(),
}


@dataclass
class Invocation:
    """Per-call record of one engine run."""

    staged: StagedFile
    output_dir: Path
    state: str = InvocationState.IDLE
    command: list[str] = field(default_factory=list)
    returncode: int | None = None
    stderr: str = ""
    history: list[str] = field(default_factory=lambda: [InvocationState.IDLE])

    def advance(self, new_state: str) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal invocation transition {self.state} -> {new_state}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def finished(self) -> bool:
        return not _TRANSITIONS[self.state]


# the engine runs in its own session so a kill also reaches whatever a
# launcher such as flatpak spawned underneath it
_SPAWN_KWARGS: dict[str, object] = {"start_new_session": True} if os.name == "posix" else {}


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()


class ConversionInvoker:
    """Runs the external engine once and locates what it wrote.

    No retries happen here: a failed or timed-out run is reported as such
    and the caller decides what to do with the request.
    """

    def __init__(
        self,
        launcher: Launcher,
        resolver: ArtifactResolver | None = None,
        *,
        timeout_sec: float = CONVERSION_TIMEOUT_SEC,
        logger: logging.Logger | None = None,
    ) -> None:
        self._launcher = launcher
        self._resolver = resolver or ArtifactResolver(logger=logger)
        self._timeout = timeout_sec
        self._log = logger or logging.getLogger(__name__)

    @property
    def launcher(self) -> Launcher:
        return self._launcher

    async def convert(self, staged: StagedFile, output_dir: str | Path) -> ConversionResult:
        inv = Invocation(staged=staged, output_dir=Path(output_dir))
        try:
            return await self._run(inv)
        finally:
            if not inv.finished:
                inv.advance(InvocationState.FAILED)
            self._log.debug("invocation for %s ended in %s", staged.path.name, inv.state)

    async def _run(self, inv: Invocation) -> ConversionResult:
        before = DirectorySnapshot.capture(inv.output_dir)
        inv.advance(InvocationState.SNAPSHOT_TAKEN)

        inv.command = self._launcher.command(inv.staged.path.resolve(), inv.output_dir.resolve())
        self._log.info("running conversion via %s: %s", self._launcher.name, shlex.join(inv.command))
        inv.advance(InvocationState.INVOKING)

        try:
            proc = await asyncio.create_subprocess_exec(
                *inv.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **_SPAWN_KWARGS,
            )
        except OSError as e:
            inv.advance(InvocationState.FAILED)
            raise ConversionFailed("could not start the conversion engine", detail=str(e)) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            inv.advance(InvocationState.TIMED_OUT)
            self._log.error("conversion of %s timed out after %ss", inv.staged.path.name, self._timeout)
            raise ConversionTimeout(f"conversion timed out after {self._timeout:g} seconds") from None
        except asyncio.CancelledError:
            await _kill(proc)
            self._log.warning("conversion of %s cancelled; engine killed", inv.staged.path.name)
            raise

        inv.returncode = proc.returncode
        inv.stderr = (stderr or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            inv.advance(InvocationState.FAILED)
            self._log.error("engine exited with %s: %s", proc.returncode, inv.stderr)
            raise ConversionFailed(
                f"conversion engine exited with code {proc.returncode}",
                detail=inv.stderr or None,
            )

        produced = self._resolver.resolve(inv.staged.base_name, inv.output_dir, before)
        if produced is None:
            inv.advance(InvocationState.FAILED)
            raise ArtifactNotFound("converted PDF file not found", detail=inv.stderr or None)

        size = produced.stat().st_size
        inv.advance(InvocationState.SUCCEEDED)
        self._log.info("conversion produced %s (%d bytes)", produced.name, size)
        return ConversionResult(path=produced, size=size)


async def engine_version(launcher: Launcher, *, logger: logging.Logger | None = None) -> str | None:
    """Ask the engine for its version; None when it cannot be run."""
    log = logger or logging.getLogger(__name__)
    cmd = launcher.version_command()
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **_SPAWN_KWARGS,
        )
    except OSError as e:
        log.error("conversion engine check failed (%s): %s", shlex.join(cmd), e)
        return None
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=VERSION_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        await _kill(proc)
        log.error("conversion engine check timed out: %s", shlex.join(cmd))
        return None
    if proc.returncode != 0:
        log.error("conversion engine check exited with %s: %s", proc.returncode, stderr.decode(errors="replace").strip())
        return None
    version = stdout.decode("utf-8", errors="replace").strip()
    log.info("conversion engine version: %s", version)
    return version
