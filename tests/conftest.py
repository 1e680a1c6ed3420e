"""Shared fixtures for conversion service tests."""

import sys
from pathlib import Path

import pytest

from office_pdf_service.conversion import (
    ArtifactResolver,
    ConversionInvoker,
    ConversionOrchestrator,
    DiskMethod,
    DiskSpaceProbe,
    DiskSpaceReport,
    LocalStorage,
    StagedFile,
)

MB = 1024 * 1024

# Fake engines: each script receives <input path> <output dir> like the real
# launchers pass them, and mimics one LibreOffice behaviour.
WRITE_PDF = (
    "import pathlib, sys\n"
    "src, out = pathlib.Path(sys.argv[1]), pathlib.Path(sys.argv[2])\n"
    "(out / (src.stem + '.pdf')).write_bytes(b'%PDF-1.4\\n' + b'x' * 2048)\n"
)
WRITE_RENAMED_PDF = (
    "import pathlib, sys\n"
    "out = pathlib.Path(sys.argv[2])\n"
    "(out / 'export_0001.pdf').write_bytes(b'%PDF-1.4\\n')\n"
)
WRITE_EMPTY_PDF = (
    "import pathlib, sys\n"
    "src, out = pathlib.Path(sys.argv[1]), pathlib.Path(sys.argv[2])\n"
    "(out / (src.stem + '.pdf')).write_bytes(b'')\n"
)
WRITE_NOTHING = "pass\n"
FAIL = "import sys\nsys.stderr.write('Error: source file could not be loaded')\nsys.exit(1)\n"
HANG = "import time\ntime.sleep(60)\n"


class ScriptLauncher:
    """Launcher that runs a small Python script in place of LibreOffice."""

    name = "script"

    def __init__(self, script: str) -> None:
        self.script = script
        self.calls: list[tuple[Path, Path]] = []

    def command(self, input_path: Path, output_dir: Path) -> list[str]:
        self.calls.append((input_path, output_dir))
        return [sys.executable, "-c", self.script, str(input_path), str(output_dir)]

    def version_command(self) -> list[str]:
        return [sys.executable, "-c", "print('LibreOffice 7.6.4.1')"]


def fixed_free_space(probe: DiskSpaceProbe, monkeypatch, free: int, total: int = 1024 * MB) -> DiskSpaceProbe:
    def native(path: str) -> DiskSpaceReport:
        return DiskSpaceReport(
            path=path,
            method=DiskMethod.NATIVE,
            total_bytes=total,
            free_bytes=free,
            used_bytes=total - free,
            usage_percentage=round((total - free) / total * 100, 2),
        )

    monkeypatch.setattr(probe, "_native", native)
    return probe


def make_staged(directory: Path, name: str, size: int, prefix: str = "1700000000000-42") -> StagedFile:
    """Create a staged input of ``size`` bytes (sparse, so large sizes are cheap)."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{prefix}-{name}"
    with path.open("wb") as f:
        f.truncate(size)
    return StagedFile(path=path, original_name=name, byte_size=size, declared_name=name)


@pytest.fixture()
def storage(tmp_path):
    s = LocalStorage(tmp_path / "uploads", tmp_path / "converted")
    s.ensure_dirs()
    return s


@pytest.fixture()
def build_orchestrator(storage, monkeypatch):
    """Factory: orchestrator around a script engine and a fixed free-space figure."""

    def _build(script: str = WRITE_PDF, free: int = 1024 * MB, timeout_sec: float = 30):
        launcher = ScriptLauncher(script)
        probe = fixed_free_space(DiskSpaceProbe(), monkeypatch, free)
        invoker = ConversionInvoker(launcher, ArtifactResolver(), timeout_sec=timeout_sec)
        return ConversionOrchestrator(storage, probe, invoker), launcher

    return _build
