import logging
import shutil
import sys
from pathlib import Path

from .errors import CleanupFailure
from .interfaces import Launcher, StagedFile

FLATPAK_APP_ID = "org.libreoffice.LibreOffice"


def _engine_args(input_path: Path, output_dir: Path) -> list[str]:
    return ["--headless", "--convert-to", "pdf", "--outdir", str(output_dir), str(input_path)]


class FlatpakLauncher:
    """Runs LibreOffice through the flatpak sandbox launcher."""

    name = "flatpak"

    def __init__(self, flatpak_bin: str = "flatpak", app_id: str = FLATPAK_APP_ID) -> None:
        self._bin = flatpak_bin
        self._app_id = app_id

    def command(self, input_path: Path, output_dir: Path) -> list[str]:
        return [self._bin, "run", self._app_id, *_engine_args(input_path, output_dir)]

    def version_command(self) -> list[str]:
        return [self._bin, "run", self._app_id, "--version"]


class SofficeLauncher:
    """Runs the engine's own command-line entry point."""

    name = "soffice"

    def __init__(self, soffice_bin: str = "soffice") -> None:
        self._bin = soffice_bin

    def command(self, input_path: Path, output_dir: Path) -> list[str]:
        return [self._bin, *_engine_args(input_path, output_dir)]

    def version_command(self) -> list[str]:
        return [self._bin, "--version"]


def select_launcher(
    preference: str = "auto",
    *,
    platform: str | None = None,
    soffice_bin: str = "soffice",
    which=shutil.which,
) -> Launcher:
    """Pick the launcher once, at startup.

    Linux hosts try the flatpak sandbox first and fall back to the plain
    binary when flatpak is not installed; every other platform uses the
    binary directly.
    """
    pref = (preference or "auto").strip().lower()
    if pref == "flatpak":
        return FlatpakLauncher()
    if pref == "soffice":
        return SofficeLauncher(soffice_bin)
    if pref != "auto":
        raise ValueError(f"unknown launcher {preference!r}; expected auto, flatpak or soffice")
    plat = platform or sys.platform
    if plat.startswith("linux") and which("flatpak"):
        return FlatpakLauncher()
    return SofficeLauncher(soffice_bin)


class LocalStorage:
    """Staging and output directories on the local filesystem.

    Each conversion gets its own output subdirectory so concurrent requests
    never see each other's artifacts.
    """

    def __init__(self, upload_dir: str | Path, output_root: str | Path, *, logger: logging.Logger | None = None) -> None:
        self._uploads = Path(upload_dir).resolve()
        self._outputs = Path(output_root).resolve()
        self._log = logger or logging.getLogger(__name__)

    @property
    def upload_dir(self) -> Path:
        return self._uploads

    @property
    def output_root(self) -> Path:
        return self._outputs

    def ensure_dirs(self) -> None:
        for d in (self._uploads, self._outputs):
            d.mkdir(parents=True, exist_ok=True, mode=0o755)

    def new_output_dir(self, staged: StagedFile) -> Path:
        # staged names already carry a unique timestamp/random prefix
        d = self._outputs / staged.path.stem
        d.mkdir(parents=True, exist_ok=True, mode=0o755)
        return d

    def remove(self, path: str | Path) -> bool:
        """Delete a file or directory tree. Missing paths are a no-op.

        Returns False when the delete failed; the failure is logged, not raised.
        """
        p = Path(path)
        try:
            if p.is_dir() and not p.is_symlink():
                shutil.rmtree(p)
            else:
                p.unlink(missing_ok=True)
        except OSError as e:
            self._log.error("%s", CleanupFailure(f"could not remove {p}", detail=str(e)))
            return False
        self._log.debug("removed %s", p)
        return True
