import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from .interfaces import DiskMethod, DiskSpaceCheck, DiskSpaceReport

UNITS = ["Bytes", "KB", "MB", "GB", "TB"]
DF_TIMEOUT_SEC = 10


def format_bytes(n: int | None, decimals: int = 2) -> str:
    if n is None:
        return "N/A"
    if n <= 0:
        return "0 Bytes"
    i = 0
    value = float(n)
    while value >= 1024 and i < len(UNITS) - 1:
        value /= 1024
        i += 1
    # 1.50 MB -> "1.5 MB", 2.00 GB -> "2 GB"
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{text} {UNITS[i]}"


def _percentage(used: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(used / total * 100, 2)


def parse_df_output(output: str, path: str) -> DiskSpaceReport:
    """Parse ``df -k`` output (1K blocks).

    Long device names make df wrap the data row, so every line after the
    header is joined before splitting into columns.
    """
    lines = [ln for ln in output.strip().splitlines() if ln.strip()]
    if len(lines) < 2:
        raise ValueError("unexpected df output")
    cols = " ".join(lines[1:]).split()
    if len(cols) < 4:
        raise ValueError("unexpected df output")
    total = int(cols[1]) * 1024
    used = int(cols[2]) * 1024
    free = int(cols[3]) * 1024
    return DiskSpaceReport(
        path=path,
        method=DiskMethod.EXTERNAL_COMMAND,
        total_bytes=total,
        free_bytes=free,
        used_bytes=used,
        usage_percentage=_percentage(used, total),
    )


def parse_wmic_output(output: str, path: str) -> DiskSpaceReport:
    """Parse ``wmic logicaldisk ... get FreeSpace,Size`` output.

    wmic prints columns alphabetically, so the data row is ``FreeSpace Size``.
    """
    lines = [ln for ln in output.strip().splitlines() if ln.strip()]
    if len(lines) < 2:
        raise ValueError("unexpected wmic output")
    cols = lines[1].split()
    if len(cols) < 2:
        raise ValueError("unexpected wmic output")
    free = int(cols[0])
    total = int(cols[1])
    used = total - free
    return DiskSpaceReport(
        path=path,
        method=DiskMethod.EXTERNAL_COMMAND,
        total_bytes=total,
        free_bytes=free,
        used_bytes=used,
        usage_percentage=_percentage(used, total),
    )


class DiskSpaceProbe:
    """Reports free space for a path using the first strategy that works.

    Order: native filesystem statistics, then the platform disk-usage
    command, then an ``unknown`` report. Nothing here raises.
    """

    def __init__(self, *, platform: str | None = None, logger: logging.Logger | None = None) -> None:
        self._platform = platform or sys.platform
        self._log = logger or logging.getLogger(__name__)

    def probe(self, path: str | Path) -> DiskSpaceReport:
        p = str(path)
        try:
            return self._native(p)
        except Exception as e:
            self._log.info("native disk statistics unavailable for %s: %s", p, e)
        try:
            return self._external(p)
        except Exception as e:
            self._log.error("disk usage command failed for %s: %s", p, e)
        return DiskSpaceReport(
            path=p,
            method=DiskMethod.UNKNOWN,
            warning="could not determine disk space; check filesystem permissions",
        )

    def check(self, path: str | Path, required_bytes: int) -> DiskSpaceCheck:
        report = self.probe(path)
        if not report.known or report.free_bytes is None:
            warning = report.warning or "could not determine disk space"
            self._log.warning("disk check for %s is advisory only: %s", report.path, warning)
            return DiskSpaceCheck(
                sufficient=True,
                required_bytes=required_bytes,
                report=report,
                warning=warning,
            )
        deficit = max(0, required_bytes - report.free_bytes)
        result = DiskSpaceCheck(
            sufficient=deficit == 0,
            required_bytes=required_bytes,
            report=report,
            free_bytes=report.free_bytes,
            deficit_bytes=deficit,
        )
        self._log.info(
            "disk check %s: free=%s required=%s usage=%s%% via %s -> %s",
            report.path,
            format_bytes(report.free_bytes),
            format_bytes(required_bytes),
            report.usage_percentage,
            report.method,
            "ok" if result.sufficient else "insufficient",
        )
        return result

    def _native(self, path: str) -> DiskSpaceReport:
        statvfs = getattr(os, "statvfs", None)
        if callable(statvfs):
            st = statvfs(path)
            total = st.f_blocks * st.f_frsize
            free = st.f_bavail * st.f_frsize
        else:
            usage = shutil.disk_usage(path)
            total = usage.total
            free = usage.free
        if total <= 0:
            raise ValueError("filesystem reports zero size")
        used = total - free
        return DiskSpaceReport(
            path=path,
            method=DiskMethod.NATIVE,
            total_bytes=total,
            free_bytes=free,
            used_bytes=used,
            usage_percentage=_percentage(used, total),
        )

    def _external(self, path: str) -> DiskSpaceReport:
        if self._platform.startswith("win"):
            drive = os.path.splitdrive(os.path.abspath(path))[0] or path[:2]
            cmd = ["wmic", "logicaldisk", "where", f"DeviceID='{drive}'", "get", "FreeSpace,Size"]
            parse = parse_wmic_output
        else:
            cmd = ["df", "-k", path]
            parse = parse_df_output
        out = subprocess.run(cmd, capture_output=True, text=True, timeout=DF_TIMEOUT_SEC, check=True)
        return parse(out.stdout, path)
