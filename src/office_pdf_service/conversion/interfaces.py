import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol


class DiskMethod:
    NATIVE = "native"
    EXTERNAL_COMMAND = "external-command"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StagedFile:
    path: Path
    original_name: str
    byte_size: int
    declared_name: str = ""
    content_type: str = "application/octet-stream"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def base_name(self) -> str:
        return self.path.stem


@dataclass(frozen=True)
class DirectorySnapshot:
    """File names present in a directory at capture time.

    `order` keeps the filesystem enumeration order so ties can be broken
    the same way the directory listed them.
    """

    directory: Path
    order: tuple[str, ...]

    @classmethod
    def capture(cls, directory: str | Path) -> "DirectorySnapshot":
        d = Path(directory)
        return cls(directory=d, order=tuple(os.listdir(d)))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self.order)

    def __contains__(self, name: object) -> bool:
        return name in self.order

    def new_since(self, before: "DirectorySnapshot") -> list[str]:
        seen = before.names
        return [n for n in self.order if n not in seen]


@dataclass(frozen=True)
class ConversionResult:
    path: Path
    size: int


@dataclass(frozen=True)
class DiskSpaceReport:
    path: str
    method: str
    total_bytes: int | None = None
    free_bytes: int | None = None
    used_bytes: int | None = None
    usage_percentage: float | None = None
    warning: str | None = None

    @property
    def known(self) -> bool:
        return self.method != DiskMethod.UNKNOWN

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "method": self.method,
            "total_bytes": self.total_bytes,
            "free_bytes": self.free_bytes,
            "used_bytes": self.used_bytes,
            "usage_percentage": self.usage_percentage,
            "warning": self.warning,
        }


@dataclass(frozen=True)
class DiskSpaceCheck:
    sufficient: bool
    required_bytes: int
    report: DiskSpaceReport
    free_bytes: int | None = None
    deficit_bytes: int = 0
    warning: str | None = None


@dataclass(frozen=True)
class ConversionRequest:
    staged: StagedFile
    output_dir: Path

    @property
    def required_free_bytes(self) -> int:
        return self.staged.byte_size * 2


class Launcher(Protocol):
    """Builds the engine command line for one platform strategy."""

    name: str

    def command(self, input_path: Path, output_dir: Path) -> list[str]:
        ...

    def version_command(self) -> list[str]:
        ...


class DiskProbeGateway(Protocol):
    def probe(self, path: str | Path) -> DiskSpaceReport:
        ...

    def check(self, path: str | Path, required_bytes: int) -> DiskSpaceCheck:
        ...


class StorageGateway(Protocol):
    @property
    def upload_dir(self) -> Path:
        ...

    @property
    def output_root(self) -> Path:
        ...

    def new_output_dir(self, staged: StagedFile) -> Path:
        ...

    def remove(self, path: str | Path) -> bool:
        ...
