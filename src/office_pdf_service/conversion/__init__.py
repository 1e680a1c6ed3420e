"""
Domain layer for office-to-PDF conversion.
Provides the pipeline pieces (disk preflight, upload ingestion, engine
invocation, artifact resolution) and an orchestrator that composes them so
front-ends (HTTP or others) share the same core logic.
"""

from .adapters import FlatpakLauncher, LocalStorage, SofficeLauncher, select_launcher
from .disk import DiskSpaceProbe, format_bytes
from .errors import (
    ArtifactNotFound,
    CleanupFailure,
    ConversionError,
    ConversionFailed,
    ConversionTimeout,
    EmptyArtifact,
    InsufficientDiskSpace,
    MalformedUpload,
    SizeExceeded,
    UnsupportedFileType,
)
from .formdata import MultipartFileReader
from .ingest import UploadIngestor
from .interfaces import (
    ConversionRequest,
    ConversionResult,
    DirectorySnapshot,
    DiskMethod,
    DiskSpaceCheck,
    DiskSpaceReport,
    StagedFile,
)
from .invoker import ConversionInvoker, InvocationState, engine_version
from .resolver import ArtifactResolver, similarity
from .service import ConversionOrchestrator, ConvertedDocument
