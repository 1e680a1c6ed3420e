import asyncio
import logging
import os
from collections import deque
from pathlib import Path

from fastapi import BackgroundTasks, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from office_pdf_service import __version__
from office_pdf_service.conversion import (
    ArtifactResolver,
    ConversionError,
    ConversionInvoker,
    ConversionOrchestrator,
    ConversionTimeout,
    DiskSpaceProbe,
    LocalStorage,
    StagedFile,
    UploadIngestor,
    engine_version,
    select_launcher,
)
from office_pdf_service.conversion.ingest import ALLOWED_EXTENSIONS

app = FastAPI(
    title="Office to PDF Conversion Service",
    version=os.getenv("DOC_SERVICE_VERSION", __version__),
    description=(
        "HTTP API that converts uploaded office documents (doc, docx, xls, "
        "xlsx, ppt, pptx) to PDF using a headless LibreOffice."
    ),
)

# Global configuration defaults
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "./uploads")).resolve()
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "./converted")).resolve()
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "100"))
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024
CONVERSION_TIMEOUT_SEC = float(os.getenv("CONVERSION_TIMEOUT_SEC", "120"))
REQUEST_TIMEOUT_SEC = float(os.getenv("REQUEST_TIMEOUT_SEC", "600"))
LOG_FILE = os.getenv("LOG_FILE", "./file-converter.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONVERTER_LAUNCHER = os.getenv("CONVERTER_LAUNCHER", "auto")
SOFFICE_BIN = os.getenv("SOFFICE_BIN", "soffice")
LOG_TAIL_DEFAULT = 1000
LOG_TAIL_MAX = 5000

logger = logging.getLogger("office_pdf_service")

INGESTOR: UploadIngestor | None = None
SERVICE: ConversionOrchestrator | None = None
ENGINE_VERSION: str | None = None


def configure_logging() -> None:
    if logging.getLogger().handlers:
        # root already configured elsewhere (uvicorn --log-config, test runners)
        return
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(LOG_FILE, encoding="utf-8"))
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, handlers=handlers)


def build_service() -> tuple[UploadIngestor, ConversionOrchestrator]:
    storage = LocalStorage(UPLOAD_DIR, OUTPUT_DIR)
    storage.ensure_dirs()
    launcher = select_launcher(CONVERTER_LAUNCHER, soffice_bin=SOFFICE_BIN)
    invoker = ConversionInvoker(launcher, ArtifactResolver(), timeout_sec=CONVERSION_TIMEOUT_SEC)
    ingestor = UploadIngestor(storage.upload_dir, max_bytes=MAX_UPLOAD_BYTES)
    return ingestor, ConversionOrchestrator(storage, DiskSpaceProbe(), invoker)


def _components() -> tuple[UploadIngestor, ConversionOrchestrator]:
    assert INGESTOR is not None and SERVICE is not None
    return INGESTOR, SERVICE


def _failure(status_code: int, message: str, code: str | None = None) -> JSONResponse:
    body: dict[str, object] = {"success": False, "error": message}
    if code:
        body["code"] = code
    return JSONResponse(status_code=status_code, content=body)


@app.on_event("startup")
async def _startup() -> None:
    configure_logging()
    global INGESTOR, SERVICE, ENGINE_VERSION
    INGESTOR, SERVICE = build_service()
    logger.info(
        "conversion service starting (uploads=%s, output=%s, launcher=%s)",
        SERVICE.storage.upload_dir,
        SERVICE.storage.output_root,
        SERVICE.invoker.launcher.name,
    )
    ENGINE_VERSION = await engine_version(SERVICE.invoker.launcher)
    if ENGINE_VERSION is None:
        # keep serving; conversions will report the engine failure per request
        logger.error("LibreOffice is not usable; check the installation")


@app.on_event("shutdown")
async def _shutdown() -> None:
    logger.info("conversion service shutting down")


@app.exception_handler(ConversionError)
async def _conversion_error(request: Request, exc: ConversionError) -> JSONResponse:
    if exc.status_code >= 500:
        message = f"file conversion failed: {exc}"
    else:
        message = str(exc)
    logger.error("%s %s -> %s", request.method, request.url.path, message)
    return _failure(exc.status_code, message, exc.code)


@app.exception_handler(RequestValidationError)
async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    return _failure(400, f"invalid request: {problems}", "invalid_request")


@app.exception_handler(404)
async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return _failure(404, "endpoint not found")


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _failure(500, f"internal server error: {exc}")


@app.get("/health")
async def health() -> dict[str, object]:
    """Basic health check endpoint, with the current disk report."""
    report = await asyncio.to_thread(DiskSpaceProbe().probe, OUTPUT_DIR if OUTPUT_DIR.exists() else Path.cwd())
    return {"status": "ok", "disk": report.to_dict()}


@app.get("/api/info")
def info() -> dict[str, object]:
    launcher = SERVICE.invoker.launcher.name if SERVICE is not None else None
    return {
        "service": "Office to PDF Converter",
        "version": app.version,
        "supportedFormats": sorted(ext.lstrip(".") for ext in ALLOWED_EXTENSIONS),
        "maxFileSize": f"{MAX_UPLOAD_MB}MB",
        "conversionMethod": "LibreOffice Command Line",
        "launcher": launcher,
        "engineVersion": ENGINE_VERSION,
    }


async def _ingest(request: Request, ingestor: UploadIngestor) -> StagedFile:
    """Stage the request body using whichever upload strategy it uses."""
    content_type = request.headers.get("content-type", "")
    if "application/octet-stream" in content_type.lower():
        return await ingestor.ingest_stream(request.stream(), request.headers.get("x-file-name"))
    return await ingestor.ingest_multipart(content_type, request.stream())


@app.post("/api/convert-docx-to-pdf")
async def convert_document(request: Request) -> StreamingResponse:
    """Convert an uploaded office document to PDF.

    Accepts either a raw ``application/octet-stream`` body with the original
    name in ``X-File-Name``, or multipart/form-data with a part named "file".
    Responds with the PDF as an attachment; staged and converted files are
    removed once the response has been sent.
    """
    ingestor, service = _components()
    deadline = asyncio.get_running_loop().time() + REQUEST_TIMEOUT_SEC

    async def ingest_and_convert():
        staged = await _ingest(request, ingestor)
        try:
            return await service.convert(staged)
        except BaseException:
            service.discard(staged)
            raise

    try:
        doc = await asyncio.wait_for(ingest_and_convert(), timeout=REQUEST_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        raise ConversionTimeout(f"request exceeded {REQUEST_TIMEOUT_SEC:g} seconds") from None

    headers = {
        "Content-Disposition": f'attachment; filename="{doc.download_name}"',
        "Content-Length": str(doc.size),
    }
    cleanup = BackgroundTasks()
    cleanup.add_task(doc.cleanup)
    return StreamingResponse(
        doc.iter_bytes(deadline=deadline),
        media_type="application/pdf",
        headers=headers,
        background=cleanup,
    )


@app.post("/api/test-convert")
async def check_upload(request: Request) -> JSONResponse:
    """Check that a multipart upload is received and staged, without converting it."""
    ingestor, service = _components()
    staged = await ingestor.ingest_multipart(request.headers.get("content-type", ""), request.stream())
    try:
        size = staged.path.stat().st_size
        body = {
            "success": True,
            "message": "file received",
            "fileInfo": {
                "originalName": staged.declared_name,
                "size": size,
                "uploadPath": str(staged.path),
            },
        }
    finally:
        service.discard(staged)
    return JSONResponse(content=body)


@app.get("/log", response_class=PlainTextResponse, response_model=None)
def tail_log(lines: int = Query(LOG_TAIL_DEFAULT, ge=1)) -> Response:
    """Return the last ``lines`` non-empty lines of the service log."""
    path = Path(LOG_FILE)
    if not path.is_file():
        return _failure(404, f"log file not found: {path}")
    count = min(lines, LOG_TAIL_MAX)
    with path.open("r", encoding="utf-8", errors="replace") as f:
        tail = deque((ln.rstrip("\n") for ln in f if ln.strip()), maxlen=count)
    return PlainTextResponse(content="\n".join(tail), media_type="text/plain; charset=utf-8")


def run() -> None:
    """Run an ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:3001). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))
    reload = os.getenv("RELOAD", "false").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("office_pdf_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
