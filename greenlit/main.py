"""Greenlit — FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from greenlit.config import settings
from greenlit.db.database import Database
from greenlit.enrichment.base import Enricher
from greenlit.enrichment.claude import ClaudeEnricher
from greenlit.errors import (
    DownloadFailed,
    GreenlitError,
    ScannerInvocationFailed,
    UpstreamUnavailable,
)
from greenlit.guidelines.cache import GuidelineCache
from greenlit.guidelines.fetcher import GuidelineFetcher
from greenlit.report.builder import ReportBuilder
from greenlit.report.layout import REPORT_TITLE, PaginatedRenderer
from greenlit.report.typst import TypstGenerator
from greenlit.scan.normalizer import normalize
from greenlit.scan.runner import ScannerOutput, ScannerRunner

logger = logging.getLogger(__name__)

UPLOAD_CHUNK = 1024 * 1024
DOWNLOAD_USER_AGENT = "Greenlit-Compliance-Scanner/1.0"

_STATUS_BY_KIND = {
    UpstreamUnavailable.kind: 503,
    ScannerInvocationFailed.kind: 502,
    DownloadFailed.kind: 502,
}


# --- Request / Response models ---


class ScanOutputRequest(BaseModel):
    output: str
    stderr: str = ""
    exit_code: int = 0
    enrich: bool = False
    file_name: str | None = None


class ScanUrlRequest(BaseModel):
    url: str
    enrich: bool = False


class ProjectScanRequest(BaseModel):
    model_config = {"populate_by_name": True}

    project_path: str = Field("", alias="projectPath")
    enrich: bool = False


class GuidelineSearchResponse(BaseModel):
    query: str
    results: str
    stderr: str


class ScanRecordResponse(BaseModel):
    scan_id: str
    file_name: str | None
    status: str
    counts: dict[str, int]
    created_at: str | None
    results: dict


class ScanResponse(BaseModel):
    scan_id: str
    report_id: str
    status: str
    counts: dict[str, int]
    page_count: int
    results: dict
    diagnostics: list[str]
    download_url: str


class ReportResponse(BaseModel):
    report_id: str
    scan_id: str
    page_count: int
    document: dict


# --- App factory ---


def create_app(
    cache: GuidelineCache | None = None,
    scanner: ScannerRunner | None = None,
    enricher: Enricher | None = None,
    database: Database | None = None,
    warm_cache: bool = True,
    download_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Wire the service. Every collaborator can be replaced for tests."""
    cache = cache or GuidelineCache(GuidelineFetcher())
    if enricher is None and settings.anthropic_api_key:
        enricher = ClaudeEnricher()
    db = database or Database(settings.database_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await db.connect()
        warm_task = asyncio.create_task(_warm(cache)) if warm_cache else None
        yield
        if warm_task is not None and not warm_task.done():
            warm_task.cancel()
        await db.close()

    app = FastAPI(
        title="Greenlit",
        description="App Store compliance scanning and reports",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.cache = cache
    app.state.scanner = scanner or ScannerRunner()
    app.state.builder = ReportBuilder(cache, enricher)
    app.state.renderer = PaginatedRenderer()
    app.state.typst = TypstGenerator()
    app.state.db = db
    app.state.download_transport = download_transport

    app.add_exception_handler(GreenlitError, _greenlit_error_handler)
    app.include_router(router)
    return app


async def _warm(cache: GuidelineCache) -> None:
    """Pre-populate the guideline cache; a failure here is not fatal."""
    try:
        await cache.get()
        logger.info("App Store guidelines cached")
    except UpstreamUnavailable as exc:
        logger.warning("Failed to cache guidelines on startup: %s", exc)


async def _greenlit_error_handler(request: Request, exc: GreenlitError) -> JSONResponse:
    status_code = _STATUS_BY_KIND.get(exc.kind, 500)
    logger.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


# --- Routes ---

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "service": "Greenlit",
        "version": "0.1.0",
        "guidelines": request.app.state.cache.status(),
    }


@router.get("/api/guidelines")
async def get_guidelines(request: Request):
    cached = await request.app.state.cache.get()
    return cached.to_dict()


@router.post("/api/guidelines/refresh")
async def refresh_guidelines(request: Request):
    cached = await request.app.state.cache.force_refresh()
    return {"message": "Guidelines refreshed", **cached.to_dict()}


@router.get("/api/guidelines/search", response_model=GuidelineSearchResponse)
async def search_guidelines(request: Request, q: str | None = None):
    """Search the guidelines through the scanner's own index."""
    if not q:
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')
    output = await request.app.state.scanner.search_guidelines(q)
    return GuidelineSearchResponse(query=q, results=output.stdout, stderr=output.stderr)


@router.post("/api/scan/upload", response_model=ScanResponse)
async def scan_upload(
    request: Request,
    ipa: UploadFile = File(...),
    enrich: bool = Form(False),
):
    """Scan an uploaded .ipa and produce a report."""
    file_name = ipa.filename or "upload.ipa"
    if not file_name.endswith(".ipa"):
        raise HTTPException(status_code=400, detail="Only .ipa files are allowed")

    path = await _save_upload(ipa)
    try:
        output = await request.app.state.scanner.scan_ipa(str(path))
    finally:
        path.unlink(missing_ok=True)
    return await _run_pipeline(request.app, output, file_name, enrich)


@router.post("/api/scan/url", response_model=ScanResponse)
async def scan_url(request: Request, req: ScanUrlRequest):
    """Download an .ipa over HTTP and scan it."""
    if not req.url.startswith(("http://", "https://")) or not req.url.endswith(".ipa"):
        raise HTTPException(status_code=400, detail="Valid .ipa URL is required")

    path = await _download_ipa(req.url, request.app.state.download_transport)
    try:
        output = await request.app.state.scanner.scan_ipa(str(path))
    finally:
        path.unlink(missing_ok=True)
    return await _run_pipeline(request.app, output, req.url.rsplit("/", 1)[-1], req.enrich)


@router.post("/api/scan/preflight", response_model=ScanResponse)
async def scan_preflight(
    request: Request,
    project_path: str = Form("", alias="projectPath"),
    ipa: UploadFile | None = File(None),
    enrich: bool = Form(False),
):
    """Full preflight of a project directory, optionally with its built .ipa."""
    if not project_path:
        raise HTTPException(status_code=400, detail="Project path is required")

    path = await _save_upload(ipa) if ipa is not None and ipa.filename else None
    try:
        output = await request.app.state.scanner.preflight(
            project_path, str(path) if path else None
        )
    finally:
        if path is not None:
            path.unlink(missing_ok=True)
    return await _run_pipeline(request.app, output, project_path, enrich)


@router.post("/api/scan/code", response_model=ScanResponse)
async def scan_code(request: Request, req: ProjectScanRequest):
    """Source code scan only."""
    if not req.project_path:
        raise HTTPException(status_code=400, detail="Project path is required")
    output = await request.app.state.scanner.codescan(req.project_path)
    return await _run_pipeline(request.app, output, req.project_path, req.enrich)


@router.post("/api/scan/privacy", response_model=ScanResponse)
async def scan_privacy(request: Request, req: ProjectScanRequest):
    """Privacy manifest scan only."""
    if not req.project_path:
        raise HTTPException(status_code=400, detail="Project path is required")
    output = await request.app.state.scanner.privacy(req.project_path)
    return await _run_pipeline(request.app, output, req.project_path, req.enrich)


@router.post("/api/scan/report", response_model=ScanResponse)
async def scan_report(request: Request, req: ScanOutputRequest):
    """Build a report from scanner output produced elsewhere."""
    output = ScannerOutput(stdout=req.output, stderr=req.stderr, exit_code=req.exit_code)
    return await _run_pipeline(request.app, output, req.file_name, req.enrich)


@router.get("/api/scans/{scan_id}", response_model=ScanRecordResponse)
async def get_scan(request: Request, scan_id: str):
    scan = await request.app.state.db.get_scan(scan_id)
    if scan is None:
        raise HTTPException(status_code=404, detail="Scan not found")
    return ScanRecordResponse(
        scan_id=scan["id"],
        file_name=scan["file_name"],
        status=scan["status"],
        counts={
            "critical": scan["critical"],
            "warning": scan["warning"],
            "info": scan["info"],
        },
        created_at=scan["created_at"],
        results=scan["result"],
    )


@router.get("/api/reports/{report_id}", response_model=ReportResponse)
async def get_report(request: Request, report_id: str):
    report = await request.app.state.db.get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return ReportResponse(
        report_id=report["id"],
        scan_id=report["scan_id"],
        page_count=report["page_count"],
        document=report["document"],
    )


@router.get("/api/reports/{report_id}/download")
async def download_report(request: Request, report_id: str):
    report = await request.app.state.db.get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return Response(
        content=report["typst_source"],
        media_type="text/plain; charset=utf-8",
        headers={
            "Content-Disposition": (
                f'attachment; filename="compliance-report-{report_id}.typ"'
            )
        },
    )


# --- Pipeline ---


async def _save_upload(upload: UploadFile) -> Path:
    async def chunks() -> AsyncIterator[bytes]:
        while chunk := await upload.read(UPLOAD_CHUNK):
            yield chunk

    return await _save_stream(chunks())


async def _download_ipa(url: str, transport: httpx.AsyncBaseTransport | None) -> Path:
    """Stream a remote .ipa to disk under the same size limit as uploads."""
    logger.info("Downloading %s", url)
    try:
        async with httpx.AsyncClient(
            timeout=settings.download_timeout,
            transport=transport,
            follow_redirects=True,
        ) as client:
            async with client.stream(
                "GET", url, headers={"User-Agent": DOWNLOAD_USER_AGENT}
            ) as response:
                response.raise_for_status()
                return await _save_stream(response.aiter_bytes(UPLOAD_CHUNK))
    except httpx.HTTPError as exc:
        logger.error("Failed to download %s: %s", url, exc)
        raise DownloadFailed(f"Failed to download .ipa: {exc}", url=url) from exc


async def _save_stream(chunks: AsyncIterator[bytes]) -> Path:
    """Write chunks to a fresh file in the upload dir, enforcing the size limit."""
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"{uuid.uuid4()}.ipa"
    written = 0
    try:
        with path.open("wb") as fh:
            async for chunk in chunks:
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    raise HTTPException(status_code=413, detail="Upload too large")
                await asyncio.to_thread(fh.write, chunk)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    return path


async def _run_pipeline(
    app: FastAPI, output: ScannerOutput, file_name: str | None, enrich: bool
) -> ScanResponse:
    """normalize → build → render → serialize → persist."""
    state = app.state
    scan = normalize(output.stdout, stderr=output.stderr, exit_code=output.exit_code)
    document = await state.builder.build(scan, want_enrichment=enrich)
    pages = state.renderer.render(document)
    typst_source = state.typst.generate(
        pages, title=REPORT_TITLE, geometry=state.renderer.geometry
    )

    results = document.scan.to_dict()
    scan_id = await state.db.create_scan(results, file_name)
    report_id = await state.db.create_report(
        scan_id, document.to_dict(), typst_source, len(pages)
    )
    logger.info(
        "Report %s: status=%s, %d findings, %d pages",
        report_id, document.scan.status.value, len(document.scan.findings), len(pages),
    )
    return ScanResponse(
        scan_id=scan_id,
        report_id=report_id,
        status=document.scan.status.value,
        counts=document.scan.counts.to_dict(),
        page_count=len(pages),
        results=results,
        diagnostics=list(document.diagnostics),
        download_url=f"/api/reports/{report_id}/download",
    )


app = create_app()


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(app, host=settings.host, port=settings.port)
