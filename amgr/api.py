from __future__ import annotations

import os
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from .api_models import DependencyResponse, EventResponse, HealthResponse, UploadResponse
from .changes import ChangeQueue, QueueFull
from .db import EventLog
from .orchestrator import Orchestrator, create_orchestrator
from .registry import KeyMode, name_key, path_key
from .service import ArtifactsService
from .settings import Settings
from .storage import StorageError, extract, symlink, validate_name

log = structlog.get_logger(__name__)


def dependency_key(settings: Settings, mode: KeyMode, target_name: str) -> str:
    """Key under which workloads see an uploaded file."""
    if mode is KeyMode.PATH:
        return path_key(f"{settings.host_dir.rstrip('/')}/{target_name}")
    return name_key(target_name)


def _discard(part: str) -> None:
    if os.path.exists(part):
        os.remove(part)


def _post_process(path: str, into_dir: str, src: str | None, link: str | None) -> bool:
    """Extract the written file and swap the symlink; returns whether it was extracted."""
    extracted = extract(path, into_dir)
    if src is not None and link is not None:
        symlink(os.path.join(into_dir, src), link)
    return extracted


def create_app(
    settings: Settings,
    orchestrator: Orchestrator | None = None,
    service: ArtifactsService | None = None,
    queue: ChangeQueue | None = None,
    events: EventLog | None = None,
    start_background: bool = True,
) -> FastAPI:
    events = events or EventLog(settings.db_path)
    queue = queue or ChangeQueue(settings.queue_capacity)
    if service is None:
        service = ArtifactsService(
            orchestrator or create_orchestrator(settings),
            mode=KeyMode(settings.key_mode),
            flush_on_stop=settings.flush_on_stop,
            events=events,
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if start_background:
            service.start_polling(settings.marathon_query_interval_s)
            service.start_restart_processing(
                queue, settings.restart_batch_count, settings.restart_batch_timeout_s
            )
        yield
        if start_background:
            service.stop(block=True, timeout_s=settings.restart_batch_timeout_s + settings.marathon_timeout_s)

    app = FastAPI(title="Artifact Manager", lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.queue = queue
    app.state.events = events

    @app.post("/", status_code=201, response_model=UploadResponse)
    async def upload(
        request: Request,
        name: str | None = None,
        src: str | None = None,
        dst: str | None = None,
    ) -> UploadResponse:
        # Admission control happens before touching the filesystem.
        try:
            queue.ensure_capacity()
        except QueueFull as e:
            raise HTTPException(status_code=503, detail=str(e))

        try:
            expected = int(request.headers.get("content-length", "0"))
        except ValueError:
            expected = 0
        if expected <= 0:
            raise HTTPException(status_code=400, detail="invalid request, no content provided")
        if not name:
            raise HTTPException(status_code=400, detail="invalid request, 'name' is required")
        if (src is None) != (dst is None):
            raise HTTPException(status_code=400, detail="invalid request, 'src' and 'dst' must be given together")
        try:
            name = validate_name(name, "name")
            if src is not None and dst is not None:
                src = validate_name(src, "src")
                dst = validate_name(dst, "dst")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"invalid request, {e}")

        path = os.path.join(settings.dir, name)
        part = f"{path}.{secrets.token_hex(4)}.part"
        written = 0
        try:
            await run_in_threadpool(os.makedirs, os.path.dirname(path), exist_ok=True)
            f = await run_in_threadpool(open, part, "wb")
            try:
                async for chunk in request.stream():
                    await run_in_threadpool(f.write, chunk)
                    written += len(chunk)
            finally:
                await run_in_threadpool(f.close)
            if written != expected:
                raise StorageError(
                    f"failed to write entire content to {path}, wrote={written} bytes, expected={expected} bytes"
                )
            await run_in_threadpool(os.replace, part, path)
        except (OSError, StorageError) as e:
            await run_in_threadpool(_discard, part)
            log.error("upload write failed", path=path, error=str(e))
            raise HTTPException(status_code=500, detail=str(e))

        link = os.path.join(settings.dir, dst) if dst is not None else None
        try:
            extracted = await run_in_threadpool(_post_process, path, settings.dir, src, link)
        except StorageError as e:
            log.error("upload post-processing failed", path=path, error=str(e))
            raise HTTPException(status_code=500, detail=str(e))

        key = dependency_key(settings, service.registry.mode, dst or name)
        try:
            queue.try_enqueue(key)
        except QueueFull as e:
            raise HTTPException(status_code=503, detail=f"{e}; file was written but no restart was queued")

        log.info("artifact uploaded", path=path, key=key, extracted=extracted, symlink=link)
        await run_in_threadpool(events.record, "INFO", "upload", f"Wrote {path} ({written} bytes)", key=key)
        return UploadResponse(path=path, key=key, extracted=extracted, symlink=link)

    @app.get("/dependencies", response_model=DependencyResponse)
    def dependencies(key: str = Query(..., min_length=1)) -> DependencyResponse:
        return DependencyResponse(
            key=key,
            known=service.has_dependency(key),
            workload_ids=list(service.get_workload_ids(key)),
        )

    @app.get("/events", response_model=list[EventResponse])
    def list_events(limit: int = Query(100, ge=1, le=1000), kind: str | None = None) -> list[EventResponse]:
        return [EventResponse(**row) for row in events.latest(limit=limit, kind=kind)]

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            key_mode=service.registry.mode.value,
            queue_depth=len(queue),
            queue_capacity=queue.capacity,
            dependency_keys=len(service.registry),
        )

    return app
