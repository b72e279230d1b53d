"""POST /api/analyze — classify an uploaded image and return rendered artifacts."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from lymphoscope.config import Settings
from lymphoscope.dependencies import get_pipeline, get_renderer, get_run_guard, get_settings
from lymphoscope.engine.classes import DISCLAIMER, format_confidence
from lymphoscope.engine.context import CanonicalImage, PredictionResult, ProgressEvent
from lymphoscope.engine.events import LoggingSink, fan_out
from lymphoscope.engine.guard import RunGuard
from lymphoscope.engine.normalizer import normalize_image
from lymphoscope.engine.pipeline import InferencePipeline
from lymphoscope.errors import (
    AnalysisError,
    InvalidArtifactError,
    ModelLoadError,
    RunInProgressError,
)
from lymphoscope.models.responses import AnalyzeResponse, ArtifactPayload, ProgressPayload
from lymphoscope.render.heatmap import HeatmapRenderer, overlay_heatmap
from lymphoscope.render.surface import to_png

logger = logging.getLogger(__name__)

router = APIRouter()

_SENTINEL = object()  # marks end of queue

# Runs whose client went away; held here until they finish
_abandoned: set[asyncio.Task] = set()

_STATUS_FOR_ERROR: dict[type[Exception], int] = {
    RunInProgressError: 409,
    ModelLoadError: 503,
    AnalysisError: 422,
}


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _b64_png(rgba) -> str:
    return base64.b64encode(to_png(rgba)).decode("ascii")


async def _read_image(file: UploadFile) -> CanonicalImage:
    data = await file.read()
    loop = asyncio.get_running_loop()
    try:
        # Decode and resize off the event loop
        return await loop.run_in_executor(None, normalize_image, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _progress_payload(event: ProgressEvent) -> ProgressPayload:
    partial = event.partial
    return ProgressPayload(
        stage=event.stage.value,
        percent=event.percent,
        artifacts=partial.artifact_names if partial else [],
        predicted_class=partial.predicted_class if partial else None,
        confidence=partial.confidence if partial else None,
    )


def _artifact_payloads(
    result: PredictionResult,
    image: CanonicalImage,
    renderer: HeatmapRenderer,
    size: int,
) -> list[ArtifactPayload]:
    payloads: list[ArtifactPayload] = []
    for artifact in result.artifacts:
        try:
            heatmap = renderer.render(artifact, size, size)
        except InvalidArtifactError as e:
            # Shape problems surface at render time; keep the rest of the result
            logger.warning("Skipping artifact %s: %s", artifact.name, e)
            continue
        payloads.append(
            ArtifactPayload(
                name=artifact.name,
                side=artifact.side,
                heatmap_png=_b64_png(heatmap),
                overlay_png=_b64_png(overlay_heatmap(image, heatmap)),
            )
        )
    return payloads


def _build_response(
    result: PredictionResult,
    image: CanonicalImage,
    renderer: HeatmapRenderer,
    size: int,
    elapsed_ms: float,
) -> AnalyzeResponse:
    info = result.class_info
    return AnalyzeResponse(
        predicted_class=result.predicted_class,
        class_name=info.name,
        description=info.description,
        confidence=result.confidence,
        confidence_display=format_confidence(result.confidence),
        confidence_level=result.confidence_level,
        disclaimer=DISCLAIMER,
        artifacts=_artifact_payloads(result, image, renderer, size),
        processing_time_ms=round(elapsed_ms, 1),
    )


def _status_for(error: Exception) -> int:
    for error_type, status in _STATUS_FOR_ERROR.items():
        if isinstance(error, error_type):
            return status
    return 500


def _log_abandoned(task: asyncio.Task) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Abandoned run failed: %s", error)


async def _stream_analyze(
    image: CanonicalImage,
    pipeline: InferencePipeline,
    guard: RunGuard,
    renderer: HeatmapRenderer,
    size: int,
) -> AsyncGenerator[str, None]:
    """Run the pipeline as a task, yielding SSE events as progress arrives."""
    start = time.perf_counter()
    queue: asyncio.Queue = asyncio.Queue()
    sink = fan_out(LoggingSink(), queue.put_nowait)

    async def _run() -> PredictionResult:
        # The task owns the guard, so a disconnected client cannot release it early
        try:
            async with guard.hold():
                return await pipeline.run(image, sink)
        finally:
            queue.put_nowait(_SENTINEL)

    task = asyncio.create_task(_run())
    try:
        while True:
            item = await queue.get()
            if item is _SENTINEL:
                break
            yield _sse("progress", _progress_payload(item).model_dump())
        result = await task
    except (RunInProgressError, ModelLoadError, AnalysisError) as e:
        yield _sse("error", {"type": "error", "status": _status_for(e), "message": str(e)})
        return
    finally:
        if not task.done():
            logger.info("Client disconnected; run continues in the background")
            _abandoned.add(task)
            task.add_done_callback(_log_abandoned)

    elapsed = (time.perf_counter() - start) * 1000
    response = _build_response(result, image, renderer, size, elapsed)
    yield _sse("result", response.model_dump())
    yield _sse("done", {"type": "done"})


@router.post("/analyze/stream")
async def analyze_stream(
    file: UploadFile = File(...),
    pipeline: InferencePipeline = Depends(get_pipeline),
    guard: RunGuard = Depends(get_run_guard),
    renderer: HeatmapRenderer = Depends(get_renderer),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    image = await _read_image(file)
    return StreamingResponse(
        _stream_analyze(image, pipeline, guard, renderer, settings.heatmap_size),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    file: UploadFile = File(...),
    pipeline: InferencePipeline = Depends(get_pipeline),
    guard: RunGuard = Depends(get_run_guard),
    renderer: HeatmapRenderer = Depends(get_renderer),
    settings: Settings = Depends(get_settings),
) -> AnalyzeResponse:
    start = time.perf_counter()
    image = await _read_image(file)

    try:
        async with guard.hold():
            result = await pipeline.run(image, LoggingSink())
    except (RunInProgressError, ModelLoadError, AnalysisError) as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e)) from e

    elapsed = (time.perf_counter() - start) * 1000
    return _build_response(result, image, renderer, settings.heatmap_size, elapsed)
