"""Health check + model status endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from lymphoscope.dependencies import get_gateway
from lymphoscope.engine.gateway import ModelGateway
from lymphoscope.errors import ModelLoadError
from lymphoscope.models.responses import HealthResponse, ModelStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(gateway: ModelGateway = Depends(get_gateway)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version="0.1.0",
        model_loaded=gateway.is_loaded,
        classes=list(gateway.class_names),
    )


@router.get("/model", response_model=ModelStatusResponse)
async def model_status(gateway: ModelGateway = Depends(get_gateway)) -> ModelStatusResponse:
    return ModelStatusResponse(
        loaded=gateway.is_loaded,
        model_url=gateway.model_url,
        progress=1.0 if gateway.is_loaded else 0.0,
    )


@router.post("/model/load", response_model=ModelStatusResponse)
async def load_model(gateway: ModelGateway = Depends(get_gateway)) -> ModelStatusResponse:
    def _on_progress(fraction: float) -> None:
        logger.debug("Model load %.0f%%", fraction * 100)

    try:
        await gateway.load(_on_progress)
    except ModelLoadError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    return ModelStatusResponse(loaded=True, model_url=gateway.model_url, progress=1.0)
