"""FastAPI dependency injection."""

from __future__ import annotations

from fastapi import Request

from lymphoscope.config import settings
from lymphoscope.engine.gateway import ModelGateway
from lymphoscope.engine.guard import RunGuard
from lymphoscope.engine.pipeline import InferencePipeline
from lymphoscope.render.heatmap import HeatmapRenderer


def get_settings():
    return settings


def get_gateway(request: Request) -> ModelGateway:
    return request.app.state.gateway


def get_pipeline(request: Request) -> InferencePipeline:
    return request.app.state.pipeline


def get_run_guard(request: Request) -> RunGuard:
    return request.app.state.run_guard


def get_renderer(request: Request) -> HeatmapRenderer:
    return request.app.state.renderer
