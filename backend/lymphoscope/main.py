"""FastAPI app factory."""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lymphoscope.config import settings
from lymphoscope.engine.config import PipelineConfig
from lymphoscope.engine.gateway import ModelGateway
from lymphoscope.engine.guard import RunGuard
from lymphoscope.engine.pipeline import InferencePipeline
from lymphoscope.render.heatmap import HeatmapRenderer

load_dotenv()

logging.basicConfig(
    level=getattr(logging, settings.lymphoscope_log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)


def create_app(
    gateway: ModelGateway | None = None,
    config: PipelineConfig | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Lymphoscope",
        description="Staged lymphoma image classification with progressive feature heatmaps",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One gateway per process, shared by reference with the pipeline
    gateway = gateway or ModelGateway(settings.model_url)
    app.state.gateway = gateway
    app.state.pipeline = InferencePipeline(gateway, config or PipelineConfig.from_settings(settings))
    app.state.run_guard = RunGuard()
    app.state.renderer = HeatmapRenderer(overlay_opacity=settings.overlay_opacity)

    from lymphoscope.api.router import api_router

    app.include_router(api_router)

    return app


app = create_app()
