from __future__ import annotations

from datetime import UTC, datetime
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.conversations import router as conversations_router
from .routers.generation import router as generation_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Provider keys and SITESMITH_* settings from .env if present

app = FastAPI(title="Sitesmith API", version="0.1.0")

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(conversations_router)
app.include_router(generation_router)

# Also expose the same routers under /api
app.include_router(conversations_router, prefix="/api")
app.include_router(generation_router, prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "Sitesmith API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "state": os.getenv("SITESMITH_STATE_IMPL", "memory").lower(),
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
