"""
Health check endpoint.
"""

from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_pipeline
from domains.file_ingest.pipeline import IngestionPipeline

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    store_connected: bool
    active_sources: List[str]
    queue: Dict[str, Any]
    version: str


@router.get("/health", response_model=HealthResponse)
def health_check(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - Fingerprint store answers queries
    - Store writes are not failing persistently
    """
    report = pipeline.health()

    return HealthResponse(
        status=report["status"],
        timestamp=datetime.now(),
        store_connected=report["store"] == "connected",
        active_sources=report["active_sources"],
        queue=report["queue"],
        version=pipeline.settings.api_version
    )
