"""
Shared FastAPI dependencies.
"""

from fastapi import HTTPException, Request

from domains.file_ingest.pipeline import IngestionPipeline


def get_pipeline(request: Request) -> IngestionPipeline:
    """Pipeline owned by the running application."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Ingestion pipeline is not running")
    return pipeline
