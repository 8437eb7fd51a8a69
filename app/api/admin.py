"""
Admin endpoints for pipeline management.

Includes:
- Source reload from the sources file
- Rescan triggers
- Queue and store statistics
"""

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from app.api.deps import get_pipeline
from app.models.schemas import OperationStatus
from app.utils.errors import ConfigError, ReloadError, WatchSourceError
from app.utils.helpers import format_bytes
from domains.file_ingest.pipeline import IngestionPipeline

router = APIRouter()


@router.post("/reload", response_model=OperationStatus)
def reload_sources(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Re-read configured sources and converge the active set on them.

    Sources that fail to start are reported; the rest keep running.
    """
    logger.info("Source reload triggered")

    try:
        sources = pipeline.settings.get_watch_sources()
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        pipeline.reload(sources)
    except ReloadError as e:
        return OperationStatus(
            status="partial",
            message=str(e),
            details={
                "active": pipeline.watch.list_active(),
                "failures": {source_id: str(error) for source_id, error in e.failures.items()},
            },
        )

    return OperationStatus(
        status="reloaded",
        message=f"{len(sources)} sources configured",
        details={"active": pipeline.watch.list_active()},
    )


@router.post("/rescan", response_model=OperationStatus)
def trigger_rescan(source_id: Optional[str] = None, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Submit existing files for admission.

    Args:
        source_id: Limit the rescan to one source. Otherwise, every active source.

    Returns:
        Rescan status
    """
    logger.info(f"Rescan triggered (source={source_id or 'all'})")

    try:
        submitted = pipeline.rescan(source_id)
    except WatchSourceError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return OperationStatus(
        status="queued",
        message=f"{submitted} files submitted",
        details={"submitted": submitted},
    )


@router.get("/stats")
def get_pipeline_stats(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Get pipeline statistics.

    Returns:
        Queue counters and fingerprint store stats
    """
    db_path = Path(pipeline.store.db_path)
    db_size = db_path.stat().st_size if db_path.is_file() else 0

    return {
        "queue": pipeline.queue.stats(),
        "sources": {
            "active": pipeline.watch.list_active(),
            "total": len(pipeline.watch.list_active()),
        },
        "store": {
            "fingerprints": pipeline.store.count(),
            "duplicate_groups": len(pipeline.store.duplicate_groups()),
            "database": format_bytes(db_size),
        },
    }
