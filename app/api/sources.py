"""
Watch source management endpoints.

Allows listing, adding and removing watched folders at runtime.
"""

from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from app.api.deps import get_pipeline
from app.models.schemas import OperationStatus, SourceInfo, SourceList, WatchSource
from app.utils.errors import WatchSourceError
from domains.file_ingest.pipeline import IngestionPipeline

router = APIRouter()


class SourceCreate(BaseModel):
    """New watch source request."""
    id: str = Field(min_length=1)
    path: str
    recursive: bool = True
    extensions: List[str] = []
    lens: str = "general"
    scan: bool = False


@router.get("/list", response_model=SourceList)
def list_sources(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    List all active watch sources.

    Returns:
        Sources whose watch session is ready
    """
    sources = [pipeline.watch.get_source(source_id) for source_id in pipeline.watch.list_active()]
    infos = [SourceInfo.from_source(source) for source in sources if source is not None]
    return SourceList(sources=infos, total=len(infos))


@router.get("/{source_id}", response_model=SourceInfo)
def get_source(source_id: str, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Get details for one active source.

    Args:
        source_id: Watch source id
    """
    source = pipeline.watch.get_source(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail=f"Source '{source_id}' not found")
    return SourceInfo.from_source(source)


@router.post("/", response_model=OperationStatus, status_code=201)
def add_source(request: SourceCreate, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Start watching a new folder.

    Args:
        request: Source definition; ``scan`` also submits files already present

    Returns:
        Operation status
    """
    logger.info(f"Adding source: {request.id}")

    if request.id in pipeline.watch.list_ids():
        raise HTTPException(status_code=409, detail=f"Source '{request.id}' is already active")

    source = WatchSource(
        id=request.id,
        path=Path(request.path),
        recursive=request.recursive,
        extensions=request.extensions,
        lens=request.lens,
    )
    try:
        submitted = pipeline.add_source(source, scan=request.scan)
    except WatchSourceError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return OperationStatus(
        status="started",
        message=f"Source '{source.id}' is being watched",
        details={"path": str(source.path), "submitted": submitted},
    )


@router.delete("/{source_id}", response_model=OperationStatus)
def remove_source(source_id: str, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Stop watching a source.

    Args:
        source_id: Watch source id
    """
    logger.info(f"Removing source: {source_id}")

    if not pipeline.remove_source(source_id):
        raise HTTPException(status_code=404, detail=f"Source '{source_id}' not found")

    return OperationStatus(status="stopped", message=f"Source '{source_id}' stopped")
