"""
Fingerprint query endpoints.

Answers "what do we know about this file" and "where else does this
content live" from the fingerprint store.
"""

from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.api.deps import get_pipeline
from app.models.schemas import DuplicateReport, FileFingerprint
from app.utils.helpers import normalise_path
from domains.file_ingest.pipeline import IngestionPipeline

router = APIRouter()


class FingerprintLookup(BaseModel):
    """Stored fingerprint plus other paths holding the same content."""
    fingerprint: FileFingerprint
    duplicates: List[str]


@router.get("/lookup", response_model=FingerprintLookup)
def lookup_fingerprint(path: str, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Look up the recorded fingerprint for a file.

    Args:
        path: Absolute file path (``~`` is expanded)
    """
    key = str(normalise_path(Path(path)))
    fingerprint = pipeline.store.get(key)
    if fingerprint is None:
        raise HTTPException(status_code=404, detail=f"No fingerprint recorded for {key}")

    duplicates = [other for other in pipeline.store.find_all_paths_with_hash(fingerprint.hash) if other != key]
    return FingerprintLookup(fingerprint=fingerprint, duplicates=duplicates)


@router.get("/duplicates", response_model=List[DuplicateReport])
def list_duplicates(pipeline: IngestionPipeline = Depends(get_pipeline)):
    """Every content hash recorded under more than one path."""
    return [
        DuplicateReport(hash=content_hash, paths=paths, count=len(paths))
        for content_hash, paths in pipeline.store.duplicate_groups().items()
    ]


@router.get("/duplicates/{content_hash}", response_model=DuplicateReport)
def get_duplicates(content_hash: str, pipeline: IngestionPipeline = Depends(get_pipeline)):
    """
    Paths currently holding the given content.

    Args:
        content_hash: 64-character SHA-256 hex digest
    """
    paths = pipeline.store.find_all_paths_with_hash(content_hash.lower())
    if not paths:
        raise HTTPException(status_code=404, detail=f"No paths recorded for hash {content_hash}")
    return DuplicateReport(hash=content_hash.lower(), paths=paths, count=len(paths))
