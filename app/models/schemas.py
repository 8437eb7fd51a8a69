"""
Pydantic models for Cortex.

Shared data models across the application.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, FrozenSet

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =====================================================
# Source Models
# =====================================================

class WatchSource(BaseModel):
    """A watched filesystem root plus its watch policy."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    path: Path
    recursive: bool = True
    extensions: FrozenSet[str] = frozenset()  # empty means all extensions
    lens: str = "general"

    @field_validator("path", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(value).expanduser()
        if isinstance(value, Path):
            return value.expanduser()
        return value

    @field_validator("extensions", mode="before")
    @classmethod
    def _normalise_extensions(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        normalised = set()
        for ext in value:
            ext = str(ext).strip().lower()
            if not ext:
                continue
            normalised.add(ext if ext.startswith(".") else f".{ext}")
        return frozenset(normalised)

    def accepts(self, path: Path) -> bool:
        """Check the extension filter for ``path`` (case-insensitive)."""
        if not self.extensions:
            return True
        return path.suffix.lower() in self.extensions


# =====================================================
# Fingerprint Models
# =====================================================

class FileFingerprint(BaseModel):
    """Content fingerprint of a file at a point in time."""
    model_config = ConfigDict(frozen=True)

    path: str
    hash: str = Field(min_length=64, max_length=64)
    size: int = Field(ge=0)
    mtime: float

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.mtime, tz=timezone.utc)


# =====================================================
# Insight Models
# =====================================================

class InsightCategory(str, Enum):
    """Kinds of insight the analyzer may produce."""
    KNOWLEDGE = "knowledge"
    PATTERN = "pattern"
    OBSERVATION = "observation"
    IDEA = "idea"
    REFERENCE = "reference"


class Insight(BaseModel):
    """Structured insight produced by the analyzer."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: InsightCategory
    confidence: float = Field(ge=0.0, le=1.0)
    tags: List[str] = []
    related_concepts: List[str] = Field(default_factory=list, alias="relatedConcepts")


# =====================================================
# Response Models
# =====================================================

class SourceInfo(BaseModel):
    """Active watch source as reported by the API."""
    id: str
    path: str
    recursive: bool
    extensions: List[str]
    lens: str

    @classmethod
    def from_source(cls, source: WatchSource) -> "SourceInfo":
        return cls(
            id=source.id,
            path=str(source.path),
            recursive=source.recursive,
            extensions=sorted(source.extensions),
            lens=source.lens,
        )


class SourceList(BaseModel):
    """List of active watch sources."""
    sources: List[SourceInfo]
    total: int


class DuplicateReport(BaseModel):
    """Paths sharing one content hash."""
    hash: str
    paths: List[str]
    count: int


class OperationStatus(BaseModel):
    """Generic operation status."""
    status: str
    message: str
    details: Optional[Dict[str, Any]] = None
