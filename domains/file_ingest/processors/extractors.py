"""
Text extraction for ingested files.

Extractors declare the extensions they understand; ``ExtractorPipeline``
asks them in rank order and falls back to reading the raw bytes as UTF-8.
Extraction never raises past the pipeline: failures yield empty text.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Union

from loguru import logger


class BaseExtractor:
    """Strategy interface for a family of file formats."""

    extensions: frozenset = frozenset()

    def supports(self, extension: str) -> bool:
        return extension.lower() in self.extensions

    def extract(self, path: Path) -> str:
        raise NotImplementedError


class TextExtractor(BaseExtractor):
    """Plain text and source files, returned byte-for-byte as UTF-8."""

    extensions = frozenset({
        ".txt", ".md", ".json", ".yaml", ".yml", ".ts", ".js", ".py", ".sh", ".css", ".html",
    })

    def extract(self, path: Path) -> str:
        # read_bytes keeps \r and \r\n intact; read_text would translate them
        return path.read_bytes().decode("utf-8")


class PdfExtractor(BaseExtractor):
    """PDF text layer via pypdf."""

    extensions = frozenset({".pdf"})

    def extract(self, path: Path) -> str:
        try:
            from pypdf import PdfReader

            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
            text = "\n".join(pages)
            logger.debug(f"pypdf extracted {len(text)} chars from {path}")
            return text
        except Exception as e:
            logger.warning(f"PDF extraction failed for {path}: {e}")
            return ""


class DocxExtractor(BaseExtractor):
    """Word documents via python-docx."""

    extensions = frozenset({".docx"})

    def extract(self, path: Path) -> str:
        try:
            from docx import Document

            document = Document(str(path))
            return "\n".join(paragraph.text for paragraph in document.paragraphs)
        except Exception as e:
            logger.warning(f"DOCX extraction failed for {path}: {e}")
            return ""


class ExtractorPipeline:
    """Chain of extractors ranked by position."""

    def __init__(self, extractors: Optional[Iterable[BaseExtractor]] = None):
        if extractors is None:
            extractors = [TextExtractor(), PdfExtractor(), DocxExtractor()]
        self.extractors: List[BaseExtractor] = list(extractors)

    def add_extractor(self, extractor: BaseExtractor, index: Optional[int] = None):
        """Register ``extractor``; ``index`` ranks it ahead of later entries."""
        if index is None:
            self.extractors.append(extractor)
        else:
            self.extractors.insert(index, extractor)

    def supports(self, extension: str) -> bool:
        return any(extractor.supports(extension) for extractor in self.extractors)

    def extract(self, path: Union[str, Path]) -> str:
        """
        Extract text from ``path``.

        Returns:
            Extracted text, or an empty string when nothing could be read
        """
        path = Path(path)
        extension = path.suffix.lower()

        for extractor in self.extractors:
            if not extractor.supports(extension):
                continue
            try:
                return extractor.extract(path)
            except Exception as e:
                logger.warning(f"Extraction failed with {type(extractor).__name__} for {path}: {e}")

        # Fallback: raw bytes as text
        try:
            return path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Fallback extraction failed for {path}: {e}")
            return ""
