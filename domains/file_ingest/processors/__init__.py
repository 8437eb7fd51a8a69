"""
File Ingestion Processors

Shared processing utilities for file ingestion:
- hasher.py - Content-based hash calculation
- extractors.py - Ranked text extractors with a UTF-8 fallback
- privacy.py - Secret and PII redaction
- analyzer.py - Lens prompts and insight parsing
"""
