"""
File Ingestion Domain

Watches configured folders and turns changed files into insights:
- Watch sessions → normalized add/change/remove events per source
- Ingestion queue → change detection, bounded workers, retry with backoff
- Processors → extraction, secret redaction and LLM analysis

Content fingerprints persist in SQLite so unchanged files are never
analyzed twice, across restarts included.
"""

__all__ = ["collectors", "processors"]
