"""
File Ingestion Collectors

Long-running services that observe the filesystem:
- watch_manager.py - One watchdog session per source, event filtering and classification
- insight_collector.py - CLI service running the full ingestion pipeline
"""
