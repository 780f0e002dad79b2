"""
Workers Module - Async Thread Management
========================================
Contains QThread workers for non-blocking downloads and audits.

Image loading and file output are the slow parts of the pipeline, so they
run in separate threads to keep callers responsive.

Components:
- DownloadWorker / BatchDownloadWorker: provenance downloads with fallback
- AuditWorker / BatchAuditWorker: provenance extraction from saved PNGs
"""

from .audit_worker import AuditWorker, AuditResult, BatchAuditWorker, audit_image
from .download_worker import (
    DownloadWorker, BatchDownloadWorker, DownloadConfig, DownloadRequest, DownloadResult
)

__all__ = [
    # Download
    "DownloadWorker",
    "BatchDownloadWorker",
    "DownloadConfig",
    "DownloadRequest",
    "DownloadResult",
    # Audit
    "AuditWorker",
    "AuditResult",
    "BatchAuditWorker",
    "audit_image",
]
