"""
FitGen Studio Watermark Package
===============================
Provenance watermarking for lookbook downloads.

Modules:
    - core: Pure watermark logic (no Qt dependencies)
    - workers: QThread workers for async downloads and audits
    - cli: Command-line entry point

Usage:
    from fitgen.core import InvisibleWatermarker, VisibleWatermarker
    from fitgen.workers import DownloadWorker, AuditWorker
"""

__version__ = "1.0.0"
__author__ = "FitGen"
__app_name__ = "FitGen Studio"

# Core exports
from .core import (
    InvisibleWatermarker,
    VisibleWatermarker,
    ProvenanceDownloader,
    WatermarkMetadata,
    Tier,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__app_name__",

    # Core
    "InvisibleWatermarker",
    "VisibleWatermarker",
    "ProvenanceDownloader",
    "WatermarkMetadata",
    "Tier",
]
