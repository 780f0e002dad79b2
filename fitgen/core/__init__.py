"""
Core Module - Pure Watermark Logic
==================================
This module contains no Qt dependencies.
All watermark processing algorithms are implemented here.
"""

from .canvas import Canvas, Context2D, ImageData
from .loader import ImageLoadError, load_image
from .provenance import (
    DirectorySink,
    ProvenanceDownloader,
    ProvenanceReport,
    direct_download,
    download_with_provenance,
)
from .stego import EmbedStatus, InvisibleWatermarker, WatermarkMetadata
from .tier import Tier, should_show_visible_watermark
from .visible import RenderStatus, VisibleWatermarker

__all__ = [
    "Canvas",
    "Context2D",
    "ImageData",
    "ImageLoadError",
    "load_image",
    "DirectorySink",
    "ProvenanceDownloader",
    "ProvenanceReport",
    "direct_download",
    "download_with_provenance",
    "EmbedStatus",
    "InvisibleWatermarker",
    "WatermarkMetadata",
    "Tier",
    "should_show_visible_watermark",
    "RenderStatus",
    "VisibleWatermarker",
]
