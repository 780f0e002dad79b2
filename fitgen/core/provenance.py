"""
Provenance Download Pipeline
============================
Turns an image reference into a downloadable PNG that always carries the
invisible provenance watermark and, for free-tier users, the visible
brand overlay.

Workflow:
1. Load the source image
2. Draw it unscaled onto a canvas of its natural size
3. Embed the invisible watermark into the canvas pixels (always)
4. Render the visible overlay (tier-dependent)
5. Encode as PNG and hand the bytes to a download sink

Failures raise. Falling back to an unwatermarked download is the caller's
decision (see direct_download).
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from PIL import Image

from fitgen.core.canvas import Canvas
from fitgen.core.loader import fetch_bytes, load_image
from fitgen.core.stego import EmbedStatus, InvisibleWatermarker, WatermarkMetadata
from fitgen.core.tier import Tier, should_show_visible_watermark
from fitgen.core.visible import RenderStatus, VisibleWatermarker

logger = logging.getLogger(__name__)


class DownloadSink(Protocol):
    """Receives the final bytes of a download."""

    def save(self, file_name: str, data: bytes) -> Path:
        ...


class DirectorySink:
    """Saves downloads into a directory, creating it on first use."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    def save(self, file_name: str, data: bytes) -> Path:
        # Only the final component is used; "../x.png" lands inside output_dir
        name = Path(file_name).name
        if not name:
            raise ValueError(f"Invalid file name: {file_name!r}")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / name

        # Written beside the target, then renamed into place
        tmp_path = self.output_dir / f".{name}.{os.getpid()}.{threading.get_ident()}.part"
        try:
            with open(tmp_path, "xb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return path


@dataclass
class ProvenanceReport:
    """What a provenance download produced."""
    file_name: str
    output_path: Path
    width: int
    height: int
    embed_status: EmbedStatus
    visible_requested: bool
    render_status: Optional[RenderStatus] = None  # None when not requested

    @property
    def visible_applied(self) -> bool:
        return self.render_status is RenderStatus.RENDERED


class ProvenanceDownloader:
    """
    Orchestrates loading, watermarking and saving of one download.

    Holds no per-download state; each call allocates its own canvas and
    pixel buffer, so one instance can serve concurrent downloads.
    """

    def __init__(
            self,
            sink: DownloadSink,
            loader: Callable[..., Image.Image] = load_image,
            invisible: Optional[InvisibleWatermarker] = None,
            visible: Optional[VisibleWatermarker] = None,
            bypass_visible: Optional[bool] = None,
            load_timeout: Optional[float] = None
    ):
        """
        Args:
            sink: Destination for the encoded PNG.
            loader: Callable resolving an image reference to a Pillow image.
            invisible: Invisible watermark codec (default instance if None).
            visible: Visible watermark renderer (default instance if None).
            bypass_visible: Overrides the FITGEN_BYPASS_CREDITS switch when set.
            load_timeout: HTTP timeout for the loader, in seconds.
        """
        self.sink = sink
        self._loader = loader
        self._invisible = invisible or InvisibleWatermarker()
        self._visible = visible or VisibleWatermarker()
        self._bypass_visible = bypass_visible
        self._load_timeout = load_timeout

    def render(
            self,
            image: Image.Image,
            tier: Union[Tier, str],
            metadata: WatermarkMetadata
    ) -> tuple[Canvas, EmbedStatus, bool, Optional[RenderStatus]]:
        """
        Watermark an already decoded image onto a new canvas.

        Returns:
            Tuple of (canvas, embed_status, visible_requested, render_status).
        """
        canvas = Canvas(image.width, image.height)
        ctx = canvas.get_context("2d")
        ctx.draw_image(image, 0, 0)

        # Always embed provenance for traceability
        image_data = ctx.get_image_data(0, 0, canvas.width, canvas.height)
        embed_status = self._invisible.embed(image_data, metadata)
        ctx.put_image_data(image_data, 0, 0)

        visible_requested = should_show_visible_watermark(tier, bypass=self._bypass_visible)
        render_status = self._visible.render(canvas) if visible_requested else None

        if render_status is RenderStatus.RENDERED:
            # Overlay tiles can cross the header/payload pixels; write the bits again
            image_data = ctx.get_image_data(0, 0, canvas.width, canvas.height)
            self._invisible.embed(image_data, metadata)
            ctx.put_image_data(image_data, 0, 0)

        return canvas, embed_status, visible_requested, render_status

    def download(
            self,
            image_url: str,
            file_name: str,
            tier: Union[Tier, str],
            metadata: WatermarkMetadata
    ) -> ProvenanceReport:
        """
        Produce a watermarked PNG download.

        Args:
            image_url: URL, data URI or path of the source image.
            file_name: Name to save the download under.
            tier: Subscription tier of the downloading user.
            metadata: Provenance to embed.

        Returns:
            ProvenanceReport describing the saved file.

        Raises:
            ImageLoadError: If the source cannot be loaded.
            OSError: If encoding or saving fails.
        """
        image = self._loader(image_url, timeout=self._load_timeout)
        try:
            canvas, embed_status, visible_requested, render_status = self.render(
                image, tier, metadata
            )
        finally:
            image.close()

        output_path = self.sink.save(file_name, canvas.to_png_bytes())

        logger.info(
            "Saved %s (%dx%d, invisible=%s, visible=%s)",
            output_path, canvas.width, canvas.height, embed_status.value,
            render_status.value if render_status else "off"
        )

        return ProvenanceReport(
            file_name=file_name,
            output_path=output_path,
            width=canvas.width,
            height=canvas.height,
            embed_status=embed_status,
            visible_requested=visible_requested,
            render_status=render_status,
        )


# Convenience functions
def download_with_provenance(
        image_url: str,
        file_name: str,
        tier: Union[Tier, str],
        metadata: WatermarkMetadata,
        output_dir: Union[str, Path] = "downloads"
) -> ProvenanceReport:
    """One-shot provenance download into ``output_dir``."""
    return ProvenanceDownloader(DirectorySink(output_dir)).download(
        image_url, file_name, tier, metadata
    )


def direct_download(
        image_url: str,
        file_name: str,
        sink: DownloadSink,
        timeout: Optional[float] = None
) -> Path:
    """
    Save the source bytes unmodified (no watermarks).

    Used as the fallback when the provenance pipeline fails.
    """
    path = sink.save(file_name, fetch_bytes(image_url, timeout=timeout))
    logger.warning("Saved %s without watermarks", path)
    return path
