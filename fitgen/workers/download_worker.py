"""
Download Worker - Async Provenance Downloads
============================================
QThread workers that run provenance downloads off the caller's thread.

Workflow:
1. For each requested image:
   a. Load, watermark and save it through ProvenanceDownloader
   b. On failure, optionally fall back to an unwatermarked direct download
2. Emit progress signals during processing
3. Emit finished signal with results

Downloads are independent: a failure in one never affects the others.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Union

from PyQt6.QtCore import QThread, pyqtSignal

from fitgen.config import Settings
from fitgen.core.provenance import (
    DirectorySink,
    ProvenanceDownloader,
    ProvenanceReport,
    direct_download,
)
from fitgen.core.stego import WatermarkMetadata
from fitgen.core.tier import Tier

logger = logging.getLogger(__name__)


@dataclass
class DownloadRequest:
    """One image to download."""
    image_url: str
    file_name: str
    tier: Union[Tier, str]
    metadata: WatermarkMetadata


@dataclass
class DownloadConfig:
    """Complete configuration for a download run."""
    requests: List[DownloadRequest] = field(default_factory=list)
    output_dir: Path = field(default_factory=lambda: Path.cwd() / "downloads")

    # Fall back to the raw source bytes when watermarking fails
    fallback: bool = True

    # None reads FITGEN_BYPASS_CREDITS at download time
    bypass_visible: Optional[bool] = None
    load_timeout: Optional[float] = None

    @classmethod
    def from_settings(cls, requests: List[DownloadRequest], settings: Settings, **kwargs) -> "DownloadConfig":
        kwargs.setdefault("output_dir", settings.output_dir)
        kwargs.setdefault("load_timeout", settings.load_timeout)
        return cls(requests=requests, **kwargs)


@dataclass
class DownloadResult:
    """Result of a single download."""
    request: DownloadRequest
    output_path: Optional[Path] = None
    report: Optional[ProvenanceReport] = None
    fallback_used: bool = False
    success: bool = False
    error_message: str = ""

    @property
    def watermarked(self) -> bool:
        return self.report is not None


def _run_download(
        downloader: ProvenanceDownloader,
        request: DownloadRequest,
        config: DownloadConfig
) -> DownloadResult:
    """Download one request, applying the fallback policy on failure."""
    result = DownloadResult(request=request)

    try:
        report = downloader.download(
            request.image_url, request.file_name, request.tier, request.metadata
        )
        result.report = report
        result.output_path = report.output_path
        result.success = True
        return result

    except Exception as e:
        result.error_message = str(e)
        logger.exception("Watermarked download failed for %s", request.image_url)

    if config.fallback:
        try:
            result.output_path = direct_download(
                request.image_url, request.file_name, downloader.sink,
                timeout=config.load_timeout
            )
            result.fallback_used = True
            result.success = True
        except Exception as e:
            result.error_message = f"{result.error_message}; fallback failed: {e}"
            logger.exception("Fallback download failed for %s", request.image_url)

    return result


def _make_downloader(config: DownloadConfig) -> ProvenanceDownloader:
    return ProvenanceDownloader(
        DirectorySink(config.output_dir),
        bypass_visible=config.bypass_visible,
        load_timeout=config.load_timeout,
    )


class DownloadWorker(QThread):
    """
    Worker thread for a single provenance download.

    Signals:
        started_download(str): Emitted when the download starts (file name)
        result_ready(DownloadResult): Emitted with the result
        error(str): Emitted when the watermarked download fails
    """

    # Signals
    started_download = pyqtSignal(str)  # file name
    result_ready = pyqtSignal(object)  # DownloadResult
    error = pyqtSignal(str)  # Error message

    def __init__(self, request: DownloadRequest, config: Optional[DownloadConfig] = None, parent=None):
        """
        Initialize the download worker.

        Args:
            request: The image to download.
            config: Output/fallback settings; ``config.requests`` is ignored.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self.request = request
        self.config = config or DownloadConfig()

    def run(self):
        """
        Main worker execution.

        Downloads the image and emits the result.
        """
        self.started_download.emit(self.request.file_name)

        result = _run_download(_make_downloader(self.config), self.request, self.config)
        if not result.watermarked:
            self.error.emit(result.error_message)

        self.result_ready.emit(result)


class BatchDownloadWorker(QThread):
    """
    Worker thread for downloading a multi-image selection.

    Signals:
        progress(int, int, str): (current, total, file_name)
        image_completed(DownloadResult): Emitted for each image
        finished_all(list[DownloadResult]): Emitted when all are done
        error(str): Emitted on per-image failures and critical errors
    """

    # Signals
    progress = pyqtSignal(int, int, str)  # current, total, file name
    image_completed = pyqtSignal(object)  # DownloadResult
    finished_all = pyqtSignal(list)  # List[DownloadResult]
    error = pyqtSignal(str)  # Error message

    def __init__(self, config: DownloadConfig, parent=None):
        """
        Initialize the batch download worker.

        Args:
            config: DownloadConfig with the requests and output settings.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self.config = config
        self._is_cancelled = False

    def cancel(self):
        """Request cancellation; the current download still completes."""
        self._is_cancelled = True

    def run(self):
        """
        Main worker execution.

        Downloads every request and emits progress/result signals.
        """
        results: List[DownloadResult] = []
        total = len(self.config.requests)

        if total == 0:
            self.error.emit("No images to download")
            self.finished_all.emit(results)
            return

        try:
            downloader = _make_downloader(self.config)

            for idx, request in enumerate(self.config.requests):
                if self._is_cancelled:
                    logger.info("Batch download cancelled after %d of %d", idx, total)
                    break

                self.progress.emit(idx + 1, total, request.file_name)

                result = _run_download(downloader, request, self.config)
                if not result.watermarked:
                    self.error.emit(f"{request.file_name}: {result.error_message}")

                results.append(result)
                self.image_completed.emit(result)

        except Exception as e:
            self.error.emit(f"Critical error: {str(e)}")
            logger.exception("Batch download aborted")

        self.finished_all.emit(results)
