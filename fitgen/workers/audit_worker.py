"""
Audit Worker - Async Provenance Extraction
==========================================
QThread workers for recovering provenance metadata from downloaded PNGs.

Workflow:
1. Load the image
2. Extract the invisible watermark
3. Emit result signal with the recovered metadata (or none found)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PyQt6.QtCore import QThread, pyqtSignal

from fitgen.core.stego import InvisibleWatermarker, WatermarkMetadata

logger = logging.getLogger(__name__)


@dataclass
class AuditResult:
    """Result of auditing one image."""
    source_path: Path
    metadata: Optional[WatermarkMetadata] = None
    success: bool = False  # image was readable
    error_message: str = ""

    @property
    def found(self) -> bool:
        return self.metadata is not None


def audit_image(codec: InvisibleWatermarker, image_path: Path) -> AuditResult:
    """Extract provenance from one file, never raising."""
    result = AuditResult(source_path=image_path)

    try:
        result.metadata = codec.extract_from_file(image_path)
        result.success = True
        if result.metadata is None:
            result.error_message = "No watermark found"
    except FileNotFoundError as e:
        result.error_message = str(e)
    except OSError as e:
        result.error_message = f"Unreadable image: {e}"
        logger.warning("Cannot audit %s: %s", image_path, e)
    except Exception as e:
        result.error_message = f"Audit failed: {str(e)}"
        logger.exception("Audit failed for %s", image_path)

    return result


class AuditWorker(QThread):
    """
    Worker thread for extracting provenance from one image.

    Signals:
        started_extraction(str): Emitted when extraction starts (filename)
        result_ready(AuditResult): Emitted with the result
        error(str): Emitted when the image cannot be read
    """

    # Signals
    started_extraction = pyqtSignal(str)  # filename
    result_ready = pyqtSignal(object)  # AuditResult
    error = pyqtSignal(str)  # Error message

    def __init__(self, image_path: Path, parent=None):
        super().__init__(parent)
        self.image_path = Path(image_path)

    def run(self):
        self.started_extraction.emit(self.image_path.name)

        result = audit_image(InvisibleWatermarker(), self.image_path)
        if not result.success:
            self.error.emit(result.error_message)

        self.result_ready.emit(result)


class BatchAuditWorker(QThread):
    """
    Worker thread for auditing multiple images.

    Signals:
        progress(int, int, str): (current, total, filename)
        image_completed(AuditResult): Emitted for each image
        finished_all(list[AuditResult]): Emitted when all done
        error(str): Emitted on unreadable images
    """

    # Signals
    progress = pyqtSignal(int, int, str)  # current, total, filename
    image_completed = pyqtSignal(object)  # AuditResult
    finished_all = pyqtSignal(list)  # List[AuditResult]
    error = pyqtSignal(str)  # Error message

    def __init__(self, image_paths: list[Path], parent=None):
        super().__init__(parent)
        self.image_paths = [Path(p) for p in image_paths]
        self._is_cancelled = False

    def cancel(self):
        """Request cancellation of the worker."""
        self._is_cancelled = True

    def run(self):
        results: list[AuditResult] = []
        total = len(self.image_paths)

        if total == 0:
            self.error.emit("No images to audit")
            self.finished_all.emit(results)
            return

        codec = InvisibleWatermarker()

        for idx, image_path in enumerate(self.image_paths):
            if self._is_cancelled:
                break

            self.progress.emit(idx + 1, total, image_path.name)

            result = audit_image(codec, image_path)
            if not result.success:
                self.error.emit(f"{image_path.name}: {result.error_message}")

            results.append(result)
            self.image_completed.emit(result)

        self.finished_all.emit(results)
