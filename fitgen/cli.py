"""FitGen Studio CLI - provenance downloads and watermark audits."""

import hashlib
import json
import logging
import sys
import time
from collections import Counter
from dataclasses import asdict
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import click
from PyQt6.QtCore import QCoreApplication, QEventLoop

from fitgen import __version__
from fitgen.config import Settings, configure_logging, load_env_file
from fitgen.core.stego import InvisibleWatermarker, WatermarkMetadata
from fitgen.core.tier import Tier
from fitgen.workers import (
    BatchDownloadWorker, DownloadConfig, DownloadRequest, DownloadResult, audit_image
)

logger = logging.getLogger(__name__)

# Qt application shared by every controller run
_app: Optional[QCoreApplication] = None


def get_app() -> QCoreApplication:
    """Get or create the Qt application instance."""
    global _app
    if _app is None:
        _app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    return _app


def image_id_for(source: str) -> str:
    """Derive an image id from the source's file stem, or a hash of it."""
    if not source.startswith("data:"):
        stem = Path(unquote(urlparse(source).path) or source).stem
        if stem:
            return stem
    return hashlib.sha1(source.encode("utf-8")).hexdigest()[:12]


def unique_image_ids(sources: list[str]) -> list[str]:
    """
    Image ids for a batch, one per source.

    Sources sharing a file stem (a/look.png, b/look.png) get a short hash of
    the full source appended so their downloads never overwrite each other.
    """
    ids = [image_id_for(source) for source in sources]
    counts = Counter(ids)
    seen = set()
    unique = []
    for source, source_id in zip(sources, ids):
        if counts[source_id] > 1:
            source_id = f"{source_id}-{hashlib.sha1(source.encode('utf-8')).hexdigest()[:8]}"
        # the same source listed twice still needs its own file
        base, n = source_id, 1
        while source_id in seen:
            n += 1
            source_id = f"{base}-{n}"
        seen.add(source_id)
        unique.append(source_id)
    return unique


class DownloadController:
    """
    Runs a BatchDownloadWorker to completion and reports progress.

    Worker signals arrive in the caller's thread through a local event loop.
    """

    def __init__(self, config: DownloadConfig):
        self.config = config
        self._results: list[DownloadResult] = []
        self._loop: Optional[QEventLoop] = None

    def run(self) -> list[DownloadResult]:
        get_app()
        self._loop = QEventLoop()

        worker = BatchDownloadWorker(self.config)
        worker.progress.connect(self._on_progress)
        worker.image_completed.connect(self._on_image_completed)
        worker.finished_all.connect(self._on_finished)

        worker.start()
        self._loop.exec()
        worker.wait()

        return self._results

    def _on_progress(self, current: int, total: int, file_name: str):
        click.echo(f"[{current}/{total}] {file_name}")

    def _on_image_completed(self, result: DownloadResult):
        if result.watermarked:
            report = result.report
            overlay = "visible+invisible" if report.visible_applied else "invisible"
            click.echo(f"  saved {result.output_path} ({overlay}, {report.embed_status.value})")
        elif result.fallback_used:
            click.echo(f"  saved {result.output_path} WITHOUT watermark: {result.error_message}")
        else:
            click.echo(f"  failed: {result.error_message}", err=True)

    def _on_finished(self, results: list):
        self._results = results
        if self._loop is not None:
            self._loop.quit()


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Logging level (default: FITGEN_LOG_LEVEL or WARNING)")
@click.option("--env-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Path to a .env file (default: ./.env)")
@click.pass_context
def cli(ctx, log_level, env_file):
    """FitGen Studio - provenance watermarking for lookbook downloads."""
    load_env_file(env_file)
    try:
        settings = Settings.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@cli.command()
@click.argument("sources", nargs=-1, required=True)
@click.option("--tier", type=click.Choice([t.value for t in Tier]), default=Tier.FREE.value,
              show_default=True, help="Subscription tier of the downloading user")
@click.option("--user-id", default="anonymous", show_default=True, help="User id to embed")
@click.option("--image-id", default=None, help="Image id to embed (single source only)")
@click.option("--output-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Download directory (default: FITGEN_OUTPUT_DIR or ./downloads)")
@click.option("--no-fallback", is_flag=True, help="Don't save unwatermarked copies on failure")
@click.pass_obj
def download(settings, sources, tier, user_id, image_id, output_dir, no_fallback):
    """Download images with provenance watermarks."""
    if image_id and len(sources) > 1:
        raise click.UsageError("--image-id can only be used with a single source")

    timestamp = int(time.time() * 1000)
    source_ids = [image_id] if image_id else unique_image_ids(list(sources))
    requests = []
    for source, source_id in zip(sources, source_ids):
        requests.append(DownloadRequest(
            image_url=source,
            file_name=f"fitgen-{source_id}.png",
            tier=Tier(tier),
            metadata=WatermarkMetadata(user_id=user_id, image_id=source_id, timestamp=timestamp),
        ))

    overrides = {"fallback": not no_fallback}
    if output_dir is not None:
        overrides["output_dir"] = output_dir

    config = DownloadConfig.from_settings(requests, settings, **overrides)
    logger.info("Downloading %d image(s) to %s as %s tier", len(requests), config.output_dir, tier)
    results = DownloadController(config).run()

    failed = [r for r in results if not r.success]
    if failed or len(results) < len(requests):
        sys.exit(1)


@cli.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON lines")
def extract(paths, as_json):
    """Recover provenance metadata from downloaded images."""
    codec = InvisibleWatermarker()
    missing = 0

    for path in paths:
        result = audit_image(codec, path)
        if not result.found:
            missing += 1

        if as_json:
            click.echo(json.dumps({
                "path": str(path),
                "metadata": asdict(result.metadata) if result.found else None,
                "error": result.error_message or None,
            }))
        elif result.found:
            meta = result.metadata
            click.echo(f"{path}: user={meta.user_id} image={meta.image_id} timestamp={meta.timestamp}")
        else:
            click.echo(f"{path}: {result.error_message}")

    if missing:
        sys.exit(1)


if __name__ == "__main__":
    cli()
