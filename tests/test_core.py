"""
Tests for core watermark functionality.

Run with: python -m pytest tests/test_core.py -v
"""

import math
import os
import sys
import threading
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fitgen.config import Settings
from fitgen.core.bits import bits_to_text, bits_to_uint32, text_to_bits, uint32_to_bits
from fitgen.core.canvas import Canvas, ImageData, load_font
from fitgen.core.loader import ImageLoadError, load_image
from fitgen.core.provenance import (
    DirectorySink,
    ProvenanceDownloader,
    direct_download,
    download_with_provenance,
)
from fitgen.core.stego import EmbedStatus, InvisibleWatermarker, WatermarkMetadata
from fitgen.core.tier import Tier, should_show_visible_watermark
from fitgen.core.visible import RenderStatus, VisibleWatermarker

METADATA = WatermarkMetadata(user_id="user-123", image_id="img-456", timestamp=1700000000)


def create_test_image_data(width: int = 200, height: int = 200, value: int = 128) -> ImageData:
    """Create a pixel buffer with every channel set to ``value``."""
    return ImageData(width, height, np.full(width * height * 4, value, dtype=np.uint8))


def create_test_image(path: Path, width: int = 200, height: int = 200) -> Path:
    """Save an opaque mid-grey PNG."""
    Image.new("RGBA", (width, height), (128, 128, 128, 255)).save(path)
    return path


def blues(image_data: ImageData) -> np.ndarray:
    return image_data.data[2::4]


# ===== Bit utilities =====

def test_text_bits_are_msb_first():
    bits = text_to_bits("F")  # 0x46
    assert bits.tolist() == [0, 1, 0, 0, 0, 1, 1, 0]
    assert bits_to_text(bits) == "F"


def test_bits_to_text_stops_at_nul_and_ignores_partial_bytes():
    bits = np.concatenate([text_to_bits("ab\x00cd"), np.array([1, 0, 1], dtype=np.uint8)])
    assert bits_to_text(bits) == "ab"


def test_uint32_header_is_big_endian():
    bits = uint32_to_bits(248)
    assert len(bits) == 32
    assert bits[-8:].tolist() == [1, 1, 1, 1, 1, 0, 0, 0]
    assert bits_to_uint32(bits) == 248
    assert bits_to_uint32(uint32_to_bits(0xFFFFFFFF)) == 0xFFFFFFFF


# ===== Invisible watermark =====

def test_embed_and_extract_round_trip():
    """Test that embedded metadata comes back unchanged."""
    image_data = create_test_image_data()
    codec = InvisibleWatermarker()

    status = codec.embed(image_data, METADATA)
    extracted = codec.extract(image_data)

    assert status is EmbedStatus.EMBEDDED
    assert extracted == METADATA
    assert isinstance(extracted.timestamp, int)


def test_round_trip_preserves_millisecond_timestamps():
    meta = WatermarkMetadata(user_id="anonymous", image_id="a1b2c3", timestamp=1700000000123)
    image_data = create_test_image_data(64, 64, value=77)

    InvisibleWatermarker().embed(image_data, meta)

    assert InvisibleWatermarker().extract(image_data) == meta


def test_header_encodes_payload_bit_length():
    image_data = create_test_image_data()
    codec = InvisibleWatermarker()
    codec.embed(image_data, METADATA)

    payload = codec.encode_payload(METADATA)
    assert payload == "FG1|user-123|img-456|1700000000"
    assert bits_to_uint32(blues(image_data)[:32] & 1) == len(payload) * 8
    assert codec.payload_bit_length(METADATA) == len(payload) * 8


def test_extract_returns_none_without_watermark():
    """All channel values even -> header reads 0 -> no watermark."""
    image_data = create_test_image_data()
    assert InvisibleWatermarker().extract(image_data) is None


def test_embed_changes_blue_by_at_most_one():
    image_data = create_test_image_data(20, 20)
    rng = np.random.default_rng(7)
    image_data.data[:] = rng.integers(0, 256, image_data.data.size, dtype=np.uint8)
    original = image_data.data.copy()

    InvisibleWatermarker().embed(image_data, METADATA)

    diff = np.abs(image_data.data.astype(int) - original.astype(int))
    assert diff[2::4].max() <= 1
    # Red, green and alpha are untouched
    assert np.array_equal(image_data.data[0::4], original[0::4])
    assert np.array_equal(image_data.data[1::4], original[1::4])
    assert np.array_equal(image_data.data[3::4], original[3::4])


def test_embed_leaves_blue_bytes_past_payload_untouched():
    image_data = create_test_image_data(40, 40, value=255)
    codec = InvisibleWatermarker()

    codec.embed(image_data, METADATA)

    used = 32 + codec.payload_bit_length(METADATA)
    assert np.all(blues(image_data)[used:] == 255)


def test_embed_handles_very_small_images():
    """A 2x2 image (16 bytes) cannot hold the header; embedding must not raise."""
    image_data = create_test_image_data(2, 2)
    original = image_data.data.copy()

    status = InvisibleWatermarker().embed(image_data, METADATA)

    assert status is EmbedStatus.TRUNCATED
    assert image_data.data.size == 16
    changed = np.flatnonzero(image_data.data != original)
    assert all(idx % 4 == 2 for idx in changed)
    assert InvisibleWatermarker().extract(image_data) is None


def test_capacity_boundary():
    codec = InvisibleWatermarker()
    needed = 32 + codec.payload_bit_length(METADATA)

    exact = ImageData(needed, 1, np.full(needed * 4, 128, dtype=np.uint8))
    assert codec.embed(exact, METADATA) is EmbedStatus.EMBEDDED
    assert codec.extract(exact) == METADATA

    short = ImageData(needed - 1, 1, np.full((needed - 1) * 4, 128, dtype=np.uint8))
    assert codec.embed(short, METADATA) is EmbedStatus.TRUNCATED
    assert codec.extract(short) is None


def test_extract_returns_none_for_corrupted_header():
    image_data = create_test_image_data()
    # Set LSBs that won't form a valid watermark
    image_data.data[2:200:4] |= 1
    assert InvisibleWatermarker().extract(image_data) is None


def test_extract_returns_none_for_corrupted_marker():
    image_data = create_test_image_data()
    codec = InvisibleWatermarker()
    codec.embed(image_data, METADATA)

    # First payload bit is the MSB of "F"
    image_data.data[32 * 4 + 2] ^= 1

    assert codec.extract(image_data) is None


def test_extract_stops_at_nul_terminator():
    """A header claiming more bits than the payload uses still decodes."""
    image_data = create_test_image_data()
    bits = text_to_bits("FG1|u|i|5\x00garbage")
    stream = np.concatenate([uint32_to_bits(len(bits)), bits])
    blue = image_data.data[2::4]
    blue[:len(stream)] = (blue[:len(stream)] & 0xFE) | stream

    assert InvisibleWatermarker().extract(image_data) == WatermarkMetadata("u", "i", 5)


def test_extract_needs_at_least_32_pixels():
    assert InvisibleWatermarker().extract(create_test_image_data(4, 4, value=255)) is None


@pytest.mark.parametrize("payload", [
    "FG2|user|img|1",
    "FG1|user|img",
    "FG1|user|img|1|extra",
    "FG1|user|img|not-a-number",
    "FG1|user|img|",
    "FG1|user|img|inf",
    "FG1|user|img|nan",
    "FG1|user|img|1_000",
    "FG1|user|img|0x10",
])
def test_decode_payload_rejects_malformed(payload):
    assert InvisibleWatermarker().decode_payload(payload) is None


def test_decode_payload_parses_numeric_forms():
    codec = InvisibleWatermarker()
    assert codec.decode_payload("FG1|u|i|1e3").timestamp == 1000
    assert codec.decode_payload("FG1|u|i|1.5").timestamp == 1.5
    assert codec.decode_payload("FG1|||0") == WatermarkMetadata("", "", 0)


def test_image_data_rejects_wrong_length():
    with pytest.raises(ValueError):
        ImageData(2, 2, np.zeros(15, dtype=np.uint8))


def test_extract_from_png_file(tmp_path):
    image_data = create_test_image_data(50, 50)
    InvisibleWatermarker().embed(image_data, METADATA)
    path = tmp_path / "marked.png"
    image_data.to_image().save(path)

    assert InvisibleWatermarker().extract_from_file(path) == METADATA

    with pytest.raises(FileNotFoundError):
        InvisibleWatermarker().extract_from_file(tmp_path / "missing.png")


# ===== Tier policy =====

def test_tier_policy(monkeypatch):
    monkeypatch.delenv("FITGEN_BYPASS_CREDITS", raising=False)

    assert should_show_visible_watermark("free") is True
    assert should_show_visible_watermark(Tier.FREE) is True
    assert should_show_visible_watermark("pro") is False
    assert should_show_visible_watermark("business") is False


def test_tier_policy_bypass_forces_false(monkeypatch):
    monkeypatch.setenv("FITGEN_BYPASS_CREDITS", "true")
    for tier in Tier:
        assert should_show_visible_watermark(tier) is False

    # An explicit argument takes precedence over the environment
    assert should_show_visible_watermark("free", bypass=False) is True
    monkeypatch.delenv("FITGEN_BYPASS_CREDITS")
    assert should_show_visible_watermark("free", bypass=True) is False


def test_tier_policy_ignores_unrelated_settings(monkeypatch):
    """A bad load timeout must not break tier decisions."""
    monkeypatch.delenv("FITGEN_BYPASS_CREDITS", raising=False)
    monkeypatch.setenv("FITGEN_LOAD_TIMEOUT", "abc")

    assert should_show_visible_watermark("pro") is False
    assert should_show_visible_watermark("free") is True

    with pytest.raises(ValueError, match="FITGEN_LOAD_TIMEOUT"):
        Settings.from_env()


# ===== Visible watermark =====

def test_visible_render_call_order():
    ctx = Mock()
    surface = SimpleNamespace(width=200, height=200, get_context=Mock(return_value=ctx))

    status = VisibleWatermarker().render(surface)

    assert status is RenderStatus.RENDERED
    surface.get_context.assert_called_once_with("2d")

    names = [name for name, _, _ in ctx.method_calls]
    assert names[0] == "save"
    assert names[1] == "rotate"
    assert names[-1] == "restore"

    drawing = names[2:-1]
    assert drawing == ["fill_text", "stroke_text"] * (len(drawing) // 2)
    # 4 columns x 8 rows for a 200x200 surface at font size 16
    assert len(drawing) // 2 == 32

    assert ctx.rotate.call_args.args[0] == pytest.approx(-math.pi / 6)
    assert ctx.fill_text.call_args_list[0].args[0] == "FitGen Studio"
    assert ctx.stroke_text.call_args_list[0].args[0] == "FitGen Studio"
    assert ctx.font_size == 16
    assert ctx.text_align == "center"
    assert ctx.text_baseline == "middle"


def test_visible_font_size_scales():
    assert VisibleWatermarker.font_size_for(200, 200) == 16
    assert VisibleWatermarker.font_size_for(1000, 2000) == 40
    assert VisibleWatermarker.font_size_for(4000, 3000) == 120


def test_visible_render_without_context_is_skipped():
    no_ctx = SimpleNamespace(width=200, height=200, get_context=Mock(return_value=None))
    assert VisibleWatermarker().render(no_ctx) is RenderStatus.SKIPPED
    assert VisibleWatermarker().render(object()) is RenderStatus.SKIPPED


def test_visible_render_on_canvas():
    canvas = Canvas.from_image(Image.new("RGBA", (200, 200), (128, 128, 128, 255)))
    ctx = canvas.get_context("2d")

    assert VisibleWatermarker().render(canvas) is RenderStatus.RENDERED

    pixels = np.array(canvas.image)
    assert (pixels[..., 0] != 128).sum() > 100
    assert np.all(pixels[..., 3] == 255)
    # Style and transform were restored
    assert ctx.text_align == "start"
    assert ctx.font_size == 10
    assert canvas.get_context("webgl") is None


def test_canvas_pixel_round_trip():
    source = Image.new("RGBA", (8, 4), (10, 20, 30, 255))
    canvas = Canvas.from_image(source)
    ctx = canvas.get_context("2d")

    image_data = ctx.get_image_data()
    assert image_data.data.size == 8 * 4 * 4
    image_data.data[2] = 31
    ctx.put_image_data(image_data)

    assert canvas.image.getpixel((0, 0)) == (10, 20, 31, 255)
    assert canvas.image.getpixel((1, 0)) == (10, 20, 30, 255)


# ===== Loader =====

def test_load_image_from_path_and_data_uri(tmp_path):
    import base64

    path = create_test_image(tmp_path / "src.png", 10, 6)
    assert load_image(path).size == (10, 6)
    assert load_image(path.as_uri()).size == (10, 6)

    uri = "data:image/png;base64," + base64.b64encode(path.read_bytes()).decode("ascii")
    assert load_image(uri).size == (10, 6)


def test_load_image_failures(tmp_path):
    with pytest.raises(ImageLoadError):
        load_image(tmp_path / "missing.png")

    bogus = tmp_path / "bogus.png"
    bogus.write_bytes(b"not an image")
    with pytest.raises(ImageLoadError):
        load_image(bogus)

    with pytest.raises(ImageLoadError):
        load_image("ftp://example.com/x.png")


def test_load_image_over_http(monkeypatch, tmp_path):
    import requests

    png = create_test_image(tmp_path / "remote.png", 12, 12).read_bytes()
    calls = []

    def fake_get(url, timeout=None):
        calls.append((url, timeout))
        response = requests.Response()
        response.status_code = 200
        response._content = png
        return response

    monkeypatch.setattr(requests, "get", fake_get)

    assert load_image("https://cdn.example.com/look.png", timeout=5).size == (12, 12)
    assert calls == [("https://cdn.example.com/look.png", 5)]


def test_load_image_http_error(monkeypatch):
    import requests

    def fake_get(url, timeout=None):
        response = requests.Response()
        response.status_code = 404
        response.url = url
        return response

    monkeypatch.setattr(requests, "get", fake_get)

    with pytest.raises(ImageLoadError):
        load_image("https://cdn.example.com/gone.png")


# ===== Provenance download =====

def test_download_free_tier_end_to_end(tmp_path):
    """Free tier: extractable metadata plus the visible overlay."""
    source = create_test_image(tmp_path / "source.png")
    downloader = ProvenanceDownloader(DirectorySink(tmp_path / "out"), bypass_visible=False)

    report = downloader.download(str(source), "fitgen-img-456.png", "free", METADATA)

    assert report.output_path == tmp_path / "out" / "fitgen-img-456.png"
    assert report.embed_status is EmbedStatus.EMBEDDED
    assert report.visible_applied
    assert (report.width, report.height) == (200, 200)

    with Image.open(report.output_path) as img:
        assert img.format == "PNG"
        assert img.size == (200, 200)
        pixels = np.array(img.convert("RGBA"))
        assert InvisibleWatermarker().extract_from_image(img) == METADATA

    # The overlay changes red values, which the invisible mark never touches
    assert (pixels[..., 0] != 128).sum() > 100


def test_download_pro_tier_end_to_end(tmp_path, monkeypatch):
    """Pro tier: same metadata, no overlay."""
    monkeypatch.delenv("FITGEN_BYPASS_CREDITS", raising=False)
    source = create_test_image(tmp_path / "source.png")

    report = download_with_provenance(
        str(source), "fitgen-img-456.png", Tier.PRO, METADATA, output_dir=tmp_path / "out"
    )

    assert not report.visible_requested
    assert report.render_status is None

    with Image.open(report.output_path) as img:
        pixels = np.array(img.convert("RGBA"))
        assert InvisibleWatermarker().extract_from_image(img) == METADATA

    assert np.all(pixels[..., 0] == 128)
    assert np.all(pixels[..., 1] == 128)
    assert np.abs(pixels[..., 2].astype(int) - 128).max() <= 1


def test_download_bypass_skips_overlay(tmp_path):
    source = create_test_image(tmp_path / "source.png")
    downloader = ProvenanceDownloader(DirectorySink(tmp_path), bypass_visible=True)

    report = downloader.download(str(source), "out.png", "free", METADATA)

    assert not report.visible_requested
    assert InvisibleWatermarker().extract_from_file(report.output_path) == METADATA


def test_download_load_failure_raises_and_writes_nothing(tmp_path):
    out_dir = tmp_path / "out"
    downloader = ProvenanceDownloader(DirectorySink(out_dir))

    with pytest.raises(ImageLoadError):
        downloader.download(str(tmp_path / "missing.png"), "x.png", "free", METADATA)

    assert not out_dir.exists()


def test_direct_download_saves_original_bytes(tmp_path):
    source = create_test_image(tmp_path / "source.png")
    path = direct_download(str(source), "copy.png", DirectorySink(tmp_path / "out"))

    assert path.read_bytes() == source.read_bytes()


def test_directory_sink_strips_directories(tmp_path):
    path = DirectorySink(tmp_path / "out").save("../escape.png", b"data")
    assert path == tmp_path / "out" / "escape.png"


def test_directory_sink_replaces_existing_file(tmp_path):
    sink = DirectorySink(tmp_path)
    sink.save("look.png", b"old")
    path = sink.save("look.png", b"new")

    assert path.read_bytes() == b"new"
    assert [p.name for p in tmp_path.iterdir()] == ["look.png"]


def test_directory_sink_failed_write_leaves_nothing(tmp_path, monkeypatch):
    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", failing_replace)
    out_dir = tmp_path / "out"

    with pytest.raises(OSError, match="disk full"):
        DirectorySink(out_dir).save("look.png", b"data")

    assert list(out_dir.iterdir()) == []


def test_load_font_shared_across_threads():
    fonts = []

    def worker():
        fonts.append(load_font(23, bold=True))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(fonts) == 8
    assert all(font is fonts[0] for font in fonts)
