"""On-demand image transforms with a filesystem cache.

Cache key: <stem>[_w<W>][_h<H>]_q<Q>.<format>, built from the source's
stored filename and the clamped request parameters. Stored filenames are
unique and immutable, so a key never points at stale content.

A hit returns the cached bytes as-is. A miss decodes the source, fits it
inside the requested box (aspect ratio kept, never upscaled), encodes it and
writes the result atomically before returning it. Two concurrent misses for
the same key both compute and both write identical bytes; last writer wins.
"""
import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os
from PIL import Image, ImageOps, features

from asset_cdn.errors import ErrorCode, StorageError
from asset_cdn.services.categories import IMAGE
from asset_cdn.services.storage import StorageEngine

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 80
DEFAULT_FORMAT = "webp"
MAX_DIMENSION = 2048

PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG", "avif": "AVIF"}
MEDIA_TYPES = {fmt: f"image/{fmt}" for fmt in PIL_FORMATS}


class TransformError(Exception):
    """The source could be read but not transformed (decode/encode failure)."""
    pass


@dataclass(frozen=True)
class TransformOptions:
    width: int | None = None
    height: int | None = None
    quality: int = DEFAULT_QUALITY
    format: str | None = DEFAULT_FORMAT


def clamp_quality(quality: int | None) -> int:
    if quality is None:
        return DEFAULT_QUALITY
    return max(1, min(100, int(quality)))


def build_cache_key(stored_filename: str, options: TransformOptions) -> str:
    """Deterministic cache file name for a (source, parameters) pair."""
    stem = PurePosixPath(stored_filename).stem
    key = stem
    if options.width:
        key += f"_w{options.width}"
    if options.height:
        key += f"_h{options.height}"
    key += f"_q{clamp_quality(options.quality)}"
    key += f".{options.format}"
    return key


def render_image(source: Path, options: TransformOptions) -> bytes:
    """Decode, resize and encode. Runs in a worker thread."""
    pil_format = PIL_FORMATS[options.format]
    quality = clamp_quality(options.quality)

    with Image.open(source) as img:
        img = ImageOps.exif_transpose(img)
        if options.width or options.height:
            box = (
                min(options.width or img.width, MAX_DIMENSION),
                min(options.height or img.height, MAX_DIMENSION),
            )
            # thumbnail() keeps aspect ratio and never enlarges
            img.thumbnail(box, Image.Resampling.LANCZOS)

        has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
        if pil_format == "JPEG":
            img = img.convert("RGB")
        elif img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if has_alpha else "RGB")

        out = io.BytesIO()
        if pil_format == "PNG":
            img.save(out, format=pil_format, optimize=True)
        elif pil_format == "JPEG":
            img.save(out, format=pil_format, quality=quality, optimize=True, progressive=True)
        else:
            img.save(out, format=pil_format, quality=quality)
        return out.getvalue()


def format_supported(fmt: str) -> bool:
    if fmt not in PIL_FORMATS:
        return False
    if fmt == "avif":
        return bool(features.check("avif"))
    return True


class TransformCache:
    """Serves resized / re-encoded images, computing them on a cache miss."""

    def __init__(self, storage: StorageEngine):
        self.storage = storage

    async def process(self, stored_filename: str, options: TransformOptions | None = None) -> bytes:
        """Return transformed bytes for an image.

        Raises:
            StorageError: the source image does not exist (not found).
            TransformError: the source exists but could not be transformed.
        """
        options = options or TransformOptions()
        options = TransformOptions(
            width=options.width,
            height=options.height,
            quality=clamp_quality(options.quality),
            format=(options.format or DEFAULT_FORMAT).lower(),
        )
        if not format_supported(options.format):
            raise TransformError(f"Unsupported output format '{options.format}'")

        cache_path = self.storage.cache_path(build_cache_key(stored_filename, options), IMAGE)
        try:
            async with aiofiles.open(cache_path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            pass

        source = self.storage.get_path(stored_filename, IMAGE)
        if not await aiofiles.os.path.isfile(source):
            raise StorageError(ErrorCode.FILE_NOT_FOUND, stored_filename)

        try:
            buffer = await asyncio.to_thread(render_image, source, options)
        except Exception as e:
            raise TransformError(f"Could not transform {stored_filename}: {e}") from e

        try:
            await self.storage.write_atomic(cache_path, buffer)
        except OSError as e:
            # Serving the computed bytes still works; the next request recomputes
            logger.warning(f"Could not write transform cache {cache_path.name}: {e}")
        return buffer

    async def clear_cache(self, stored_filename: str) -> int:
        """Delete every cached variant of an image. Returns how many were removed."""
        prefix = PurePosixPath(stored_filename).stem + "_"
        cache_dir = self.storage.cache_dir(IMAGE)
        try:
            names = await aiofiles.os.listdir(cache_dir)
        except FileNotFoundError:
            return 0

        removed = 0
        for name in names:
            if not name.startswith(prefix):
                continue
            try:
                await aiofiles.os.remove(cache_dir / name)
                removed += 1
            except FileNotFoundError:
                pass
        return removed

    async def get_metadata(self, stored_filename: str) -> dict:
        """Width, height, format and mode of a stored image."""
        source = self.storage.get_path(stored_filename, IMAGE)
        if not await aiofiles.os.path.isfile(source):
            raise StorageError(ErrorCode.FILE_NOT_FOUND, stored_filename)

        def _read() -> dict:
            with Image.open(source) as img:
                return {"width": img.width, "height": img.height, "format": img.format, "mode": img.mode}

        try:
            return await asyncio.to_thread(_read)
        except Exception as e:
            raise TransformError(f"Could not read metadata for {stored_filename}: {e}") from e
