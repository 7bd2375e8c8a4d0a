# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapkeep Compressor - Streaming compression for snapshot files.

Snapshots are compressed file-to-file in fixed-size chunks so memory use
stays flat regardless of database size. Two codecs are supported:

1. gzip (default) - snapshots named *.db.gz, readable with gunzip
2. zstd - snapshots named *.db.zst, smaller and faster to decompress

Blocking work runs on a single worker thread and is awaited serially.
"""

import asyncio
import gzip
import os
import shutil
import zlib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog
import zstandard as zstd

from snapkeep.config import CompressionCodec
from snapkeep.exceptions import CompressionError

logger = structlog.get_logger()

# One worker: operations never overlap
_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapkeep-io")

# Default compression settings
DEFAULT_GZIP_LEVEL = 6  # Same as the gzip CLI
DEFAULT_ZSTD_LEVEL = 19
CHUNK_SIZE = 1024 * 1024

_DECOMPRESS_ERRORS = (OSError, EOFError, zlib.error, zstd.ZstdError)


def codec_for_path(path: Path | str) -> CompressionCodec:
    """
    Detect the codec of a snapshot file from its suffix.

    Raises:
        CompressionError: If the suffix is not a known snapshot suffix
    """
    name = str(path)
    for codec in CompressionCodec:
        if name.endswith(codec.suffix):
            return codec
    raise CompressionError(
        f"Unknown snapshot suffix: {Path(name).name}",
        details={"path": name},
    )


def default_level(codec: CompressionCodec) -> int:
    return DEFAULT_GZIP_LEVEL if codec is CompressionCodec.GZIP else DEFAULT_ZSTD_LEVEL


async def compress_file(
    source: Path,
    dest: Path,
    codec: CompressionCodec,
    level: int | None = None,
) -> int:
    """
    Compress source into dest.

    dest is fsynced before returning.

    Args:
        source: Uncompressed database copy
        dest: Output path
        codec: Compression codec
        level: Codec level, None for the codec default

    Returns:
        Size of the compressed file in bytes
    """
    level = default_level(codec) if level is None else level
    loop = asyncio.get_running_loop()
    try:
        size = await loop.run_in_executor(
            _executor, _compress_file_sync, source, dest, codec, level
        )
    except (OSError, zlib.error, zstd.ZstdError) as e:
        raise CompressionError(
            f"Compression failed for {source.name}: {e}",
            details={"source": str(source), "codec": codec.value},
        ) from e

    logger.debug(
        "compression_complete",
        source=str(source),
        dest=str(dest),
        codec=codec.value,
        level=level,
        original_size=source.stat().st_size,
        compressed_size=size,
    )
    return size


async def decompress_file(
    source: Path,
    dest: Path,
    codec: CompressionCodec | None = None,
) -> int:
    """
    Decompress a snapshot into dest.

    dest is fsynced before returning.

    Args:
        source: Compressed snapshot
        dest: Output path
        codec: Codec, detected from the suffix when None

    Returns:
        Size of the decompressed file in bytes

    Raises:
        CompressionError: If the snapshot is truncated or not valid for its codec
    """
    codec = codec or codec_for_path(source)
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(
            _executor, _decompress_file_sync, source, dest, codec
        )
    except _DECOMPRESS_ERRORS as e:
        raise CompressionError(
            f"Decompression failed for {source.name}: {e}",
            details={"source": str(source), "codec": codec.value},
        ) from e


async def verify_compressed_file(
    source: Path,
    codec: CompressionCodec | None = None,
) -> int:
    """
    Decompress a snapshot without writing it anywhere.

    Returns:
        Decompressed size in bytes

    Raises:
        CompressionError: If the snapshot is truncated or not valid for its codec
    """
    codec = codec or codec_for_path(source)
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(_executor, _drain_sync, source, codec)
    except _DECOMPRESS_ERRORS as e:
        raise CompressionError(
            f"Snapshot verification failed for {source.name}: {e}",
            details={"source": str(source), "codec": codec.value},
        ) from e


def _compress_file_sync(
    source: Path,
    dest: Path,
    codec: CompressionCodec,
    level: int,
) -> int:
    """Synchronous streaming compression."""
    with open(source, "rb") as src, open(dest, "wb") as raw:
        if codec is CompressionCodec.GZIP:
            # Fixed header mtime and no embedded filename
            with gzip.GzipFile(
                filename="", mode="wb", compresslevel=level, fileobj=raw, mtime=0
            ) as out:
                shutil.copyfileobj(src, out, CHUNK_SIZE)
        else:
            cctx = zstd.ZstdCompressor(level=level, write_checksum=True)
            cctx.copy_stream(src, raw, read_size=CHUNK_SIZE, write_size=CHUNK_SIZE)
        raw.flush()
        os.fsync(raw.fileno())
    return dest.stat().st_size


def _decompress_file_sync(source: Path, dest: Path, codec: CompressionCodec) -> int:
    """Synchronous streaming decompression."""
    with open(source, "rb") as raw, open(dest, "wb") as out:
        if codec is CompressionCodec.GZIP:
            with gzip.GzipFile(fileobj=raw, mode="rb") as src:
                shutil.copyfileobj(src, out, CHUNK_SIZE)
        else:
            dctx = zstd.ZstdDecompressor()
            with dctx.stream_reader(raw, read_size=CHUNK_SIZE) as src:
                shutil.copyfileobj(src, out, CHUNK_SIZE)
        out.flush()
        os.fsync(out.fileno())
    return dest.stat().st_size


def _drain_sync(source: Path, codec: CompressionCodec) -> int:
    """Read a compressed stream to the end, returning the decompressed size."""
    total = 0
    with open(source, "rb") as raw:
        if codec is CompressionCodec.GZIP:
            reader = gzip.GzipFile(fileobj=raw, mode="rb")
        else:
            reader = zstd.ZstdDecompressor().stream_reader(raw, read_size=CHUNK_SIZE)
        with reader:
            for chunk in iter(lambda: reader.read(CHUNK_SIZE), b""):
                total += len(chunk)
    return total


def get_compression_stats(
    original_size: int,
    compressed_size: int,
) -> dict:
    """
    Calculate compression statistics.

    Args:
        original_size: Uncompressed database size in bytes
        compressed_size: Snapshot size in bytes

    Returns:
        Dict with compression statistics
    """
    if compressed_size == 0:
        return {
            "original_size": original_size,
            "compressed_size": compressed_size,
            "compression_ratio": 0,
            "space_saved_percent": 0,
        }

    ratio = original_size / compressed_size
    saved_bytes = original_size - compressed_size
    saved_percent = (saved_bytes / original_size) * 100 if original_size > 0 else 0

    return {
        "original_size": original_size,
        "compressed_size": compressed_size,
        "compression_ratio": round(ratio, 2),
        "space_saved_percent": round(saved_percent, 2),
    }
