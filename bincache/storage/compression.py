"""
Compression codecs for cache files.

Codec names match the `Content-Encoding` values stored on objects:

    ""/"none"  identity
    "xz"       lzma (xz container)
    "bzip2"    bz2
    "gzip"     gzip
    "lz4"      lz4 frame format
    "zstd"     Zstandard frame
    "br"       Brotli

Whole-payload helpers (`compress`, `decompress`) serve uploads and small
objects; `decompressor()` returns an incremental decoder for streaming
fetches.
"""

from __future__ import annotations

import bz2
import gzip
import lzma
import zlib
from typing import Any, Callable, Final

import brotli
import lz4.frame
import zstandard

from bincache.core.errors import CodecError

IDENTITY: Final[frozenset[str]] = frozenset({"", "none"})


class _BrotliDecoder:
    """`brotli.Decompressor` behind the decompress/eof interface of the others."""

    __slots__ = ("_inner",)

    def __init__(self) -> None:
        self._inner = brotli.Decompressor()

    def decompress(self, data: bytes) -> bytes:
        return self._inner.process(data)

    @property
    def eof(self) -> bool:
        return self._inner.is_finished()


def _zstd_decompress(data: bytes) -> bytes:
    # Frames written by streaming encoders carry no content size, which
    # ZstdDecompressor.decompress() refuses; the decompressobj path does not
    decoder = zstandard.ZstdDecompressor().decompressobj()
    out = decoder.decompress(data)
    if not decoder.eof:
        raise EOFError("compressed payload is truncated")
    return out


_COMPRESSORS: Final[dict[str, Callable[[bytes], bytes]]] = {
    "xz": lambda data: lzma.compress(data, format=lzma.FORMAT_XZ),
    "bzip2": bz2.compress,
    "gzip": gzip.compress,
    "lz4": lz4.frame.compress,
    "zstd": lambda data: zstandard.ZstdCompressor().compress(data),
    "br": brotli.compress,
}

_DECOMPRESSORS: Final[dict[str, Callable[[bytes], bytes]]] = {
    "xz": lzma.decompress,
    "bzip2": bz2.decompress,
    "gzip": gzip.decompress,
    "lz4": lz4.frame.decompress,
    "zstd": _zstd_decompress,
    "br": brotli.decompress,
}

# Decoder failures: lzma.LZMAError, OSError (bz2/gzip), zlib.error,
# RuntimeError (lz4), zstandard.ZstdError, brotli.error, EOFError (truncated)
_CODEC_FAILURES: Final[tuple[type[BaseException], ...]] = (
    lzma.LZMAError,
    zlib.error,
    zstandard.ZstdError,
    brotli.error,
    OSError,
    EOFError,
    RuntimeError,
    ValueError,
)


def is_identity(name: str) -> bool:
    return name in IDENTITY


def supported() -> list[str]:
    return sorted(_COMPRESSORS)


def compress(name: str, data: bytes) -> bytes:
    if is_identity(name):
        return data
    codec = _COMPRESSORS.get(name)
    if codec is None:
        raise CodecError.unknown(name)
    return codec(data)


def decompress(name: str, data: bytes) -> bytes:
    if is_identity(name):
        return data
    codec = _DECOMPRESSORS.get(name)
    if codec is None:
        raise CodecError.unknown(name)
    try:
        return codec(data)
    except _CODEC_FAILURES as e:
        raise CodecError.corrupt(name, e) from e


class StreamDecompressor:
    """
    Incremental decoder fed with consecutive slices of one payload.

    Usage:
        dec = decompressor("xz")
        for piece in pieces:
            sink(dec.feed(piece))
        sink(dec.finish())
    """

    def __init__(self, name: str, decoder: Any) -> None:
        self.name = name
        self._decoder = decoder

    def feed(self, data: bytes) -> bytes:
        if self._decoder is None:
            return data
        try:
            return self._decoder.decompress(data)
        except _CODEC_FAILURES as e:
            raise CodecError.corrupt(self.name, e) from e

    def finish(self) -> bytes:
        """Flush buffered output; raises CodecError on a truncated payload."""
        if self._decoder is None:
            return b""
        tail = b""
        if isinstance(self._decoder, _ZLIB_DECOMPRESS_TYPE):
            tail = self._decoder.flush()
        if not self._decoder.eof:
            raise CodecError.corrupt(self.name, EOFError("compressed payload is truncated"))
        return tail


_ZLIB_DECOMPRESS_TYPE = type(zlib.decompressobj())


def decompressor(name: str) -> StreamDecompressor:
    if is_identity(name):
        return StreamDecompressor(name, None)
    if name == "xz":
        return StreamDecompressor(name, lzma.LZMADecompressor())
    if name == "bzip2":
        return StreamDecompressor(name, bz2.BZ2Decompressor())
    if name == "gzip":
        # wbits 16 + MAX_WBITS selects the gzip container
        return StreamDecompressor(name, zlib.decompressobj(16 + zlib.MAX_WBITS))
    if name == "lz4":
        return StreamDecompressor(name, lz4.frame.LZ4FrameDecompressor())
    if name == "zstd":
        return StreamDecompressor(name, zstandard.ZstdDecompressor().decompressobj())
    if name == "br":
        return StreamDecompressor(name, _BrotliDecoder())
    raise CodecError.unknown(name)
