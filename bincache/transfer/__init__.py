"""
Transfer module: shared worker pools, pipelined range fetch, multipart upload.
"""

from bincache.transfer.executor import FETCH_POOL, UPLOAD_POOL, SharedExecutor
from bincache.transfer.fetch import PipelinedFetcher, head_object
from bincache.transfer.manager import TransferHandle, TransferManager, TransferStatus
from bincache.transfer.window import Chunk, ChunkState, TransferWindow

__all__ = [
    "FETCH_POOL",
    "UPLOAD_POOL",
    "SharedExecutor",
    "PipelinedFetcher",
    "head_object",
    "TransferHandle",
    "TransferManager",
    "TransferStatus",
    "Chunk",
    "ChunkState",
    "TransferWindow",
]
