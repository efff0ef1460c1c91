"""In-memory storage for streamed observations.

:class:`StreamBuffer` keeps the bounded window of recent points owned by the
streaming service. It stays free of scheduling and network code so the same
buffer can back the live service, replays and offline scripts.
"""

from __future__ import annotations

from .stream_buffer import Batch, BufferUpdate, StreamBuffer

__all__ = ["Batch", "BufferUpdate", "StreamBuffer"]
