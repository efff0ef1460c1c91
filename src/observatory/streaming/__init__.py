"""Live ingestion: the streaming service that owns the observation buffer."""

from .service import StreamingService

__all__ = ["StreamingService"]
