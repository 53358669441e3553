from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ProcessingResult:
    """Outcome of a processing step that may fail without raising"""

    def __init__(
        self,
        success: bool,
        content: Optional[Any] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ):
        self.success = success
        self.content = content
        self.metadata = dict(metadata) if metadata else {}
        self.error = error
        self.timestamp = datetime.now(timezone.utc)

    @classmethod
    def failed(cls, error: str, **metadata) -> 'ProcessingResult':
        return cls(success=False, error=error, metadata=metadata)

    def __repr__(self):
        return f"<ProcessingResult(success={self.success}, error={self.error!r})>"
