from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class UploadRecord:
    """One video + poster pair destined for upload."""
    locale: str
    device_type: str
    timestamp: str
    order: int
    video_path: Path
    poster_path: Path


@dataclass(frozen=True)
class ScanOutcome:
    """Result of looking at a single video: either a record or the reason it was skipped."""
    video_path: Path
    record: Optional[UploadRecord] = None
    skip_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.record is None


@dataclass
class UploadSession:
    """Mutable state threaded through the upload loop."""
    username: str
    application: Any
    version: Any
    previous_locale: Optional[str] = None
    uploaded: int = 0
