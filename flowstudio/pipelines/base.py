"""
FlowStudio Bulk Pipeline Types

Result, progress and cancellation types shared by the bulk generators.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from flowstudio.core.logging_config import get_logger

logger = get_logger("pipelines.base")


class PipelineStatus(Enum):
    """Status of a bulk run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SceneError:
    """A per-item failure."""
    scene_id: str
    message: str

    def __str__(self) -> str:
        return f"{self.scene_id}: {self.message}"


@dataclass
class SceneResult:
    """Outcome for a single scene in a bulk run."""
    scene_id: str
    success: bool
    value: Optional[str] = None  # prompt text or image URL
    provider: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BulkResult:
    """Outcome of a bulk generation run."""
    total_scenes: int
    provider: str
    results: List[SceneResult] = field(default_factory=list)
    errors: List[SceneError] = field(default_factory=list)
    cancelled: bool = False
    document: Optional[Dict[str, Any]] = None
    duration_seconds: float = 0.0

    @property
    def successful_scenes(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_scenes(self) -> int:
        return self.total_scenes - self.successful_scenes

    @property
    def success(self) -> bool:
        return not self.cancelled and self.successful_scenes == self.total_scenes

    @property
    def status(self) -> PipelineStatus:
        if self.cancelled:
            return PipelineStatus.CANCELLED
        if self.success:
            return PipelineStatus.COMPLETED
        if self.successful_scenes:
            return PipelineStatus.PARTIAL
        return PipelineStatus.FAILED

    def add_success(self, result: SceneResult) -> None:
        self.results.append(result)

    def add_failure(self, scene_id: str, message: str, provider: Optional[str] = None) -> None:
        self.results.append(SceneResult(scene_id=scene_id, success=False, provider=provider, error=message))
        self.errors.append(SceneError(scene_id=scene_id, message=message))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "total_scenes": self.total_scenes,
            "successful_scenes": self.successful_scenes,
            "failed_scenes": self.failed_scenes,
            "provider": self.provider,
            "cancelled": self.cancelled,
            "errors": [{"scene_id": e.scene_id, "message": e.message} for e in self.errors],
        }


@dataclass
class CompletedImage:
    scene_id: str
    image_url: str
    scene_index: int  # 1-based


@dataclass
class ProgressEvent:
    """Progress snapshot emitted by a bulk generator."""
    completed: int
    total: int
    current_scene: str
    current_index: int  # 1-based
    provider: str
    completed_images: List[CompletedImage] = field(default_factory=list)
    latest_image_url: Optional[str] = None
    stage: str = ""

    @property
    def percentage(self) -> int:
        if not self.total:
            return 100
        return round(self.completed / self.total * 100)


ProgressCallback = Callable[[ProgressEvent], None]


def emit_progress(callback: Optional[ProgressCallback], event: ProgressEvent) -> None:
    """Deliver a progress event. Sink errors are logged, never raised."""
    if callback is None:
        return
    try:
        callback(event)
    except Exception as e:
        logger.warning(f"Progress callback error: {e}")


class CancellationToken:
    """
    Cooperative cancellation flag checked between batch items.

    Safe to create outside a running event loop; the wake-up event is
    created on first use inside one.
    """

    def __init__(self):
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self.reason: Optional[str] = None

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        logger.info(f"Cancellation requested: {reason}")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def sleep(self, seconds: float, sleep: Callable = asyncio.sleep) -> None:
        """Sleep, waking early if cancelled."""
        if seconds <= 0 or self.cancelled:
            return
        if sleep is not asyncio.sleep:
            await sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


def elapsed_since(start: datetime) -> float:
    return (datetime.now() - start).total_seconds()
