"""
Segmentation Engine
===================

Person/background segmentation behind a black-box model protocol.

This module provides:
    - SegmentationModel: Protocol every model backend implements
    - ModelConfig / InferenceOptions: Recognized load and inference options
    - SegmentationEngine: Async wrapper enforcing one in-flight inference
    - MockSegmentationModel: Deterministic backend for tests and demos

Design Rules:
    - Model calls are blocking and run in a worker thread
    - At most ONE inference is in flight; extra requests are dropped,
      never queued, so no backlog can build up
    - Masks may be smaller than the frame (resolution_hint); mapping back
      to frame pixels is the compositor's job
    - All model failures surface as SegmentationUnavailable subclasses
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional, Protocol, Tuple

import cv2
import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from tryon_compositor.camera.frame import Frame
from tryon_compositor.errors import (
    InferenceBusy,
    InferenceFailed,
    ModelLoadFailed,
    SegmentationUnavailable,
)
from tryon_compositor.models.mask import SegmentationMask


logger = logging.getLogger(__name__)


# Fraction of the frame size the model runs at
RESOLUTION_SCALE = {
    "low": 0.25,
    "medium": 0.5,
    "high": 0.75,
    "full": 1.0,
}


class Architecture(str, Enum):
    """Model family: speed versus accuracy."""

    FAST = "fast"
    ACCURATE = "accurate"


class ModelConfig(BaseModel):
    """Options recognized when loading a segmentation model."""

    model_config = ConfigDict(protected_namespaces=())

    architecture: Architecture = Field(
        default=Architecture.FAST,
        description="'fast' (mobile backbone) or 'accurate' (ResNet backbone)",
    )
    output_stride: Literal[8, 16, 32] = Field(
        default=16,
        description="Backbone output stride",
    )
    model_scale: Literal[0.5, 0.75, 1.0] = Field(
        default=0.75,
        description="Backbone width multiplier",
    )
    precision_bytes: Literal[1, 2, 4] = Field(
        default=2,
        description="Bytes per weight (4 = float32, 2 = float16, 1 = int8)",
    )


class InferenceOptions(BaseModel):
    """Options applied to every inference call."""

    resolution_hint: Literal["low", "medium", "high", "full"] = Field(
        default="medium",
        description="Internal resolution relative to the frame",
    )
    threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum person probability for a foreground pixel",
    )


def mask_shape(height: int, width: int, resolution_hint: str) -> tuple:
    """Mask (height, width) for a frame at the given resolution hint."""
    scale = RESOLUTION_SCALE[resolution_hint]
    return max(1, int(round(height * scale))), max(1, int(round(width * scale)))


class SegmentationModel(Protocol):
    """
    Protocol for segmentation backends.

    Both methods may block; the engine calls them from a worker thread.
    """

    name: str

    def load(self, config: ModelConfig) -> None:
        """Load weights. Raises on failure."""
        ...

    def infer(self, rgba: np.ndarray, options: InferenceOptions) -> np.ndarray:
        """
        Segment a frame.

        Args:
            rgba: Frame pixels, shape (H, W, 4), uint8, read-only
            options: Inference options

        Returns:
            Boolean mask (h, w); True = person
        """
        ...


@dataclass(frozen=True, slots=True)
class ModelHandle:
    """Describes a successfully loaded model."""

    backend: str
    config: ModelConfig
    loaded_at: float
    load_seconds: float


class SegmentationEngineMetrics:
    """Metrics for SegmentationEngine observability."""

    __slots__ = (
        "load_failures",
        "inferences_started",
        "inferences_completed",
        "inference_failures",
        "dropped_requests",
        "last_inference_ms",
    )

    def __init__(self) -> None:
        self.load_failures: int = 0
        self.inferences_started: int = 0
        self.inferences_completed: int = 0
        self.inference_failures: int = 0
        self.dropped_requests: int = 0
        self.last_inference_ms: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "load_failures": self.load_failures,
            "inferences_started": self.inferences_started,
            "inferences_completed": self.inferences_completed,
            "inference_failures": self.inference_failures,
            "dropped_requests": self.dropped_requests,
            "last_inference_ms": round(self.last_inference_ms, 2),
        }


class SegmentationEngine:
    """
    Async front for a blocking segmentation model.

    Attributes:
        model: Backend implementing SegmentationModel
        options: Inference options used for every call
        handle: ModelHandle once loaded, else None
        metrics: Operational metrics

    Example:
        engine = SegmentationEngine(DeepLabSegmentationModel())
        await engine.load_model(ModelConfig())

        task = engine.submit(frame)   # None if an inference is in flight
        if task is not None:
            mask = await task
    """

    def __init__(
        self,
        model: SegmentationModel,
        options: Optional[InferenceOptions] = None,
    ) -> None:
        self.model = model
        self.options = options or InferenceOptions()
        self.metrics = SegmentationEngineMetrics()

        self._handle: Optional[ModelHandle] = None
        self._in_flight: bool = False
        self._sequence: int = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self._handle

    @property
    def is_loaded(self) -> bool:
        return self._handle is not None

    @property
    def in_flight(self) -> bool:
        """Whether an inference is currently running."""
        return self._in_flight

    async def load_model(self, config: Optional[ModelConfig] = None) -> ModelHandle:
        """
        Load the model (slow, one-time).

        Args:
            config: Load options (defaults to ModelConfig())

        Returns:
            Handle describing the loaded model

        Raises:
            ModelLoadFailed: The backend raised while loading
        """
        config = config or ModelConfig()
        logger.info(
            f"Loading segmentation model '{self.model.name}': "
            f"architecture={config.architecture.value}, "
            f"output_stride={config.output_stride}, "
            f"model_scale={config.model_scale}, "
            f"precision_bytes={config.precision_bytes}"
        )

        start = time.perf_counter()
        try:
            await asyncio.to_thread(self.model.load, config)
        except Exception as e:
            self._handle = None
            self.metrics.load_failures += 1
            raise ModelLoadFailed(
                f"Failed to load segmentation model '{self.model.name}': {e}"
            ) from e

        elapsed = time.perf_counter() - start
        self._handle = ModelHandle(
            backend=self.model.name,
            config=config,
            loaded_at=time.time(),
            load_seconds=elapsed,
        )
        logger.info(f"Segmentation model '{self.model.name}' loaded in {elapsed:.2f}s")
        return self._handle

    async def infer(self, frame: Frame) -> SegmentationMask:
        """
        Segment one frame.

        Raises:
            InferenceBusy: Another inference is in flight (request dropped)
            SegmentationUnavailable: No model loaded
            InferenceFailed: The model raised or returned a bad mask
        """
        sequence, worker = self._start(frame)
        return await self._run(frame, sequence, worker)

    def submit(self, frame: Frame) -> Optional["asyncio.Task[SegmentationMask]"]:
        """
        Start inference in the background.

        Returns:
            The running task, or None when the request was dropped
            (inference already in flight, or no model loaded).
        """
        try:
            sequence, worker = self._start(frame)
        except SegmentationUnavailable:
            return None

        task = asyncio.create_task(
            self._run(frame, sequence, worker),
            name=f"segmentation[{sequence}]",
        )
        task.add_done_callback(self._on_task_done)
        self._task = task
        return task

    def _begin(self) -> int:
        """Claim the single inference slot and return the issue sequence."""
        if self._handle is None:
            raise SegmentationUnavailable("Segmentation model is not loaded")
        if self._in_flight:
            self.metrics.dropped_requests += 1
            raise InferenceBusy("Inference already in flight")
        self._in_flight = True
        self._sequence += 1
        self.metrics.inferences_started += 1
        return self._sequence

    def _start(self, frame: Frame) -> Tuple[int, asyncio.Future]:
        """
        Claim the slot and start the model call in a worker thread.

        The slot is released when the worker finishes, not when its caller
        does: a cancelled caller leaves the thread running.
        """
        sequence = self._begin()
        worker = asyncio.ensure_future(
            asyncio.to_thread(self.model.infer, frame.pixels, self.options)
        )
        worker.add_done_callback(self._release)
        return sequence, worker

    def _release(self, worker: asyncio.Future) -> None:
        self._in_flight = False
        if not worker.cancelled():
            # retrieved here so an abandoned failure is not reported as unhandled
            worker.exception()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None

    async def _run(self, frame: Frame, sequence: int, worker: asyncio.Future) -> SegmentationMask:
        start = time.perf_counter()
        try:
            raw = await asyncio.shield(worker)
        except Exception as e:
            self.metrics.inference_failures += 1
            raise InferenceFailed(
                f"Inference failed on frame {frame.frame_id}: {e}"
            ) from e

        data = np.asarray(raw)
        if data.ndim != 2 or data.size == 0:
            self.metrics.inference_failures += 1
            raise InferenceFailed(
                f"Model returned mask of shape {data.shape} for frame {frame.frame_id}"
            )

        self.metrics.last_inference_ms = (time.perf_counter() - start) * 1000.0
        self.metrics.inferences_completed += 1

        mask = SegmentationMask(
            data=data.astype(np.bool_, copy=True),
            frame_width=frame.width,
            frame_height=frame.height,
            sequence=sequence,
            frame_id=frame.frame_id,
            completed_at=time.time(),
        )
        logger.debug(
            f"Segmentation: frame={frame.frame_id}, seq={sequence}, "
            f"mask={mask.width}x{mask.height}, "
            f"fg={mask.foreground_ratio:.2f}, "
            f"{self.metrics.last_inference_ms:.1f}ms"
        )
        return mask


class MockSegmentationModel:
    """
    Deterministic mock segmentation model.

    Classifies a centred ellipse as the person and everything else as
    background. Useful for running the kiosk without model weights and
    for tests.

    Attributes:
        latency: Seconds each inference blocks (simulates model cost)
        load_delay: Seconds load() blocks
        fail_load: When True, load() raises
        ellipse_scale: Ellipse semi-axes as a fraction of mask (w/2, h/2)
    """

    name = "mock"

    def __init__(
        self,
        latency: float = 0.0,
        load_delay: float = 0.0,
        fail_load: bool = False,
        ellipse_scale: float = 0.6,
    ) -> None:
        self.latency = latency
        self.load_delay = load_delay
        self.fail_load = fail_load
        self.ellipse_scale = ellipse_scale
        self.loaded_config: Optional[ModelConfig] = None

        logger.info(
            f"MockSegmentationModel initialized: latency={latency}s, "
            f"ellipse_scale={ellipse_scale}"
        )

    def load(self, config: ModelConfig) -> None:
        if self.load_delay > 0:
            time.sleep(self.load_delay)
        if self.fail_load:
            raise RuntimeError("mock model configured to fail loading")
        self.loaded_config = config

    def infer(self, rgba: np.ndarray, options: InferenceOptions) -> np.ndarray:
        if self.latency > 0:
            time.sleep(self.latency)

        height, width = mask_shape(rgba.shape[0], rgba.shape[1], options.resolution_hint)
        canvas = np.zeros((height, width), dtype=np.uint8)
        axes = (
            max(1, int(width / 2 * self.ellipse_scale)),
            max(1, int(height / 2 * self.ellipse_scale)),
        )
        cv2.ellipse(canvas, (width // 2, height // 2), axes, 0, 0, 360, 1, -1)
        return canvas.astype(np.bool_)
