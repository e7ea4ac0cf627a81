"""
Try-On Compositor Configuration
===============================

This module handles configuration loading for the try-on kiosk.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    TRYON_CAMERA_INDEX               -> camera.device_index
    TRYON_CAMERA_BACKEND             -> camera.backend
    TRYON_SEGMENTATION_BACKEND       -> segmentation.backend
    TRYON_SEGMENTATION_ARCHITECTURE  -> segmentation.architecture
    TRYON_DEVICE                     -> segmentation.device
    TRYON_TARGET_FPS                 -> render.target_fps
    TRYON_PRODUCT_IMAGE              -> product.image_path
    TRYON_PORT                       -> server.port
    TRYON_LOG_LEVEL                  -> logging.level
    PORT                             -> server.port (takes precedence)

Example:
    from tryon_compositor.config import settings

    print(settings.camera.width)
    print(settings.segmentation.threshold)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from tryon_compositor.models.camera import CameraConstraints, FacingMode
from tryon_compositor.segmentation.engine import Architecture, InferenceOptions, ModelConfig


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AppConfig(BaseModel):
    """Application identification."""

    name: str = Field(default="tryon-compositor", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class CameraConfig(BaseModel):
    """Camera acquisition configuration."""

    backend: Literal["opencv", "synthetic"] = Field(
        default="opencv",
        description="Camera backend: 'opencv' or 'synthetic' (test pattern)",
    )
    device_index: int = Field(default=0, ge=0, description="Camera device index")
    width: int = Field(default=1280, gt=0, description="Requested frame width")
    height: int = Field(default=720, gt=0, description="Requested frame height")
    fps: int = Field(default=30, gt=0, le=120, description="Requested capture rate")
    facing_mode: FacingMode = Field(
        default=FacingMode.USER,
        description="Preferred camera: 'user' (front) or 'environment'",
    )
    mirror: bool = Field(default=True, description="Flip frames horizontally (selfie view)")
    max_read_failures: int = Field(
        default=30,
        ge=1,
        description="Consecutive failed reads before capture gives up",
    )

    def constraints(self) -> CameraConstraints:
        return CameraConstraints(
            device_index=self.device_index,
            width=self.width,
            height=self.height,
            fps=self.fps,
            facing_mode=self.facing_mode,
            mirror=self.mirror,
        )


class SegmentationConfig(BaseModel):
    """Segmentation model configuration."""

    model_config = ConfigDict(protected_namespaces=())

    backend: Literal["deeplab", "mock"] = Field(
        default="deeplab",
        description="Segmentation backend: 'deeplab' (torchvision) or 'mock'",
    )
    device: str = Field(default="cpu", description="torch device, e.g. 'cpu' or 'cuda'")
    architecture: Architecture = Field(
        default=Architecture.FAST,
        description="'fast' (MobileNetV3) or 'accurate' (ResNet-50)",
    )
    output_stride: Literal[8, 16, 32] = Field(default=16, description="Backbone output stride")
    model_scale: Literal[0.5, 0.75, 1.0] = Field(default=0.75, description="Backbone width multiplier")
    precision_bytes: Literal[1, 2, 4] = Field(default=2, description="Bytes per weight")
    resolution_hint: Literal["low", "medium", "high", "full"] = Field(
        default="medium",
        description="Mask resolution relative to the frame",
    )
    threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum person probability for a foreground pixel",
    )
    model_retry_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Delay before retrying a failed model load (0 = never)",
    )

    def load_options(self) -> ModelConfig:
        return ModelConfig(
            architecture=self.architecture,
            output_stride=self.output_stride,
            model_scale=self.model_scale,
            precision_bytes=self.precision_bytes,
        )

    def inference_options(self) -> InferenceOptions:
        return InferenceOptions(
            resolution_hint=self.resolution_hint,
            threshold=self.threshold,
        )


class RenderConfig(BaseModel):
    """Render loop configuration."""

    target_fps: float = Field(default=30.0, gt=0, le=120, description="Paint refresh rate")
    inference_interval_ticks: int = Field(
        default=2,
        ge=1,
        description="Submit segmentation every N drawn ticks",
    )
    surface_width: int = Field(default=1280, gt=0, description="Surface width in pixels")
    surface_height: int = Field(default=720, gt=0, description="Surface height in pixels")


class OverlayConfig(BaseModel):
    """Product overlay configuration."""

    initial_x: float = Field(default=300.0, description="Initial overlay centre x")
    initial_y: float = Field(default=200.0, description="Initial overlay centre y")
    box_width: int = Field(default=192, gt=0, description="Overlay box width")
    box_height: int = Field(default=192, gt=0, description="Overlay box height")


class ProductConfig(BaseModel):
    """Product shown at startup."""

    image_path: Optional[str] = Field(
        default=None,
        description="Path to the product image (PNG with alpha preferred)",
    )
    product_id: str = Field(default="demo-product", description="Catalog id")
    name: str = Field(default="Demo Product", description="Display name")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8002, ge=1, le=65535, description="Bind port")
    stream_fps: float = Field(
        default=15.0,
        gt=0,
        le=60,
        description="Rate at which /ws/tryon pushes frames",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the try-on compositor.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    app: AppConfig = Field(default_factory=AppConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    segmentation: SegmentationConfig = Field(default_factory=SegmentationConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)
    product: ProductConfig = Field(default_factory=ProductConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Camera
    if env_index := os.environ.get("TRYON_CAMERA_INDEX"):
        config_data.setdefault("camera", {})["device_index"] = int(env_index)
    if env_camera := os.environ.get("TRYON_CAMERA_BACKEND"):
        config_data.setdefault("camera", {})["backend"] = env_camera

    # Segmentation
    if env_backend := os.environ.get("TRYON_SEGMENTATION_BACKEND"):
        config_data.setdefault("segmentation", {})["backend"] = env_backend
    if env_arch := os.environ.get("TRYON_SEGMENTATION_ARCHITECTURE"):
        config_data.setdefault("segmentation", {})["architecture"] = env_arch
    if env_device := os.environ.get("TRYON_DEVICE"):
        config_data.setdefault("segmentation", {})["device"] = env_device

    # Render
    if env_fps := os.environ.get("TRYON_TARGET_FPS"):
        config_data.setdefault("render", {})["target_fps"] = float(env_fps)

    # Product
    if env_image := os.environ.get("TRYON_PRODUCT_IMAGE"):
        config_data.setdefault("product", {})["image_path"] = env_image

    # Server (PORT wins, as set by container platforms)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("TRYON_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging
    if env_log := os.environ.get("TRYON_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

settings = load_config()
setup_logging(settings)
