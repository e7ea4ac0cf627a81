"""
DeepLab Segmentation Model
==========================

Production person segmentation using torchvision's DeepLab v3 models.

Architectures:
    - fast:     DeepLab v3, MobileNetV3-Large backbone
    - accurate: DeepLab v3, ResNet-50 backbone

Person mask: VOC class 15. A pixel is foreground when the softmax
probability of the person class reaches the inference threshold.

Precision:
    precision_bytes=2 runs float16 on CUDA. On CPU, and for
    precision_bytes=1, the model runs float32.

Note:
    output_stride and model_scale describe mobile backbones with
    configurable stride and width; the pretrained torchvision backbones
    have both fixed, so they are recorded on the handle and logged only.
"""

import logging
from typing import Optional

import cv2
import numpy as np
import torch
import torchvision.transforms as T
from torchvision.models.segmentation import (
    DeepLabV3_MobileNet_V3_Large_Weights,
    DeepLabV3_ResNet50_Weights,
    deeplabv3_mobilenet_v3_large,
    deeplabv3_resnet50,
)

from tryon_compositor.segmentation.engine import (
    Architecture,
    InferenceOptions,
    ModelConfig,
    mask_shape,
)


logger = logging.getLogger(__name__)


class DeepLabSegmentationModel:
    """
    DeepLab v3 person segmentation.

    Attributes:
        device: torch device the model runs on
        dtype: Tensor dtype selected from precision_bytes
    """

    name = "deeplab"
    PERSON_CLASS = 15

    def __init__(self, device: str = "cpu") -> None:
        self.device = torch.device(device)
        self.dtype = torch.float32
        self.model: Optional[torch.nn.Module] = None

        self.preprocess = T.Compose([
            T.ToTensor(),
            T.Normalize(mean=[0.485, 0.456, 0.406], std=[0.229, 0.224, 0.225]),
        ])

    def load(self, config: ModelConfig) -> None:
        if config.architecture == Architecture.ACCURATE:
            logger.info("Loading DeepLab v3 ResNet-50...")
            model = deeplabv3_resnet50(weights=DeepLabV3_ResNet50_Weights.DEFAULT)
        else:
            logger.info("Loading DeepLab v3 MobileNetV3-Large...")
            model = deeplabv3_mobilenet_v3_large(
                weights=DeepLabV3_MobileNet_V3_Large_Weights.DEFAULT
            )

        self.dtype = self._select_dtype(config.precision_bytes)
        model.to(self.device, dtype=self.dtype)
        model.eval()
        self.model = model

        logger.info(
            f"DeepLab ready on {self.device} ({self.dtype}); "
            f"output_stride={config.output_stride} and "
            f"model_scale={config.model_scale} are fixed by the pretrained backbone"
        )

    def _select_dtype(self, precision_bytes: int) -> torch.dtype:
        if precision_bytes == 2 and self.device.type == "cuda":
            return torch.float16
        if precision_bytes != 4:
            logger.warning(
                f"precision_bytes={precision_bytes} not supported on "
                f"{self.device.type}, using float32"
            )
        return torch.float32

    @torch.no_grad()
    def infer(self, rgba: np.ndarray, options: InferenceOptions) -> np.ndarray:
        if self.model is None:
            raise RuntimeError("DeepLab model is not loaded")

        height, width = mask_shape(rgba.shape[0], rgba.shape[1], options.resolution_hint)
        rgb = cv2.cvtColor(rgba, cv2.COLOR_RGBA2RGB)
        if (height, width) != rgb.shape[:2]:
            rgb = cv2.resize(rgb, (width, height), interpolation=cv2.INTER_AREA)

        input_tensor = self.preprocess(rgb).unsqueeze(0).to(self.device, dtype=self.dtype)
        output = self.model(input_tensor)["out"]

        probs = torch.softmax(output.float(), dim=1)[0, self.PERSON_CLASS]
        return (probs >= options.threshold).cpu().numpy()
