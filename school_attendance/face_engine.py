import threading
from typing import Callable, Optional, Protocol

import cv2
import numpy as np
import torch
import torch.nn.functional as f
import torchvision.models as models

from .config import DEVICE, EMBEDDING_INPUT_SIZE, EMBEDDING_MODEL, PRETRAINED_WEIGHTS
from .exceptions import ExtractionError
from .logger import setup_logger


class EmbeddingExtractor(Protocol):
    def extract(self, image: np.ndarray) -> np.ndarray:
        ...


def _build_vit_b_16(pretrained: bool) -> torch.nn.Module:
    weights = models.ViT_B_16_Weights.DEFAULT if pretrained else None
    backbone = models.vit_b_16(weights=weights)
    backbone.heads = torch.nn.Identity()
    return backbone


def _build_resnet18(pretrained: bool) -> torch.nn.Module:
    weights = models.ResNet18_Weights.DEFAULT if pretrained else None
    backbone = models.resnet18(weights=weights)
    backbone.fc = torch.nn.Identity()
    return backbone


BACKBONES: dict[str, Callable[[bool], torch.nn.Module]] = {
    "vit_b_16": _build_vit_b_16,
    "resnet18": _build_resnet18,
}


def decode_image(data: bytes) -> np.ndarray:
    if not data:
        raise ExtractionError("Image payload is empty.")
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ExtractionError("Unable to decode image; unsupported or corrupt format.")
    return image


class FaceEngine:
    """Whole-frame feature extractor backed by a torchvision backbone.

    The backbone is built on the first ``extract`` call. Initialization is
    single-flight: concurrent first calls wait on one lock and only one of them
    loads the model. A failed load is not remembered, so a later call retries.
    """

    def __init__(
        self,
        model_name: str = EMBEDDING_MODEL,
        device: str = DEVICE,
        pretrained: bool = PRETRAINED_WEIGHTS,
        loader: Optional[Callable[[], torch.nn.Module]] = None,
        input_size: int = EMBEDDING_INPUT_SIZE,
    ):
        if loader is None and model_name not in BACKBONES:
            raise ExtractionError(
                f"Unknown embedding model '{model_name}'. Choose one of: {', '.join(sorted(BACKBONES))}."
            )

        self.model_name = model_name
        self.device = torch.device(device)
        self.pretrained = pretrained
        self.input_size = input_size
        self._loader = loader
        self._model: Optional[torch.nn.Module] = None
        self._lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

        self.mean = torch.tensor([0.485, 0.456, 0.406], dtype=torch.float32).view(1, 3, 1, 1)
        self.std = torch.tensor([0.229, 0.224, 0.225], dtype=torch.float32).view(1, 3, 1, 1)

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def warm_up(self) -> None:
        self._ensure_model()

    def _ensure_model(self) -> torch.nn.Module:
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is not None:
                return self._model

            self.logger.info("Loading embedding model %s on %s", self.model_name, self.device)
            try:
                if self._loader is not None:
                    model = self._loader()
                else:
                    model = BACKBONES[self.model_name](self.pretrained)
                model = model.eval().to(self.device)
            except Exception as exc:
                raise ExtractionError(f"Failed to initialize embedding model: {exc}") from exc

            if self.device.type == "cuda":
                torch.backends.cudnn.benchmark = True
            self.mean = self.mean.to(self.device)
            self.std = self.std.to(self.device)
            self._model = model
            return model

    def extract(self, image: np.ndarray) -> np.ndarray:
        tensor = self._to_tensor(image)
        model = self._ensure_model()

        try:
            with torch.inference_mode():
                batch = (tensor.to(self.device) - self.mean) / self.std
                raw = model(batch)
                normed = f.normalize(raw.reshape(raw.shape[0], -1), p=2, dim=1)
                embedding = normed[0].detach().cpu().numpy().astype(np.float32)
        except Exception as exc:
            raise ExtractionError(f"Embedding generation failed: {exc}") from exc

        if not np.all(np.isfinite(embedding)):
            raise ExtractionError("Embedding generation produced non-finite values.")
        return embedding

    def _to_tensor(self, image: np.ndarray) -> torch.Tensor:
        if not isinstance(image, np.ndarray) or image.size == 0:
            raise ExtractionError("Image is empty.")
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise ExtractionError(f"Unsupported image shape {image.shape}.")

        try:
            code = cv2.COLOR_BGRA2RGB if image.shape[2] == 4 else cv2.COLOR_BGR2RGB
            rgb = cv2.cvtColor(image.astype(np.uint8), code)
            side = self.input_size
            interpolation = cv2.INTER_AREA if min(rgb.shape[:2]) >= side else cv2.INTER_CUBIC
            resized = cv2.resize(rgb, (side, side), interpolation=interpolation)
        except cv2.error as exc:
            raise ExtractionError(f"Image preprocessing failed: {exc}") from exc

        return torch.from_numpy(resized).permute(2, 0, 1).float().unsqueeze(0) / 255.0
