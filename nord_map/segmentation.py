# nord_map/segmentation.py
from __future__ import annotations

"""
Segmentation adapter.

The adapter holds an optional model: model=None is the disabled variant and
labels every pixel UNKNOWN_LABEL; otherwise the model is called once per image
before the pixel loop.

Model boundary:
  input : float32 [1,3,S,S], resized with Pillow, scaled to 0..1 and
          normalised with ModelSpec.mean / ModelSpec.std
  output: class scores [1,K,h,w] or [K,h,w], K == len(ModelSpec.labels)

Failures (exceptions from the model, malformed output, timeouts) are raised
as ModelInferenceError by infer(); segment() absorbs them, logs a warning
and returns the all-unknown map.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image

from .constants import (
    DEFAULT_LABELS,
    MODEL_INPUT_SIZE,
    MODEL_MEAN,
    MODEL_MIN_CONFIDENCE,
    MODEL_STD,
    MODEL_TIMEOUT,
)
from .core_types import UNKNOWN_LABEL, LabelMap, U8Image
from .errors import ConfigurationError, ModelInferenceError
from .utils import debug_log, format_seconds_compact, warn

SegmentationModel = Callable[[np.ndarray], np.ndarray]


@dataclass(frozen=True)
class ModelSpec:
    """Fixed input/output contract of a segmentation model."""

    labels: Tuple[str, ...] = DEFAULT_LABELS
    input_size: int = MODEL_INPUT_SIZE
    mean: Tuple[float, float, float] = MODEL_MEAN
    std: Tuple[float, float, float] = MODEL_STD
    min_confidence: float = MODEL_MIN_CONFIDENCE

    def __post_init__(self) -> None:
        if not self.labels:
            raise ConfigurationError("model spec needs at least one label")
        if len(set(self.labels)) != len(self.labels):
            raise ConfigurationError("model spec has duplicate labels")
        if int(self.input_size) < 1:
            raise ConfigurationError("model input size must be positive")
        if any(float(s) <= 0.0 for s in self.std):
            raise ConfigurationError("model std values must be positive")
        if not 0.0 <= float(self.min_confidence) < 1.0:
            raise ConfigurationError("min_confidence must be within [0, 1)")

    def label_name(self, label: int) -> str:
        if label == UNKNOWN_LABEL:
            return "unknown"
        return self.labels[label]


@dataclass(frozen=True)
class Segmentation:
    """Label map for one image and whether the model actually produced it."""

    label_map: LabelMap
    used: bool
    reason: Optional[str] = None


def unknown_label_map(height: int, width: int) -> LabelMap:
    return np.full((height, width), UNKNOWN_LABEL, dtype=np.int16)


@dataclass(frozen=True)
class SegmentationAdapter:
    """
    Capability-gated wrapper around an optional segmentation model.

    Build the disabled variant with SegmentationAdapter.disabled().
    """

    model: Optional[SegmentationModel] = None
    spec: ModelSpec = field(default_factory=ModelSpec)
    timeout: float = MODEL_TIMEOUT
    name: str = "segmentation"

    @classmethod
    def disabled(cls, spec: Optional[ModelSpec] = None) -> "SegmentationAdapter":
        return cls(model=None, spec=spec or ModelSpec())

    @property
    def enabled(self) -> bool:
        return self.model is not None

    # Model boundary

    def prepare_input(self, rgb: U8Image) -> np.ndarray:
        """Resize and normalise an RGB image into the model's [1,3,S,S] tensor."""
        size = int(self.spec.input_size)
        im = Image.fromarray(np.ascontiguousarray(rgb[..., :3]))
        im = im.resize((size, size), resample=Image.Resampling.BILINEAR)
        arr = np.asarray(im, dtype=np.float32) / np.float32(255.0)
        mean = np.asarray(self.spec.mean, dtype=np.float32)
        std = np.asarray(self.spec.std, dtype=np.float32)
        arr = (arr - mean) / std
        return np.ascontiguousarray(arr.transpose(2, 0, 1)[None, ...], dtype=np.float32)

    def decode_output(self, raw: np.ndarray, height: int, width: int) -> LabelMap:
        """
        Class scores -> (height, width) label map. Cells whose softmax
        confidence is below spec.min_confidence become UNKNOWN_LABEL.
        """
        try:
            scores = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise ModelInferenceError(f"model output is not numeric: {exc}") from None

        if scores.ndim == 4:
            if scores.shape[0] != 1:
                raise ModelInferenceError(
                    f"expected batch size 1, got output shape {scores.shape}"
                )
            scores = scores[0]
        if scores.ndim != 3:
            raise ModelInferenceError(
                f"expected [1,K,h,w] or [K,h,w] scores, got shape {scores.shape}"
            )
        num_classes, h, w = scores.shape
        if num_classes != len(self.spec.labels):
            raise ModelInferenceError(
                f"model returned {num_classes} classes, spec has {len(self.spec.labels)}"
            )
        if h == 0 or w == 0:
            raise ModelInferenceError("model returned an empty score map")
        if not np.all(np.isfinite(scores)):
            raise ModelInferenceError("model returned non-finite scores")

        shifted = scores - scores.max(axis=0, keepdims=True)
        probs = np.exp(shifted)
        probs /= probs.sum(axis=0, keepdims=True)

        labels = np.argmax(probs, axis=0).astype(np.int16)
        confidence = probs.max(axis=0)
        labels[confidence < float(self.spec.min_confidence)] = UNKNOWN_LABEL

        # Nearest-neighbour upsample to the image grid
        ys = (np.arange(height, dtype=np.int64) * h) // height
        xs = (np.arange(width, dtype=np.int64) * w) // width
        return np.ascontiguousarray(labels[ys[:, None], xs[None, :]])

    def _call_model(self, tensor: np.ndarray) -> np.ndarray:
        """
        Run the model on a worker thread and wait at most self.timeout seconds.

        Python threads cannot be interrupted: a call that times out keeps
        running on its worker until the model returns, and its result is
        discarded.
        """
        if self.model is None:
            raise ModelInferenceError("segmentation is disabled")
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segmentation")
        try:
            future = pool.submit(self.model, tensor)
            return future.result(timeout=float(self.timeout))
        except FutureTimeout:
            raise ModelInferenceError(
                f"model did not answer within {format_seconds_compact(float(self.timeout))}"
            ) from None
        except ModelInferenceError:
            raise
        except Exception as exc:
            raise ModelInferenceError(
                f"model raised {type(exc).__name__}: {exc}"
            ) from exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def infer(self, rgb: U8Image, image_id: str = "image") -> LabelMap:
        """Strict path: run the model once and decode, raising ModelInferenceError."""
        if self.model is None:
            raise ModelInferenceError(
                "segmentation is disabled", image_id=image_id, stage="segmentation"
            )
        height, width = int(rgb.shape[0]), int(rgb.shape[1])
        try:
            tensor = self.prepare_input(rgb)
            raw = self._call_model(tensor)
            return self.decode_output(raw, height, width)
        except ModelInferenceError as exc:
            raise exc.with_context(image_id=image_id, stage="segmentation")
        except (ValueError, TypeError, OSError) as exc:
            raise ModelInferenceError(
                f"could not prepare model input: {exc}",
                image_id=image_id,
                stage="segmentation",
            ) from exc

    def segment(
        self, rgb: U8Image, image_id: str = "image", debug: bool = False
    ) -> Segmentation:
        """Label map for the image; falls back to all-unknown on any model failure."""
        height, width = int(rgb.shape[0]), int(rgb.shape[1])
        if self.model is None:
            return Segmentation(unknown_label_map(height, width), used=False)
        try:
            label_map = self.infer(rgb, image_id)
        except ModelInferenceError as exc:
            warn(f"{image_id}: {self.name} failed ({exc.message}); continuing without it")
            return Segmentation(
                unknown_label_map(height, width), used=False, reason=exc.message
            )
        if debug:
            known = label_map[label_map != UNKNOWN_LABEL]
            counts = np.bincount(known.astype(np.int64), minlength=len(self.spec.labels))
            shares = ", ".join(
                f"{self.spec.labels[i]}={c / label_map.size:.1%}"
                for i, c in enumerate(counts.tolist())
                if c
            )
            debug_log(f"{image_id}: segmentation labels: {shares or 'all unknown'}")
        return Segmentation(label_map, used=True)


__all__ = [
    "SegmentationModel",
    "ModelSpec",
    "Segmentation",
    "SegmentationAdapter",
    "unknown_label_map",
]
