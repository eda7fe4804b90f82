# nord_map/onnx_model.py
from __future__ import annotations

"""
ONNX Runtime backed segmentation model.

Requires the optional 'segmentation' extra (onnxruntime). The model is a
frozen artefact: one image tensor in, one class-score tensor out.

Exports:
  OnnxSegmentationModel(path, providers=None)
  load_onnx_model(path, labels, ...) -> SegmentationAdapter
"""

from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np

from .constants import MODEL_MEAN, MODEL_MIN_CONFIDENCE, MODEL_STD, MODEL_TIMEOUT
from .errors import ConfigurationError, ModelInferenceError
from .segmentation import ModelSpec, SegmentationAdapter


def _import_onnxruntime() -> Any:
    try:
        import onnxruntime
    except ImportError:
        raise ConfigurationError(
            "segmentation models need onnxruntime; install image2nord[segmentation]",
            stage="model",
        ) from None
    return onnxruntime


class OnnxSegmentationModel:
    """Callable wrapper around an onnxruntime.InferenceSession."""

    def __init__(self, path: Path, providers: Optional[Sequence[str]] = None) -> None:
        ort = _import_onnxruntime()
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"model file not found: {path}", stage="model")
        try:
            self.session = ort.InferenceSession(
                str(path),
                providers=list(providers) if providers else ["CPUExecutionProvider"],
            )
        except Exception as exc:
            raise ConfigurationError(
                f"could not load model {path.name}: {exc}", stage="model"
            ) from exc
        self.path = path
        inputs = self.session.get_inputs()
        if len(inputs) != 1:
            raise ConfigurationError(
                f"model {path.name} must take exactly one input, has {len(inputs)}",
                stage="model",
            )
        self.input_name = inputs[0].name
        self.input_shape = tuple(inputs[0].shape)

    @property
    def input_size(self) -> Optional[int]:
        """Square side from the model's declared input shape, if static."""
        if len(self.input_shape) != 4:
            return None
        h, w = self.input_shape[2], self.input_shape[3]
        if isinstance(h, int) and isinstance(w, int) and h == w:
            return h
        return None

    def __call__(self, tensor: np.ndarray) -> np.ndarray:
        outputs = self.session.run(None, {self.input_name: tensor})
        if not outputs:
            raise ModelInferenceError(f"model {self.path.name} returned no outputs")
        return np.asarray(outputs[0])


def load_onnx_model(
    path: Path,
    labels: Sequence[str],
    *,
    input_size: Optional[int] = None,
    mean: Sequence[float] = MODEL_MEAN,
    std: Sequence[float] = MODEL_STD,
    min_confidence: float = MODEL_MIN_CONFIDENCE,
    timeout: float = MODEL_TIMEOUT,
    providers: Optional[Sequence[str]] = None,
) -> SegmentationAdapter:
    """
    Load a frozen ONNX segmentation model into an enabled adapter.
    The input size defaults to the model's static input shape.
    Raises ConfigurationError at start-up for missing runtime, file or shape.
    """
    model = OnnxSegmentationModel(Path(path), providers=providers)
    size = input_size if input_size is not None else model.input_size
    if size is None:
        raise ConfigurationError(
            f"model {Path(path).name} has a dynamic input shape; pass input_size",
            stage="model",
        )
    spec = ModelSpec(
        labels=tuple(labels),
        input_size=int(size),
        mean=(float(mean[0]), float(mean[1]), float(mean[2])),
        std=(float(std[0]), float(std[1]), float(std[2])),
        min_confidence=float(min_confidence),
    )
    return SegmentationAdapter(
        model=model, spec=spec, timeout=float(timeout), name=Path(path).name
    )


__all__ = ["OnnxSegmentationModel", "load_onnx_model"]
