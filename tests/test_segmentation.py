"""Segmentation adapter: model boundary and fallbacks."""

import numpy as np
import pytest

from nord_map.constants import DEFAULT_LABELS
from nord_map.core_types import UNKNOWN_LABEL
from nord_map.errors import ConfigurationError, ModelInferenceError
from nord_map.segmentation import ModelSpec, SegmentationAdapter

from conftest import CountingModel, constant_scores, raising_model, slow_model

SPEC = ModelSpec(input_size=8)
K = len(DEFAULT_LABELS)


def _image(h: int = 6, w: int = 10) -> np.ndarray:
    return np.full((h, w, 3), 120, dtype=np.uint8)


def test_disabled_labels_everything_unknown() -> None:
    adapter = SegmentationAdapter.disabled()
    assert not adapter.enabled
    seg = adapter.segment(_image())
    assert not seg.used
    assert seg.label_map.shape == (6, 10)
    assert seg.label_map.dtype == np.int16
    assert np.all(seg.label_map == UNKNOWN_LABEL)


def test_disabled_infer_raises() -> None:
    with pytest.raises(ModelInferenceError):
        SegmentationAdapter.disabled().infer(_image())


def test_model_call_without_model_raises() -> None:
    adapter = SegmentationAdapter.disabled()
    with pytest.raises(ModelInferenceError, match="disabled"):
        adapter._call_model(np.zeros((1, 3, 8, 8), dtype=np.float32))


def test_prepare_input_tensor() -> None:
    adapter = SegmentationAdapter(model=raising_model, spec=SPEC)
    tensor = adapter.prepare_input(np.zeros((5, 7, 3), dtype=np.uint8))
    assert tensor.shape == (1, 3, 8, 8)
    assert tensor.dtype == np.float32
    # black normalises to -mean/std
    assert tensor[0, 0, 0, 0] == pytest.approx(-0.485 / 0.229, rel=1e-5)


def test_model_called_once_with_tensor() -> None:
    model = CountingModel(lambda t: constant_scores(1))
    adapter = SegmentationAdapter(model=model, spec=SPEC)
    seg = adapter.segment(_image())
    assert seg.used
    assert model.calls == [(1, 3, 8, 8)]
    assert np.all(seg.label_map == 1)


def test_upsampled_to_image_grid() -> None:
    scores = np.zeros((K, 2, 2), dtype=np.float32)
    scores[1, 0, :] = 10.0  # top half sky
    scores[2, 1, :] = 10.0  # bottom half foliage
    adapter = SegmentationAdapter(model=lambda t: scores, spec=SPEC)
    label_map = adapter.infer(_image(4, 3))
    assert label_map.shape == (4, 3)
    assert label_map[:2].tolist() == [[1, 1, 1]] * 2
    assert label_map[2:].tolist() == [[2, 2, 2]] * 2


def test_low_confidence_is_unknown() -> None:
    flat = np.zeros((1, K, 3, 3), dtype=np.float32)
    adapter = SegmentationAdapter(model=lambda t: flat, spec=SPEC)
    label_map = adapter.infer(_image())
    assert np.all(label_map == UNKNOWN_LABEL)


def test_raising_model_falls_back(capsys) -> None:
    adapter = SegmentationAdapter(model=raising_model, spec=SPEC, name="seg.onnx")
    seg = adapter.segment(_image(), image_id="cat.png")
    assert not seg.used
    assert np.all(seg.label_map == UNKNOWN_LABEL)
    assert "RuntimeError" in seg.reason
    out = capsys.readouterr().out
    assert "[warn] cat.png: seg.onnx failed" in out


@pytest.mark.parametrize(
    "raw",
    [
        np.zeros((K, 4), dtype=np.float32),
        np.zeros((2, K, 4, 4), dtype=np.float32),
        np.zeros((1, K + 1, 4, 4), dtype=np.float32),
        np.zeros((1, K, 0, 4), dtype=np.float32),
        np.full((1, K, 2, 2), np.nan, dtype=np.float32),
        "not scores",
    ],
)
def test_malformed_output(raw) -> None:
    adapter = SegmentationAdapter(model=lambda t: raw, spec=SPEC)
    with pytest.raises(ModelInferenceError) as exc_info:
        adapter.infer(_image(), image_id="x")
    assert exc_info.value.stage == "segmentation"
    assert exc_info.value.image_id == "x"
    seg = adapter.segment(_image())
    assert not seg.used
    assert np.all(seg.label_map == UNKNOWN_LABEL)


def test_timeout_falls_back() -> None:
    adapter = SegmentationAdapter(model=slow_model, spec=SPEC, timeout=0.05)
    seg = adapter.segment(_image())
    assert not seg.used
    assert "did not answer" in seg.reason


@pytest.mark.parametrize(
    "kwargs",
    [
        {"labels": ()},
        {"labels": ("a", "a")},
        {"input_size": 0},
        {"std": (0.2, 0.0, 0.2)},
        {"min_confidence": 1.0},
    ],
)
def test_bad_model_spec(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        ModelSpec(**kwargs)


def test_label_names() -> None:
    assert ModelSpec().label_name(1) == "sky"
    assert ModelSpec().label_name(UNKNOWN_LABEL) == "unknown"
