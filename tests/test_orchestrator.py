"""End-to-end mapping of in-memory images."""

import threading
import tracemalloc

import numpy as np
import pytest

from nord_map.config import MappingConfig
from nord_map.constants import DEFAULT_LABELS
from nord_map.errors import (
    MappingCancelled,
    ResourceExhaustionError,
    UnsupportedFormatError,
)
from nord_map.orchestrator import Orchestrator, flatten_alpha, map_image, map_many
from nord_map.resolver import nearest_indices
from nord_map.colour_convert import rgb_to_lab
from nord_map.segmentation import ModelSpec, SegmentationAdapter

from conftest import CountingModel, constant_scores, raising_model, slow_model

NO_DITHER = MappingConfig(dither_strength=0.0)
SKY = DEFAULT_LABELS.index("sky")


def _palette_rows(palette) -> set:
    return {tuple(row) for row in palette.rgb.tolist()}


def _only_palette_colours(rgb: np.ndarray, palette) -> bool:
    rows = {tuple(row) for row in rgb[..., :3].reshape(-1, 3).tolist()}
    return rows <= _palette_rows(palette)


def test_white_pixel_maps_to_nord6(palette) -> None:
    image = np.full((1, 1, 3), 255, dtype=np.uint8)
    result = map_image(image, palette, MappingConfig(segmentation=False))
    assert result.indices.tolist() == [[6]]
    assert result.rgb.tolist() == [[[236, 239, 244]]]
    assert not result.stats.segmentation_used
    assert result.stats.segmentation_reason == "disabled"
    assert result.stats.palette_usage == {"nord6": 1}


def test_two_by_two_dithered(palette) -> None:
    image = np.array(
        [[[200, 120, 60], [200, 120, 60]], [[30, 90, 160], [30, 90, 160]]],
        dtype=np.uint8,
    )
    result = map_image(image, palette, MappingConfig(dither_strength=1.0))
    assert result.rgb.shape == (2, 2, 3)
    assert result.rgb.dtype == np.uint8
    assert _only_palette_colours(result.rgb, palette)
    assert result.stats.dithering
    assert sum(result.stats.palette_usage.values()) == 4
    # Each row of indices agrees with the output colours
    assert np.array_equal(palette.rgb[result.indices], result.rgb)


@pytest.mark.parametrize(
    "config",
    [
        NO_DITHER,
        MappingConfig(),
        MappingConfig(serpentine=True, kernel="stucki"),
        MappingConfig(dither_strength=0.5, metric="ciede2000"),
    ],
)
def test_output_uses_only_palette_colours(palette, noisy_image, config) -> None:
    result = map_image(noisy_image, palette, config)
    assert result.rgb.shape == noisy_image.shape
    assert _only_palette_colours(result.rgb, palette)


def test_no_dither_matches_per_pixel_nearest(palette, noisy_image) -> None:
    result = map_image(noisy_image, palette, NO_DITHER)
    ids, _ = nearest_indices(rgb_to_lab(noisy_image).reshape(-1, 3), palette)
    assert np.array_equal(result.indices.reshape(-1), ids)
    assert result.stats.dropped_error == 0.0


@pytest.mark.parametrize("config", [NO_DITHER, MappingConfig(), MappingConfig(serpentine=True)])
def test_idempotent(palette, noisy_image, config) -> None:
    first = map_image(noisy_image, palette, config)
    second = map_image(first.rgb, palette, config)
    assert np.array_equal(first.rgb, second.rgb)
    assert second.stats.max_distance < 1e-3


def test_deterministic(palette, noisy_image) -> None:
    a = map_image(noisy_image, palette, MappingConfig(serpentine=True))
    b = map_image(noisy_image, palette, MappingConfig(serpentine=True))
    assert np.array_equal(a.rgb, b.rgb)


def test_dithering_changes_gradients(palette) -> None:
    ramp = np.repeat(np.linspace(0, 255, 32).astype(np.uint8)[None, :, None], 8, axis=0)
    ramp = np.repeat(ramp, 3, axis=2)
    flat = map_image(ramp, palette, NO_DITHER)
    dithered = map_image(ramp, palette, MappingConfig())
    assert not np.array_equal(flat.indices, dithered.indices)


def test_alpha_passes_through(palette, noisy_image) -> None:
    h, w, _ = noisy_image.shape
    alpha = np.tile(np.array([0, 64, 255], dtype=np.uint8), (h, w // 3 + 1))[:, :w]
    rgba = np.dstack([noisy_image, alpha])
    result = map_image(rgba, palette, MappingConfig())
    assert result.rgb.shape == (h, w, 4)
    assert np.array_equal(result.rgb[..., 3], alpha)
    assert _only_palette_colours(result.rgb, palette)


@pytest.mark.parametrize("serpentine", [False, True])
def test_hidden_colours_do_not_reach_visible_pixels(palette, serpentine) -> None:
    grey = np.full((8, 8, 4), (128, 128, 128, 255), dtype=np.uint8)
    under_white = grey.copy()
    under_black = grey.copy()
    under_white[:, :4] = (255, 255, 255, 0)
    under_black[:, :4] = (0, 0, 0, 0)
    config = MappingConfig(serpentine=serpentine)
    a = map_image(under_white, palette, config)
    b = map_image(under_black, palette, config)
    assert np.array_equal(a.indices[:, 4:], b.indices[:, 4:])
    # hidden pixels are still mapped, from their own colour
    assert np.all(a.indices[:, :4] == 6)
    assert np.all(b.indices[:, :4] == 0)


def test_background_flattens_alpha(palette) -> None:
    rgba = np.zeros((1, 2, 4), dtype=np.uint8)
    rgba[0, 0] = (255, 255, 255, 0)  # invisible white
    rgba[0, 1] = (255, 255, 255, 255)
    config = MappingConfig(background="#2e3440", dither_strength=0.0)
    result = map_image(rgba, palette, config)
    assert result.indices.tolist() == [[0, 6]]
    assert result.rgb[..., 3].tolist() == [[255, 255]]


def test_flatten_alpha_blend() -> None:
    rgb = np.array([[[200, 100, 0]]], dtype=np.uint8)
    alpha = np.array([[128]], dtype=np.uint8)
    out = flatten_alpha(rgb, alpha, (0, 0, 0))
    assert out.tolist() == [[[100, 50, 0]]]


def test_pixel_budget(palette) -> None:
    image = np.zeros((2, 2, 3), dtype=np.uint8)
    with pytest.raises(ResourceExhaustionError) as exc_info:
        map_image(image, palette, MappingConfig(max_pixels=3), image_id="big.png")
    assert exc_info.value.image_id == "big.png"
    assert exc_info.value.stage == "validate"
    assert "big.png/validate" in str(exc_info.value)


def test_unsupported_input(palette) -> None:
    with pytest.raises(UnsupportedFormatError) as exc_info:
        map_image(np.zeros((2, 2, 3), dtype=np.float32), palette, image_id="f32")
    assert exc_info.value.image_id == "f32"


def test_memory_error_becomes_resource_error(palette, monkeypatch) -> None:
    def boom(rgb, workers):
        raise MemoryError

    monkeypatch.setattr("nord_map.orchestrator.rgb_to_lab_threaded", boom)
    with pytest.raises(ResourceExhaustionError) as exc_info:
        map_image(np.zeros((2, 2, 3), dtype=np.uint8), palette, image_id="m")
    assert exc_info.value.stage == "convert"


def test_segmentation_constrains_regions(palette) -> None:
    red = np.full((4, 4, 3), (200, 30, 40), dtype=np.uint8)
    adapter = SegmentationAdapter(
        model=lambda t: constant_scores(SKY), spec=ModelSpec(input_size=8)
    )
    plain = map_image(red, palette, NO_DITHER)
    guided = map_image(red, palette, NO_DITHER, adapter)
    assert guided.stats.segmentation_used
    assert np.all(guided.label_map == SKY)
    assert np.all(plain.indices == 11)
    assert np.all((guided.indices >= 4) & (guided.indices <= 10))


def test_config_timeout_applies_to_adapter(palette, noisy_image) -> None:
    adapter = SegmentationAdapter(model=slow_model, spec=ModelSpec(input_size=8))
    config = MappingConfig(segmentation_timeout=0.05)
    orchestrator = Orchestrator(palette, config, adapter)
    assert orchestrator.adapter.timeout == 0.05
    result = orchestrator.run(noisy_image, "slow")
    assert not result.stats.segmentation_used
    assert "did not answer" in result.stats.segmentation_reason


def test_segmentation_runs_once_per_image(palette, noisy_image) -> None:
    model = CountingModel(lambda t: constant_scores(SKY))
    adapter = SegmentationAdapter(model=model, spec=ModelSpec(input_size=8))
    orchestrator = Orchestrator(palette, MappingConfig(), adapter)
    orchestrator.run(noisy_image, "a")
    orchestrator.run(noisy_image, "b")
    assert len(model.calls) == 2


def test_segmentation_switched_off(palette, noisy_image) -> None:
    model = CountingModel(lambda t: constant_scores(SKY))
    adapter = SegmentationAdapter(model=model, spec=ModelSpec(input_size=8))
    result = map_image(noisy_image, palette, MappingConfig(segmentation=False), adapter)
    assert model.calls == []
    assert not result.stats.segmentation_used


def test_failed_segmentation_still_maps(palette, noisy_image) -> None:
    adapter = SegmentationAdapter(model=raising_model, spec=ModelSpec(input_size=8))
    guided = map_image(noisy_image, palette, MappingConfig(), adapter)
    plain = map_image(noisy_image, palette, MappingConfig())
    assert not guided.stats.segmentation_used
    assert "RuntimeError" in guided.stats.segmentation_reason
    assert np.array_equal(guided.rgb, plain.rgb)


def test_progress_lines(palette, noisy_image, capsys) -> None:
    map_image(noisy_image, palette, MappingConfig(progress=True), image_id="p.png")
    out = capsys.readouterr().out
    assert "[map] p.png 100%" in out


def test_override_unknown_class_fails_at_start(palette) -> None:
    from nord_map.errors import ConfigurationError

    with pytest.raises(ConfigurationError):
        Orchestrator(palette, MappingConfig(class_overrides={"lava": ("nord11",)}))


def test_map_many_keeps_order(palette, noisy_image) -> None:
    orchestrator = Orchestrator(palette, MappingConfig())
    images = [
        ("a", noisy_image),
        ("bad", np.zeros((2, 2), dtype=np.uint8)),
        ("c", noisy_image[::-1].copy()),
    ]
    outcomes = map_many(images, orchestrator, jobs=2)
    assert [o.image_id for o in outcomes] == ["a", "bad", "c"]
    assert outcomes[0].ok and outcomes[2].ok
    assert isinstance(outcomes[1].error, UnsupportedFormatError)
    assert outcomes[1].error.image_id == "bad"
    single = orchestrator.run(noisy_image, "a")
    assert np.array_equal(outcomes[0].result.rgb, single.rgb)


def test_map_many_cancelled(palette, noisy_image) -> None:
    cancel = threading.Event()
    cancel.set()
    outcomes = map_many(
        [("a", noisy_image), ("b", noisy_image)], Orchestrator(palette), cancel=cancel
    )
    assert all(isinstance(o.error, MappingCancelled) for o in outcomes)
    assert not any(o.ok for o in outcomes)


def test_batched_memory_stays_bounded(palette) -> None:
    image = np.random.default_rng(5).integers(0, 256, size=(400, 400, 3), dtype=np.uint8)
    tracemalloc.start()
    try:
        map_image(image, palette, NO_DITHER)
        _current, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()
    # a single [pixels, 16, 3] float64 difference would already be ~61 MB
    assert peak < 48 * 2**20


@pytest.mark.parametrize("metric", ["cie76", "ciede2000"])
def test_match_cache_does_not_change_output(palette, noisy_image, monkeypatch, metric) -> None:
    config = MappingConfig(metric=metric, serpentine=True)
    cached = map_image(noisy_image, palette, config)
    monkeypatch.setattr("nord_map.region_mapper.MATCH_CACHE_MAX_ENTRIES", 1)
    uncached = map_image(noisy_image, palette, config)
    assert np.array_equal(cached.indices, uncached.indices)
    assert np.allclose(cached.stats.mean_distance, uncached.stats.mean_distance)


def test_repeated_colours_hit_the_cache(palette) -> None:
    flat = np.full((6, 6, 3), (236, 239, 244), dtype=np.uint8)
    orchestrator = Orchestrator(palette, MappingConfig())
    orchestrator.run(flat, "flat")
    # nord6 itself leaves (almost) no error, so adjusted colours repeat
    assert orchestrator.mapper.cache_size() < flat.shape[0] * flat.shape[1]
