"""
Segmentation Tests
==================

Tests for the segmentation engine, its mock backend and the latest-mask
slot.
"""

import asyncio

import numpy as np
import pytest
from pydantic import ValidationError

from tryon_compositor.errors import (
    InferenceBusy,
    InferenceFailed,
    ModelLoadFailed,
    SegmentationUnavailable,
)
from tryon_compositor.segmentation import (
    InferenceOptions,
    LatestMaskSlot,
    MockSegmentationModel,
    ModelConfig,
    SegmentationEngine,
    create_segmentation_model,
)


class TestModelConfig:
    """Tests for load and inference options."""

    def test_defaults(self):
        config = ModelConfig()
        options = InferenceOptions()

        assert config.architecture.value == "fast"
        assert config.output_stride == 16
        assert config.model_scale == 0.75
        assert config.precision_bytes == 2
        assert options.resolution_hint == "medium"
        assert options.threshold == 0.7

    def test_unsupported_values_rejected(self):
        with pytest.raises(ValidationError):
            ModelConfig(output_stride=12)
        with pytest.raises(ValidationError):
            ModelConfig(architecture="huge")
        with pytest.raises(ValidationError):
            InferenceOptions(resolution_hint="ultra")
        with pytest.raises(ValidationError):
            InferenceOptions(threshold=1.5)

    def test_backend_factory(self):
        assert isinstance(create_segmentation_model("mock"), MockSegmentationModel)
        with pytest.raises(ValueError):
            create_segmentation_model("unknown")


class TestSegmentationEngine:
    """Tests for SegmentationEngine."""

    def test_load_model(self):
        model = MockSegmentationModel()
        engine = SegmentationEngine(model)

        handle = asyncio.run(engine.load_model(ModelConfig(architecture="accurate")))

        assert engine.is_loaded
        assert handle.backend == "mock"
        assert handle.config.architecture.value == "accurate"
        assert model.loaded_config is handle.config

    def test_load_failure(self):
        engine = SegmentationEngine(MockSegmentationModel(fail_load=True))

        with pytest.raises(ModelLoadFailed):
            asyncio.run(engine.load_model())

        assert not engine.is_loaded
        assert engine.metrics.load_failures == 1

    def test_infer_before_load(self, frame_factory):
        engine = SegmentationEngine(MockSegmentationModel())

        with pytest.raises(SegmentationUnavailable):
            asyncio.run(engine.infer(frame_factory()))

    def test_infer_returns_low_resolution_mask(self, frame_factory):
        engine = SegmentationEngine(MockSegmentationModel(), InferenceOptions(resolution_hint="medium"))
        frame = frame_factory(frame_id=9, width=64, height=32)

        async def run():
            await engine.load_model()
            return await engine.infer(frame)

        mask = asyncio.run(run())

        assert (mask.height, mask.width) == (16, 32)
        assert (mask.frame_height, mask.frame_width) == (32, 64)
        assert mask.frame_id == 9
        assert mask.sequence == 1
        assert mask.data[8, 16]
        assert not mask.data[0, 0]
        assert not mask.data.flags.writeable

    def test_sequences_increase(self, frame_factory):
        engine = SegmentationEngine(MockSegmentationModel())

        async def run():
            await engine.load_model()
            first = await engine.infer(frame_factory(frame_id=1))
            second = await engine.infer(frame_factory(frame_id=2))
            return first, second

        first, second = asyncio.run(run())

        assert second.sequence > first.sequence
        assert engine.metrics.inferences_completed == 2

    def test_only_one_inference_in_flight(self, frame_factory, gated_model):
        engine = SegmentationEngine(gated_model)

        async def run():
            await engine.load_model()
            task = engine.submit(frame_factory(frame_id=1))
            await asyncio.sleep(0.01)

            dropped = engine.submit(frame_factory(frame_id=2))
            with pytest.raises(InferenceBusy):
                await engine.infer(frame_factory(frame_id=3))
            assert engine.in_flight

            gated_model.gate.set()
            mask = await task
            return dropped, mask

        dropped, mask = asyncio.run(run())

        assert dropped is None
        assert mask.frame_id == 1
        assert gated_model.calls == 1
        assert engine.metrics.dropped_requests == 2
        assert not engine.in_flight

    def test_cancelled_infer_holds_slot_until_model_returns(self, frame_factory, gated_model, eventually):
        """Cancelling the caller does not free the slot while the model still runs."""
        engine = SegmentationEngine(gated_model)

        async def run():
            await engine.load_model()
            caller = asyncio.create_task(engine.infer(frame_factory(frame_id=1)))
            await asyncio.sleep(0.01)

            caller.cancel()
            await asyncio.wait({caller})
            assert caller.cancelled()
            assert engine.in_flight
            assert engine.submit(frame_factory(frame_id=2)) is None

            gated_model.gate.set()
            assert await eventually(lambda: not engine.in_flight)

        asyncio.run(run())

        assert gated_model.calls == 1
        assert engine.metrics.inferences_started == 1

    def test_submit_without_model_returns_none(self, frame_factory):
        engine = SegmentationEngine(MockSegmentationModel())

        async def run():
            return engine.submit(frame_factory())

        assert asyncio.run(run()) is None

    def test_inference_failure_releases_slot(self, frame_factory, gated_model_factory):
        model = gated_model_factory([[1]], gated=False)
        model.fail = True
        engine = SegmentationEngine(model)

        async def run():
            await engine.load_model()
            with pytest.raises(InferenceFailed):
                await engine.infer(frame_factory())
            model.fail = False
            return await engine.infer(frame_factory())

        mask = asyncio.run(run())

        assert mask.sequence == 2
        assert engine.metrics.inference_failures == 1

    def test_bad_mask_shape_is_a_failure(self, frame_factory, gated_model_factory):
        model = gated_model_factory([[1]], gated=False)
        model.result = np.ones((2, 2, 2), dtype=bool)
        engine = SegmentationEngine(model)

        async def run():
            await engine.load_model()
            await engine.infer(frame_factory())

        with pytest.raises(InferenceFailed):
            asyncio.run(run())


class TestLatestMaskSlot:
    """Tests for the publish/read hand-off."""

    def test_starts_empty(self):
        assert LatestMaskSlot().current is None

    def test_publish_installs(self, mask_factory):
        slot = LatestMaskSlot()
        mask = mask_factory([[1]], sequence=1)

        assert slot.publish(mask) is True
        assert slot.current is mask

    def test_monotonic_masks(self, mask_factory):
        """A result issued earlier never replaces a newer one."""
        slot = LatestMaskSlot()
        newer = mask_factory([[1]], sequence=2)
        older = mask_factory([[0]], sequence=1)

        slot.publish(newer)
        assert slot.publish(older) is False
        assert slot.publish(mask_factory([[0]], sequence=2)) is False

        assert slot.current is newer
        assert slot.stale_discarded == 2

    def test_closed_slot_discards(self, mask_factory):
        slot = LatestMaskSlot()
        slot.close()

        assert slot.publish(mask_factory([[1]], sequence=1)) is False
        assert slot.current is None
        assert slot.metrics()["closed_discarded"] == 1

    def test_reset_reopens(self, mask_factory):
        slot = LatestMaskSlot()
        slot.publish(mask_factory([[1]], sequence=5))
        slot.close()

        slot.reset()

        assert slot.current is None
        assert slot.publish(mask_factory([[1]], sequence=1)) is True

    def test_metrics(self, mask_factory):
        slot = LatestMaskSlot()
        slot.publish(mask_factory([[1]], sequence=3))

        assert slot.metrics() == {
            "published": 1,
            "stale_discarded": 0,
            "closed_discarded": 0,
            "current_sequence": 3,
        }
