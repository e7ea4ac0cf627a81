"""
Camera Session Tests
====================

Tests for the camera readiness state machine and frame capture.
"""

import asyncio
import time

import numpy as np
import pytest

from tryon_compositor.camera import CameraSession, SyntheticCameraDevice, create_camera_device
from tryon_compositor.errors import DeviceUnavailable, PermissionDenied
from tryon_compositor.models import CameraConstraints, CameraState


class TestCameraOpen:
    """Tests for acquiring the camera."""

    def test_open_produces_frames(self, fixed_device, small_constraints, eventually):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            handle = await session.open()
            assert session.state == CameraState.ACTIVE
            assert await eventually(lambda: session.current_frame() is not None)
            frame = session.current_frame()
            await session.close()
            return handle, frame

        handle, frame = asyncio.run(run())

        assert (handle.width, handle.height) == (32, 16)
        assert handle.device == "fixed:0"
        assert frame.pixels.shape == (16, 32, 4)
        assert frame.frame_id >= 1
        # BGR blue column -> RGBA (0, 0, 255, 255), not mirrored
        assert frame.pixels[0, 0].tolist() == [0, 0, 255, 255]
        assert frame.pixels[0, 31].tolist() == [0, 0, 0, 255]

    def test_mirrored_frames(self, fixed_device, eventually):
        constraints = CameraConstraints(width=32, height=16, mirror=True)
        session = CameraSession(fixed_device, constraints)

        async def run():
            async with session:
                assert await eventually(lambda: session.current_frame() is not None)
                return session.current_frame()

        frame = asyncio.run(run())

        assert frame.pixels[0, 31].tolist() == [0, 0, 255, 255]
        assert frame.pixels[0, 0].tolist() == [0, 0, 0, 255]

    def test_open_while_active_returns_handle(self, fixed_device, small_constraints):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            async with session:
                first = await session.open()
                second = await session.open()
                return first, second

        first, second = asyncio.run(run())

        assert first is second
        assert len(fixed_device.streams) == 1

    def test_open_while_requesting_raises(self, device_factory, small_constraints):
        device = device_factory(open_delay=0.2)
        session = CameraSession(device, small_constraints)

        async def run():
            pending = asyncio.create_task(session.open())
            await asyncio.sleep(0.02)
            assert session.state == CameraState.REQUESTING
            with pytest.raises(RuntimeError):
                await session.open()
            await pending
            await session.close()

        asyncio.run(run())

    def test_listener_sees_transitions(self, fixed_device, small_constraints):
        session = CameraSession(fixed_device, small_constraints)
        transitions = []
        session.add_listener(lambda old, new: transitions.append((old.value, new.value)))

        async def run():
            async with session:
                pass

        asyncio.run(run())

        assert transitions == [
            ("idle", "requesting"),
            ("requesting", "active"),
            ("active", "idle"),
        ]

    def test_synthetic_device(self, eventually):
        session = CameraSession(
            create_camera_device("synthetic", index=11),
            CameraConstraints(width=64, height=48, fps=60),
        )

        async def run():
            async with session:
                assert await eventually(lambda: session.current_frame() is not None)
                return session.current_frame()

        frame = asyncio.run(run())

        assert frame.pixels.shape == (48, 64, 4)
        assert (frame.pixels[..., 3] == 255).all()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_camera_device("webgl")


class TestCameraDenied:
    """Tests for refused or missing cameras."""

    def test_permission_denied(self, device_factory, small_constraints):
        session = CameraSession(device_factory(deny_access=True), small_constraints)

        with pytest.raises(PermissionDenied):
            asyncio.run(session.open())

        assert session.state == CameraState.DENIED
        assert session.current_frame() is None
        assert isinstance(session.last_error, PermissionDenied)
        assert session.metrics.open_failures == 1

    def test_device_unavailable(self, small_constraints):
        session = CameraSession(SyntheticCameraDevice(index=12, unavailable=True), small_constraints)

        with pytest.raises(DeviceUnavailable):
            asyncio.run(session.open())

        assert session.state == CameraState.DENIED

    def test_unexpected_device_error_is_unavailable(self, small_constraints):
        class BrokenDevice:
            label = "broken:0"

            def open(self, constraints):
                raise OSError("ioctl failed")

        session = CameraSession(BrokenDevice(), small_constraints)

        with pytest.raises(DeviceUnavailable):
            asyncio.run(session.open())

        assert session.state == CameraState.DENIED

    def test_retry_after_denial(self, device_factory, small_constraints, eventually):
        """denied -> requesting -> active once access is granted."""
        device = device_factory(deny_access=True)
        session = CameraSession(device, small_constraints)
        transitions = []
        session.add_listener(lambda old, new: transitions.append(new.value))

        async def run():
            with pytest.raises(PermissionDenied):
                await session.open()
            device.deny_access = False
            await session.open()
            assert await eventually(lambda: session.current_frame() is not None)
            await session.close()

        asyncio.run(run())

        assert transitions == ["requesting", "denied", "requesting", "active", "idle"]

    def test_device_is_exclusive(self, device_factory, small_constraints):
        first = CameraSession(device_factory(label="shared:0"), small_constraints)
        second = CameraSession(device_factory(label="shared:0"), small_constraints)

        async def run():
            await first.open()
            with pytest.raises(DeviceUnavailable):
                await second.open()
            assert second.state == CameraState.DENIED
            await first.close()
            await second.open()
            assert second.state == CameraState.ACTIVE
            await second.close()

        asyncio.run(run())


class TestCameraClose:
    """Tests for releasing the camera."""

    def test_close_releases_stream(self, fixed_device, small_constraints):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            await session.open()
            await session.close()

        asyncio.run(run())

        assert session.state == CameraState.IDLE
        assert session.handle is None
        assert session.current_frame() is None
        assert fixed_device.streams[0].stopped

    def test_close_is_idempotent(self, fixed_device, small_constraints):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            await session.close()
            await session.open()
            await session.close()
            await session.close()

        asyncio.run(run())

        assert session.state == CameraState.IDLE
        assert fixed_device.streams[0].stop_calls == 1

    def test_close_after_denial_returns_to_idle(self, device_factory, small_constraints):
        session = CameraSession(device_factory(deny_access=True), small_constraints)

        async def run():
            with pytest.raises(PermissionDenied):
                await session.open()
            await session.close()

        asyncio.run(run())

        assert session.state == CameraState.IDLE

    def test_already_stopped_stream_is_benign(self, fixed_device, small_constraints):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            await session.open()
            fixed_device.streams[0].stop()
            await session.close()

        asyncio.run(run())

        assert session.state == CameraState.IDLE
        assert fixed_device.streams[0].stop_calls == 2

    def test_restart_law(self, fixed_device, small_constraints, eventually):
        """open -> close -> open ends active with only post-reopen frames."""
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            await session.open()
            assert await eventually(lambda: session.current_frame() is not None)
            await session.close()
            closed_at = time.time()
            assert session.current_frame() is None

            await session.open()
            assert session.state == CameraState.ACTIVE
            assert await eventually(lambda: session.current_frame() is not None)
            frame = session.current_frame()
            await session.close()
            return closed_at, frame

        closed_at, frame = asyncio.run(run())

        assert frame.timestamp >= closed_at
        assert len(fixed_device.streams) == 2
        assert all(stream.stopped for stream in fixed_device.streams)

    def test_no_frames_after_close(self, fixed_device, small_constraints, eventually):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            await session.open()
            assert await eventually(lambda: session.metrics.frames_captured > 2)
            await session.close()
            await asyncio.sleep(0.05)
            return session.current_frame()

        assert asyncio.run(run()) is None

    def test_context_manager_closes_on_error(self, fixed_device, small_constraints):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            async with session:
                raise ValueError("boom")

        with pytest.raises(ValueError):
            asyncio.run(run())

        assert session.state == CameraState.IDLE
        assert fixed_device.streams[0].stopped


class TestCaptureFailures:
    """Tests for devices that stop delivering frames."""

    def test_capture_gives_up_after_failures(self, small_constraints, eventually):
        class DeadStream:
            width, height = 32, 16

            def read(self):
                return None

            def stop(self):
                pass

        class DeadDevice:
            label = "dead:0"

            def open(self, constraints):
                return DeadStream()

        session = CameraSession(DeadDevice(), small_constraints, max_read_failures=3)

        async def run():
            await session.open()
            assert await eventually(lambda: session.metrics.read_failures >= 3)
            await asyncio.sleep(0.05)
            failures = session.metrics.read_failures
            state = session.state
            await session.close()
            return failures, state

        failures, state = asyncio.run(run())

        assert failures == 3
        assert state == CameraState.ACTIVE

    def test_frames_are_read_only(self, fixed_device, small_constraints, eventually):
        session = CameraSession(fixed_device, small_constraints)

        async def run():
            async with session:
                assert await eventually(lambda: session.current_frame() is not None)
                return session.current_frame()

        frame = asyncio.run(run())

        with pytest.raises(ValueError):
            frame.pixels[0, 0, 0] = 1
        assert isinstance(frame.pixels, np.ndarray)
