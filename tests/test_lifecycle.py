import asyncio
import threading

import pytest

from conftest import FAST_CAPTURE, CameraRig, FakePose, FakeSurface, make_lifecycle, shoulders, wait_for
from shoulderfit.camera_device import CameraAcquisitionError, DeviceErrorReason
from shoulderfit.estimator import HeightValidationError, MeasurementEstimator, SizeClass
from shoulderfit.lifecycle import CaptureLifecycle, CaptureState, LifecycleError, PoseUnavailableError
from shoulderfit.smoothing import KeypointSmoother


def test_start_stop_transitions_and_release():
	async def run():
		rig = CameraRig()
		lc = make_lifecycle(rig)
		seen = []
		lc.add_state_listener(lambda old, new: seen.append((old, new)))

		await lc.start(175)
		assert lc.state is CaptureState.RUNNING
		await wait_for(lambda: lc.frames_processed >= 3)
		assert await lc.stop() is CaptureState.STOPPED

		assert seen == [
			(CaptureState.IDLE, CaptureState.ACQUIRING),
			(CaptureState.ACQUIRING, CaptureState.RUNNING),
			(CaptureState.RUNNING, CaptureState.STOPPED),
		]
		assert rig.registry["active"] == 0
		assert rig.last.release_calls >= 1

	asyncio.run(run())


def test_stop_is_idempotent_and_safe_when_idle():
	async def run():
		lc = make_lifecycle(CameraRig())
		assert await lc.stop() is CaptureState.IDLE
		await lc.start(170)
		await lc.stop()
		assert await lc.stop() is CaptureState.STOPPED

	asyncio.run(run())


def test_start_rejects_unvalidated_height():
	async def run():
		rig = CameraRig()
		lc = make_lifecycle(rig)
		with pytest.raises(HeightValidationError):
			await lc.start("175")
		assert rig.cameras == []
		assert lc.state is CaptureState.IDLE

	asyncio.run(run())


def test_second_start_while_running_is_rejected():
	async def run():
		rig = CameraRig()
		lc = make_lifecycle(rig)
		await lc.start(175)
		with pytest.raises(LifecycleError):
			await lc.start(175)
		assert len(rig.cameras) == 1
		await lc.stop()

	asyncio.run(run())


def test_measurement_flows_to_listeners():
	async def run():
		lc = make_lifecycle(CameraRig())
		snapshots = []
		lc.add_frame_listener(snapshots.append)
		await lc.start(175)
		await wait_for(lambda: len(snapshots) >= 2)
		await lc.stop()

		snap = snapshots[-1]
		assert snap["detected"] is True
		assert set(snap["points"]) == {"left_shoulder", "right_shoulder"}
		# 0.12 of a 640 px wide frame.
		assert snap["measurement"]["pixel_distance"] == pytest.approx(76.8)
		assert snap["measurement"]["size_class"] == "M"
		assert [s["frame"] for s in snapshots] == list(range(1, len(snapshots) + 1))

	asyncio.run(run())


def test_timestamps_handed_to_pose_are_strictly_increasing():
	async def run():
		pose = FakePose()
		lc = make_lifecycle(CameraRig(), pose=pose)
		await lc.start(175)
		await wait_for(lambda: pose.calls >= 10)
		await lc.stop()
		ts = pose.timestamps
		assert all(b > a for a, b in zip(ts, ts[1:]))

	asyncio.run(run())


def test_surface_resized_before_first_draw_and_on_size_change():
	async def run():
		rig = CameraRig(sizes=[(640, 360), (640, 360), (320, 240)])
		surface = FakeSurface()
		lc = make_lifecycle(rig, surface=surface)
		await lc.start(175)
		await wait_for(lambda: len(surface.draws) >= 5)
		await lc.stop()

		assert surface.events[0] == ("resize", (640, 360))
		assert surface.events[1] == ("draw", (640, 360))
		i = surface.events.index(("resize", (320, 240)))
		assert surface.events[i + 1] == ("draw", (320, 240))
		assert [e for e in surface.events if e[0] == "resize"] == [("resize", (640, 360)), ("resize", (320, 240))]

	asyncio.run(run())


def test_no_frame_work_after_stop_during_inference():
	async def run():
		rig = CameraRig()
		pose = FakePose(block_on_call=2)
		surface = FakeSurface()
		lc = make_lifecycle(rig, pose=pose, surface=surface)
		snapshots = []
		lc.add_frame_listener(snapshots.append)

		await lc.start(175)
		await wait_for(pose.entered.is_set)
		assert await lc.stop() is CaptureState.STOPPED
		emitted, drawn = len(snapshots), len(surface.draws)
		assert rig.registry["active"] == 0

		# Let the in-flight inference finish after teardown.
		pose.gate.set()
		await asyncio.sleep(0.1)
		assert len(snapshots) == emitted == 1
		assert len(surface.draws) == drawn
		assert lc.latest is None

	asyncio.run(run())


def test_stop_while_acquiring_releases_late_device():
	async def run():
		gate = threading.Event()
		rig = CameraRig(acquire_gate=gate)
		lc = make_lifecycle(rig)
		starting = asyncio.create_task(lc.start(175))
		await wait_for(lambda: bool(rig.cameras) and rig.last.acquire_entered.is_set())
		assert lc.state is CaptureState.ACQUIRING

		assert await lc.stop() is CaptureState.STOPPED
		gate.set()
		await starting

		assert lc.state is CaptureState.STOPPED
		assert rig.registry["active"] == 0
		assert rig.last.open is False
		assert lc.frames_processed == 0

	asyncio.run(run())


@pytest.mark.parametrize(
	"reason",
	[DeviceErrorReason.PERMISSION_DENIED, DeviceErrorReason.NO_DEVICE, DeviceErrorReason.UNSUPPORTED],
)
def test_acquisition_error_enters_errored_until_acknowledged(reason):
	async def run():
		rig = CameraRig(acquire_error=CameraAcquisitionError(reason, "test"))
		lc = make_lifecycle(rig)
		with pytest.raises(CameraAcquisitionError) as ei:
			await lc.start(175)
		assert ei.value.reason is reason
		assert lc.state is CaptureState.ERRORED
		assert lc.last_error["reason"] == reason.value
		assert rig.registry["active"] == 0

		with pytest.raises(LifecycleError):
			await lc.start(175)
		assert lc.acknowledge_error() is CaptureState.IDLE
		assert lc.last_error is None

	asyncio.run(run())


def test_device_without_frames_times_out():
	async def run():
		rig = CameraRig(deliver_frames=False)
		lc = make_lifecycle(rig)
		with pytest.raises(CameraAcquisitionError) as ei:
			await lc.start(175)
		assert ei.value.reason is DeviceErrorReason.NO_FRAMES
		assert lc.state is CaptureState.ERRORED
		assert rig.registry["active"] == 0

	asyncio.run(run())


def test_pose_model_failure_is_reported():
	async def run():
		rig = CameraRig()

		def broken():
			raise RuntimeError("MediaPipe is not installed")

		lc = CaptureLifecycle(rig, broken, KeypointSmoother(), MeasurementEstimator(), FakeSurface(), FAST_CAPTURE)
		with pytest.raises(PoseUnavailableError):
			await lc.start(175)
		assert lc.state is CaptureState.ERRORED
		assert lc.last_error["reason"] == "model_unavailable"
		assert rig.cameras == []

	asyncio.run(run())


def test_device_lost_mid_session():
	async def run():
		rig = CameraRig(frames_before_loss=4)
		lc = make_lifecycle(rig)
		await lc.start(175)
		await wait_for(lambda: lc.state is CaptureState.ERRORED)
		assert lc.last_error["reason"] == "device_lost"
		assert rig.registry["active"] == 0
		assert lc.latest is None
		lc.acknowledge_error()
		assert lc.state is CaptureState.IDLE

	asyncio.run(run())


def test_restart_does_not_carry_over_smoothing_or_measurement():
	async def run():
		rig = CameraRig()
		surface = FakeSurface()
		session_two = {"on": False}

		def script(i):
			return None if session_two["on"] else shoulders()

		lc = make_lifecycle(rig, pose=FakePose(script=script), surface=surface)
		await lc.start(175)
		await wait_for(lambda: lc.latest is not None)
		await lc.stop()
		assert lc.latest is None
		assert surface.clears >= 1

		session_two["on"] = True
		drawn_before = len(surface.draws)
		await lc.start(160)
		await wait_for(lambda: len(surface.draws) >= drawn_before + 3)
		await lc.stop()

		for d in surface.draws[drawn_before:]:
			assert d["points"] == {}
			assert d["result"] is None
		assert rig.registry["max_active"] == 1

	asyncio.run(run())


def test_measurement_only_from_frames_with_both_shoulders():
	async def run():
		def script(i):
			kps = shoulders()
			if i >= 3:
				kps.pop("right_shoulder")
			return kps

		surface = FakeSurface()
		lc = make_lifecycle(CameraRig(), pose=FakePose(script=script), surface=surface)
		await lc.start(175)
		await wait_for(lambda: len(surface.draws) >= 6)
		first = lc.latest
		await wait_for(lambda: len(surface.draws) >= 8)
		# Right shoulder missing: last result is kept, not recomputed.
		assert lc.latest is first
		assert lc.latest.size_class is SizeClass.M
		await lc.stop()

	asyncio.run(run())


def test_close_releases_pose_model():
	async def run():
		pose = FakePose()
		lc = make_lifecycle(CameraRig(), pose=pose)
		await lc.start(175)
		await lc.close()
		assert pose.closed
		assert lc.state is CaptureState.STOPPED

	asyncio.run(run())


def test_unexpected_driver_failure_releases_camera_and_errors():
	async def run():
		rig = CameraRig(acquire_error=RuntimeError("driver exploded"))
		lc = make_lifecycle(rig)
		with pytest.raises(RuntimeError, match="driver exploded"):
			await lc.start(175)
		assert lc.state is CaptureState.ERRORED
		assert lc.last_error["reason"] == "acquire_failed"
		assert "driver exploded" in lc.last_error["detail"]
		assert rig.last.release_calls >= 1
		assert rig.registry["active"] == 0
		assert lc.height_cm is None

		assert lc.acknowledge_error() is CaptureState.IDLE
		rig.camera_kwargs["acquire_error"] = None
		await lc.start(175)
		assert lc.state is CaptureState.RUNNING
		await lc.stop()
		assert rig.registry["active"] == 0

	asyncio.run(run())


def test_stop_during_device_lost_teardown_wins():
	async def run():
		gate = threading.Event()
		rig = CameraRig(frames_before_loss=2, release_gate=gate)
		lc = make_lifecycle(rig)
		await lc.start(175)
		await wait_for(rig.last.release_entered.is_set)
		assert lc.state is CaptureState.RUNNING

		stopping = asyncio.create_task(lc.stop())
		await asyncio.sleep(0.02)
		gate.set()
		assert await stopping is CaptureState.STOPPED
		await asyncio.sleep(0.05)

		assert lc.state is CaptureState.STOPPED
		assert lc.last_error is None
		assert rig.registry["active"] == 0
		rig.camera_kwargs["frames_before_loss"] = None
		await lc.start(175)
		assert lc.state is CaptureState.RUNNING
		await lc.stop()

	asyncio.run(run())


def test_stop_after_device_lost_keeps_error():
	async def run():
		rig = CameraRig(frames_before_loss=2)
		lc = make_lifecycle(rig)
		await lc.start(175)
		await wait_for(lambda: lc.state is CaptureState.ERRORED)
		assert await lc.stop() is CaptureState.ERRORED
		assert lc.last_error["reason"] == "device_lost"

	asyncio.run(run())


def test_points_hold_through_detection_gap_and_resume_smoothing():
	async def run():
		def script(i):
			if i <= 2:
				return shoulders(left=(0.40, 0.3), right=(0.60, 0.3))
			if i <= 5:
				return None
			return shoulders(left=(0.30, 0.3), right=(0.60, 0.3))

		lc = make_lifecycle(CameraRig(), pose=FakePose(script=script))
		snapshots = []
		lc.add_frame_listener(snapshots.append)
		await lc.start(175)
		await wait_for(lambda: len(snapshots) >= 6)
		await lc.stop()

		by_frame = {s["frame"]: s for s in snapshots}
		before = by_frame[2]["measurement"]
		for n in (3, 4, 5):
			assert by_frame[n]["detected"] is False
			assert by_frame[n]["points"]["left_shoulder"]["x"] == pytest.approx(0.40)
			assert by_frame[n]["measurement"] == before

		after = by_frame[6]
		assert after["detected"] is True
		# 0.40 + 0.4 * (0.30 - 0.40)
		assert after["points"]["left_shoulder"]["x"] == pytest.approx(0.36)
		assert after["measurement"]["pixel_distance"] == pytest.approx((0.60 - 0.36) * 640)
		assert after["measurement"]["size_class"] == "M"

	asyncio.run(run())
