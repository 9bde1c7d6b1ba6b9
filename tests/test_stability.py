import math
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture.stability import (
    DwellStabilityAccumulator,
    StabilityPhase,
    jitter_threshold,
    max_frame_displacement,
    remaining_seconds,
)

from pose_factory import standing_pose

FRAME_MS = 20.0


def _feed(acc, frames, start_ms=0.0, pose=None, eligible=True):
    pose = pose or standing_pose()
    updates = []
    for i in range(frames):
        updates.append(acc.update(pose, eligible, start_ms + i * FRAME_MS))
    return updates


class TestHelpers:
    def test_jitter_threshold_floor_and_scaling(self):
        assert jitter_threshold(640) == pytest.approx(3.0)
        assert jitter_threshold(1920) == pytest.approx(7.68)
        assert jitter_threshold(0) == pytest.approx(6.0)

    def test_remaining_seconds_rounds_up(self):
        assert remaining_seconds(0) == 3
        assert remaining_seconds(1) == 3
        assert remaining_seconds(2000) == 1
        assert remaining_seconds(2001) == 1
        assert remaining_seconds(3500) == 0

    def test_displacement_without_previous_is_infinite(self):
        assert math.isinf(max_frame_displacement(None, standing_pose()))

    def test_displacement_is_largest_tracked_joint_move(self):
        before = standing_pose()
        after = standing_pose(scores=None, dx=0.0)
        assert max_frame_displacement(before, after) == 0.0
        assert max_frame_displacement(before, standing_pose(dx=3, dy=4)) == pytest.approx(5.0)


class TestAccumulator:
    def test_first_frame_adds_no_time(self):
        acc = DwellStabilityAccumulator()
        update = acc.update(standing_pose(), True, 1000.0)
        assert update.phase == StabilityPhase.ACCUMULATING
        assert update.accumulated_ms == 0.0
        assert update.remaining_seconds == 3

    def test_not_eligible_resets(self):
        acc = DwellStabilityAccumulator()
        _feed(acc, 30)
        update = acc.update(standing_pose(), False, 30 * FRAME_MS)
        assert update.phase == StabilityPhase.IDLE
        assert update.accumulated_ms == 0.0
        assert update.remaining_seconds is None

    def test_single_jitter_frame_does_not_reset(self):
        acc = DwellStabilityAccumulator()
        _feed(acc, 11)
        assert acc.accumulated_stable_ms == pytest.approx(200.0)

        jolt = acc.update(standing_pose(dx=50), True, 11 * FRAME_MS)
        assert jolt.accumulated_ms == pytest.approx(200.0), "jitter must not add or reset time"
        assert jolt.displacement > jolt.threshold

        settle = acc.update(standing_pose(dx=50), True, 12 * FRAME_MS)
        assert settle.accumulated_ms == pytest.approx(220.0)

    def test_backwards_clock_adds_nothing(self):
        acc = DwellStabilityAccumulator()
        acc.update(standing_pose(), True, 1000.0)
        update = acc.update(standing_pose(), True, 900.0)
        assert update.accumulated_ms == 0.0

    def test_countdown_never_increases_and_triggers_at_hold(self):
        acc = DwellStabilityAccumulator()
        updates = _feed(acc, 200)
        triggers = [i for i, u in enumerate(updates) if u.triggered_now]
        assert len(triggers) == 1

        first = triggers[0]
        assert updates[first].accumulated_ms >= 3000.0
        assert updates[first - 1].accumulated_ms < 3000.0
        assert updates[first].remaining_seconds == 0

        countdown = [u.remaining_seconds for u in updates[: first + 1]]
        assert countdown == sorted(countdown, reverse=True)

    def test_fifty_then_one_hundred_fifty_frames(self):
        acc = DwellStabilityAccumulator()
        first_run = _feed(acc, 50)
        assert not any(u.triggered_now for u in first_run)
        assert acc.phase == StabilityPhase.ACCUMULATING

        second_run = _feed(acc, 150, start_ms=50 * FRAME_MS)
        assert sum(u.triggered_now for u in first_run + second_run) == 1
        assert acc.triggered

    def test_triggered_is_latched_until_reset(self):
        acc = DwellStabilityAccumulator(hold_ms=100)
        _feed(acc, 10)
        assert acc.triggered
        frozen = acc.accumulated_stable_ms

        after = acc.update(standing_pose(), False, 10_000.0)
        assert after.phase == StabilityPhase.TRIGGERED
        assert after.remaining_seconds is None
        assert not after.triggered_now
        assert acc.accumulated_stable_ms == frozen

        acc.reset()
        assert acc.phase == StabilityPhase.IDLE
        assert acc.accumulated_stable_ms == 0.0
        assert acc.update(standing_pose(), True, 20_000.0).accumulated_ms == 0.0
