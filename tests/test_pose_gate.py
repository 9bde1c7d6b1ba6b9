import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture.geometry import GuidanceBox, compute_cover_transform
from capture.keypoints import PoseSnapshot
from capture.pose_gate import REQUIRED_JOINTS, TORSO_JOINTS, is_centered, is_confident, torso_centroid

from pose_factory import FRAME_H, FRAME_W, standing_pose


def _transform():
    return compute_cover_transform(FRAME_W, FRAME_H, FRAME_W, FRAME_H)


def _box():
    return GuidanceBox.centered(FRAME_W, FRAME_H)


class TestIsConfident:
    def test_full_pose_is_confident(self):
        assert is_confident(standing_pose())

    def test_empty_and_none_are_not_confident(self):
        assert not is_confident(None)
        assert not is_confident(PoseSnapshot.empty(FRAME_W, FRAME_H))

    @pytest.mark.parametrize("joint", REQUIRED_JOINTS)
    def test_missing_required_joint(self, joint):
        assert not is_confident(standing_pose(drop=(joint,)))

    @pytest.mark.parametrize("joint", REQUIRED_JOINTS)
    def test_core_threshold_is_strict(self, joint):
        assert not is_confident(standing_pose(scores={joint: 0.35}))
        assert is_confident(standing_pose(scores={joint: 0.36}))

    def test_needs_one_ankle_above_threshold(self):
        low = {"left_ankle": 0.25, "right_ankle": 0.2}
        assert not is_confident(standing_pose(scores=low))
        assert is_confident(standing_pose(scores={"left_ankle": 0.1, "right_ankle": 0.26}))

    def test_no_ankles(self):
        assert not is_confident(standing_pose(drop=("left_ankle", "right_ankle")))
        assert is_confident(standing_pose(drop=("left_ankle",)))


class TestIsCentered:
    def test_standing_subject_is_centered(self):
        assert torso_centroid(standing_pose(), _transform()) == pytest.approx((320, 205))
        assert is_centered(standing_pose(), _transform(), _box())

    @pytest.mark.parametrize("joint", TORSO_JOINTS)
    def test_any_missing_torso_joint_fails(self, joint):
        assert not is_centered(standing_pose(drop=(joint,)), _transform(), _box())

    def test_subject_off_to_the_side(self):
        assert not is_centered(standing_pose(dx=200), _transform(), _box())

    def test_no_transform(self):
        assert not is_centered(standing_pose(), None, _box())

    def test_centroid_uses_canvas_space(self):
        wide = compute_cover_transform(FRAME_W, FRAME_H, 1280, 480)
        cx, cy = torso_centroid(standing_pose(), wide)
        assert cx == pytest.approx(640)
        assert cy == pytest.approx(205 * 2 - 240)
