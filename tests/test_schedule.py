"""Tests for depth scheduling and tool entry."""

import numpy as np
import pytest

from routercam.core.errors import ConfigurationError, ScheduleError
from routercam.core.schedule import (
    Clearance,
    RampSettings,
    RampType,
    approach,
    plan_entry,
    schedule_passes,
)
from routercam.core.toolpath.base import MotionBuilder, MoveType


@pytest.fixture
def clearance() -> Clearance:
    return Clearance(safe_height=5.0, retract_height=1.0,
                     feed_rate=1000.0, plunge_rate=300.0)


@pytest.fixture
def square_path() -> np.ndarray:
    return np.array([(0, 0), (50, 0), (50, 50), (0, 50), (0, 0)], dtype=float)


def _all_points(builder: MotionBuilder) -> np.ndarray:
    return np.vstack([s.linearized() for s in builder.build()])


# ---------------------------------------------------------------------------
# Depth levels
# ---------------------------------------------------------------------------


class TestSchedulePasses:
    def test_even_split(self):
        levels = schedule_passes(6.0, 2.0)
        assert [lv.z for lv in levels] == pytest.approx([-2.0, -4.0, -6.0])
        assert [lv.is_final for lv in levels] == [False, False, True]

    def test_last_level_is_remainder(self):
        levels = schedule_passes(5.0, 2.0)
        assert [lv.z for lv in levels] == pytest.approx([-2.0, -4.0, -5.0])
        assert levels[-1].increment == pytest.approx(1.0)

    def test_increments_sum_to_depth(self):
        levels = schedule_passes(7.3, 1.1)
        assert len(levels) == 7
        assert sum(lv.increment for lv in levels) == pytest.approx(7.3)
        assert levels[-1].z == -7.3

    def test_float_noise_does_not_add_level(self):
        assert len(schedule_passes(0.3, 0.1)) == 3

    def test_single_shallow_pass(self):
        (level,) = schedule_passes(0.5, 2.0)
        assert level.z == pytest.approx(-0.5)
        assert level.top == pytest.approx(0.0)

    def test_level_top_is_previous_floor(self):
        levels = schedule_passes(6.0, 2.0)
        assert levels[1].top == pytest.approx(-2.0)

    def test_custom_top(self):
        levels = schedule_passes(4.0, 2.0, top=-1.0)
        assert [lv.z for lv in levels] == pytest.approx([-3.0, -5.0])

    def test_zero_depth(self):
        assert schedule_passes(0.0, 1.0) == []

    @pytest.mark.parametrize("cut, dpp", [(5.0, 0.0), (5.0, -1.0), (-1.0, 1.0)])
    def test_invalid(self, cut, dpp):
        with pytest.raises(ScheduleError):
            schedule_passes(cut, dpp)


# ---------------------------------------------------------------------------
# Approach
# ---------------------------------------------------------------------------


class TestApproach:
    def test_travel_at_safe_height(self, clearance):
        b = MotionBuilder((0.0, 0.0, 5.0))
        approach(b, 30.0, 40.0, clearance)
        segs = b.build()
        assert all(s.move_type is MoveType.RAPID for s in segs)
        # Horizontal travel stays at the safe height
        for s in segs:
            if not np.allclose(s.start[:2], s.end[:2]):
                assert s.start[2] >= 5.0 and s.end[2] >= 5.0
        assert b.position == pytest.approx([30.0, 40.0, 1.0])

    def test_lifts_from_cut_before_travel(self, clearance):
        b = MotionBuilder((0.0, 0.0, -3.0))
        approach(b, 10.0, 0.0, clearance)
        first = b.build()[0]
        assert first.move_type is MoveType.RETRACT
        assert first.end[2] == pytest.approx(5.0)

    def test_same_spot_only_descends(self, clearance):
        b = MotionBuilder((10.0, 10.0, 5.0))
        approach(b, 10.0, 10.0, clearance)
        (seg,) = b.build()
        assert seg.end == pytest.approx([10.0, 10.0, 1.0])


# ---------------------------------------------------------------------------
# Entry moves
# ---------------------------------------------------------------------------


class TestEntry:
    def test_plunge(self, clearance, square_path):
        level = schedule_passes(2.0, 2.0)[0]
        b = MotionBuilder((0.0, 0.0, 1.0))
        plan_entry(b, square_path, level, RampSettings(), clearance)
        (seg,) = b.build()
        assert seg.move_type is MoveType.PLUNGE
        assert seg.feed_rate == 300.0
        assert b.z == pytest.approx(-2.0)

    def test_zigzag_never_below_level(self, clearance, square_path):
        level = schedule_passes(4.0, 2.0)[1]
        b = MotionBuilder((0.0, 0.0, 1.0))
        plan_entry(b, square_path, level, RampSettings(RampType.ZIGZAG, angle=5.0), clearance)
        pts = _all_points(b)
        assert pts[:, 2].min() >= level.z - 1e-9
        assert b.position == pytest.approx([0.0, 0.0, level.z])

    def test_zigzag_plunges_to_previous_floor(self, clearance, square_path):
        level = schedule_passes(4.0, 2.0)[1]
        b = MotionBuilder((0.0, 0.0, 1.0))
        plan_entry(b, square_path, level, RampSettings(RampType.ZIGZAG, angle=5.0), clearance)
        first = b.build()[0]
        assert first.move_type is MoveType.PLUNGE
        assert first.end[2] == pytest.approx(level.top)

    def test_helix_never_below_level(self, clearance, square_path):
        level = schedule_passes(2.0, 2.0)[0]
        b = MotionBuilder((0.0, 0.0, 1.0))
        plan_entry(b, square_path, level,
                   RampSettings(RampType.HELIX, angle=3.0, helix_radius=2.0),
                   clearance)
        arcs = [s for s in b.build() if s.arc is not None]
        assert arcs
        assert all(s.arc_radius() == pytest.approx(2.0) for s in arcs)
        pts = _all_points(b)
        assert pts[:, 2].min() >= level.z - 1e-9
        assert b.position == pytest.approx([0.0, 0.0, level.z])

    def test_already_at_depth(self, clearance, square_path):
        level = schedule_passes(2.0, 2.0)[0]
        b = MotionBuilder((0.0, 0.0, -2.0))
        plan_entry(b, square_path, level, RampSettings(RampType.ZIGZAG), clearance)
        assert b.build() == []

    def test_ramp_angle_validated(self):
        with pytest.raises(ConfigurationError):
            RampSettings(RampType.ZIGZAG, angle=0.0).validate()
