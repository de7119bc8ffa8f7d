"""Tests for the 2D and 2.5D toolpath strategies."""

import numpy as np
import pytest
from shapely.geometry import Point, box

from routercam.core.design import (
    PathPoint,
    PointMarker,
    ShapeType,
    Transform2D,
    VectorPath,
    VectorShape,
)
from routercam.core.errors import ConfigurationError, EmptyGeometryError
from routercam.core.geometry import resolve_object
from routercam.core.offset import region_from_geometries
from routercam.core.operation import (
    CutDirection,
    CutSide,
    DrillCycle,
    DrillSettings,
    EngraveSettings,
    FacingSettings,
    LeadSettings,
    LeadType,
    PocketSettings,
    PocketStrategy,
    ProfileSettings,
    SpindleDirection,
    ToolpathSpec,
    VCarveSettings,
)
from routercam.core.tabs import TabSettings
from routercam.core.toolpath.base import MotionPlan, MoveType
from routercam.core.toolpath.context import PlannerContext
from routercam.core.toolpath.drill import plan_drill
from routercam.core.toolpath.engrave import plan_engrave
from routercam.core.toolpath.facing import plan_facing
from routercam.core.toolpath.pocket import plan_pocket, rest_zone
from routercam.core.toolpath.profile import plan_profile
from routercam.core.toolpath.vcarve import plan_vcarve


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


def rectangle(oid, w, h, x=0.0, y=0.0) -> VectorShape:
    return VectorShape(id=oid, transform=Transform2D(x=x, y=y),
                       shape_type=ShapeType.RECTANGLE,
                       params={"width": w, "height": h})


@pytest.fixture
def circle() -> VectorShape:
    return VectorShape(id="c", transform=Transform2D(x=50.0, y=50.0),
                       shape_type=ShapeType.ELLIPSE,
                       params={"radius_x": 25.0, "radius_y": 25.0})


@pytest.fixture
def square() -> VectorShape:
    return rectangle("sq", 100.0, 100.0, 50.0, 50.0)


def feed_points(plan: MotionPlan, z=None) -> np.ndarray:
    pts = [s.linearized() for s in plan.segments if s.move_type is MoveType.FEED]
    pts = np.vstack(pts)
    if z is not None:
        pts = pts[np.isclose(pts[:, 2], z)]
    return pts


def signed_area(points: np.ndarray) -> float:
    x, y = points[:, 0], points[:, 1]
    return float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0


def first_feed(plan: MotionPlan):
    return next(s for s in plan.segments if s.move_type is MoveType.FEED)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class TestProfile:
    def test_outside_circle_radius(self, run_planner, circle, check_rapids):
        plan, _ = run_planner(plan_profile, [circle], ProfileSettings(), cut_depth=6.0)
        pts = feed_points(plan)
        r = np.hypot(pts[:, 0] - 50.0, pts[:, 1] - 50.0)
        assert r.max() == pytest.approx(28.0, abs=0.02)
        assert r.min() == pytest.approx(28.0, abs=0.02)
        assert check_rapids(plan, 5.0)

    def test_inside_square(self, run_planner, square):
        settings = ProfileSettings(cut_side=CutSide.INSIDE)
        plan, _ = run_planner(plan_profile, [square], settings, cut_depth=2.0)
        pts = feed_points(plan)
        assert pts[:, 0].min() == pytest.approx(3.0)
        assert pts[:, 0].max() == pytest.approx(97.0)

    def test_on_line(self, run_planner, square):
        settings = ProfileSettings(cut_side=CutSide.ON)
        plan, _ = run_planner(plan_profile, [square], settings, cut_depth=2.0)
        pts = feed_points(plan)
        assert pts[:, 0].min() == pytest.approx(0.0)
        assert pts[:, 1].max() == pytest.approx(100.0)

    def test_depth_levels(self, run_planner, square):
        plan, _ = run_planner(plan_profile, [square], ProfileSettings(), cut_depth=6.0)
        assert plan.cutting_z_values() == pytest.approx([-2.0, -4.0, -6.0])
        assert plan.tool_number == 1
        assert plan.operation_name == "Test"

    def test_pass_labels(self, run_planner, square):
        plan, _ = run_planner(plan_profile, [square], ProfileSettings(), cut_depth=4.0)
        labels = {s.label for s in plan.segments if s.move_type is MoveType.FEED}
        assert labels == {"Profile Pass 1/2 Z-2.000", "Profile Pass 2/2 Z-4.000"}

    @pytest.mark.parametrize("side, direction, spindle, ccw", [
        (CutSide.OUTSIDE, CutDirection.CLIMB, SpindleDirection.CW, False),
        (CutSide.OUTSIDE, CutDirection.CONVENTIONAL, SpindleDirection.CW, True),
        (CutSide.INSIDE, CutDirection.CLIMB, SpindleDirection.CW, True),
        (CutSide.OUTSIDE, CutDirection.CLIMB, SpindleDirection.CCW, True),
    ])
    def test_milling_direction(self, run_planner, square, side, direction, spindle, ccw):
        settings = ProfileSettings(cut_side=side, direction=direction)
        plan, _ = run_planner(plan_profile, [square], settings, cut_depth=2.0,
                              spindle_direction=spindle)
        ring = first_feed(plan).points
        assert (signed_area(ring) > 0) == ccw

    def test_final_pass(self, run_planner, circle):
        settings = ProfileSettings(final_pass=True, final_pass_allowance=0.2)
        plan, _ = run_planner(plan_profile, [circle], settings, cut_depth=4.0)
        rough = [s for s in plan.segments
                 if s.move_type is MoveType.FEED and s.label.startswith("Profile")]
        final = [s for s in plan.segments
                 if s.move_type is MoveType.FEED and s.label.startswith("Final pass")]
        assert rough and final
        r_rough = np.hypot(rough[0].points[:, 0] - 50, rough[0].points[:, 1] - 50)
        r_final = np.hypot(final[0].points[:, 0] - 50, final[0].points[:, 1] - 50)
        assert r_rough.max() == pytest.approx(28.2, abs=0.02)
        assert r_final.max() == pytest.approx(28.0, abs=0.02)
        assert all(np.allclose(s.points[:, 2], -4.0) for s in final)

    def test_arc_lead_in(self, run_planner, square, check_rapids):
        settings = ProfileSettings(lead_in=LeadSettings(LeadType.ARC, 5.0))
        plan, _ = run_planner(plan_profile, [square], settings, cut_depth=4.0)
        arcs = [s for s in plan.segments if s.arc is not None]
        assert len(arcs) == 2
        assert all(s.arc_radius() == pytest.approx(5.0) for s in arcs)
        assert check_rapids(plan, 5.0)

    def test_tangent_lead_out(self, run_planner, square):
        settings = ProfileSettings(lead_out=LeadSettings(LeadType.TANGENT, 4.0))
        plan, _ = run_planner(plan_profile, [square], settings, cut_depth=2.0)
        feed = [s for s in plan.segments if s.move_type is MoveType.FEED][-1]
        assert np.hypot(*(feed.end[:2] - feed.points[-2][:2])) == pytest.approx(4.0)

    def test_tabs_on_last_pass(self, run_planner, square):
        tabs = TabSettings(enabled=True, count=4, width=6.0, height=2.0)
        plan, _ = run_planner(plan_profile, [square], ProfileSettings(tabs=tabs),
                              cut_depth=6.0)
        hops = [s for s in plan.segments
                if s.move_type is MoveType.RETRACT and s.end[2] == pytest.approx(-4.0)]
        assert len(hops) == 4

    def test_tabs_keep_full_height_on_overcut(self, run_planner, square):
        tabs = TabSettings(enabled=True, count=4, width=6.0, height=2.0)
        plan, _ = run_planner(plan_profile, [square], ProfileSettings(tabs=tabs),
                              cut_depth=12.5)
        lifts = [s.end[2] for s in plan.segments if s.move_type is MoveType.RETRACT]
        # 12 mm stock: tab tops sit 2 mm above its bottom
        assert any(z == pytest.approx(-10.0) for z in lifts)
        assert not any(z == pytest.approx(-10.5) for z in lifts)

    def test_open_path_cut_on_line(self, run_planner):
        line = VectorShape(id="ln", shape_type=ShapeType.LINE, params={"x2": 40.0, "y2": 0.0})
        plan, sink = run_planner(plan_profile, [line], ProfileSettings(), cut_depth=2.0)
        assert "open_path_on_line" in sink.codes()
        pts = feed_points(plan)
        assert np.allclose(pts[:, 1], 0.0)

    def test_point_ignored(self, run_planner):
        plan, sink = run_planner(plan_profile, [PointMarker(id="p")], ProfileSettings())
        assert plan.is_empty
        assert sink.codes() == ["unsupported_geometry"]

    def test_unknown_tool(self, run_planner, square):
        with pytest.raises(ConfigurationError):
            run_planner(plan_profile, [square], ProfileSettings(), tool_id="nope")


# ---------------------------------------------------------------------------
# Pocket
# ---------------------------------------------------------------------------


class TestPocket:
    @pytest.fixture
    def pocket(self) -> VectorShape:
        return rectangle("pk", 60.0, 40.0, 30.0, 20.0)

    @pytest.mark.parametrize("strategy", list(PocketStrategy))
    def test_stays_inside(self, run_planner, pocket, strategy, check_rapids):
        settings = PocketSettings(strategy=strategy)
        plan, _ = run_planner(plan_pocket, [pocket], settings, cut_depth=3.0)
        assert not plan.is_empty
        allowed = box(3.0, 3.0, 57.0, 37.0).buffer(1e-3)
        for x, y, _z in feed_points(plan):
            assert allowed.contains(Point(x, y))
        assert check_rapids(plan, 5.0)

    def test_offset_shell_count(self, run_planner, pocket):
        plan, _ = run_planner(plan_pocket, [pocket], PocketSettings(), cut_depth=2.0)
        plunges = [s for s in plan.segments if s.move_type is MoveType.PLUNGE]
        # Shells are linked in the cut, so one entry per level
        assert len(plunges) == 1
        assert plan.cutting_z_values() == pytest.approx([-2.0])

    def test_pocket_levels(self, run_planner, pocket):
        plan, _ = run_planner(plan_pocket, [pocket], PocketSettings(), cut_depth=5.0)
        assert plan.cutting_z_values() == pytest.approx([-2.0, -4.0, -5.0])

    def test_island_left_uncut(self, run_planner):
        outer = rectangle("o", 80.0, 80.0, 40.0, 40.0)
        island = rectangle("i", 20.0, 20.0, 40.0, 40.0)
        plan, _ = run_planner(plan_pocket, [outer, island], PocketSettings(), cut_depth=2.0)
        keep_out = box(30.0, 30.0, 50.0, 50.0).buffer(3.0 - 1e-3)
        for x, y, _z in feed_points(plan):
            assert not keep_out.contains(Point(x, y))

    @pytest.mark.parametrize("strategy", list(PocketStrategy))
    def test_tool_too_large(self, run_planner, strategy):
        tiny = rectangle("t", 4.0, 4.0)
        plan, sink = run_planner(plan_pocket, [tiny], PocketSettings(strategy=strategy))
        assert plan.is_empty
        assert "tool_too_large" in sink.codes()

    def test_open_paths_only(self, run_planner):
        line = VectorShape(id="ln", shape_type=ShapeType.LINE, params={"x2": 40.0})
        with pytest.raises(EmptyGeometryError):
            run_planner(plan_pocket, [line], PocketSettings())

    def test_rest_zone_is_corners(self, tools, stock, pocket):
        settings = PocketSettings(rest_machining=True, prev_tool_id="flat-6")
        spec = ToolpathSpec(id="r", name="Rest", tool_id="flat-3", settings=settings)
        ctx = PlannerContext.for_spec(spec, tools, stock)
        region = region_from_geometries(resolve_object(pocket))
        zone = rest_zone(region, ctx, settings)
        assert 0 < zone.area < 0.1 * region.area
        assert not zone.contains(Point(30.0, 20.0))
        assert zone.contains(Point(1.0, 1.0))

    def test_rest_needs_larger_tool(self, run_planner, pocket):
        settings = PocketSettings(rest_machining=True, prev_tool_id="flat-3")
        with pytest.raises(ConfigurationError):
            run_planner(plan_pocket, [pocket], settings)

    def test_pocket_tabs(self, run_planner, pocket):
        tabs = TabSettings(enabled=True, count=2, width=5.0, height=1.0)
        plan, _ = run_planner(plan_pocket, [pocket], PocketSettings(tabs=tabs), cut_depth=4.0)
        hops = [s for s in plan.segments
                if s.move_type is MoveType.RETRACT and s.end[2] == pytest.approx(-3.0)]
        assert len(hops) == 2


# ---------------------------------------------------------------------------
# Drilling
# ---------------------------------------------------------------------------


class TestDrill:
    @pytest.fixture
    def holes(self) -> list:
        return [PointMarker(id="h1", transform=Transform2D(x=10.0, y=10.0)),
                PointMarker(id="h2", transform=Transform2D(x=30.0, y=10.0))]

    def _plunge_ends(self, plan):
        return [float(s.end[2]) for s in plan.segments if s.move_type is MoveType.PLUNGE]

    def test_simple(self, run_planner, holes, check_rapids):
        plan, _ = run_planner(plan_drill, holes, DrillSettings(), tool_id="drill-3",
                              cut_depth=6.0)
        assert self._plunge_ends(plan) == pytest.approx([-6.0, -6.0])
        assert {s.label for s in plan.segments if s.move_type is MoveType.PLUNGE} \
            == {"Hole 1", "Hole 2"}
        assert check_rapids(plan, 5.0)

    def test_peck(self, run_planner, holes):
        settings = DrillSettings(cycle=DrillCycle.PECK, peck_depth=2.0)
        plan, _ = run_planner(plan_drill, holes[:1], settings, tool_id="drill-3",
                              cut_depth=5.0)
        assert self._plunge_ends(plan) == pytest.approx([-2.0, -4.0, -5.0])
        lifts = [float(s.end[2]) for s in plan.segments if s.move_type is MoveType.RETRACT]
        assert lifts == pytest.approx([1.0, 1.0, 5.0])

    def test_chip_break(self, run_planner, holes):
        settings = DrillSettings(cycle=DrillCycle.CHIP_BREAK, peck_depth=2.0, peck_retract=0.5)
        plan, _ = run_planner(plan_drill, holes[:1], settings, tool_id="drill-3",
                              cut_depth=5.0)
        lifts = [float(s.end[2]) for s in plan.segments if s.move_type is MoveType.RETRACT]
        assert lifts == pytest.approx([-1.5, -3.5, 5.0])

    def test_dwell_at_bottom(self, run_planner, holes):
        settings = DrillSettings(dwell=0.5)
        plan, _ = run_planner(plan_drill, holes[:1], settings, tool_id="drill-3")
        (bottom,) = [s for s in plan.segments if s.dwell > 0]
        assert bottom.move_type is MoveType.PLUNGE
        assert bottom.dwell == pytest.approx(0.5)

    def test_outline_centroid(self, run_planner):
        plan, _ = run_planner(plan_drill, [rectangle("r", 10.0, 10.0, 40.0, 60.0)],
                              DrillSettings(), tool_id="drill-3")
        (plunge,) = [s for s in plan.segments if s.move_type is MoveType.PLUNGE]
        assert plunge.end[:2] == pytest.approx([40.0, 60.0])

    def test_optimized_order(self, run_planner):
        markers = [PointMarker(id=f"h{i}", transform=Transform2D(x=x))
                   for i, x in enumerate((0.0, 100.0, 10.0))]
        plan, _ = run_planner(plan_drill, markers, DrillSettings(optimize_order=True),
                              tool_id="drill-3")
        xs = [float(s.end[0]) for s in plan.segments if s.move_type is MoveType.PLUNGE]
        assert xs == pytest.approx([0.0, 10.0, 100.0])

    def test_no_positions(self, run_planner):
        line = VectorShape(id="ln", shape_type=ShapeType.LINE, params={"x2": 40.0})
        with pytest.raises(EmptyGeometryError):
            run_planner(plan_drill, [line], DrillSettings(), tool_id="drill-3")


# ---------------------------------------------------------------------------
# Engrave and facing
# ---------------------------------------------------------------------------


class TestEngrave:
    @pytest.fixture
    def stroke(self) -> VectorPath:
        return VectorPath(id="s", points=(PathPoint(0, 0), PathPoint(50, 0), PathPoint(50, 20)))

    def test_single_pass(self, run_planner, stroke):
        plan, _ = run_planner(plan_engrave, [stroke], EngraveSettings(), cut_depth=1.0)
        assert plan.cutting_z_values() == pytest.approx([-1.0])
        assert first_feed(plan).label == "Engrave Pass 1/1 Z-1.000"

    def test_multi_pass(self, run_planner, stroke):
        settings = EngraveSettings(multi_pass=True)
        plan, _ = run_planner(plan_engrave, [stroke], settings, cut_depth=1.0,
                              depth_per_pass=0.4)
        assert plan.cutting_z_values() == pytest.approx([-0.4, -0.8, -1.0])

    def test_depth_override(self, run_planner, stroke):
        plan, _ = run_planner(plan_engrave, [stroke], EngraveSettings(depth=0.5), cut_depth=3.0)
        assert plan.cutting_z_values() == pytest.approx([-0.5])

    def test_follows_path(self, run_planner, stroke):
        plan, _ = run_planner(plan_engrave, [stroke], EngraveSettings(), cut_depth=1.0)
        pts = feed_points(plan, -1.0)
        assert pts[:, :2].tolist() == [[0.0, 0.0], [50.0, 0.0], [50.0, 20.0]]


class TestFacing:
    def test_covers_stock(self, run_planner, check_rapids):
        plan, _ = run_planner(plan_facing, [], FacingSettings(), cut_depth=0.5)
        pts = feed_points(plan)
        assert plan.cutting_z_values() == pytest.approx([-0.5])
        assert pts[:, 0].min() == pytest.approx(0.0)
        assert pts[:, 0].max() == pytest.approx(200.0)
        assert pts[:, 1].max() == pytest.approx(150.0)
        assert first_feed(plan).label.startswith("Facing")
        assert check_rapids(plan, 5.0)

    def test_selection_bounds_with_offset(self, run_planner):
        settings = FacingSettings(boundary_offset=5.0)
        plan, _ = run_planner(plan_facing, [rectangle("r", 20.0, 20.0, 50.0, 50.0)],
                              settings, cut_depth=0.5)
        pts = feed_points(plan)
        assert pts[:, 0].min() == pytest.approx(35.0)
        assert pts[:, 0].max() == pytest.approx(65.0)


# ---------------------------------------------------------------------------
# V-carving
# ---------------------------------------------------------------------------


class TestVCarve:
    @pytest.fixture
    def slot(self) -> VectorShape:
        """10 mm wide, 40 mm tall."""
        return rectangle("slot", 10.0, 40.0, 50.0, 50.0)

    def test_depth_follows_width(self, run_planner, slot, check_rapids):
        (plan,) = run_planner(plan_vcarve, [slot], VCarveSettings(), tool_id="vbit-90",
                              cut_depth=20.0)[0]
        pts = np.vstack([s.points for s in plan.segments if s.move_type is MoveType.FEED])
        # 90 degree bit: depth equals the inscribed radius
        assert pts[:, 2].min() == pytest.approx(-5.0, abs=0.02)
        assert check_rapids(plan, 5.0)

    def test_clamped_without_flat_tool(self, run_planner, slot):
        settings = VCarveSettings(flat_depth=2.0)
        plans, sink = run_planner(plan_vcarve, [slot], settings, tool_id="vbit-90",
                                  cut_depth=20.0)
        (plan,) = plans
        pts = np.vstack([s.points for s in plan.segments if s.move_type is MoveType.FEED])
        assert pts[:, 2].min() >= -2.0 - 1e-9
        assert "flat_area_uncut" in sink.codes()

    def test_flat_tool_clears_floor_first(self, run_planner):
        wide = rectangle("w", 30.0, 60.0, 50.0, 50.0)
        settings = VCarveSettings(flat_depth=2.0, flat_tool_id="flat-6")
        plans, _ = run_planner(plan_vcarve, [wide], settings, tool_id="vbit-90",
                               cut_depth=20.0)
        flat, carve = plans
        assert flat.tool_number == 1
        assert carve.tool_number == 5
        assert first_feed(flat).label.startswith("Flat area")
        assert flat.cutting_z_values() == pytest.approx([-2.0])

    def test_needs_tip_angle(self, run_planner, slot):
        with pytest.raises(ConfigurationError):
            run_planner(plan_vcarve, [slot], VCarveSettings(), tool_id="flat-6")

    def test_open_path_at_start_depth(self, run_planner):
        line = VectorShape(id="ln", shape_type=ShapeType.LINE, params={"x2": 40.0})
        settings = VCarveSettings(start_depth=0.5)
        (plan,), sink = run_planner(plan_vcarve, [line], settings, tool_id="vbit-90")
        assert "open_path_vcarve" in sink.codes()
        assert plan.cutting_z_values() == pytest.approx([-0.5])
