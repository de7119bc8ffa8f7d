"""Tests for height fields and 3D roughing/finishing over reliefs."""

import math

import numpy as np
import pytest
import trimesh

from routercam.core.design import HeightMapObject, MeshObject, ShapeType, Transform2D, VectorShape
from routercam.core.errors import ConfigurationError, EmptyGeometryError
from routercam.core.heightfield import (
    HeightField,
    cusp_stepover,
    effective_radius,
    tool_profile,
)
from routercam.core.operation import (
    Boundary3D,
    Finish3DSettings,
    FinishPattern,
    Rough3DSettings,
    RoughPattern,
)
from routercam.core.tool import Tool, ToolType
from routercam.core.toolpath.base import MoveType
from routercam.core.toolpath.surface import plan_finish_3d, plan_rough_3d


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def dome_heights(n: int = 41) -> np.ndarray:
    """Paraboloid cap of radius 15 on a floor at 0.4 of the depth."""
    x = np.arange(n, dtype=float)
    X, Y = np.meshgrid(x, x)
    r2 = (X - 20.0) ** 2 + (Y - 20.0) ** 2
    return 0.4 + 0.6 * np.clip(1.0 - r2 / 225.0, 0.0, None)


@pytest.fixture
def dome() -> HeightMapObject:
    """40 x 40 mm relief, 1 mm grid, surface from -3 up to 0."""
    return HeightMapObject(id="relief", heights=dome_heights(), width=40.0,
                           height=40.0, depth=5.0)


@pytest.fixture
def spike() -> HeightField:
    z = np.full((11, 11), -2.0)
    z[5, 5] = 0.0
    return HeightField(z, 0.0, 0.0, 1.0, 1.0, outside=-2.0)


@pytest.fixture
def flat6() -> Tool:
    return Tool("f", "flat", ToolType.FLAT_ENDMILL, 6.0)


@pytest.fixture
def ball6() -> Tool:
    return Tool("b", "ball", ToolType.BALL_ENDMILL, 6.0)


def cut_points(plan) -> np.ndarray:
    pts = [s.linearized() for s in plan.segments if s.move_type is not MoveType.RAPID
           and s.move_type is not MoveType.RETRACT]
    return np.vstack(pts)


# ---------------------------------------------------------------------------
# Height fields
# ---------------------------------------------------------------------------


class TestHeightField:
    def test_from_height_map(self, dome):
        hf = HeightField.from_height_map(dome)
        assert (hf.nx, hf.ny) == (41, 41)
        assert hf.dx == pytest.approx(1.0)
        assert float(hf.sample(20.0, 20.0)) == pytest.approx(0.0)
        assert float(hf.sample(0.0, 0.0)) == pytest.approx(-3.0)

    def test_translation(self, dome):
        moved = HeightMapObject(id="m", heights=dome.heights, width=40.0, height=40.0,
                                depth=5.0, transform=Transform2D(x=100.0, y=50.0))
        hf = HeightField.from_height_map(moved)
        assert hf.bounds == pytest.approx((100.0, 50.0, 140.0, 90.0))

    def test_invert(self):
        obj = HeightMapObject(id="i", heights=np.array([[0.0, 1.0], [0.0, 1.0]]),
                              depth=4.0, invert=True)
        hf = HeightField.from_height_map(obj)
        assert hf.z[0].tolist() == [0.0, -4.0]

    def test_bilinear(self):
        hf = HeightField(np.array([[0.0, 1.0], [2.0, 3.0]]), 0.0, 0.0, 1.0, 1.0)
        assert float(hf.sample(0.5, 0.5)) == pytest.approx(1.5)
        assert hf.sample(np.array([0.0, 1.0]), np.array([0.0, 1.0])).tolist() == [0.0, 3.0]

    def test_outside_grid(self):
        hf = HeightField(np.full((3, 3), -1.0), 0.0, 0.0, 1.0, 1.0, outside=0.0)
        assert float(hf.sample(-5.0, 1.0)) == 0.0

    def test_rejects_tiny_grid(self):
        with pytest.raises(ValueError):
            HeightField(np.zeros((1, 5)), 0.0, 0.0, 1.0, 1.0)


class TestDropCutter:
    def test_flat_tool_sits_on_spike(self, spike, flat6):
        tip = spike.compensate(flat6)
        assert tip.z[5, 8] == pytest.approx(0.0)
        assert tip.z[5, 9] == pytest.approx(-2.0)

    def test_ball_tool_rolls_off_spike(self, spike, ball6):
        tip = spike.compensate(ball6)
        assert tip.z[5, 5] == pytest.approx(0.0)
        assert tip.z[5, 7] == pytest.approx(-(3.0 - math.sqrt(5.0)))
        assert tip.z[5, 8] == pytest.approx(-2.0)

    def test_tip_never_below_surface(self, dome, ball6):
        hf = HeightField.from_height_map(dome)
        tip = hf.compensate(ball6)
        assert np.all(tip.z >= hf.z - 1e-12)

    def test_vbit_profile(self):
        vbit = Tool("v", "v", ToolType.V_BIT, 12.0, tip_angle=90.0)
        assert tool_profile(vbit, np.array([2.0]))[0] == pytest.approx(2.0)

    def test_laplacian_marks_valley(self):
        v = np.abs(np.arange(21, dtype=float) - 10.0) / 10.0
        hf = HeightField.from_height_map(HeightMapObject(
            id="g", heights=np.tile(v, (5, 1)), width=20.0, height=4.0, depth=2.0))
        lap = hf.laplacian()
        assert np.all(lap[:, 10] > 0)
        assert np.allclose(lap[:, 3:8], 0.0)


class TestCusp:
    def test_cusp_stepover(self):
        assert cusp_stepover(3.0, 0.01) == pytest.approx(2 * math.sqrt(0.06 - 0.0001))

    def test_effective_radius(self, flat6, ball6):
        assert effective_radius(flat6) == 0.0
        assert effective_radius(ball6) == 3.0
        bull = Tool("n", "bull", ToolType.BULL_NOSE, 6.0, corner_radius=1.0)
        assert effective_radius(bull) == 1.0


# ---------------------------------------------------------------------------
# Roughing
# ---------------------------------------------------------------------------


class TestRough3D:
    @pytest.mark.parametrize("pattern", list(RoughPattern))
    def test_stays_above_surface(self, run_planner, tools, dome, pattern, check_rapids):
        settings = Rough3DSettings(pattern=pattern, stock_to_leave=0.5)
        plan, _ = run_planner(plan_rough_3d, [dome], settings)
        assert not plan.is_empty
        tip = HeightField.from_height_map(dome).compensate(tools.require("flat-6"))
        pts = cut_points(plan)
        assert np.all(pts[:, 2] >= tip.sample(pts[:, 0], pts[:, 1]) + 0.5 - 1e-9)
        assert check_rapids(plan, 5.0)

    def test_levels_stop_at_leave(self, run_planner, dome):
        plan, _ = run_planner(plan_rough_3d, [dome], Rough3DSettings(stock_to_leave=0.5))
        # Floor at -3, 0.5 left: levels of 2 mm down to -2.5
        assert min(plan.cutting_z_values()) == pytest.approx(-2.5)
        labels = {s.label for s in plan.segments if s.move_type is MoveType.FEED}
        assert all(lb.startswith("3D rough Pass") for lb in labels)

    def test_nothing_to_cut(self, run_planner):
        flat = HeightMapObject(id="flat", heights=np.ones((5, 5)), width=10.0, height=10.0)
        plan, sink = run_planner(plan_rough_3d, [flat], Rough3DSettings())
        assert plan.is_empty
        assert "nothing_to_cut" in sink.codes()

    def test_selection_boundary(self, run_planner, dome):
        window = VectorShape(id="win", transform=Transform2D(x=10.0, y=10.0),
                             shape_type=ShapeType.RECTANGLE,
                             params={"width": 10.0, "height": 10.0})
        settings = Rough3DSettings(boundary=Boundary3D.SELECTION)
        plan, _ = run_planner(plan_rough_3d, [dome, window], settings)
        pts = cut_points(plan)
        assert pts[:, 0].min() >= 5.0 - 1e-6
        assert pts[:, 0].max() <= 15.0 + 1e-6

    def test_empty_selection_falls_back(self, run_planner, dome):
        settings = Rough3DSettings(boundary=Boundary3D.SELECTION)
        _, sink = run_planner(plan_rough_3d, [dome], settings)
        assert "empty_selection" in sink.codes()

    def test_needs_relief(self, run_planner):
        window = VectorShape(id="win", shape_type=ShapeType.RECTANGLE,
                             params={"width": 10.0, "height": 10.0})
        with pytest.raises(EmptyGeometryError):
            run_planner(plan_rough_3d, [window], Rough3DSettings())

    def test_second_relief_ignored(self, run_planner, dome):
        other = HeightMapObject(id="other", heights=np.ones((3, 3)))
        _, sink = run_planner(plan_rough_3d, [dome, other], Rough3DSettings())
        assert "multiple_reliefs" in sink.codes()

    def test_missing_mesh_file(self, run_planner, tmp_path):
        mesh = MeshObject(id="m", path=str(tmp_path / "missing.stl"))
        with pytest.raises(ConfigurationError):
            run_planner(plan_rough_3d, [mesh], Rough3DSettings())

    def test_mesh_waterline_clears_part(self, run_planner, tmp_path):
        path = tmp_path / "puck.stl"
        trimesh.creation.cylinder(radius=10.0, height=4.0, sections=64).export(str(path))
        mesh = MeshObject(id="m", path=str(path), transform=Transform2D(x=40.0, y=40.0))
        settings = Rough3DSettings(pattern=RoughPattern.WATERLINE,
                                   boundary=Boundary3D.STOCK, stock_to_leave=0.5)
        plan, _ = run_planner(plan_rough_3d, [mesh], settings)
        pts = cut_points(plan)
        assert pts[:, 2].min() == pytest.approx(-3.5)
        # Tool edge plus stock to leave stays off the puck wall
        dist = np.hypot(pts[:, 0] - 50.0, pts[:, 1] - 50.0)
        assert dist.min() >= 13.4


# ---------------------------------------------------------------------------
# Finishing
# ---------------------------------------------------------------------------


class TestFinish3D:
    @pytest.mark.parametrize("pattern", [
        FinishPattern.RASTER, FinishPattern.SPIRAL,
        FinishPattern.RADIAL, FinishPattern.SCALLOP,
    ])
    def test_follows_surface(self, run_planner, tools, dome, pattern, check_rapids):
        settings = Finish3DSettings(pattern=pattern)
        plan, _ = run_planner(plan_finish_3d, [dome], settings, tool_id="ball-6")
        assert not plan.is_empty
        hf = HeightField.from_height_map(dome)
        tip = hf.compensate(tools.require("ball-6"))
        pts = cut_points(plan)
        assert np.all(pts[:, 2] >= hf.sample(pts[:, 0], pts[:, 1]) - 1e-9)
        feeds = np.vstack([s.points for s in plan.segments if s.move_type is MoveType.FEED])
        assert np.allclose(feeds[:, 2], tip.sample(feeds[:, 0], feeds[:, 1]))
        assert check_rapids(plan, 5.0)

    def test_label(self, run_planner, dome):
        plan, _ = run_planner(plan_finish_3d, [dome], Finish3DSettings(), tool_id="ball-6")
        labels = {s.label for s in plan.segments if s.move_type is MoveType.FEED}
        assert labels == {"3D finish raster"}

    def test_pencil_follows_valley(self, run_planner):
        v = np.abs(np.arange(41, dtype=float) - 20.0) / 20.0
        groove = HeightMapObject(id="g", heights=np.tile(v, (41, 1)),
                                 width=40.0, height=40.0, depth=5.0)
        settings = Finish3DSettings(pattern=FinishPattern.PENCIL)
        plan, _ = run_planner(plan_finish_3d, [groove], settings, tool_id="ball-6")
        feeds = np.vstack([s.points for s in plan.segments if s.move_type is MoveType.FEED])
        assert np.allclose(feeds[:, 0], 20.0)

    def test_pencil_without_valleys(self, run_planner):
        flat = HeightMapObject(id="flat", heights=np.full((5, 5), 0.5), width=10.0, height=10.0)
        settings = Finish3DSettings(pattern=FinishPattern.PENCIL)
        plan, sink = run_planner(plan_finish_3d, [flat], settings, tool_id="ball-6")
        assert plan.is_empty
        assert "no_valleys" in sink.codes()

    def test_cusp_height_sets_stepover(self, run_planner, dome):
        coarse, _ = run_planner(plan_finish_3d, [dome], Finish3DSettings(cusp_height=0.2),
                                tool_id="ball-6")
        fine, _ = run_planner(plan_finish_3d, [dome], Finish3DSettings(cusp_height=0.01),
                              tool_id="ball-6")
        assert sum(s.length() for s in fine.segments) > sum(s.length() for s in coarse.segments)

    def test_cusp_ignored_for_flat_tool(self, run_planner, dome):
        _, sink = run_planner(plan_finish_3d, [dome], Finish3DSettings(cusp_height=0.05))
        assert "cusp_ignored" in sink.codes()
