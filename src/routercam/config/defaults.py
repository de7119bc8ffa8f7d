"""Default feeds, speeds, and tool definitions.

These are conservative starting points for wood and plastics; users should
adjust to their specific tooling and material.
"""

from ..core.tool import Tool, ToolType, ToolLibrary


def build_default_tool_library() -> ToolLibrary:
    """Return an in-memory ToolLibrary with common router starter tools."""
    tools = [
        Tool(
            id="flat-6mm",
            number=1,
            name="6mm Flat End Mill",
            tool_type=ToolType.FLAT_ENDMILL,
            diameter=6.0,
            flute_count=2,
            default_feed_rate=1500.0,
            default_plunge_rate=500.0,
            default_spindle_speed=18000,
            default_depth_per_pass=2.0,
            default_stepover=40.0,
        ),
        Tool(
            id="flat-3.175mm",
            number=2,
            name="1/8\" Flat End Mill",
            tool_type=ToolType.FLAT_ENDMILL,
            diameter=3.175,
            flute_count=2,
            default_feed_rate=1000.0,
            default_plunge_rate=300.0,
            default_spindle_speed=20000,
            default_depth_per_pass=1.0,
            default_stepover=40.0,
        ),
        Tool(
            id="ball-6mm",
            number=3,
            name="6mm Ball End Mill",
            tool_type=ToolType.BALL_ENDMILL,
            diameter=6.0,
            flute_count=2,
            default_feed_rate=1200.0,
            default_plunge_rate=400.0,
            default_spindle_speed=18000,
            default_depth_per_pass=1.5,
            default_stepover=15.0,
        ),
        Tool(
            id="vbit-60",
            number=4,
            name="60 deg V-Bit",
            tool_type=ToolType.V_BIT,
            diameter=12.7,
            flute_count=2,
            tip_angle=60.0,
            default_feed_rate=1000.0,
            default_plunge_rate=300.0,
            default_spindle_speed=18000,
            default_depth_per_pass=2.0,
        ),
        Tool(
            id="vbit-90",
            number=5,
            name="90 deg V-Bit",
            tool_type=ToolType.V_BIT,
            diameter=12.7,
            flute_count=2,
            tip_angle=90.0,
            default_feed_rate=1000.0,
            default_plunge_rate=300.0,
            default_spindle_speed=18000,
            default_depth_per_pass=2.0,
        ),
        Tool(
            id="drill-3mm",
            number=6,
            name="3mm Drill",
            tool_type=ToolType.DRILL,
            diameter=3.0,
            flute_count=2,
            tip_angle=118.0,
            default_feed_rate=300.0,
            default_plunge_rate=200.0,
            default_spindle_speed=12000,
            default_depth_per_pass=2.0,
        ),
    ]
    return ToolLibrary.in_memory(tools)
