from syncly.services.tools.definitions import TOOL_DEFINITIONS, tools_for_plan
from syncly.services.tools.executor import ToolResult, execute_tool, run_tool
from syncly.services.tools.requests import ToolRequest, UnknownToolError, parse_tool_call

__all__ = [
    "TOOL_DEFINITIONS",
    "ToolRequest",
    "ToolResult",
    "UnknownToolError",
    "execute_tool",
    "parse_tool_call",
    "run_tool",
    "tools_for_plan",
]
