"""Gateway tools: descriptors, response shapes and the dispatcher."""

from sqlgate.tools.definitions import TOOLS, TOOLS_BY_NAME, ToolDescriptor, ToolResponse
from sqlgate.tools.dispatcher import ToolDispatcher, check_arguments

__all__ = [
    "TOOLS",
    "TOOLS_BY_NAME",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolResponse",
    "check_arguments",
]
