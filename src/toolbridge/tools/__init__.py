"""Tool registry and invocation bridge."""

from .bridge import FunctionResult, Invocation, InvocationBridge, ToolFunction
from .registry import ToolDescriptor, ToolRegistry

__all__ = [
    "FunctionResult",
    "Invocation",
    "InvocationBridge",
    "ToolDescriptor",
    "ToolFunction",
    "ToolRegistry",
]
