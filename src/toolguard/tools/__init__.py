"""Guarded tools for ToolGuard.

Provides the tool registry pipeline plus built-in shell and file tools.
"""

from toolguard.tools.base import BaseTool, GuardTarget, ToolContext, ToolRegistry
from toolguard.tools.files import FileDeleteTool, FileReadTool, FileWriteTool
from toolguard.tools.shell import ShellCommandTool

__all__ = [
    # Base classes
    "BaseTool",
    "GuardTarget",
    "ToolContext",
    "ToolRegistry",
    # Shell execution
    "ShellCommandTool",
    # File I/O
    "FileDeleteTool",
    "FileReadTool",
    "FileWriteTool",
]
