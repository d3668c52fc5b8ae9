"""File tools: read, write, delete.

Paths are resolved against the project root the same way the guard
resolves them, so the file touched is the one that was authorized.
"""

import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from toolguard.core.exceptions import E_NOT_FOUND, E_VALIDATION
from toolguard.core.tool_protocol import (
    ParameterType,
    ToolCall,
    ToolDefinition,
    ToolParameter,
    ToolResult,
)
from toolguard.tools.base import BaseTool, GuardTarget, ToolContext
from toolguard.validation.schema import create_tool_definition

_PATH_PARAMETER = ToolParameter(
    name="path",
    description="File path, absolute or relative to the project root",
    type=ParameterType.STRING,
    required=True,
    min_length=1,
)


def resolve_tool_path(raw_path: str, project_root: Path) -> Path:
    path = Path(raw_path).expanduser()
    if not path.is_absolute():
        path = project_root / path
    return path.resolve()


class FileReadTool(BaseTool):
    """Read a UTF-8 text file."""

    def __init__(self, max_file_size: int | None = None) -> None:
        self.max_file_size = max_file_size

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            name="file_read",
            description="Read a text file and return its contents.",
            parameters=[_PATH_PARAMETER],
        )

    def get_guard_target(self, arguments: dict[str, Any]) -> GuardTarget | None:
        return GuardTarget(path=arguments["path"], operation="read")

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        path = resolve_tool_path(call.arguments["path"], context.guard.project_root)

        if not path.is_file():
            return ToolResult(success=False, error=f"File not found: {path}", error_code=E_NOT_FOUND)

        size = path.stat().st_size
        if self.max_file_size is not None and size > self.max_file_size:
            return ToolResult(
                success=False,
                error=f"File is {size} bytes, larger than the {self.max_file_size} byte limit",
                error_code=E_VALIDATION,
            )

        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolResult(
                success=False, error=f"File is not UTF-8 text: {path}", error_code=E_VALIDATION
            )

        context.logger.debug("File read", path=str(path), size=size)
        return ToolResult(success=True, output=content, data={"path": str(path), "size": size})


class FileWriteTool(BaseTool):
    """Create or overwrite a text file, optionally backing up the old content."""

    def __init__(
        self,
        max_file_size: int | None = None,
        auto_backup: bool = False,
        backup_directory: str | None = None,
    ) -> None:
        """Initialize write tool.

        Args:
            max_file_size: Largest content size accepted, in bytes
            auto_backup: Copy an existing file aside before overwriting it
            backup_directory: Where backups go (default: next to the file)
        """
        self.max_file_size = max_file_size
        self.auto_backup = auto_backup
        self.backup_directory = backup_directory

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            name="file_write",
            description="Write text content to a file, creating parent directories as needed.",
            parameters=[
                _PATH_PARAMETER,
                ToolParameter(
                    name="content",
                    description="Full file content",
                    type=ParameterType.STRING,
                    required=True,
                ),
            ],
        )

    def get_guard_target(self, arguments: dict[str, Any]) -> GuardTarget | None:
        return GuardTarget(path=arguments["path"], operation="write")

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        path = resolve_tool_path(call.arguments["path"], context.guard.project_root)
        data = call.arguments["content"].encode("utf-8")

        if self.max_file_size is not None and len(data) > self.max_file_size:
            return ToolResult(
                success=False,
                error=f"Content is {len(data)} bytes, larger than the {self.max_file_size} byte limit",
                error_code=E_VALIDATION,
            )

        backup_path = None
        if self.auto_backup and path.is_file():
            backup_path = self._backup(path, context.guard.project_root)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        context.logger.info(
            "File written",
            path=str(path),
            size=len(data),
            backup=str(backup_path) if backup_path else None,
        )
        result_data: dict[str, Any] = {"path": str(path), "size": len(data)}
        if backup_path is not None:
            result_data["backup_path"] = str(backup_path)
        return ToolResult(success=True, output=f"Wrote {len(data)} bytes to {path}", data=result_data)

    def _backup(self, path: Path, project_root: Path) -> Path:
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        if self.backup_directory:
            target_dir = resolve_tool_path(self.backup_directory, project_root)
        else:
            target_dir = path.parent
        target_dir.mkdir(parents=True, exist_ok=True)
        backup_path = target_dir / f"{path.name}.{stamp}.bak"
        shutil.copy2(path, backup_path)
        return backup_path


class FileDeleteTool(BaseTool):
    """Delete a single file. Always asks for confirmation."""

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            name="file_delete",
            description="Delete a file.",
            parameters=[_PATH_PARAMETER],
            metadata={"requires_confirmation": True},
        )

    def get_guard_target(self, arguments: dict[str, Any]) -> GuardTarget | None:
        return GuardTarget(path=arguments["path"], operation="delete")

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        path = resolve_tool_path(call.arguments["path"], context.guard.project_root)

        if not path.is_file():
            return ToolResult(success=False, error=f"File not found: {path}", error_code=E_NOT_FOUND)

        path.unlink()
        context.logger.info("File deleted", path=str(path))
        return ToolResult(success=True, output=f"Deleted {path}", data={"path": str(path)})
