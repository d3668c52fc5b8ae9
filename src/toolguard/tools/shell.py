"""Shell command tool.

The registry has already classified (and if needed confirmed) the command
by the time ``execute`` runs; this module only runs it and captures output.
"""

import asyncio
import time
from typing import Any

from toolguard.core.exceptions import E_TIMEOUT, E_VALIDATION
from toolguard.core.tool_protocol import (
    ParameterType,
    ToolCall,
    ToolDefinition,
    ToolExample,
    ToolParameter,
    ToolResult,
)
from toolguard.tools.base import BaseTool, GuardTarget, ToolContext
from toolguard.validation.schema import create_tool_definition


class ShellCommandTool(BaseTool):
    """Run a shell command in the project root."""

    def __init__(
        self,
        default_timeout_ms: int = 30_000,
        max_output_bytes: int = 1024 * 1024,  # 1MB
    ) -> None:
        """Initialize shell tool.

        Args:
            default_timeout_ms: Timeout when the call does not give one
            max_output_bytes: stdout/stderr are truncated beyond this size
        """
        self.default_timeout_ms = default_timeout_ms
        self.max_output_bytes = max_output_bytes

    def get_definition(self) -> ToolDefinition:
        return create_tool_definition(
            name="shell_execute",
            description="Execute a shell command in the project directory and return its output.",
            parameters=[
                ToolParameter(
                    name="command",
                    description="Command line to run",
                    type=ParameterType.STRING,
                    required=True,
                    min_length=1,
                ),
                ToolParameter(
                    name="timeout",
                    description="Timeout in milliseconds",
                    type=ParameterType.INTEGER,
                    minimum=1,
                    default=self.default_timeout_ms,
                ),
            ],
            examples=[
                ToolExample(input={"command": "git status"}, description="Show repository status"),
            ],
        )

    def get_guard_target(self, arguments: dict[str, Any]) -> GuardTarget | None:
        return GuardTarget(command=arguments["command"])

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        command = call.arguments["command"]
        timeout_ms = call.arguments.get("timeout", self.default_timeout_ms)
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=str(context.guard.project_root),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            context.logger.error("Command failed to start", command=command, error=str(e))
            return ToolResult(
                success=False, error=f"Command execution failed: {e}", error_code=E_VALIDATION
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
        except TimeoutError:
            process.kill()
            await process.wait()
            context.logger.warn("Command timed out", command=command, timeout_ms=timeout_ms)
            return ToolResult(
                success=False,
                error=f"Command timed out after {timeout_ms}ms",
                error_code=E_TIMEOUT,
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        stdout_text = self._truncate(stdout)
        stderr_text = self._truncate(stderr)
        exit_code = process.returncode if process.returncode is not None else -1

        context.logger.info(
            "Command executed", command=command, exit_code=exit_code, duration_ms=duration_ms
        )
        return ToolResult(
            success=exit_code == 0,
            output=stdout_text,
            error=stderr_text if exit_code != 0 else None,
            data={
                "command": command,
                "exit_code": exit_code,
                "stdout": stdout_text,
                "stderr": stderr_text,
                "duration_ms": duration_ms,
            },
        )

    def _truncate(self, raw: bytes) -> str:
        if len(raw) <= self.max_output_bytes:
            return raw.decode("utf-8", errors="replace")
        kept = raw[: self.max_output_bytes].decode("utf-8", errors="replace")
        return f"{kept}\n... [truncated {len(raw) - self.max_output_bytes} bytes]"
