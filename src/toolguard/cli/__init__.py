"""Command-line interface for ToolGuard."""
