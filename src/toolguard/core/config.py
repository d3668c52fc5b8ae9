"""Security configuration loading, merging and validation.

Precedence (lowest to highest):
1. Built-in defaults
2. Config file (first hit of mcp-security.json, .mcp-security.json,
   config/mcp-security.json, .config/mcp-security.json, ~/.mcp-security.json)
3. Environment variables (MCP_SECURITY_*)
4. Platform override block for the running OS

The file format is JSON with camelCase keys; timeouts are milliseconds.
Merging is field-wise per section, and list-valued fields are replaced
wholesale rather than concatenated.
"""

import copy
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from toolguard.core.exceptions import ConfigurationError
from toolguard.core.logger import ToolGuardLogger, get_logger
from toolguard.core.types import Platform, RiskLevel

VALID_MODES = ("strict", "moderate", "permissive")
VALID_STRATEGIES = ("interactive", "policy", "logging", "none")
VALID_POLICY_ACTIONS = ("approve", "deny", "confirm")

CONFIG_FILE_NAME = "mcp-security.json"


@dataclass
class RotationConfig:
    """Log rotation settings."""

    enabled: bool = False
    max_files: int = 5
    max_age: int = 30  # days

    JSON_KEYS: ClassVar[dict[str, str]] = {
        "enabled": "enabled",
        "maxFiles": "max_files",
        "maxAge": "max_age",
    }


@dataclass
class CustomPolicy:
    """A glob-pattern rule consulted by the policy confirmation strategy."""

    type: str
    pattern: str
    action: str  # approve|deny|confirm

    JSON_KEYS: ClassVar[dict[str, str]] = {
        "type": "type",
        "pattern": "pattern",
        "action": "action",
    }


@dataclass
class CommandsConfig:
    """Command execution settings."""

    additional_blocked: list[str] = field(default_factory=list)
    unblock: list[str] = field(default_factory=list)
    additional_allowed: list[str] = field(default_factory=list)
    custom_risk_levels: dict[str, str] = field(default_factory=dict)
    default_timeout: int | None = 30000
    max_command_length: int | None = 1000

    JSON_KEYS: ClassVar[dict[str, str]] = {
        "additionalBlocked": "additional_blocked",
        "unblock": "unblock",
        "additionalAllowed": "additional_allowed",
        "customRiskLevels": "custom_risk_levels",
        "defaultTimeout": "default_timeout",
        "maxCommandLength": "max_command_length",
    }


@dataclass
class FilesystemConfig:
    """File system settings."""

    additional_allowed_paths: list[str] = field(default_factory=list)
    additional_blocked_paths: list[str] = field(default_factory=list)
    max_file_size: int | None = 10 * 1024 * 1024  # 10MB
    allow_outside_project: bool = False
    auto_backup: bool = False
    backup_directory: str | None = None

    JSON_KEYS: ClassVar[dict[str, str]] = {
        "additionalAllowedPaths": "additional_allowed_paths",
        "additionalBlockedPaths": "additional_blocked_paths",
        "maxFileSize": "max_file_size",
        "allowOutsideProject": "allow_outside_project",
        "autoBackup": "auto_backup",
        "backupDirectory": "backup_directory",
    }


@dataclass
class ConfirmationConfig:
    """Confirmation workflow settings."""

    strategy: str = "interactive"
    auto_approve_in_dev: bool = False
    auto_approve: bool = False
    timeout: int | None = 30000
    require_confirmation_for: list[str] = field(default_factory=lambda: ["high", "critical"])
    custom_policies: list[CustomPolicy] = field(default_factory=list)

    JSON_KEYS: ClassVar[dict[str, str]] = {
        "strategy": "strategy",
        "autoApproveInDev": "auto_approve_in_dev",
        "autoApprove": "auto_approve",
        "timeout": "timeout",
        "requireConfirmationFor": "require_confirmation_for",
        "customPolicies": "custom_policies",
    }


@dataclass
class LoggingConfig:
    """Security event logging settings."""

    enabled: bool = True
    log_path: str | None = None
    include_output: bool = False
    max_log_size: int = 50 * 1024 * 1024  # 50MB
    rotation: RotationConfig | None = None

    JSON_KEYS: ClassVar[dict[str, str]] = {
        "enabled": "enabled",
        "logPath": "log_path",
        "includeOutput": "include_output",
        "maxLogSize": "max_log_size",
        "rotation": "rotation",
    }


# JSON section key -> (SecurityConfig attribute, section class)
_SECTIONS: dict[str, tuple[str, type]] = {
    "commands": ("commands", CommandsConfig),
    "filesystem": ("filesystem", FilesystemConfig),
    "confirmation": ("confirmation", ConfirmationConfig),
    "logging": ("logging", LoggingConfig),
}


@dataclass
class SecurityConfig:
    """Complete security policy for one deployment.

    ``platform_overrides`` maps a platform identifier (darwin, win32,
    linux) to a partial config in JSON shape, merged last on that OS.
    """

    enabled: bool = True
    mode: str = "moderate"
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    filesystem: FilesystemConfig = field(default_factory=FilesystemConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    platform_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to its JSON shape (camelCase keys, None omitted)."""
        data: dict[str, Any] = {"enabled": self.enabled, "mode": self.mode}
        for json_key, (attr, _cls) in _SECTIONS.items():
            data[json_key] = _section_to_dict(getattr(self, attr))
        if self.platform_overrides:
            data["platformOverrides"] = copy.deepcopy(self.platform_overrides)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityConfig":
        """Create config from JSON-shaped data layered over the defaults."""
        return merge_configs(cls(), data)


def _section_to_dict(section: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for json_key, attr in section.JSON_KEYS.items():
        value = getattr(section, attr)
        if value is None:
            continue
        if isinstance(value, RotationConfig):
            value = _section_to_dict(value)
        elif isinstance(value, list):
            value = [_section_to_dict(v) if isinstance(v, CustomPolicy) else v for v in value]
        elif isinstance(value, dict):
            value = dict(value)
        data[json_key] = value
    return data


def _convert_field(attr: str, value: Any) -> Any:
    """Convert one JSON value to the attribute's Python representation."""
    if attr == "rotation":
        if not isinstance(value, dict):
            raise ValueError("'rotation' must be an object")
        keys = RotationConfig.JSON_KEYS
        return RotationConfig(**{keys[k]: v for k, v in value.items() if k in keys})
    if attr == "custom_policies":
        if not isinstance(value, list):
            raise ValueError("'customPolicies' must be a list")
        policies = []
        for item in value:
            if not isinstance(item, dict):
                raise ValueError("Each custom policy must be an object")
            policies.append(
                CustomPolicy(type=item["type"], pattern=item["pattern"], action=item["action"])
            )
        return policies
    if attr == "custom_risk_levels":
        if not isinstance(value, dict):
            raise ValueError("'customRiskLevels' must be an object")
        return {str(k).lower(): v for k, v in value.items()}
    if isinstance(value, list):
        return list(value)
    return value


def _apply_section(section: Any, overlay: Any, json_key: str) -> None:
    if not isinstance(overlay, dict):
        raise ValueError(f"Section '{json_key}' must be an object")
    for key, value in overlay.items():
        attr = section.JSON_KEYS.get(key)
        if attr is None or value is None:
            continue
        setattr(section, attr, _convert_field(attr, value))


def merge_configs(base: SecurityConfig, overlay: dict[str, Any]) -> SecurityConfig:
    """Merge a JSON-shaped partial config on top of ``base``.

    Top-level scalars replace, the four sections merge field by field, and
    unknown keys are ignored. ``base`` is left untouched.

    Raises:
        ValueError: If a section or nested field has the wrong shape
    """
    merged = copy.deepcopy(base)

    if not isinstance(overlay, dict):
        raise ValueError("Configuration must be a JSON object")

    for key, value in overlay.items():
        if key == "enabled":
            merged.enabled = value
        elif key == "mode":
            merged.mode = value
        elif key in _SECTIONS:
            attr, _cls = _SECTIONS[key]
            _apply_section(getattr(merged, attr), value, key)
        elif key == "platformOverrides":
            if not isinstance(value, dict):
                raise ValueError("'platformOverrides' must be an object")
            for block in value.values():
                # Shape errors surface now, not when the block is applied
                if block is not None:
                    merge_configs(SecurityConfig(), block)
            merged.platform_overrides = copy.deepcopy(value)

    return merged


def load_env_overrides() -> dict[str, Any]:
    """Read MCP_SECURITY_* environment variables into a partial config.

    Supported variables:
    - MCP_SECURITY_ENABLED: "true" enables, any other value disables
    - MCP_SECURITY_MODE: strict|moderate|permissive
    - MCP_SECURITY_CONFIRMATION: confirmation strategy name
    - MCP_SECURITY_AUTO_APPROVE_DEV: "true" enables auto-approval in development
    - MCP_SECURITY_LOG_PATH: security log file path

    Returns:
        Partial config in JSON shape
    """
    overrides: dict[str, Any] = {}

    enabled = os.environ.get("MCP_SECURITY_ENABLED")
    if enabled is not None:
        overrides["enabled"] = enabled == "true"

    if mode := os.environ.get("MCP_SECURITY_MODE"):
        overrides["mode"] = mode

    if strategy := os.environ.get("MCP_SECURITY_CONFIRMATION"):
        overrides.setdefault("confirmation", {})["strategy"] = strategy

    auto_approve_dev = os.environ.get("MCP_SECURITY_AUTO_APPROVE_DEV")
    if auto_approve_dev is not None:
        overrides.setdefault("confirmation", {})["autoApproveInDev"] = auto_approve_dev == "true"

    if log_path := os.environ.get("MCP_SECURITY_LOG_PATH"):
        overrides.setdefault("logging", {})["logPath"] = log_path

    return overrides


def apply_platform_overrides(config: SecurityConfig, platform: Platform | None = None) -> SecurityConfig:
    """Merge the override block for ``platform`` (default: running OS)."""
    platform = platform or Platform.current()
    overrides = config.platform_overrides.get(platform.value)
    if not overrides:
        return config
    overlay = {k: v for k, v in overrides.items() if k != "platformOverrides"}
    return merge_configs(config, overlay)


def _check_timeout(value: Any, key: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigurationError(f"{key} must be a number, got {value!r}", key=key, reason="type")
    if value < 0:
        raise ConfigurationError(f"{key} must be non-negative, got {value}", key=key, reason="negative")


def _check_size(value: Any, key: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}", key=key, reason="type")
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}", key=key, reason="not_positive")


def _check_flag(value: Any, key: str) -> None:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}", key=key, reason="type")


def _check_text(value: Any, key: str) -> None:
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string, got {value!r}", key=key, reason="type")


def _check_string_list(value: Any, key: str) -> None:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"{key} must be a list of strings", key=key, reason="type")


def _check_types(config: SecurityConfig) -> None:
    commands = config.commands
    filesystem = config.filesystem
    confirmation = config.confirmation
    logging_config = config.logging

    _check_flag(config.enabled, "enabled")
    _check_text(config.mode, "mode")

    _check_string_list(commands.additional_blocked, "commands.additionalBlocked")
    _check_string_list(commands.unblock, "commands.unblock")
    _check_string_list(commands.additional_allowed, "commands.additionalAllowed")
    _check_size(commands.max_command_length, "commands.maxCommandLength")
    _check_timeout(commands.default_timeout, "commands.defaultTimeout")

    _check_string_list(filesystem.additional_allowed_paths, "filesystem.additionalAllowedPaths")
    _check_string_list(filesystem.additional_blocked_paths, "filesystem.additionalBlockedPaths")
    _check_size(filesystem.max_file_size, "filesystem.maxFileSize")
    _check_flag(filesystem.allow_outside_project, "filesystem.allowOutsideProject")
    _check_flag(filesystem.auto_backup, "filesystem.autoBackup")
    _check_text(filesystem.backup_directory, "filesystem.backupDirectory")

    _check_text(confirmation.strategy, "confirmation.strategy")
    _check_flag(confirmation.auto_approve_in_dev, "confirmation.autoApproveInDev")
    _check_flag(confirmation.auto_approve, "confirmation.autoApprove")
    _check_timeout(confirmation.timeout, "confirmation.timeout")
    _check_string_list(confirmation.require_confirmation_for, "confirmation.requireConfirmationFor")
    for policy in confirmation.custom_policies:
        for value in (policy.type, policy.pattern, policy.action):
            _check_text(value, "confirmation.customPolicies")

    _check_flag(logging_config.enabled, "logging.enabled")
    _check_text(logging_config.log_path, "logging.logPath")
    _check_flag(logging_config.include_output, "logging.includeOutput")
    _check_size(logging_config.max_log_size, "logging.maxLogSize")
    if logging_config.rotation is not None:
        _check_flag(logging_config.rotation.enabled, "logging.rotation.enabled")
        _check_size(logging_config.rotation.max_files, "logging.rotation.maxFiles")
        _check_size(logging_config.rotation.max_age, "logging.rotation.maxAge")


def validate_config(config: SecurityConfig) -> None:
    """Validate a merged configuration.

    Raises:
        ConfigurationError: On a field of the wrong type, an unknown mode,
            strategy, risk level or policy action, or a negative timeout
    """
    _check_types(config)

    if config.mode not in VALID_MODES:
        raise ConfigurationError(
            f"Invalid security mode: {config.mode}", key="mode", reason="unknown_mode"
        )

    if config.confirmation.strategy not in VALID_STRATEGIES:
        raise ConfigurationError(
            f"Invalid confirmation strategy: {config.confirmation.strategy}",
            key="confirmation.strategy",
            reason="unknown_strategy",
        )

    risk_names = {level.value for level in RiskLevel}
    for command, level in config.commands.custom_risk_levels.items():
        if not isinstance(level, str) or level not in risk_names:
            raise ConfigurationError(
                f"Invalid risk level '{level}' for command '{command}'",
                key="commands.customRiskLevels",
                reason="unknown_risk_level",
            )
    for level in config.confirmation.require_confirmation_for:
        if level not in risk_names:
            raise ConfigurationError(
                f"Invalid risk level: {level}",
                key="confirmation.requireConfirmationFor",
                reason="unknown_risk_level",
            )
    for policy in config.confirmation.custom_policies:
        if policy.action not in VALID_POLICY_ACTIONS:
            raise ConfigurationError(
                f"Invalid custom policy action: {policy.action}",
                key="confirmation.customPolicies",
                reason="unknown_action",
            )


class SecurityConfigLoader:
    """Discovers, loads, merges and saves the security configuration."""

    CANDIDATE_FILES: ClassVar[tuple[str, ...]] = (
        CONFIG_FILE_NAME,
        f".{CONFIG_FILE_NAME}",
        f"config/{CONFIG_FILE_NAME}",
        f".config/{CONFIG_FILE_NAME}",
    )

    def __init__(
        self,
        config_path: str | Path | None = None,
        cwd: str | Path | None = None,
        platform: Platform | None = None,
        logger: ToolGuardLogger | None = None,
    ) -> None:
        """Initialize loader.

        Args:
            config_path: Explicit config file (None = discover)
            cwd: Directory used for discovery and the default save path
            platform: Platform whose override block applies (default: running OS)
            logger: Logger instance (default: shared logger)
        """
        self.config_path = Path(config_path) if config_path else None
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.platform = platform or Platform.current()
        self.logger = logger or get_logger()
        self._config = SecurityConfig()

    def load(self) -> SecurityConfig:
        """Load and merge all configuration sources.

        A missing, unreadable or malformed config file is never fatal: a
        warning is logged and the defaults are returned.

        Returns:
            Merged, validated configuration

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        config = SecurityConfig()

        try:
            if self.config_path is None:
                self.config_path = self.find_config_file()

            if self.config_path is not None:
                with self.logger.operation("config_load", path=str(self.config_path)):
                    with self.config_path.open(encoding="utf-8") as f:
                        data = json.load(f)
                    config = merge_configs(config, data)
        except (OSError, ValueError, TypeError, KeyError) as e:
            self.logger.warn(
                "Failed to load security config, using defaults",
                path=str(self.config_path),
                error=str(e),
            )
            self._config = SecurityConfig()
            return self._config

        config = merge_configs(config, load_env_overrides())
        config = apply_platform_overrides(config, self.platform)

        validate_config(config)

        self._config = config
        self.logger.info(
            "Security config loaded",
            path=str(self.config_path) if self.config_path else None,
            mode=config.mode,
            strategy=config.confirmation.strategy,
            platform=self.platform.value,
        )
        return config

    def save(self, config: SecurityConfig, config_path: str | Path | None = None) -> Path:
        """Write ``config`` as pretty-printed JSON.

        The target is ``config_path``, else the path used for loading, else
        ``config/mcp-security.json`` under the working directory. The file is
        written to a temporary sibling and renamed into place.

        Returns:
            Path written

        Raises:
            ConfigurationError: If the file cannot be written
        """
        save_path = Path(config_path) if config_path else self.config_path or self.default_config_path()

        try:
            save_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=save_path.parent, prefix=f".{save_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(config.to_dict(), f, indent=2)
                    f.write("\n")
                os.replace(tmp_name, save_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            self.logger.error("Failed to save security config", path=str(save_path), error=str(e))
            raise ConfigurationError(
                f"Failed to save security config to {save_path}: {e}",
                key="path",
                reason="write_failed",
            ) from e

        self.logger.info("Security config saved", path=str(save_path))
        return save_path

    def get_config(self) -> SecurityConfig:
        """Get the most recently loaded configuration."""
        return self._config

    def find_config_file(self) -> Path | None:
        """Return the first existing candidate config file, if any."""
        candidates = [self.cwd / name for name in self.CANDIDATE_FILES]
        candidates.append(Path.home() / f".{CONFIG_FILE_NAME}")

        for candidate in candidates:
            if candidate.is_file():
                return candidate.resolve()
        return None

    def default_config_path(self) -> Path:
        return self.cwd / "config" / CONFIG_FILE_NAME


def load_config(config_path: str | Path | None = None, cwd: str | Path | None = None) -> SecurityConfig:
    """Convenience wrapper around ``SecurityConfigLoader(...).load()``."""
    return SecurityConfigLoader(config_path=config_path, cwd=cwd).load()


def create_example_config(output_path: str | Path | None = None, cwd: str | Path | None = None) -> Path:
    """Write an example configuration showing every supported field.

    Returns:
        Path written
    """
    example = SecurityConfig.from_dict(
        {
            "mode": "moderate",
            "commands": {
                "additionalBlocked": ["example-dangerous-command"],
                "additionalAllowed": ["my-safe-tool"],
                "customRiskLevels": {"npm install": "medium", "git push": "high"},
                "defaultTimeout": 60000,
                "maxCommandLength": 2000,
            },
            "filesystem": {
                "additionalAllowedPaths": ["/tmp/my-app", "~/Documents/projects"],
                "additionalBlockedPaths": ["/sensitive/data"],
                "maxFileSize": 50 * 1024 * 1024,
                "allowOutsideProject": False,
                "autoBackup": True,
                "backupDirectory": ".backups",
            },
            "confirmation": {
                "strategy": "interactive",
                "autoApproveInDev": True,
                "timeout": 45000,
                "requireConfirmationFor": ["medium", "high", "critical"],
                "customPolicies": [
                    {"type": "command", "pattern": "npm test", "action": "approve"},
                    {"type": "file_operation", "pattern": "/tmp/*", "action": "approve"},
                ],
            },
            "logging": {
                "enabled": True,
                "logPath": "./logs/mcp-security.log",
                "includeOutput": True,
                "maxLogSize": 100 * 1024 * 1024,
                "rotation": {"enabled": True, "maxFiles": 10, "maxAge": 30},
            },
            "platformOverrides": {
                "darwin": {"filesystem": {"additionalBlockedPaths": ["/System", "/Library"]}},
                "win32": {"commands": {"additionalBlocked": ["format", "diskpart"]}},
            },
        }
    )
    return SecurityConfigLoader(cwd=cwd).save(example, output_path)

