"""Tests for security configuration loading and merging."""

import json

import pytest

from toolguard.core.config import (
    CommandsConfig,
    CustomPolicy,
    SecurityConfig,
    SecurityConfigLoader,
    apply_platform_overrides,
    create_example_config,
    load_config,
    load_env_overrides,
    merge_configs,
    validate_config,
)
from toolguard.core.exceptions import ConfigurationError
from toolguard.core.types import Platform

ENV_VARS = (
    "MCP_SECURITY_ENABLED",
    "MCP_SECURITY_MODE",
    "MCP_SECURITY_CONFIRMATION",
    "MCP_SECURITY_AUTO_APPROVE_DEV",
    "MCP_SECURITY_LOG_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(tmp_path, monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


def write_config(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_default_values(self):
        config = SecurityConfig()
        assert config.enabled is True
        assert config.mode == "moderate"
        assert config.commands.default_timeout == 30000
        assert config.commands.max_command_length == 1000
        assert config.filesystem.max_file_size == 10 * 1024 * 1024
        assert config.filesystem.allow_outside_project is False
        assert config.confirmation.strategy == "interactive"
        assert config.confirmation.require_confirmation_for == ["high", "critical"]
        assert config.logging.enabled is True
        assert config.logging.max_log_size == 50 * 1024 * 1024

    def test_to_dict_uses_camel_case(self):
        data = SecurityConfig().to_dict()
        assert data["commands"]["defaultTimeout"] == 30000
        assert data["confirmation"]["requireConfirmationFor"] == ["high", "critical"]
        assert "logPath" not in data["logging"]
        assert "platformOverrides" not in data


class TestMerge:
    def test_sections_merge_field_by_field(self):
        merged = merge_configs(
            SecurityConfig(),
            {"mode": "strict", "commands": {"defaultTimeout": 5000}},
        )
        assert merged.mode == "strict"
        assert merged.commands.default_timeout == 5000
        assert merged.commands.max_command_length == 1000

    def test_lists_replace_rather_than_concatenate(self):
        base = SecurityConfig(commands=CommandsConfig(additional_blocked=["a", "b"]))
        merged = merge_configs(base, {"commands": {"additionalBlocked": ["c"]}})
        assert merged.commands.additional_blocked == ["c"]
        assert base.commands.additional_blocked == ["a", "b"]

    def test_nested_values_are_converted(self):
        merged = merge_configs(
            SecurityConfig(),
            {
                "commands": {"customRiskLevels": {"NPM Install": "high"}},
                "confirmation": {
                    "customPolicies": [{"type": "command", "pattern": "make *", "action": "approve"}]
                },
                "logging": {"rotation": {"enabled": True, "maxFiles": 3}},
            },
        )
        assert merged.commands.custom_risk_levels == {"npm install": "high"}
        assert merged.confirmation.custom_policies == [
            CustomPolicy(type="command", pattern="make *", action="approve")
        ]
        assert merged.logging.rotation.max_files == 3
        assert merged.logging.rotation.max_age == 30

    def test_unknown_keys_ignored(self):
        merged = merge_configs(SecurityConfig(), {"extra": 1, "commands": {"bogus": True}})
        assert merged == SecurityConfig()

    def test_wrong_section_shape(self):
        with pytest.raises(ValueError):
            merge_configs(SecurityConfig(), {"commands": ["not", "an", "object"]})

    def test_from_dict_round_trips(self):
        config = SecurityConfig.from_dict(
            {
                "mode": "strict",
                "filesystem": {"autoBackup": True, "backupDirectory": ".bak"},
                "platformOverrides": {"linux": {"mode": "permissive"}},
            }
        )
        assert SecurityConfig.from_dict(config.to_dict()) == config


class TestEnvironmentOverrides:
    def test_no_variables(self):
        assert load_env_overrides() == {}

    def test_all_variables(self, monkeypatch):
        monkeypatch.setenv("MCP_SECURITY_ENABLED", "false")
        monkeypatch.setenv("MCP_SECURITY_MODE", "strict")
        monkeypatch.setenv("MCP_SECURITY_CONFIRMATION", "policy")
        monkeypatch.setenv("MCP_SECURITY_AUTO_APPROVE_DEV", "true")
        monkeypatch.setenv("MCP_SECURITY_LOG_PATH", "/var/log/guard.log")

        assert load_env_overrides() == {
            "enabled": False,
            "mode": "strict",
            "confirmation": {"strategy": "policy", "autoApproveInDev": True},
            "logging": {"logPath": "/var/log/guard.log"},
        }

    def test_enabled_only_true_literal(self, monkeypatch):
        monkeypatch.setenv("MCP_SECURITY_ENABLED", "TRUE")
        assert load_env_overrides() == {"enabled": False}


class TestPlatformOverrides:
    def test_applies_matching_platform(self):
        config = SecurityConfig.from_dict(
            {
                "platformOverrides": {
                    "darwin": {"filesystem": {"additionalBlockedPaths": ["/System"]}},
                    "win32": {"commands": {"additionalBlocked": ["diskpart"]}},
                }
            }
        )
        darwin = apply_platform_overrides(config, Platform.DARWIN)
        assert darwin.filesystem.additional_blocked_paths == ["/System"]
        assert darwin.commands.additional_blocked == []

        linux = apply_platform_overrides(config, Platform.LINUX)
        assert linux is config


class TestValidation:
    @pytest.mark.parametrize(
        "data,key",
        [
            ({"mode": "paranoid"}, "mode"),
            ({"confirmation": {"strategy": "magic"}}, "confirmation.strategy"),
            ({"commands": {"defaultTimeout": -1}}, "commands.defaultTimeout"),
            ({"confirmation": {"timeout": "soon"}}, "confirmation.timeout"),
            ({"commands": {"customRiskLevels": {"make": "extreme"}}}, "commands.customRiskLevels"),
            ({"confirmation": {"requireConfirmationFor": ["urgent"]}}, "confirmation.requireConfirmationFor"),
            (
                {"confirmation": {"customPolicies": [{"type": "command", "pattern": "*", "action": "maybe"}]}},
                "confirmation.customPolicies",
            ),
            ({"commands": {"maxCommandLength": "100"}}, "commands.maxCommandLength"),
            ({"commands": {"additionalBlocked": "terraform"}}, "commands.additionalBlocked"),
            ({"commands": {"unblock": [1, 2]}}, "commands.unblock"),
            ({"filesystem": {"additionalAllowedPaths": "/tmp"}}, "filesystem.additionalAllowedPaths"),
            ({"filesystem": {"maxFileSize": 0}}, "filesystem.maxFileSize"),
            ({"filesystem": {"allowOutsideProject": "yes"}}, "filesystem.allowOutsideProject"),
            ({"logging": {"maxLogSize": 1.5}}, "logging.maxLogSize"),
            ({"logging": {"rotation": {"maxFiles": "ten"}}}, "logging.rotation.maxFiles"),
            ({"enabled": "false"}, "enabled"),
            ({"commands": {"customRiskLevels": {"make": ["high"]}}}, "commands.customRiskLevels"),
        ],
    )
    def test_invalid_values(self, data, key):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(SecurityConfig.from_dict(data))
        assert exc_info.value.key == key

    def test_defaults_are_valid(self):
        validate_config(SecurityConfig())


class TestLoader:
    def test_no_file_gives_defaults(self, project):
        loader = SecurityConfigLoader(cwd=project, platform=Platform.LINUX)
        assert loader.load() == SecurityConfig()
        assert loader.config_path is None

    def test_discovery_order(self, project):
        write_config(project / ".config" / "mcp-security.json", {"mode": "permissive"})
        write_config(project / ".mcp-security.json", {"mode": "strict"})

        loader = SecurityConfigLoader(cwd=project, platform=Platform.LINUX)
        assert loader.load().mode == "strict"
        assert loader.config_path.name == ".mcp-security.json"

    def test_home_config_is_last_resort(self, project, tmp_path):
        write_config(tmp_path / "home" / ".mcp-security.json", {"mode": "strict"})
        assert SecurityConfigLoader(cwd=project, platform=Platform.LINUX).load().mode == "strict"

    def test_malformed_file_falls_back_to_defaults(self, project):
        (project / "mcp-security.json").write_text("{not json", encoding="utf-8")
        loader = SecurityConfigLoader(cwd=project, platform=Platform.LINUX)
        assert loader.load() == SecurityConfig()

    def test_missing_explicit_file_falls_back_to_defaults(self, project):
        loader = SecurityConfigLoader(config_path=project / "nope.json", platform=Platform.LINUX)
        assert loader.load() == SecurityConfig()

    def test_env_beats_file_and_platform_beats_env(self, project, monkeypatch):
        write_config(
            project / "mcp-security.json",
            {
                "mode": "permissive",
                "confirmation": {"strategy": "logging"},
                "platformOverrides": {"linux": {"confirmation": {"strategy": "none"}}},
            },
        )
        monkeypatch.setenv("MCP_SECURITY_MODE", "strict")
        monkeypatch.setenv("MCP_SECURITY_CONFIRMATION", "policy")

        config = SecurityConfigLoader(cwd=project, platform=Platform.LINUX).load()

        assert config.mode == "strict"
        assert config.confirmation.strategy == "none"

    def test_invalid_merged_config_raises(self, project):
        write_config(project / "mcp-security.json", {"mode": "paranoid"})
        with pytest.raises(ConfigurationError):
            SecurityConfigLoader(cwd=project, platform=Platform.LINUX).load()

    def test_mistyped_field_raises_instead_of_reaching_the_guard(self, project):
        write_config(project / "mcp-security.json", {"commands": {"maxCommandLength": "100"}})
        with pytest.raises(ConfigurationError) as exc_info:
            SecurityConfigLoader(cwd=project, platform=Platform.LINUX).load()
        assert exc_info.value.key == "commands.maxCommandLength"

    @pytest.mark.parametrize("block", ["oops", {"commands": "oops"}, {"logging": {"rotation": 3}}])
    def test_malformed_platform_override_falls_back_to_defaults(self, project, block):
        write_config(
            project / "mcp-security.json",
            {"mode": "strict", "platformOverrides": {"linux": block}},
        )
        loader = SecurityConfigLoader(cwd=project, platform=Platform.LINUX)
        assert loader.load() == SecurityConfig()

    def test_malformed_override_for_other_platform_still_rejected(self, project):
        write_config(
            project / "mcp-security.json",
            {"mode": "strict", "platformOverrides": {"win32": {"filesystem": ["C:\\"]}}},
        )
        assert SecurityConfigLoader(cwd=project, platform=Platform.LINUX).load() == SecurityConfig()

    def test_get_config_returns_last_load(self, project):
        write_config(project / "mcp-security.json", {"mode": "strict"})
        loader = SecurityConfigLoader(cwd=project, platform=Platform.LINUX)
        assert loader.get_config().mode == "moderate"
        loader.load()
        assert loader.get_config().mode == "strict"

    def test_save_then_load(self, project):
        loader = SecurityConfigLoader(cwd=project, platform=Platform.LINUX)
        config = SecurityConfig.from_dict({"mode": "strict", "commands": {"unblock": ["systemctl"]}})

        path = loader.save(config)

        assert path == project / "config" / "mcp-security.json"
        assert not list(path.parent.glob("*.tmp"))
        assert load_config(cwd=project) == config

    def test_save_failure_raises(self, project):
        (project / "blocker").write_text("file", encoding="utf-8")
        loader = SecurityConfigLoader(cwd=project)
        with pytest.raises(ConfigurationError) as exc_info:
            loader.save(SecurityConfig(), project / "blocker" / "config.json")
        assert exc_info.value.reason == "write_failed"


class TestExampleConfig:
    def test_example_is_valid_and_loadable(self, project):
        path = create_example_config(cwd=project)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["confirmation"]["customPolicies"][0] == {
            "type": "command",
            "pattern": "npm test",
            "action": "approve",
        }

        config = SecurityConfigLoader(config_path=path, platform=Platform.WIN32).load()
        assert config.commands.additional_blocked == ["format", "diskpart"]
        assert config.logging.rotation.max_files == 10
