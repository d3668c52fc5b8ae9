"""Tests for the guard/confirmation/registry factories."""

import pytest

from toolguard.core.config import SecurityConfig
from toolguard.core.exceptions import ConfigurationError
from toolguard.core.factory import (
    create_confirmation_manager,
    create_confirmation_strategy,
    create_guard,
    create_tool_registry,
)
from toolguard.core.types import Platform
from toolguard.security.confirmation import (
    InteractiveConfirmationStrategy,
    LoggingConfirmationStrategy,
    PolicyConfirmationStrategy,
)


def config_with(**confirmation):
    return SecurityConfig.from_dict({"confirmation": confirmation})


class TestCreateGuard:
    def test_guard_uses_config(self, tmp_path):
        config = SecurityConfig.from_dict(
            {
                "commands": {"additionalBlocked": ["terraform"]},
                "filesystem": {"additionalAllowedPaths": [str(tmp_path / "shared")]},
            }
        )
        guard = create_guard(config, tmp_path / "project", platform=Platform.LINUX)

        assert guard.project_root == (tmp_path / "project").resolve()
        assert str(tmp_path / "shared") in guard.allowed_paths
        assert guard.validate_command("terraform destroy").allowed is False


class TestCreateConfirmationStrategy:
    def test_interactive_is_default(self):
        assert isinstance(create_confirmation_strategy(SecurityConfig()), InteractiveConfirmationStrategy)

    def test_policy(self, tmp_path):
        strategy = create_confirmation_strategy(
            config_with(
                strategy="policy",
                autoApproveInDev=True,
                customPolicies=[{"type": "command", "pattern": "make *", "action": "approve"}],
            ),
            project_root=tmp_path,
        )
        assert isinstance(strategy, PolicyConfirmationStrategy)
        assert strategy.development is True
        assert strategy.project_root == tmp_path.resolve()
        assert strategy.custom_policies[0].pattern == "make *"

    def test_logging(self):
        strategy = create_confirmation_strategy(config_with(strategy="logging", autoApprove=True))
        assert isinstance(strategy, LoggingConfirmationStrategy)
        assert strategy.auto_approve is True

    def test_none_approves_everything(self):
        strategy = create_confirmation_strategy(config_with(strategy="none"))
        assert isinstance(strategy, LoggingConfirmationStrategy)
        assert strategy.auto_approve is True

    def test_unknown_strategy(self):
        config = SecurityConfig()
        config.confirmation.strategy = "telepathy"
        with pytest.raises(ConfigurationError) as exc_info:
            create_confirmation_strategy(config)
        assert exc_info.value.key == "confirmation.strategy"


class TestCreateConfirmationManager:
    def test_explicit_strategy_wins(self):
        strategy = LoggingConfirmationStrategy()
        manager = create_confirmation_manager(config_with(strategy="policy"), strategy=strategy)
        assert manager.strategy is strategy

    def test_strategy_from_config(self):
        manager = create_confirmation_manager(config_with(strategy="policy"))
        assert isinstance(manager.strategy, PolicyConfirmationStrategy)


class TestCreateToolRegistry:
    def test_builtin_tools_by_default(self, tmp_path):
        registry = create_tool_registry(SecurityConfig(), tmp_path, platform=Platform.LINUX)

        assert registry.list_tools() == ["shell_execute", "file_read", "file_write", "file_delete"]
        assert registry.guard.project_root == tmp_path.resolve()
        assert registry.event_bus is registry.confirmation_manager.event_bus

    def test_explicit_tool_list(self, tmp_path):
        registry = create_tool_registry(SecurityConfig(), tmp_path, tools=[], platform=Platform.LINUX)
        assert registry.list_tools() == []

    def test_strategy_override(self, tmp_path):
        strategy = LoggingConfirmationStrategy(auto_approve=True)
        registry = create_tool_registry(
            config_with(strategy="interactive"), tmp_path, strategy=strategy, platform=Platform.LINUX
        )
        assert registry.confirmation_manager.strategy is strategy
