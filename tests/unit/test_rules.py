"""Tests for built-in rule tables and term matching."""

import pytest

from toolguard.core.types import Platform
from toolguard.security.rules import (
    BLOCKED_PATHS,
    OS_COMMAND_RULES,
    SAFE_COMMANDS,
    SENSITIVE_PATHS,
    compile_term,
)


class TestCompileTerm:
    @pytest.mark.parametrize(
        "term,text",
        [
            ("su", "su -"),
            ("su", "echo hi; su root"),
            ("rm -rf", "rm -rfv build"),
            ("newfs_*", "newfs_hfs /dev/disk2"),
            ("> /dev/null", "cat x > /dev/null"),
            ("update-rc.d", "update-rc.d nginx defaults"),
        ],
    )
    def test_matches(self, term, text):
        assert compile_term(term).search(text)

    @pytest.mark.parametrize(
        "term,text",
        [
            ("su", "result"),
            ("su", "summary.txt"),
            ("reg", "regedit"),
            ("dd", "add-user"),
            ("halt", "asphalt"),
            ("at", "cat file"),
        ],
    )
    def test_does_not_match_inside_words(self, term, text):
        assert compile_term(term).search(text) is None


class TestTables:
    def test_every_platform_has_rules(self):
        for platform in Platform:
            assert OS_COMMAND_RULES[platform].blocked
            assert OS_COMMAND_RULES[platform].restricted
            assert BLOCKED_PATHS[platform]
            assert SENSITIVE_PATHS[platform]

    def test_package_managers_are_not_safe(self):
        assert {"npm", "yarn", "pnpm"}.isdisjoint(SAFE_COMMANDS)

    def test_unknown_platform_maps_to_linux(self):
        assert Platform.from_identifier("freebsd14") is Platform.LINUX
        assert Platform.from_identifier("darwin") is Platform.DARWIN
        assert Platform.from_identifier("cygwin") is Platform.WIN32
