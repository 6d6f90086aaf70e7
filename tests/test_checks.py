"""Tests for the external lint checks."""

import subprocess
from unittest.mock import patch

import pytest

from common.errors import CheckExecutionError, CheckFailedError
from cookbook.checks import CheckRunner
from settings import parse_config


def completed(returncode, stdout=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout)


CONFIG = {
    "default": {"exclude_fcs": "FC001", "include_fcs": "/rules"},
    "customer": {"acme": {"exclude_fcs": "FC002"}},
    "tests": {"foodcritic": "/usr/bin/foodcritic", "rubocop": "/usr/bin/rubocop"},
}


class TestCheckRunner:
    """Foodcritic and rubocop."""

    def test_enabled_checks(self):
        assert CheckRunner(parse_config(CONFIG)).enabled_checks() == ["foodcritic", "rubocop"]
        assert CheckRunner(parse_config({})).enabled_checks() == []

    def test_foodcritic_args(self):
        args = CheckRunner(parse_config(CONFIG), "acme").foodcritic_args("/tmp/cb")
        assert args == [
            "--tags", "~FC001,~FC002",
            "--include", "/rules",
            "--no-progress", "--cookbook-path", "/tmp/cb",
        ]

    @pytest.mark.parametrize("returncode,stdout", [(3, "FC001: /tmp/cb/recipes/default.rb:1"),
                                                   (0, "FC001: /tmp/cb/recipes/default.rb:1")])
    def test_foodcritic_findings(self, returncode, stdout):
        with patch("cookbook.checks.subprocess.run", return_value=completed(returncode, stdout)):
            with pytest.raises(CheckFailedError) as excinfo:
                CheckRunner(parse_config(CONFIG)).run("foodcritic", "/tmp/cb")
        assert "=== Foodcritic errors found ===" in excinfo.value.message
        assert "FC001: recipes/default.rb:1" in excinfo.value.message

    def test_foodcritic_clean(self):
        with patch("cookbook.checks.subprocess.run", return_value=completed(0, "")):
            CheckRunner(parse_config(CONFIG)).run("foodcritic", "/tmp/cb")

    def test_foodcritic_crash(self):
        with patch("cookbook.checks.subprocess.run", return_value=completed(1, "boom")):
            with pytest.raises(CheckExecutionError) as excinfo:
                CheckRunner(parse_config(CONFIG)).run("foodcritic", "/tmp/cb")
        assert excinfo.value.status == 500

    def test_rubocop_offenses(self):
        output = "/tmp/cb/recipes/default.rb:1:1: C: offense\n1 file inspected, 1 offense detected"
        with patch("cookbook.checks.subprocess.run", return_value=completed(1, output)):
            with pytest.raises(CheckFailedError, match="Rubocop errors found"):
                CheckRunner(parse_config(CONFIG)).run("rubocop", "/tmp/cb")

    def test_rubocop_not_runnable(self):
        with patch("cookbook.checks.subprocess.run", side_effect=FileNotFoundError("no rubocop")):
            with pytest.raises(CheckExecutionError, match="Failed to execute"):
                CheckRunner(parse_config(CONFIG)).run("rubocop", "/tmp/cb")

    def test_unknown_check(self):
        with pytest.raises(CheckExecutionError):
            CheckRunner(parse_config(CONFIG)).run("reek", "/tmp/cb")
