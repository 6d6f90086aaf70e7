"""External lint checks run against cookbooks that come straight from git."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import List

from constants import Constants
from common.errors import CheckExecutionError, CheckFailedError
from settings import GuardConfig, OptionKey

logger = logging.getLogger(__name__)

FOODCRITIC = "foodcritic"
RUBOCOP = "rubocop"


def _strip_path(output: str, cookbook_path: str) -> str:
    return output.replace(f"{cookbook_path}/", "").strip()


def _findings(check: str, output: str) -> CheckFailedError:
    title = check.capitalize()
    line = "=" * (len(title) + 21)
    return CheckFailedError(f"\n=== {title} errors found ===\n{output}\n{line}\n")


class CheckRunner:
    """Runs the lint executables configured in the ``tests`` section.

    Findings raise ``CheckFailedError`` (412, may be bypassed); an executable
    that cannot be run properly raises ``CheckExecutionError`` (500, never
    bypassed).
    """

    def __init__(self, config: GuardConfig, org: str = ""):
        self._config = config
        self._org = org

    def enabled_checks(self) -> List[str]:
        checks = []
        if self._config.tests.foodcritic:
            checks.append(FOODCRITIC)
        if self._config.tests.rubocop:
            checks.append(RUBOCOP)
        return checks

    def run(self, check: str, cookbook_path: str) -> None:
        if check == FOODCRITIC:
            self.run_foodcritic(cookbook_path)
        elif check == RUBOCOP:
            self.run_rubocop(cookbook_path)
        else:
            raise CheckExecutionError(f"Unknown check: {check}")

    def foodcritic_args(self, cookbook_path: str) -> List[str]:
        args = []
        excludes = self._config.effective_list(OptionKey.EXCLUDE_FCS, self._org)
        if excludes:
            args += ["--tags", ",".join(f"~{rule}" for rule in excludes)]
        if self._config.default.include_fcs:
            args += ["--include", self._config.default.include_fcs]
        return args + ["--no-progress", "--cookbook-path", cookbook_path]

    def _execute(self, cmd: List[str], env) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=Constants.CHECK_TIMEOUT_SEC,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise CheckExecutionError(f"Failed to execute \"{' '.join(cmd)}\": {exc}") from exc

    def run_foodcritic(self, cookbook_path: str) -> None:
        cmd = [self._config.tests.foodcritic] + self.foodcritic_args(cookbook_path)
        env = dict(os.environ, RUBY_THREAD_VM_STACK_SIZE="2097152")
        result = self._execute(cmd, env)
        output = result.stdout or ""
        # Older releases exit with 3 on findings, newer ones only print them.
        if result.returncode == 3 or (result.returncode == 0 and output.strip()):
            raise _findings(FOODCRITIC, _strip_path(output, cookbook_path))
        if result.returncode != 0:
            raise CheckExecutionError(
                f"Failed to execute \"{' '.join(cmd)}\": {output} - exit status {result.returncode}"
            )

    def run_rubocop(self, cookbook_path: str) -> None:
        cmd = [self._config.tests.rubocop, cookbook_path]
        result = self._execute(cmd, {"HOME": self._config.default.tempdir})
        if result.returncode == 0:
            return
        output = result.stdout or ""
        if "offense" in output:
            raise _findings(RUBOCOP, _strip_path(output, cookbook_path))
        raise CheckExecutionError(
            f"Failed to execute \"rubocop {cookbook_path}\": {output} - exit status {result.returncode}"
        )
