"""Dependency and version constraint validation.

Every cookbook a frozen cookbook, environment or role depends on must be
pinned to an exact version (``x.y.z`` or ``= x.y.z``) that is itself frozen
on the Chef server.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from constants import Constants, ValidateChanges
from common.errors import BackendError, DependencyError

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"^(?:= )?(\d+\.\d+\.\d+)$")
RUN_LIST_PATTERN = re.compile(r"^.*\[(\w+).*@(\d+\.\d+\.\d+)\]$")

ConstraintSet = Dict[str, List[str]]


def parse_cookbook_versions(constraints: Mapping[str, str]) -> ConstraintSet:
    """Parse ``{name: constraint}``; loose constraints become ``BAD<constraint>``."""
    result: ConstraintSet = {}
    for name, constraint in constraints.items():
        match = VERSION_PATTERN.match(constraint or "")
        if match:
            result[name] = [match.group(1)]
        else:
            result[name] = [f"{Constants.MALFORMED_PREFIX}{constraint}"]
    return result


def parse_run_lists(run_list: Iterable[str]) -> ConstraintSet:
    """Collect the pinned versions of ``recipe[name@x.y.z]`` style entries.

    Entries without a version pin are unconstrained and skipped.
    """
    result: ConstraintSet = {}
    for entry in run_list:
        match = RUN_LIST_PATTERN.match(entry)
        if not match:
            continue
        name, version = match.group(1), match.group(2)
        versions = result.setdefault(name, [])
        if version not in versions:
            versions.append(version)
    return result


def format_failures(failures: List[str]) -> str:
    return " - " + "\n - ".join(failures)


class DependencyValidator:
    """Checks a constraint set against the frozen state on the Chef server.

    Args:
        is_frozen: Callable ``(name, version) -> bool``; unknown versions are
            reported as not frozen.
    """

    def __init__(self, is_frozen: Callable[[str, str], bool]):
        self._is_frozen = is_frozen

    def check(self, constraints: ConstraintSet, strict: bool) -> List[str]:
        """Return every failure found, ordered by cookbook name.

        Malformed constraints only count as failures when ``strict`` is set.

        Raises:
            BackendError: When the frozen state cannot be looked up.
        """
        failures: List[str] = []
        for name in sorted(constraints):
            for version in constraints[name]:
                if version in Constants.UNCONSTRAINED_VERSIONS:
                    continue
                if version.startswith(Constants.MALFORMED_PREFIX):
                    if strict:
                        raw = version[len(Constants.MALFORMED_PREFIX):]
                        failures.append(
                            f"constraint '{raw}' for {name} needs to be more specific (= x.x.x)"
                        )
                    continue
                if not self._is_frozen(name, version):
                    failures.append(f"{name} version {version} needs to be frozen")
        return failures

    def check_dependencies(self, dependencies: Mapping[str, str]) -> None:
        """Validate the metadata dependencies of an uploaded cookbook.

        Raises:
            DependencyError: When a dependency is not frozen.
        """
        failures = self.check(parse_cookbook_versions(dependencies), strict=False)
        if failures:
            raise DependencyError(
                "\n=== Dependency errors found ===\n"
                f"{format_failures(failures)}\n"
                "=================================\n"
            )


def _constraints_error(failures: List[str], mode: str) -> DependencyError:
    if mode == ValidateChanges.PERMISSIVE.value:
        return DependencyError(
            "\n==== Cookbook Constraints errors found ====\n"
            "RUNNNING PERMISSIVE MODE: CHANGES ARE SAVED\n"
            f"\n{format_failures(failures)}\n"
            "===========================================\n"
        )
    return DependencyError(
        "\n=== Cookbook Constraints errors found ===\n"
        f"{format_failures(failures)}\n"
        "=========================================\n"
    )


def validate_constraints(body: bytes, validator: DependencyValidator,
                         mode: Optional[str] = None) -> None:
    """Strictly validate the constraints of an environment or role body.

    Reads ``cookbook_versions`` (environments) and ``run_list`` plus every
    ``env_run_lists`` entry (roles). ``mode`` selects the report header.

    Raises:
        DependencyError: On unfrozen or loosely pinned cookbooks.
        BackendError: When the body cannot be parsed or a lookup fails.
    """
    try:
        data: Any = json.loads(body or b"{}")
    except ValueError as exc:
        raise BackendError(f"Failed to unmarshal body {body!r}: {exc}") from exc
    if not isinstance(data, dict):
        return

    cookbook_versions = data.get("cookbook_versions")
    if cookbook_versions:
        failures = validator.check(parse_cookbook_versions(cookbook_versions), strict=True)
        if failures:
            raise _constraints_error(failures, mode)

    run_list = list(data.get("run_list") or [])
    for env_run_list in (data.get("env_run_lists") or {}).values():
        run_list.extend(env_run_list or [])
    if run_list:
        failures = validator.check(parse_run_lists(run_list), strict=True)
        if failures:
            raise _constraints_error(failures, mode)
