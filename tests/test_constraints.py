"""Tests for dependency and constraint validation."""

import json

import pytest

from common.errors import BackendError, DependencyError
from constants import ValidateChanges
from cookbook.constraints import (
    DependencyValidator,
    parse_cookbook_versions,
    parse_run_lists,
    validate_constraints,
)


def frozen_lookup(frozen):
    """is_frozen callable backed by a set of (name, version) pairs."""
    return lambda name, version: (name, version) in frozen


class TestParsing:
    """Constraint parsing."""

    def test_exact_versions(self):
        parsed = parse_cookbook_versions({"a": "1.2.3", "b": "= 0.1.0"})
        assert parsed == {"a": ["1.2.3"], "b": ["0.1.0"]}

    def test_loose_versions_are_marked(self):
        parsed = parse_cookbook_versions({"a": "~> 1.2", "b": ">= 0.0.0"})
        assert parsed == {"a": ["BAD~> 1.2"], "b": ["BAD>= 0.0.0"]}

    def test_run_list_pins(self):
        parsed = parse_run_lists([
            "recipe[apache@1.0.0]",
            "recipe[apache::mod_ssl@1.0.0]",
            "recipe[mysql]",
            "role[web]",
            "recipe[nginx@2.0.1]",
        ])
        assert parsed == {"apache": ["1.0.0"], "nginx": ["2.0.1"]}


class TestDependencyValidator:
    """Frozen checks against the Chef server."""

    def test_all_frozen(self):
        validator = DependencyValidator(frozen_lookup({("bar", "1.0.0")}))
        validator.check_dependencies({"bar": "1.0.0"})

    def test_unfrozen_dependency(self):
        validator = DependencyValidator(frozen_lookup(set()))
        with pytest.raises(DependencyError) as excinfo:
            validator.check_dependencies({"bar": "2.0.0"})
        assert excinfo.value.status == 412
        assert "bar version 2.0.0 needs to be frozen" in excinfo.value.message
        assert "=== Dependency errors found ===" in excinfo.value.message

    def test_loose_dependency_is_tolerated(self):
        validator = DependencyValidator(frozen_lookup(set()))
        validator.check_dependencies({"bar": "~> 2.0", "baz": ">= 0.0.0"})

    def test_unconstrained_versions_are_skipped(self):
        validator = DependencyValidator(frozen_lookup(set()))
        assert validator.check({"bar": ["0.0.0"]}, strict=True) == []

    def test_failures_are_sorted_by_name(self):
        validator = DependencyValidator(frozen_lookup(set()))
        failures = validator.check({"zeta": ["1.0.0"], "alpha": ["1.0.0"]}, strict=False)
        assert failures == [
            "alpha version 1.0.0 needs to be frozen",
            "zeta version 1.0.0 needs to be frozen",
        ]

    def test_lookup_errors_propagate(self):
        def broken(name, version):
            raise BackendError("chef down")

        with pytest.raises(BackendError):
            DependencyValidator(broken).check_dependencies({"bar": "1.0.0"})


class TestValidateConstraints:
    """Environment and role bodies."""

    def test_environment_loose_constraint(self):
        body = json.dumps({"cookbook_versions": {"apache": "~> 1.0"}}).encode()
        validator = DependencyValidator(frozen_lookup(set()))
        with pytest.raises(DependencyError) as excinfo:
            validate_constraints(body, validator, ValidateChanges.ENFORCED.value)
        message = excinfo.value.message
        assert "constraint '~> 1.0' for apache needs to be more specific (= x.x.x)" in message
        assert "=== Cookbook Constraints errors found ===" in message

    def test_permissive_header(self):
        body = json.dumps({"cookbook_versions": {"apache": "1.0.0"}}).encode()
        validator = DependencyValidator(frozen_lookup(set()))
        with pytest.raises(DependencyError) as excinfo:
            validate_constraints(body, validator, ValidateChanges.PERMISSIVE.value)
        assert "RUNNNING PERMISSIVE MODE: CHANGES ARE SAVED" in excinfo.value.message

    def test_role_run_lists(self):
        body = json.dumps({
            "run_list": ["recipe[apache@1.0.0]"],
            "env_run_lists": {"prod": ["recipe[nginx@2.0.0]"]},
        }).encode()
        validator = DependencyValidator(frozen_lookup({("apache", "1.0.0")}))
        with pytest.raises(DependencyError) as excinfo:
            validate_constraints(body, validator)
        assert "nginx version 2.0.0 needs to be frozen" in excinfo.value.message
        assert "apache" not in excinfo.value.message

    def test_valid_body(self):
        body = json.dumps({
            "cookbook_versions": {"apache": "= 1.0.0"},
            "run_list": ["recipe[apache@1.0.0]", "recipe[base]"],
        }).encode()
        validator = DependencyValidator(frozen_lookup({("apache", "1.0.0")}))
        validate_constraints(body, validator)

    def test_empty_body(self):
        validate_constraints(b"", DependencyValidator(frozen_lookup(set())))

    def test_malformed_body(self):
        with pytest.raises(BackendError, match="Failed to unmarshal body"):
            validate_constraints(b"{not json", DependencyValidator(frozen_lookup(set())))
