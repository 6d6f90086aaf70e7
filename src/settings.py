"""Configuration loading, validation and per-organization resolution.

The configuration is a YAML document validated against a JSON schema. It is
loaded into an immutable ``GuardConfig``; ``ConfigHolder`` swaps complete
instances so a reload never exposes a half-updated configuration.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import yaml
from jsonschema import Draft7Validator

from constants import Constants, ValidateChanges

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the configuration file cannot be loaded or is invalid."""


class OptionKey(Enum):
    """Options an organization may override in its ``customer`` section."""

    MODE = "mode"
    MAIL_DOMAIN = "mail_domain"
    MAIL_SERVER = "mail_server"
    MAIL_PORT = "mail_port"
    MAIL_RECIPIENT = "mail_recipient"
    MAIL_SEND_BY = "mail_send_by"
    VALIDATE_CHANGES = "validate_changes"
    COMMIT_CHANGES = "commit_changes"
    MAIL_CHANGES = "mail_changes"
    SEARCH_GIT = "search_git"
    PUBLISH_COOKBOOK = "publish_cookbook"
    BLACKLIST = "blacklist"
    GIT_COOKBOOK_ORGS = "git_cookbook_orgs"
    EXCLUDE_FCS = "exclude_fcs"


# Options whose override is appended to the default instead of replacing it.
LIST_OPTIONS = (OptionKey.BLACKLIST, OptionKey.GIT_COOKBOOK_ORGS, OptionKey.EXCLUDE_FCS)


@dataclass(frozen=True)
class DefaultSettings:
    """The ``default`` section."""

    listen: str = "127.0.0.1"
    port: int = 8443
    tempdir: str = "/tmp/chefgate"
    mode: str = "permissive"
    mail_domain: str = "example.com"
    mail_server: str = "localhost"
    mail_port: int = 25
    mail_recipient: str = ""
    mail_send_by: str = ""
    validate_changes: str = ValidateChanges.DISABLED.value
    commit_changes: bool = False
    mail_changes: bool = False
    search_git: bool = False
    publish_cookbook: bool = False
    blacklist: str = ""
    git_organization: str = ""
    git_cookbook_orgs: str = ""
    include_fcs: str = ""
    exclude_fcs: str = ""
    max_files: int = Constants.MAX_BUNDLE_FILES
    max_bytes: int = Constants.MAX_BUNDLE_BYTES


@dataclass(frozen=True)
class ChefSettings:
    """The ``chef`` section: the Chef server being guarded."""

    type: str = "enterprise"
    server: str = "localhost"
    port: str = "443"
    ssl_no_verify: bool = False
    erchef_ip: str = "127.0.0.1"
    erchef_port: int = 8000
    bookshelf_key: str = ""
    bookshelf_secret: str = ""
    version: int = 12
    user: str = "chefgate"
    key: str = ""

    @property
    def base_url(self) -> str:
        """Public base URL of the Chef server."""
        return build_base_url(self.server, self.port)

    @property
    def erchef_url(self) -> str:
        """URL of the Erchef API the proxy forwards to."""
        return f"http://{self.erchef_ip}:{self.erchef_port}"

    @property
    def multi_tenant(self) -> bool:
        """True when request paths are prefixed with ``/organizations/<org>``."""
        return self.type == "enterprise" or self.version > 11


@dataclass(frozen=True)
class CommunitySettings:
    """The ``community`` section: the public Supermarket and fork location."""

    supermarket: str = Constants.COMMUNITY_SUPERMARKET
    forks: str = ""


@dataclass(frozen=True)
class SupermarketSettings:
    """The ``supermarket`` section: the organization-private Supermarket."""

    server: str = ""
    port: str = "443"
    ssl_no_verify: bool = False
    user: str = ""
    key: str = ""

    @property
    def base_url(self) -> str:
        """Base URL of the private Supermarket."""
        return build_base_url(self.server, self.port)


@dataclass(frozen=True)
class TestsSettings:
    """The ``tests`` section: external lint executables."""

    __test__ = False

    foodcritic: str = ""
    rubocop: str = ""


@dataclass(frozen=True)
class GitSettings:
    """One entry of the ``git`` section."""

    type: str = "github"
    server_url: str = ""
    ssl_no_verify: bool = False
    token: str = ""


@dataclass(frozen=True)
class GuardConfig:
    """Complete, validated configuration."""

    default: DefaultSettings = field(default_factory=DefaultSettings)
    customer: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    chef: ChefSettings = field(default_factory=ChefSettings)
    community: CommunitySettings = field(default_factory=CommunitySettings)
    supermarket: SupermarketSettings = field(default_factory=SupermarketSettings)
    tests: TestsSettings = field(default_factory=TestsSettings)
    git: Mapping[str, GitSettings] = field(default_factory=dict)
    chef_clients_path: str = ""

    def effective(self, key: OptionKey, org: Optional[str]) -> Any:
        """Return the organization's override for ``key``, else the default."""
        if org:
            override = self.customer.get(org, {})
            if key.value in override:
                return override[key.value]
        return getattr(self.default, key.value)

    def effective_list(self, key: OptionKey, org: Optional[str]) -> List[str]:
        """Return the default list for ``key`` extended with the org's override.

        Lists are comma separated strings; empty items are dropped and order
        is preserved (defaults first).
        """
        values = _split_list(getattr(self.default, key.value))
        if org:
            for item in _split_list(self.customer.get(org, {}).get(key.value, "")):
                if item not in values:
                    values.append(item)
        return values


def build_base_url(server: str, port: str) -> str:
    """Build a base URL the way the Chef tooling does from server and port."""
    port = str(port or "")
    if port == "443":
        return f"https://{server}"
    if port in ("80", ""):
        return f"http://{server}"
    return f"http://{server}:{port}"


def _split_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


_OVERRIDE_PROPERTIES = {
    "mode": {"type": "string", "enum": ["silent", "permissive", "enforced"]},
    "mail_domain": {"type": "string"},
    "mail_server": {"type": "string"},
    "mail_port": {"type": "integer"},
    "mail_recipient": {"type": "string"},
    "mail_send_by": {"type": "string"},
    "validate_changes": {"type": "string", "enum": [m.value for m in ValidateChanges]},
    "commit_changes": {"type": "boolean"},
    "mail_changes": {"type": "boolean"},
    "search_git": {"type": "boolean"},
    "publish_cookbook": {"type": "boolean"},
    "blacklist": {"type": "string"},
    "git_cookbook_orgs": {"type": "string"},
    "exclude_fcs": {"type": "string"},
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "default": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                **_OVERRIDE_PROPERTIES,
                "listen": {"type": "string"},
                "port": {"type": "integer"},
                "tempdir": {"type": "string"},
                "git_organization": {"type": "string"},
                "include_fcs": {"type": "string"},
                "max_files": {"type": "integer", "minimum": 1},
                "max_bytes": {"type": "integer", "minimum": 1},
            },
        },
        "customer": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "additionalProperties": False,
                "properties": _OVERRIDE_PROPERTIES,
            },
        },
        "chef": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "type": {"type": "string", "enum": ["enterprise", "open_source", "goiardi"]},
                "server": {"type": "string"},
                "port": {"type": ["string", "integer"]},
                "ssl_no_verify": {"type": "boolean"},
                "erchef_ip": {"type": "string"},
                "erchef_port": {"type": "integer"},
                "bookshelf_key": {"type": "string"},
                "bookshelf_secret": {"type": "string"},
                "version": {"type": "integer"},
                "user": {"type": "string"},
                "key": {"type": "string"},
            },
        },
        "community": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "supermarket": {"type": "string"},
                "forks": {"type": "string"},
            },
        },
        "supermarket": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "server": {"type": "string"},
                "port": {"type": ["string", "integer"]},
                "ssl_no_verify": {"type": "boolean"},
                "user": {"type": "string"},
                "key": {"type": "string"},
            },
        },
        "tests": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "foodcritic": {"type": "string"},
                "rubocop": {"type": "string"},
            },
        },
        "git": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "additionalProperties": False,
                "required": ["token"],
                "properties": {
                    "type": {"type": "string", "enum": ["github", "gitlab"]},
                    "server_url": {"type": "string"},
                    "ssl_no_verify": {"type": "boolean"},
                    "token": {"type": "string"},
                },
            },
        },
        "chef_clients": {
            "type": "object",
            "additionalProperties": False,
            "properties": {"path": {"type": "string"}},
        },
    },
}


def validate_schema(data: Dict[str, Any]) -> None:
    """Validate raw configuration data; raise ``ConfigError`` on the first problem."""
    validator = Draft7Validator(CONFIG_SCHEMA)
    errs = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errs:
        first = errs[0]
        path = "/".join(str(p) for p in first.path)
        raise ConfigError(f"Invalid configuration at '{path}': {first.message}")


def _section(cls, data: Optional[Mapping[str, Any]]):
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    if "port" in data and "port" in known and cls is not DefaultSettings:
        data["port"] = str(data["port"])
    return cls(**{k: v for k, v in data.items() if k in known})


def _verify_git_tokens(git: Mapping[str, GitSettings]) -> None:
    for org, settings in git.items():
        if not settings.token:
            raise ConfigError(
                f"No token found for Git organization {org}! "
                "All configured organizations need to have a valid token."
            )


def _verify_blacklists(default: DefaultSettings, customer: Mapping[str, Mapping[str, Any]]) -> None:
    def check(value: str, owner: str) -> None:
        for rgx in _split_list(value):
            try:
                re.compile(rgx)
            except re.error as exc:
                raise ConfigError(f"The {owner} blacklist contains a bad regex: {exc}") from exc

    check(default.blacklist, "default")
    for org, override in customer.items():
        if "blacklist" in override:
            check(override["blacklist"], f"customer {org}")


def _resolve_path(path: str, base_dir: str, bare_names: bool = True) -> str:
    if not bare_names and os.sep not in path:
        return path
    if path and not os.path.isabs(path):
        return os.path.join(base_dir, path)
    return path


def parse_config(data: Optional[Dict[str, Any]], base_dir: str = ".") -> GuardConfig:
    """Build a ``GuardConfig`` from raw data, validating it first.

    Relative executable and directory paths resolve against ``base_dir``.
    """
    data = data or {}
    validate_schema(data)

    default = _section(DefaultSettings, data.get("default"))
    customer = {org: dict(values or {}) for org, values in (data.get("customer") or {}).items()}
    git = {org: _section(GitSettings, values) for org, values in (data.get("git") or {}).items()}
    tests = _section(TestsSettings, data.get("tests"))
    tests = TestsSettings(
        foodcritic=_resolve_path(tests.foodcritic, base_dir, bare_names=False),
        rubocop=_resolve_path(tests.rubocop, base_dir, bare_names=False),
    )

    _verify_git_tokens(git)
    _verify_blacklists(default, customer)

    return GuardConfig(
        default=default,
        customer=customer,
        chef=_section(ChefSettings, data.get("chef")),
        community=_section(CommunitySettings, data.get("community")),
        supermarket=_section(SupermarketSettings, data.get("supermarket")),
        tests=tests,
        git=git,
        chef_clients_path=_resolve_path((data.get("chef_clients") or {}).get("path", ""), base_dir),
    )


def load_config(path: str) -> GuardConfig:
    """Load and validate the YAML configuration file at ``path``."""
    if not os.path.isfile(path):
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse config file '{path}': {exc}") from exc
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping")
    return parse_config(data, base_dir=os.path.dirname(os.path.abspath(path)))


class ConfigHolder:
    """Holds the active configuration and swaps it atomically on reload."""

    def __init__(self, config: GuardConfig, path: Optional[str] = None):
        self._config = config
        self._path = path
        self._lock = threading.Lock()

    @property
    def config(self) -> GuardConfig:
        """The active configuration; callers keep the instance for a whole request."""
        return self._config

    def replace(self, config: GuardConfig) -> None:
        """Install ``config`` as the active configuration."""
        with self._lock:
            self._config = config

    def reload(self) -> bool:
        """Reload from the original file; keep the current config on failure.

        Returns:
            True when the new configuration was installed.
        """
        if not self._path:
            return False
        try:
            config = load_config(self._path)
        except ConfigError as exc:
            logger.warning("Could not reload configuration: %s", exc)
            return False
        self.replace(config)
        logger.info("Successfully reloaded configuration!")
        return True
