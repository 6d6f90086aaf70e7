"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONFIG_ERROR = 2


class GateMode(Enum):
    """Operating modes of the upload gate.

    Args:
        Enum (string): Operating modes of the upload gate.
    """

    SILENT = "silent"
    PERMISSIVE = "permissive"
    ENFORCED = "enforced"


class ValidateChanges(Enum):
    """Constraint validation modes for environments and roles.

    Args:
        Enum (string): Constraint validation modes.
    """

    DISABLED = "disabled"
    PERMISSIVE = "permissive"
    ENFORCED = "enforced"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    VERSION = "0.7.0"
    DEFAULT_CONFIG_FILE = "chefgate.yaml"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "CHEFGATE_LOG_LEVEL"

    # Connect and read timeouts for every outbound call; never unbounded.
    CONNECT_TIMEOUT = 30
    REQUEST_TIMEOUT = 60

    METADATA_JSON = "metadata.json"
    METADATA_RB = "metadata.rb"
    GITIGNORE_FILE = ".gitignore"
    CHEFIGNORE_FILE = "chefignore"

    # Versions that express "no constraint" in dependency metadata.
    UNCONSTRAINED_VERSIONS = ("0.0.0", "BAD>= 0.0.0")
    MALFORMED_PREFIX = "BAD"

    DEFAULT_BRANCH = "master"
    TAG_MESSAGE = "Tagged by chefgate\n"
    PUBLISH_CATEGORY = '{"category":"other"}'

    # Bounds on the file tree rebuilt from storage for a single upload.
    MAX_BUNDLE_FILES = 5000
    MAX_BUNDLE_BYTES = 100 * 1024 * 1024

    GITHUB_API_BASE = "https://api.github.com"
    GITLAB_API_BASE = "https://gitlab.com/api/v4"
    COMMUNITY_SUPERMARKET = "https://supermarket.chef.io"
    REPO_API_PER_PAGE = 100

    # Placeholder checksum used to discover the organization id via a sandbox.
    SANDBOX_PROBE_CHECKSUM = "00000000000000000000000000000000"
    BOOKSHELF_URL_TTL_SEC = 10

    # Upper bound for a single external lint run.
    CHECK_TIMEOUT_SEC = 300
