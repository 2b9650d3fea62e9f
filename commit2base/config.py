import sys
import threading
import yaml
import os
import logging
import logging.config


# Cached configuration with thread safety and validation
_config_cache = None
_config_last_modified = 0
_config_lock = threading.Lock()
_logger_config_loaded = False

# Logger names used throughout the project
LOGGER_COMMIT2BASE = "commit2base"
LOGGER_SYNC_ERRORS = "sync_errors"

PLATFORM_TYPES = ("azure_devops", "github", "gitlab")
OUTPUT_TYPES = ("sqlite", "postgresql")

DEFAULT_SYNC_CONFIG = {
    "repo_concurrency": 3,
    "commit_concurrency": 5,
    "request_timeout": 30,
    "connect_timeout": 10,
    "max_pages": 50,
    "fetch_diffs": False,
    "error_limit": 20,
}


class ConfigurationError(ValueError):
    """Raised for configuration that cannot be run: bad YAML, unknown output or platform types."""


def get_executable_dir():
    home = os.environ.get("COMMIT2BASE_HOME")
    if home:
        return os.path.abspath(home)
    return os.path.dirname(os.path.abspath(sys.argv[0]))


def get_default_config_paths():
    """Return default config and logger file paths."""
    base_dir = get_executable_dir()
    config_path = os.path.join(base_dir, "config", "config.yaml")
    logger_config_path = os.path.join(base_dir, "config", "logger.yaml")
    return config_path, logger_config_path


def _make_dir(path: str):
    path_dir = os.path.dirname(path)
    if path_dir and not os.path.exists(path_dir):
        os.makedirs(path_dir, exist_ok=True)


def setup_logging():
    """Apply config/logger.yaml once, writing it from the template when missing."""
    global _logger_config_loaded

    if _logger_config_loaded:
        return

    _, logger_config_path = get_default_config_paths()
    if not os.path.exists(logger_config_path):
        _make_dir(logger_config_path)
        try:
            with open(logger_config_path, "w", encoding="utf-8") as f:
                f.write(_LOGGING_CONFIG_TEMPLATE.strip())
            logging.warning(
                f"No logging config yaml found - created new logging config file from template at: {logger_config_path}"
            )
        except OSError as e:
            raise RuntimeError(f"Failed to create logging config file: {str(e)}")

    with open(logger_config_path, "r", encoding="utf-8") as f:
        logging_config = yaml.safe_load(f)

    # Relative log paths are resolved against the executable dir
    base_dir = get_executable_dir()
    for handler in logging_config.get("handlers", {}).values():
        if handler.get("class") == "logging.FileHandler":
            log_file = handler.get("filename")
            if log_file:
                if not os.path.isabs(log_file):
                    log_file = os.path.join(base_dir, log_file)
                    handler["filename"] = log_file
                _make_dir(log_file)

    logging.config.dictConfig(logging_config)
    _logger_config_loaded = True


def _load_config():
    """Load and cache the configuration file with thread safety and validation

    Returns:
        dict: Parsed configuration

    Raises:
        RuntimeError: If config file cannot be created or read
        ConfigurationError: If config is malformed
    """
    global _config_cache, _config_last_modified

    config_path, _ = get_default_config_paths()

    if not os.path.exists(config_path):
        _make_dir(config_path)
        try:
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(_CONFIG_TEMPLATE.strip())
            logging.warning(
                f"No config yaml found - created new config file from template at: {config_path}"
            )
        except OSError as e:
            raise RuntimeError(f"Failed to create config file: {str(e)}")

    try:
        mod_time = os.path.getmtime(config_path)
    except OSError as e:
        raise RuntimeError(f"Failed to access config file: {str(e)}")

    with _config_lock:
        if _config_cache is not None and mod_time <= _config_last_modified:
            return _config_cache

        try:
            with open(config_path, "r", encoding="utf-8") as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config: {str(e)}")
        except OSError as e:
            raise RuntimeError(f"Failed to read config file: {str(e)}")

        validate_config(config)

        _config_cache = config
        _config_last_modified = mod_time
        return _config_cache


def validate_config(config):
    if not isinstance(config, dict):
        raise ConfigurationError("Config must be a dictionary")

    if "output" not in config:
        raise ConfigurationError("Missing required config section: output")

    output_type = config["output"].get("type")
    if output_type not in OUTPUT_TYPES:
        raise ConfigurationError(
            f"Unsupported output type: {output_type} (expected one of {', '.join(OUTPUT_TYPES)})"
        )

    for platform in config.get("platforms") or []:
        if platform.get("type") not in PLATFORM_TYPES:
            raise ConfigurationError(
                f"Unknown platform type for '{platform.get('name')}': {platform.get('type')}"
            )
        for key in ("name", "url", "token"):
            if not platform.get(key):
                raise ConfigurationError(
                    f"Platform '{platform.get('name')}' is missing required field: {key}"
                )

    if not config.get("platforms"):
        logging.getLogger(LOGGER_COMMIT2BASE).warning(
            "Warning: no 'platforms' defined in config, only platforms already stored in the database will be synced."
        )


def load_output_config():
    config = _load_config()
    return config["output"]


def load_platforms_config():
    """Load platform definitions, expanding ${VAR} references from the environment"""
    config = _load_config()
    platforms = []
    for platform in config.get("platforms") or []:
        platforms.append(
            {
                key: os.path.expandvars(value) if isinstance(value, str) else value
                for key, value in platform.items()
            }
        )
    return platforms


def load_sync_config():
    """Load sync settings merged over the defaults"""
    config = _load_config()
    sync_config = dict(DEFAULT_SYNC_CONFIG)
    sync_config.update(config.get("sync") or {})
    return sync_config


def load_analysis_config():
    config = _load_config()
    return config.get("analysis") or {}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


_CONFIG_TEMPLATE = """# commit2base configuration template
output:
  type: "sqlite"  # sqlite or postgresql
  sqlite:
    database: "data/commit2base.db"  # relative to the project root
  postgresql:
    host: "localhost"
    port: 5432
    database: "commit2base"
    user: "commit2base"
    password: "commit2base"

# Hosting platforms to mirror. ${VAR} values are read from the environment.
platforms: []
#  - name: "GitHub org"
#    type: "github"            # azure_devops, github or gitlab
#    url: "https://github.com/my-org"
#    token: "${GITHUB_TOKEN}"
#  - name: "Azure DevOps"
#    type: "azure_devops"
#    url: "https://dev.azure.com/my-org"
#    token: "${AZURE_DEVOPS_PAT}"
#    username: ""             # optional, switches to username:password auth

sync:
  repo_concurrency: 3       # repositories processed in parallel
  commit_concurrency: 5     # commits processed in parallel per branch
  request_timeout: 30       # seconds per provider call
  connect_timeout: 10       # seconds for connection tests
  max_pages: 50             # safety limit for paged listings
  fetch_diffs: false        # fetch diff text so diff-based flags can fire
  error_limit: 20           # errors reported in a sync result

analysis:
  rules:
    - SmallVagueCommitRule
    - LargeCommitRule
    - ConfigOnlyRule
    - CommentOnlyRule
    - CopyPasteRule
    - AIGeneratedRule
"""

_LOGGING_CONFIG_TEMPLATE = """
version: 1
disable_existing_loggers: False

formatters:
  simple:
    format: "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

handlers:
  console:
    class: logging.StreamHandler
    level: INFO
    formatter: simple
    stream: ext://sys.stderr

  commit2base:
    class: logging.FileHandler
    level: DEBUG
    formatter: simple
    filename: logs/commit2base.log
    encoding: utf-8

  sync_errors:
    class: logging.FileHandler
    level: INFO
    formatter: simple
    filename: logs/sync_errors.log
    encoding: utf-8

loggers:
  commit2base:
    level: DEBUG
    handlers: [console, commit2base]
    propagate: false

  sync_errors:
    level: INFO
    handlers: [sync_errors]
    propagate: false

  httpx:
    level: WARNING

  httpcore:
    level: WARNING

root:
  level: WARNING
  handlers: [console]
"""
