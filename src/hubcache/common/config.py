import os
import configparser
import logging
import shutil

from hubcache.common.constants import (
    APP_CONFIG_FILENAME,
    APP_FOLDER_NAME,
    DEFAULT_CACHE_DIR,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_ENDPOINT,
    DEFAULT_PROGRESS_INTERVAL_MS,
    DEFAULT_REPO_TYPE,
    DEFAULT_RESOLVER_RETRIES,
    DEFAULT_REVISION,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
)

logger = logging.getLogger(__name__)


def get_config_dir() -> str:
    """Return the per-user configuration directory (honours XDG_CONFIG_HOME)."""
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, APP_FOLDER_NAME)


class Config:
    def __init__(self, custom_config_path: str | None = None):
        """Initialize Config from file.

        Args:
            custom_config_path: Optional path to custom config file.
                               If None, uses the per-user config location.
        """
        if custom_config_path:
            self.config_path = custom_config_path
            logger.debug(f"Using custom config: {self.config_path}")
        else:
            # Running under pytest: never touch the user's real config
            if "PYTEST_CURRENT_TEST" in os.environ:
                import tempfile

                test_config_dir = os.path.join(tempfile.gettempdir(), f"{APP_FOLDER_NAME}_test")
                os.makedirs(test_config_dir, exist_ok=True)
                self.config_path = os.path.join(test_config_dir, APP_CONFIG_FILENAME)
                logger.debug(f"Test mode detected, using temp config: {self.config_path}")
            else:
                self.config_path = os.path.join(get_config_dir(), APP_CONFIG_FILENAME)

        self._config = configparser.ConfigParser()

        if os.path.exists(self.config_path):
            logger.debug(f"Loading existing config from: {self.config_path}")
            self._config.read(self.config_path, encoding="utf-8-sig")
        else:
            logger.info(f"Config file not found. Creating default config at: {self.config_path}")
            self._set_defaults()
            try:
                config_dir = os.path.dirname(self.config_path)
                if config_dir:
                    os.makedirs(config_dir, exist_ok=True)
                with open(self.config_path, "w", encoding="utf-8") as configfile:
                    self._config.write(configfile)
                logger.info("Default config.ini created successfully")
            except OSError as e:
                # Read-only home directories still get a working in-memory config
                logger.warning(f"Could not write default config to {self.config_path}: {e}")

        self._initialize_properties()

    def _get_defaults(self):
        """Get default configuration values as a dictionary structure."""
        return {
            "Paths": {
                "cache_dir": DEFAULT_CACHE_DIR,
            },
            "Hub": {
                "endpoint": DEFAULT_ENDPOINT,
                "revision": DEFAULT_REVISION,
                "repo_type": DEFAULT_REPO_TYPE,
                "resolver": "api",
                "token": "",
                "user_agent": DEFAULT_USER_AGENT,
            },
            "Download": {
                "timeout": DEFAULT_TIMEOUT,
                "chunk_size": DEFAULT_CHUNK_SIZE,
                "progress_interval_ms": DEFAULT_PROGRESS_INTERVAL_MS,
                "on_stale_commit": "keep",
                "verify_sha256": False,
                "resolver_retries": DEFAULT_RESOLVER_RETRIES,
            },
            "General": {
                "log_level": "INFO",
                "log_file": "",
            },
        }

    def _set_defaults(self):
        """Set default configuration values in the ConfigParser object."""
        _populate(self._config, self._get_defaults())

    def _initialize_properties(self):
        """Initialize class properties from config values with fallbacks."""
        defaults = self._get_defaults()

        self._init_paths(defaults)
        self._init_hub(defaults)
        self._init_download(defaults)
        self._init_general(defaults)

        logger.debug("Configuration loaded: %s", self.config_path)

    def _init_paths(self, defaults: dict):
        """Initialize Paths section properties."""
        self.cache_dir = self._config.get("Paths", "cache_dir", fallback=defaults["Paths"]["cache_dir"])

    def _init_hub(self, defaults: dict):
        """Initialize Hub section properties."""
        h = defaults["Hub"]
        self.endpoint = self._config.get("Hub", "endpoint", fallback=h["endpoint"]).rstrip("/")
        self.revision = self._config.get("Hub", "revision", fallback=h["revision"])
        self.repo_type = self._config.get("Hub", "repo_type", fallback=h["repo_type"])
        self.resolver = self._config.get("Hub", "resolver", fallback=h["resolver"])
        # An explicit HF_TOKEN wins over an empty config value
        self.token = self._config.get("Hub", "token", fallback=h["token"]) or os.environ.get("HF_TOKEN", "")
        self.user_agent = self._config.get("Hub", "user_agent", fallback=h["user_agent"])

    def _init_download(self, defaults: dict):
        """Initialize Download section properties."""
        d = defaults["Download"]
        self.timeout = self._config.getint("Download", "timeout", fallback=d["timeout"])
        self.chunk_size = self._config.getint("Download", "chunk_size", fallback=d["chunk_size"])
        self.progress_interval_ms = self._config.getint(
            "Download", "progress_interval_ms", fallback=d["progress_interval_ms"]
        )
        self.on_stale_commit = self._config.get("Download", "on_stale_commit", fallback=d["on_stale_commit"])
        self.verify_sha256 = self._config.getboolean("Download", "verify_sha256", fallback=d["verify_sha256"])
        self.resolver_retries = self._config.getint(
            "Download", "resolver_retries", fallback=d["resolver_retries"]
        )

    def _init_general(self, defaults: dict):
        """Initialize General section properties."""
        g = defaults["General"]
        self.log_level_str = self._config.get("General", "log_level", fallback=g["log_level"])
        self.log_level = self._get_log_level(self.log_level_str)
        self.log_file = self._config.get("General", "log_file", fallback=g["log_file"])

    @property
    def progress_interval(self) -> float:
        """Minimum seconds between progress callbacks."""
        return max(0, self.progress_interval_ms) / 1000.0

    @property
    def effective_cache_dir(self) -> str:
        """
        Get the effective cache directory.

        HF_HUB_CACHE overrides the configured value, matching the hub
        client's own environment variable.

        Returns:
            str: Cache directory with `~` expanded
        """
        return os.path.expanduser(os.environ.get("HF_HUB_CACHE") or self.cache_dir or DEFAULT_CACHE_DIR)

    def _get_log_level(self, level_str):
        """Convert string log level to logging level constant"""
        levels = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return levels.get(level_str.upper(), logging.INFO)  # Default to INFO if invalid

    def _update_managed_sections(self, config: configparser.ConfigParser):
        """Write the managed keys of every section into `config`."""
        values = {
            "Paths": {"cache_dir": self.cache_dir},
            "Hub": {
                "endpoint": self.endpoint,
                "revision": self.revision,
                "repo_type": self.repo_type,
                "resolver": self.resolver,
                "user_agent": self.user_agent,
            },
            "Download": {
                "timeout": self.timeout,
                "chunk_size": self.chunk_size,
                "progress_interval_ms": self.progress_interval_ms,
                "on_stale_commit": self.on_stale_commit,
                "verify_sha256": self.verify_sha256,
                "resolver_retries": self.resolver_retries,
            },
            "General": {"log_level": self.log_level_str, "log_file": self.log_file},
        }
        _populate(config, values, replace_sections=False)

    def _create_backup(self):
        """Create backup of config file before modifying."""
        if os.path.exists(self.config_path):
            backup_path = self.config_path + ".bak"
            try:
                shutil.copy2(self.config_path, backup_path)
                logger.debug(f"Created backup at {backup_path}")
            except OSError as e:
                logger.warning(f"Failed to create backup: {e}")

    def save(self):
        """Save current configuration to file with minimal mutation.

        Re-reads the existing config file, updates ONLY managed keys,
        creates a backup, and preserves all unrelated sections/keys.
        The token is never written back; it stays whatever the file holds.
        """
        current = configparser.ConfigParser()
        config_loaded = False

        if os.path.exists(self.config_path):
            try:
                current.read(self.config_path, encoding="utf-8-sig")
                logger.debug(f"Re-read existing config from {self.config_path}")
                config_loaded = True
            except configparser.Error as e:
                logger.warning(f"Failed to re-read config file: {e}. Will create fresh config.")
                current = configparser.ConfigParser()

        if not config_loaded:
            logger.debug("Populating config with defaults before save")
            _populate(current, self._get_defaults())

        self._create_backup()
        self._update_managed_sections(current)

        config_dir = os.path.dirname(self.config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as configfile:
            current.write(configfile)

        self._config = current
        logger.info(f"Config saved to {self.config_path}")


def _populate(config: configparser.ConfigParser, values: dict, replace_sections: bool = True):
    """Copy a {section: {key: value}} dict into a ConfigParser as strings."""
    for section, items in values.items():
        if replace_sections or not config.has_section(section):
            config[section] = {}
        for key, value in items.items():
            if isinstance(value, bool):
                config[section][key] = "true" if value else "false"
            else:
                config[section][key] = str(value)
