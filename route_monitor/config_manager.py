"""Manages loading, updating, and validating the monitor's configuration.

This module is responsible for handling the `config.ini` file. It includes
functionality to:
- Create a new configuration file from the bundled template if one doesn't exist.
- Update an existing configuration file with new options from the template
  while preserving user-defined values.
- Load the configuration into a `ConfigParser` object.
- Validate the configuration and convert it into typed `MonitorSettings`.
"""
import configparser
import logging
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List
from urllib.parse import urlparse

import configupdater

TEMPLATE_PATH = Path(__file__).resolve().parent / "config.ini.template"

LOG_MODES = ("auto", "stream", "poll")


def _copy_comments(source_opt, target_opt) -> None:
    if hasattr(source_opt, 'comments') and source_opt.comments.above:
        target_opt.add_comment('\n'.join(source_opt.comments.above), above=True)
    if hasattr(source_opt, 'comments') and source_opt.comments.inline:
        target_opt.add_comment(source_opt.comments.inline, inline=True)


def update_config(config_path: str, template_path: str = str(TEMPLATE_PATH)) -> None:
    """Updates an existing config.ini from the template, preserving user values.

    New sections and options from the template are added to the user's file;
    existing values, comments and layout are kept. When the file changes, a
    timestamped backup of the original is written to a `backup` directory
    next to it. When no file exists yet, the template is copied in its place.

    Args:
        config_path: The path to the user's configuration file.
        template_path: The path to the template file.

    Raises:
        SystemExit: If the template is missing or the file cannot be written.
    """
    config_file = Path(config_path)
    template_file = Path(template_path)
    logging.info("STATE: Checking for configuration updates...")

    if not template_file.is_file():
        logging.error(f"FATAL: Config template '{template_path}' not found.")
        sys.exit(1)

    if not config_file.is_file():
        logging.warning(f"Configuration file not found at '{config_path}'.")
        logging.warning("Creating a new one from the template. Please review the daemon URL.")
        try:
            config_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(template_file, config_file)
        except OSError as e:
            logging.error(f"FATAL: Could not create config file: {e}")
            sys.exit(1)
        return

    try:
        updater = configupdater.ConfigUpdater()
        updater.read(config_file, encoding='utf-8')
        template_updater = configupdater.ConfigUpdater()
        template_updater.read(template_file, encoding='utf-8')

        changes_made = False
        for section_name in template_updater.sections():
            template_section = template_updater[section_name]
            if not updater.has_section(section_name):
                user_section = updater.add_section(section_name)
                for key, opt in template_section.items():
                    _copy_comments(opt, user_section.set(key, opt.value))
                changes_made = True
                logging.info(f"CONFIG: Added new section to config: [{section_name}]")
                continue
            user_section = updater[section_name]
            for key, opt in template_section.items():
                if not user_section.has_option(key):
                    _copy_comments(opt, user_section.set(key, opt.value))
                    changes_made = True
                    logging.info(f"CONFIG: Added new option in [{section_name}]: {key}")

        if changes_made:
            backup_dir = config_file.parent / 'backup'
            backup_dir.mkdir(exist_ok=True)
            backup_path = backup_dir / f"{config_file.stem}.bak_{time.strftime('%Y%m%d-%H%M%S')}"
            shutil.copy2(config_file, backup_path)
            logging.info(f"CONFIG: Backed up existing configuration to '{backup_path}'")
            with config_file.open('w', encoding='utf-8') as f:
                updater.write(f)
            logging.info("CONFIG: Configuration file has been updated with new options.")
        else:
            logging.info("CONFIG: Configuration file is already up-to-date.")
    except (OSError, configparser.Error) as e:
        logging.error(f"FATAL: An error occurred during config update: {e}", exc_info=True)
        sys.exit(1)


def load_config(config_path: str = "config.ini") -> configparser.ConfigParser:
    """Loads the configuration from the specified .ini file.

    Raises:
        SystemExit: If the configuration file does not exist at `config_path`.
    """
    config_file = Path(config_path)
    if not config_file.is_file():
        logging.error(f"FATAL: Configuration file not found at '{config_path}'.")
        sys.exit(1)
    config = configparser.ConfigParser()
    config.read(config_file, encoding='utf-8')
    return config


class ConfigValidator:
    """Validates the structure and values of the monitor's configuration.

    Attributes:
        config (configparser.ConfigParser): The configuration object to validate.
        errors (List[str]): Critical problems. If this list is not empty after
            validation, the configuration is considered invalid.
        warnings (List[str]): Non-critical problems, such as values outside
            their recommended range.
    """

    REQUIRED_SECTIONS = {
        'DAEMON': ['base_url'],
        'DASHBOARD': ['page_size', 'default_interval'],
    }

    NUMERIC_OPTIONS = {
        ('DAEMON', 'timeout'): (1, 120),
        ('DASHBOARD', 'page_size'): (5, 200),
        ('DASHBOARD', 'default_interval'): (1, 3600),
        ('DASHBOARD', 'action_settle_ms'): (0, 10000),
        ('DASHBOARD', 'log_poll_interval'): (1, 60),
        ('DASHBOARD', 'log_chunk_size'): (256, 1048576),
        ('DASHBOARD', 'log_lines'): (1, 200),
    }

    def __init__(self, config: configparser.ConfigParser):
        self.config = config
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self) -> bool:
        """Runs all validation checks and prints resulting errors or warnings.

        Returns:
            `True` if the configuration is valid (no errors), `False` otherwise.
        """
        self._check_required_sections()
        self._check_required_options()
        self._check_base_url()
        self._check_log_mode()
        self._check_booleans()
        self._check_numeric_values()

        if self.errors:
            print("Configuration errors found:", file=sys.stderr)
            for error in self.errors:
                print(f" ❌ {error}", file=sys.stderr)
            return False

        if self.warnings:
            print("Configuration warnings:", file=sys.stderr)
            for warning in self.warnings:
                print(f" ⚠️ {warning}", file=sys.stderr)

        return True

    def _check_required_sections(self) -> None:
        for section in self.REQUIRED_SECTIONS:
            if not self.config.has_section(section):
                self.errors.append(f"Missing required section: [{section}]")

    def _check_required_options(self) -> None:
        for section, options in self.REQUIRED_SECTIONS.items():
            if not self.config.has_section(section):
                continue
            for option in options:
                if not self.config.has_option(section, option):
                    self.errors.append(f"Missing option '{option}' in [{section}]")
                elif not self.config.get(section, option).strip():
                    self.errors.append(f"Option '{option}' in [{section}] is empty")

    def _check_base_url(self) -> None:
        url = self.config.get('DAEMON', 'base_url', fallback='').strip()
        if not url:
            return
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            self.errors.append(f"base_url '{url}' must be an http:// or https:// URL")

    def _check_log_mode(self) -> None:
        mode = self.config.get('DASHBOARD', 'log_mode', fallback='auto').strip().lower()
        if mode not in LOG_MODES:
            self.errors.append(f"Invalid log_mode '{mode}'. Must be one of: {', '.join(LOG_MODES)}")

    def _check_booleans(self) -> None:
        if self.config.has_option('DAEMON', 'verify_cert'):
            try:
                self.config.getboolean('DAEMON', 'verify_cert')
            except ValueError:
                self.errors.append("Option 'verify_cert' in [DAEMON] must be true or false")

    def _check_numeric_values(self) -> None:
        """Numeric options must be integers; values outside the range only warn."""
        for (section, option), (min_val, max_val) in self.NUMERIC_OPTIONS.items():
            if not self.config.has_option(section, option):
                continue
            if not self.config.get(section, option).strip():
                continue
            try:
                value = self.config.getint(section, option)
            except ValueError:
                self.errors.append(f"Option '{option}' in [{section}] must be an integer")
                continue
            if not (min_val <= value <= max_val):
                self.warnings.append(f"{option}={value} is outside recommended range [{min_val}-{max_val}]")


@dataclass
class MonitorSettings:
    """Typed view of a validated configuration."""
    base_url: str
    timeout: float = 10
    verify_cert: bool = True
    page_size: int = 25
    default_interval: int = 5
    action_settle_ms: int = 500
    log_mode: str = "auto"
    log_poll_interval: float = 2
    log_chunk_size: int = 8192
    log_lines: int = 15

    @property
    def settle_seconds(self) -> float:
        return self.action_settle_ms / 1000.0

    @classmethod
    def from_config(cls, config: configparser.ConfigParser) -> "MonitorSettings":
        daemon = config['DAEMON']
        dashboard = config['DASHBOARD'] if config.has_section('DASHBOARD') else {}

        def getint(option: str, default: int) -> int:
            value = str(dashboard.get(option, "") or "").strip()
            return int(value) if value else default

        return cls(
            base_url=daemon.get('base_url').strip(),
            timeout=daemon.getfloat('timeout', fallback=10),
            verify_cert=daemon.getboolean('verify_cert', fallback=True),
            page_size=getint('page_size', 25),
            default_interval=getint('default_interval', 5),
            action_settle_ms=getint('action_settle_ms', 500),
            log_mode=str(dashboard.get('log_mode', 'auto') or 'auto').strip().lower(),
            log_poll_interval=getint('log_poll_interval', 2),
            log_chunk_size=getint('log_chunk_size', 8192),
            log_lines=getint('log_lines', 15),
        )


def load_settings(config_path: str) -> MonitorSettings:
    """Loads and validates the configuration file.

    Raises:
        SystemExit: If the file is missing or invalid.
    """
    config = load_config(config_path)
    if not ConfigValidator(config).validate():
        sys.exit(1)
    return MonitorSettings.from_config(config)
