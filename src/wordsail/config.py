"""Configuration file management for WordSail.

The whole of WordSail's durable state lives in one YAML file, by default
``~/.wordsail/servers.yaml``: the Ansible location, global playbook
variables, and every managed server with its sites and domains.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .inventory import expand_home
from .types import SERVER_STATUSES, Server

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0"
DEFAULT_CONFIG_DIR = Path.home() / ".wordsail"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "servers.yaml"
DEFAULT_ANSIBLE_PATH = "~/.wordsail/ansible"
CONFIG_ENV_VAR = "WORDSAIL_CONFIG"

REQUIRED_PROVISION_VARS = ("certbot_email", "wordsail_ssh_key")
REQUIRED_PLAYBOOKS = ("provision.yml", "website.yml")


@dataclass
class AnsibleConfig:
    """Where the WordSail playbooks live and how they run.

    Attributes:
        path: Root of the Ansible tree (``~`` allowed)
        roles_path: Roles directory relative to the root
        inventory_path: Informational pattern of generated inventories
        python_interpreter: Interpreter used on managed servers
    """

    path: str = DEFAULT_ANSIBLE_PATH
    roles_path: str = "./roles"
    inventory_path: str = "/tmp/wordsail-inventory-{timestamp}.ini"
    python_interpreter: str = "/usr/bin/python3"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "roles_path": self.roles_path,
            "inventory_path": self.inventory_path,
            "python_interpreter": self.python_interpreter,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnsibleConfig":
        defaults = cls()
        return cls(
            path=data.get("path", defaults.path),
            roles_path=data.get("roles_path", defaults.roles_path),
            inventory_path=data.get("inventory_path", defaults.inventory_path),
            python_interpreter=data.get("python_interpreter", defaults.python_interpreter),
        )


@dataclass
class BackupConfig:
    """Backup settings (stored, not yet acted upon)."""

    enabled: bool = False
    schedule: str = ""
    retention_days: int = 0
    destination: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"enabled": self.enabled}
        if self.schedule:
            result["schedule"] = self.schedule
        if self.retention_days:
            result["retention_days"] = self.retention_days
        if self.destination:
            result["destination"] = self.destination
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupConfig":
        return cls(
            enabled=bool(data.get("enabled", False)),
            schedule=data.get("schedule", ""),
            retention_days=int(data.get("retention_days", 0)),
            destination=data.get("destination", ""),
        )


@dataclass
class Config:
    """Top-level configuration file structure.

    Attributes:
        version: File format version
        ansible: Ansible settings
        global_vars: Variables passed to every playbook run
        servers: Managed servers
        backup: Backup settings
        preferred_editor: Editor suggested for manual edits
    """

    version: str = CONFIG_VERSION
    ansible: AnsibleConfig = field(default_factory=AnsibleConfig)
    global_vars: dict[str, Any] = field(default_factory=dict)
    servers: list[Server] = field(default_factory=list)
    backup: BackupConfig = field(default_factory=BackupConfig)
    preferred_editor: str = ""

    def get_server(self, name: str) -> Server | None:
        """Get a server by name."""
        for server in self.servers:
            if server.name == name:
                return server
        return None

    def provisioned_servers(self) -> list[Server]:
        """Get servers whose status is "provisioned"."""
        return [s for s in self.servers if s.is_provisioned]

    def missing_provision_vars(self) -> list[str]:
        """Get required global variables that are unset or empty."""
        return [
            name for name in REQUIRED_PROVISION_VARS
            if self.global_vars.get(name) in (None, "")
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        result: dict[str, Any] = {
            "version": self.version,
            "ansible": self.ansible.to_dict(),
            "global_vars": dict(self.global_vars),
            "servers": [s.to_dict() for s in self.servers],
            "backup": self.backup.to_dict(),
        }
        if self.preferred_editor:
            result["preferred_editor"] = self.preferred_editor
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create from dictionary."""
        return cls(
            version=str(data.get("version", CONFIG_VERSION)),
            ansible=AnsibleConfig.from_dict(data.get("ansible") or {}),
            global_vars=dict(data.get("global_vars") or {}),
            servers=[Server.from_dict(s) for s in data.get("servers") or []],
            backup=BackupConfig.from_dict(data.get("backup") or {}),
            preferred_editor=data.get("preferred_editor", ""),
        )


def default_config(ansible_path: str | None = None) -> Config:
    """Create a configuration with sensible defaults."""
    return Config(
        ansible=AnsibleConfig(path=ansible_path or DEFAULT_ANSIBLE_PATH),
        global_vars={
            "certbot_email": "admin@example.com",
            "wordsail_ssh_key": "~/.ssh/wordsail_rsa.pub",
        },
    )


def validate_config(config: Config) -> None:
    """Check the rules the YAML schema cannot express.

    Raises:
        ConfigError: Describing every problem found
    """
    errors: list[str] = []
    if not config.ansible.path:
        errors.append("ansible.path is required")

    seen: set[str] = set()
    domain_owners: dict[str, str] = {}
    for server in config.servers:
        if server.name in seen:
            errors.append(f"duplicate server name: {server.name}")
        seen.add(server.name)

        if server.status not in SERVER_STATUSES:
            errors.append(
                f"server '{server.name}': invalid status '{server.status}' "
                f"(expected one of {', '.join(SERVER_STATUSES)})"
            )
        if not 1 <= server.ssh.port <= 65535:
            errors.append(f"server '{server.name}': invalid SSH port {server.ssh.port}")

        site_names: set[str] = set()
        for site in server.sites:
            if site.system_name in site_names:
                errors.append(f"server '{server.name}': duplicate site '{site.system_name}'")
            site_names.add(site.system_name)

            for domain in site.domains:
                owner = domain_owners.get(domain.domain)
                if owner is not None:
                    errors.append(
                        f"domain {domain.domain} exists on both server {owner} and {server.name}"
                    )
                domain_owners.setdefault(domain.domain, server.name)

    if errors:
        raise ConfigError("invalid configuration: " + "; ".join(errors), errors=errors)


def validate_ansible_environment(config: Config, runner: str = "ansible-playbook") -> None:
    """Check that playbooks can actually be run with this configuration.

    Raises:
        ConfigError: If the runner is not on PATH, the Ansible root is
            missing, or a required playbook is absent
    """
    if shutil.which(runner) is None:
        raise ConfigError(f"{runner} not found in PATH. Please install Ansible", runner=runner)

    root = Path(expand_home(config.ansible.path))
    if not root.is_dir():
        raise ConfigError(f"ansible path does not exist: {root}", path=str(root))

    for playbook in REQUIRED_PLAYBOOKS:
        path = root / playbook
        if not path.is_file():
            raise ConfigError(f"required playbook not found: {path}", path=str(path))


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Pick the config path: explicit argument, then $WORDSAIL_CONFIG, then the default."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_FILE


class ConfigManager:
    """Loads and saves the configuration file.

    Example:
        >>> manager = ConfigManager()
        >>> config = manager.load()
        >>> config.global_vars["certbot_email"] = "ops@example.com"
        >>> manager.save(config)
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = resolve_config_path(path)

    @property
    def config_dir(self) -> Path:
        return self.path.parent

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Config:
        """Read, parse and validate the configuration file.

        Raises:
            ConfigError: If the file is missing, unreadable or invalid
        """
        config = self.read()
        validate_config(config)
        return config

    def read(self) -> Config:
        """Read and parse the configuration file without checking its rules.

        Raises:
            ConfigError: If the file is missing or its structure is invalid
        """
        try:
            content = self.path.read_text()
        except FileNotFoundError as e:
            raise ConfigError(
                f"config file not found: {self.path} (run 'wordsail config init')",
                path=str(self.path),
            ) from e
        except OSError as e:
            raise ConfigError(f"failed to read config file: {e}", path=str(self.path)) from e

        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config file: {e}", path=str(self.path)) from e

        if not isinstance(data, dict):
            raise ConfigError(f"config file must contain a mapping: {self.path}", path=str(self.path))

        try:
            config = Config.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid config file {self.path}: {e}", path=str(self.path)) from e
        return config

    def save(self, config: Config) -> None:
        """Write the configuration atomically with owner-only permissions.

        Raises:
            ConfigError: If the file cannot be written
        """
        data = yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(data)
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ConfigError(f"failed to save config file: {e}", path=str(self.path)) from e

        logger.debug(f"Saved config to {self.path}")

    def initialize(self, force: bool = False, ansible_path: str | None = None) -> Config:
        """Create a new config file with default values.

        Raises:
            ConfigError: If the file exists and ``force`` is not set
        """
        if self.exists() and not force:
            raise ConfigError(f"config file already exists at {self.path}", path=str(self.path))
        config = default_config(ansible_path)
        self.save(config)
        return config
