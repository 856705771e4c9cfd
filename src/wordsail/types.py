"""Type definitions for WordSail.

This module defines the data types shared by the executor, the config store
and the CLI: the managed server (the target of every playbook run), the
immutable execution request, and the typed result produced when a playbook
run finishes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SERVER_STATUSES = ("unprovisioned", "provisioned", "error")


def _parse_time(value: Any) -> datetime | None:
    """Accept datetimes as loaded by PyYAML or ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class SSHConfig:
    """SSH connection details for a server.

    Attributes:
        user: Administrative user Ansible connects as
        port: SSH port (default: 22)
        key_file: Path to the private key, may start with ``~``
    """

    user: str = "root"
    port: int = 22
    key_file: str = "~/.ssh/id_rsa"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {"user": self.user, "port": self.port, "key_file": self.key_file}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SSHConfig":
        """Create from dictionary."""
        return cls(
            user=data.get("user", "root"),
            port=int(data.get("port", 22)),
            key_file=data.get("key_file", "~/.ssh/id_rsa"),
        )


@dataclass
class Domain:
    """A domain attached to a site, with its SSL state."""

    domain: str
    ssl_enabled: bool = False
    ssl_issued_at: datetime | None = None
    ssl_expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        result: dict[str, Any] = {
            "domain": self.domain,
            "ssl_enabled": self.ssl_enabled,
        }
        if self.ssl_issued_at:
            result["ssl_issued_at"] = _format_time(self.ssl_issued_at)
        if self.ssl_expires_at:
            result["ssl_expires_at"] = _format_time(self.ssl_expires_at)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Domain":
        """Create from dictionary."""
        return cls(
            domain=data["domain"],
            ssl_enabled=bool(data.get("ssl_enabled", False)),
            ssl_issued_at=_parse_time(data.get("ssl_issued_at")),
            ssl_expires_at=_parse_time(data.get("ssl_expires_at")),
        )


@dataclass
class Database:
    """Database connection info for a site."""

    name: str
    user: str
    host: str = "localhost"

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "user": self.user, "host": self.host}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Database":
        return cls(name=data["name"], user=data["user"], host=data.get("host", "localhost"))


@dataclass
class Site:
    """A WordPress site hosted on a server.

    Attributes:
        system_name: Unix-safe identifier used for the site user, pool and database
        primary_domain: Domain the site was created with
        created_at: When the site was created
        admin_user: WordPress administrator login
        admin_email: WordPress administrator email
        domains: All domains served by the site, including the primary one
        database: Database name, user and host
        php_version: PHP-FPM version serving the site
        free_site: Whether the site is hosted free of charge
        backup_enabled: Whether backups are enabled
        notes: Free-form operator notes
    """

    system_name: str
    primary_domain: str
    admin_user: str
    admin_email: str
    created_at: datetime = field(default_factory=datetime.now)
    domains: list[Domain] = field(default_factory=list)
    database: Database | None = None
    php_version: str = "8.3"
    free_site: bool = False
    backup_enabled: bool = False
    notes: str = ""

    def __post_init__(self) -> None:
        if self.database is None:
            self.database = Database(name=self.system_name, user=self.system_name)

    def get_domain(self, name: str) -> Domain | None:
        """Get a domain record by name."""
        for domain in self.domains:
            if domain.domain == name:
                return domain
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        result: dict[str, Any] = {
            "system_name": self.system_name,
            "primary_domain": self.primary_domain,
            "created_at": _format_time(self.created_at),
            "admin_user": self.admin_user,
            "admin_email": self.admin_email,
            "domains": [d.to_dict() for d in self.domains],
            "database": self.database.to_dict() if self.database else None,
            "php_version": self.php_version,
            "metadata": {
                "free_site": self.free_site,
                "backup_enabled": self.backup_enabled,
            },
        }
        if self.notes:
            result["notes"] = self.notes
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Site":
        """Create from dictionary."""
        metadata = data.get("metadata") or {}
        database = data.get("database")
        return cls(
            system_name=data["system_name"],
            primary_domain=data["primary_domain"],
            admin_user=data.get("admin_user", ""),
            admin_email=data.get("admin_email", ""),
            created_at=_parse_time(data.get("created_at")) or datetime.now(),
            domains=[Domain.from_dict(d) for d in data.get("domains") or []],
            database=Database.from_dict(database) if database else None,
            php_version=str(data.get("php_version", "8.3")),
            free_site=bool(metadata.get("free_site", False)),
            backup_enabled=bool(metadata.get("backup_enabled", False)),
            notes=data.get("notes", ""),
        )


@dataclass
class Server:
    """A managed server, the target of every playbook run.

    Attributes:
        name: Unique symbolic name (e.g., "web01")
        hostname: Fully qualified hostname
        ip: Address Ansible connects to
        ssh: SSH connection details
        status: One of "unprovisioned", "provisioned", "error"
        provisioned_at: When provisioning last succeeded
        credentials: Server-specific secrets (e.g., the MySQL bot password)
        sites: WordPress sites hosted on this server

    Example:
        >>> server = Server(name="web01", hostname="web01.example.com", ip="203.0.113.10")
        >>> server.status
        'unprovisioned'
        >>> server.is_provisioned
        False
    """

    name: str
    hostname: str
    ip: str
    ssh: SSHConfig = field(default_factory=SSHConfig)
    status: str = "unprovisioned"
    provisioned_at: datetime | None = None
    credentials: dict[str, str] = field(default_factory=dict)
    sites: list[Site] = field(default_factory=list)

    @property
    def is_provisioned(self) -> bool:
        """Check if the server has been provisioned."""
        return self.status == "provisioned"

    def get_site(self, system_name: str) -> Site | None:
        """Get a site by system name."""
        for site in self.sites:
            if site.system_name == system_name:
                return site
        return None

    def find_site_by_domain(self, domain: str) -> Site | None:
        """Get the site serving a domain (primary or additional)."""
        for site in self.sites:
            if site.primary_domain == domain or site.get_domain(domain):
                return site
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "hostname": self.hostname,
            "ip": self.ip,
            "ssh": self.ssh.to_dict(),
            "status": self.status,
        }
        if self.credentials:
            result["credentials"] = dict(self.credentials)
        if self.provisioned_at:
            result["provisioned_at"] = _format_time(self.provisioned_at)
        if self.sites:
            result["sites"] = [s.to_dict() for s in self.sites]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Server":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            hostname=data.get("hostname", data["name"]),
            ip=data["ip"],
            ssh=SSHConfig.from_dict(data.get("ssh") or {}),
            status=data.get("status", "unprovisioned"),
            provisioned_at=_parse_time(data.get("provisioned_at")),
            credentials=dict(data.get("credentials") or {}),
            sites=[Site.from_dict(s) for s in data.get("sites") or []],
        )


def merge_variables(
    global_vars: dict[str, Any] | None,
    extra_vars: dict[str, Any] | None,
) -> dict[str, Any]:
    """Merge global defaults with call-specific variables.

    Call-specific values win on key collision.

    Example:
        >>> merge_variables({"a": 1, "b": 2}, {"b": 3, "c": 4})
        {'a': 1, 'b': 3, 'c': 4}
    """
    merged: dict[str, Any] = dict(global_vars or {})
    merged.update(extra_vars or {})
    return merged


@dataclass(frozen=True)
class ExecutionRequest:
    """A single playbook run against one server.

    Attributes:
        playbook: Playbook path relative to the Ansible root (e.g., "provision.yml")
        server: Snapshot of the target server
        extra_vars: Call-specific variables (highest precedence)
        global_vars: Global defaults from the config file
        verbose: Stream full Ansible output instead of a spinner
        dry_run: Run Ansible in check mode

    Example:
        >>> request = ExecutionRequest(
        ...     playbook="website.yml",
        ...     server=Server(name="web01", hostname="web01", ip="203.0.113.10"),
        ...     extra_vars={"domain": "example.com"},
        ... )
    """

    playbook: str
    server: Server
    extra_vars: dict[str, Any] = field(default_factory=dict)
    global_vars: dict[str, Any] = field(default_factory=dict)
    verbose: bool = False
    dry_run: bool = False

    def merged_vars(self) -> dict[str, Any]:
        """Get the variable payload sent to Ansible."""
        return merge_variables(self.global_vars, self.extra_vars)

    @property
    def label(self) -> str:
        """Human-readable operation label written into the inventory."""
        return f"wordsail {self.playbook}"


@dataclass(frozen=True)
class RecapCounters:
    """Counters parsed from the PLAY RECAP line."""

    ok: int = 0
    changed: int = 0
    failed: int = 0

    def format(self) -> str:
        return f"{self.ok} ok, {self.changed} changed, {self.failed} failed"


@dataclass(frozen=True)
class DNSStatus:
    """Result of a DNS_STATUS marker emitted by the domain playbook."""

    domain: str
    resolved_ip: str
    server_ip: str
    matches: bool


@dataclass(frozen=True)
class SSLInfo:
    """Result of an SSL_ISSUED marker.

    The expiry is kept as the raw text Ansible printed; parsing it into a
    date is left to the caller (see ``wordsail.state.parse_ssl_expiry``).
    """

    domain: str
    expiry: str


@dataclass(frozen=True)
class ExecutionResult:
    """Result of a finished playbook run.

    Attributes:
        success: Aggregated verdict
        exit_code: Exit code of ansible-playbook
        output: Every captured line, in arrival order
        stdout: Lines captured from standard output
        stderr: Lines captured from standard error
        recap: Recap counters, or None if no recap line was seen
        current_task: Most recent task (or play) name
        failure_seen: Whether an in-stream failure marker was seen
        dns_status: Parsed DNS_STATUS marker, if any
        ssl_info: Parsed SSL_ISSUED marker, if any
    """

    success: bool
    exit_code: int
    output: tuple[str, ...] = ()
    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()
    recap: RecapCounters | None = None
    current_task: str = ""
    failure_seen: bool = False
    dns_status: DNSStatus | None = None
    ssl_info: SSLInfo | None = None

    @property
    def is_failure(self) -> bool:
        """Check if the run failed."""
        return not self.success

    def summary(self) -> str:
        """One-line recap summary."""
        return (self.recap or RecapCounters()).format()
