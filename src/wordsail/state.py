"""Translation of playbook outcomes into durable state.

Every update loads the configuration, changes one record and saves it
again. The executor never writes state itself; the CLI calls these methods
after a run succeeds (or, for provisioning, fails).
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Callable

from .config import Config, ConfigManager
from .exceptions import StateError
from .types import Domain, Server, Site

logger = logging.getLogger(__name__)

SSL_FALLBACK_VALIDITY = timedelta(days=90)

# OpenSSL notAfter text, e.g. "Mar 15 12:00:00 2024 GMT" or "Jan  5 08:30:00 2025 GMT"
_SSL_EXPIRY_PATTERN = re.compile(
    r"^(?P<month>[A-Z][a-z]{2})\s+(?P<day>\d{1,2})\s+(?P<time>\d{2}:\d{2}:\d{2})\s+(?P<year>\d{4})\s+GMT$"
)


def parse_ssl_expiry(text: str) -> datetime | None:
    """Parse a certificate expiry as printed by ``openssl x509 -enddate``.

    Returns:
        The expiry as a naive UTC datetime, or None if the text is not in
        OpenSSL's format

    Example:
        >>> parse_ssl_expiry("Mar 15 12:00:00 2024 GMT")
        datetime.datetime(2024, 3, 15, 12, 0)
        >>> parse_ssl_expiry("2024-03-15") is None
        True
    """
    match = _SSL_EXPIRY_PATTERN.match(text.strip())
    if not match:
        return None
    normalized = f"{match['month']} {int(match['day'])} {match['time']} {match['year']}"
    try:
        return datetime.strptime(normalized, "%b %d %H:%M:%S %Y")
    except ValueError:
        return None


def ssl_expiry_or_default(text: str | None, now: datetime | None = None) -> datetime:
    """Parse the expiry, falling back to Let's Encrypt's 90-day validity."""
    now = now or datetime.now()
    expires_at = parse_ssl_expiry(text) if text else None
    if expires_at is None:
        logger.info(f"Could not parse SSL expiry {text!r}; assuming {SSL_FALLBACK_VALIDITY.days} days")
        return now + SSL_FALLBACK_VALIDITY
    return expires_at


class StateManager:
    """Applies state changes to the configuration file.

    Example:
        >>> state = StateManager(ConfigManager())
        >>> state.mark_server_provisioned("web01")
    """

    def __init__(self, config_manager: ConfigManager) -> None:
        self.config_manager = config_manager

    def _update(self, change: Callable[[Config], None]) -> None:
        config = self.config_manager.load()
        change(config)
        self.config_manager.save(config)

    @staticmethod
    def _server(config: Config, server_name: str) -> Server:
        server = config.get_server(server_name)
        if server is None:
            raise StateError(f"server not found: {server_name}", server=server_name)
        return server

    @classmethod
    def _site(cls, config: Config, server_name: str, system_name: str) -> Site:
        site = cls._server(config, server_name).get_site(system_name)
        if site is None:
            raise StateError(
                f"site '{system_name}' not found on server '{server_name}'",
                server=server_name,
                site=system_name,
            )
        return site

    def get_server(self, server_name: str) -> Server:
        """Get a server by name.

        Raises:
            StateError: If the server does not exist
        """
        return self._server(self.config_manager.load(), server_name)

    def mark_server_provisioned(self, server_name: str, provisioned_at: datetime | None = None) -> None:
        """Set a server's status to provisioned and record when."""
        def change(config: Config) -> None:
            server = self._server(config, server_name)
            server.status = "provisioned"
            server.provisioned_at = provisioned_at or datetime.now()

        self._update(change)

    def mark_server_error(self, server_name: str) -> None:
        """Set a server's status to error."""
        def change(config: Config) -> None:
            self._server(config, server_name).status = "error"

        self._update(change)

    def remove_server(self, server_name: str) -> None:
        """Forget a server together with its sites.

        The machine itself is left untouched.
        """
        def change(config: Config) -> None:
            config.servers.remove(self._server(config, server_name))

        self._update(change)

    def set_server_credential(self, server_name: str, key: str, value: str) -> None:
        """Store a server-specific secret."""
        def change(config: Config) -> None:
            self._server(config, server_name).credentials[key] = value

        self._update(change)

    def add_site(self, server_name: str, site: Site) -> None:
        """Add a site to a server.

        Raises:
            StateError: If the server is missing or already hosts the site
        """
        def change(config: Config) -> None:
            server = self._server(config, server_name)
            if server.get_site(site.system_name):
                raise StateError(
                    f"site '{site.system_name}' already exists on server '{server_name}'",
                    server=server_name,
                    site=site.system_name,
                )
            server.sites.append(site)

        self._update(change)

    def remove_site(self, server_name: str, system_name: str) -> None:
        """Remove a site from a server."""
        def change(config: Config) -> None:
            server = self._server(config, server_name)
            site = self._site(config, server_name, system_name)
            server.sites.remove(site)

        self._update(change)

    def add_domain(self, server_name: str, system_name: str, domain: Domain) -> None:
        """Add a domain to a site."""
        def change(config: Config) -> None:
            site = self._site(config, server_name, system_name)
            if site.get_domain(domain.domain):
                raise StateError(
                    f"domain '{domain.domain}' already exists on site '{system_name}'",
                    server=server_name,
                    site=system_name,
                    domain=domain.domain,
                )
            site.domains.append(domain)

        self._update(change)

    def remove_domain(self, server_name: str, system_name: str, domain_name: str) -> None:
        """Remove a domain from a site."""
        def change(config: Config) -> None:
            site = self._site(config, server_name, system_name)
            domain = site.get_domain(domain_name)
            if domain is None:
                raise StateError(
                    f"domain '{domain_name}' not found on site '{system_name}' "
                    f"on server '{server_name}'",
                    server=server_name,
                    site=system_name,
                    domain=domain_name,
                )
            site.domains.remove(domain)

        self._update(change)

    def update_domain_ssl(
        self,
        server_name: str,
        system_name: str,
        domain_name: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> Domain:
        """Record a freshly issued certificate.

        A domain missing from the site is added, since the certificate
        exists on the server either way.
        """
        updated = Domain(
            domain=domain_name,
            ssl_enabled=True,
            ssl_issued_at=issued_at,
            ssl_expires_at=expires_at,
        )

        def change(config: Config) -> None:
            site = self._site(config, server_name, system_name)
            for index, existing in enumerate(site.domains):
                if existing.domain == domain_name:
                    site.domains[index] = updated
                    return
            site.domains.append(updated)

        self._update(change)
        return updated
