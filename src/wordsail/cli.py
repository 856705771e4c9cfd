"""Command-line interface for WordSail."""

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import click
import yaml

from wordsail import __version__
from wordsail.config import Config, ConfigManager, validate_ansible_environment, validate_config
from wordsail.exceptions import ExecutionFailedError, WordSailError
from wordsail.executor import DEFAULT_RUNNER, PlaybookExecutor
from wordsail.inventory import InventoryGenerator
from wordsail.logging import configure_logging, get_level_from_name, get_level_from_verbosity
from wordsail.state import StateManager, ssl_expiry_or_default
from wordsail.types import Domain, ExecutionRequest, ExecutionResult, Server, Site, SSHConfig

logger = logging.getLogger("wordsail.cli")

PROVISION_PLAYBOOK = "provision.yml"
WEBSITE_PLAYBOOK = "website.yml"
DELETE_SITE_PLAYBOOK = "playbooks/delete_site.yml"
DOMAIN_PLAYBOOK = "playbooks/domain_management.yml"


@dataclass
class CliContext:
    """Options shared by every subcommand."""

    config_manager: ConfigManager
    verbose: bool = False
    dry_run: bool = False

    def load(self) -> Config:
        try:
            return self.config_manager.load()
        except WordSailError as e:
            raise click.ClickException(str(e))

    def executor(self, config: Config) -> PlaybookExecutor:
        inventory = InventoryGenerator(python_interpreter=config.ansible.python_interpreter)
        return PlaybookExecutor(config.ansible.path, inventory=inventory)

    def request(
        self,
        config: Config,
        playbook: str,
        server: Server,
        extra_vars: dict[str, Any] | None = None,
        global_vars: dict[str, Any] | None = None,
    ) -> ExecutionRequest:
        return ExecutionRequest(
            playbook=playbook,
            server=server,
            extra_vars=extra_vars or {},
            global_vars=config.global_vars if global_vars is None else global_vars,
            verbose=self.verbose,
            dry_run=self.dry_run,
        )


def banner(message: str, color: str = "cyan") -> None:
    """Print a section banner."""
    rule = "═" * 55
    click.echo()
    click.secho(rule, fg=color)
    click.secho(f"  {message}", fg=color)
    click.secho(rule, fg=color)
    click.echo()


def run_playbook(
    executor: PlaybookExecutor,
    request: ExecutionRequest,
    failure_message: str,
    with_result: bool = False,
) -> ExecutionResult:
    """Run a playbook and turn any error into a ClickException."""
    try:
        if with_result:
            result = executor.execute_with_result(request)
            if result.is_failure:
                raise ExecutionFailedError("playbook completed with failures", result)
            return result
        return executor.execute(request)
    except WordSailError as e:
        raise click.ClickException(f"{failure_message}: {e}")


def find_server(config: Config, name: str) -> Server:
    server = config.get_server(name)
    if server is None:
        raise click.ClickException(f"Server '{name}' not found")
    return server


def warn_state(error: WordSailError) -> None:
    click.secho(f"Warning: Failed to update configuration: {error}", fg="red", err=True)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("--verbose", "-v", is_flag=True, help="Stream full Ansible output")
@click.option("--dry-run", is_flag=True, help="Run playbooks in check mode without making changes")
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Config file (default: $WORDSAIL_CONFIG or ~/.wordsail/servers.yaml)")
@click.option("--log-level", help="Log level (debug, info, warning, error, critical)")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.pass_context
def cli(
    ctx: click.Context,
    version: bool,
    verbose: bool,
    dry_run: bool,
    config_path: Optional[str],
    log_level: Optional[str],
    log_file: Optional[str],
) -> None:
    """WordSail - Ansible wrapper for WordPress hosting management.

    Manage servers, sites and domains; state is kept in
    ~/.wordsail/servers.yaml.
    """
    if version:
        click.echo(f"wordsail {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)

    if log_level:
        try:
            level = get_level_from_name(log_level)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--log-level")
    else:
        level = get_level_from_verbosity(1 if verbose else 0)
    configure_logging(level=level, log_file=log_file)

    ctx.obj = CliContext(
        config_manager=ConfigManager(config_path),
        verbose=verbose,
        dry_run=dry_run,
    )


pass_cli = click.make_pass_decorator(CliContext)


# --- config ---------------------------------------------------------------

@cli.group()
def config() -> None:
    """Manage the WordSail configuration file."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.option("--ansible-path", help="Root of the WordSail Ansible tree")
@pass_cli
def config_init(obj: CliContext, force: bool, ansible_path: Optional[str]) -> None:
    """Create a config file with default values."""
    try:
        obj.config_manager.initialize(force=force, ansible_path=ansible_path)
    except WordSailError as e:
        raise click.ClickException(str(e))
    click.secho(f"✓ Configuration written to {obj.config_manager.path}", fg="green")


@config.command("show")
@pass_cli
def config_show(obj: CliContext) -> None:
    """Print the current configuration."""
    cfg = obj.load()
    click.echo(yaml.safe_dump(cfg.to_dict(), sort_keys=False, default_flow_style=False))


@config.command("validate")
@pass_cli
def config_validate(obj: CliContext) -> None:
    """Check the configuration file and the Ansible environment."""
    def check(title: str, step: Callable[[], Any]) -> Any:
        try:
            value = step()
        except WordSailError as e:
            click.secho(f"✗ {title} validation failed: {e}", fg="red")
            raise SystemExit(1)
        click.secho(f"✓ {title} validation passed", fg="green")
        return value

    click.echo("Validating configuration structure...")
    cfg = check("Structure", obj.config_manager.read)
    click.echo("Validating business rules...")
    check("Business rules", lambda: validate_config(cfg))
    click.echo("Validating Ansible environment...")
    check("Ansible environment", lambda: validate_ansible_environment(cfg, DEFAULT_RUNNER))

    click.echo()
    click.secho("✓ Configuration is valid", fg="green")
    click.echo(f"  Servers: {len(cfg.servers)}")
    click.echo(f"  Sites: {sum(len(s.sites) for s in cfg.servers)}")


# --- server ---------------------------------------------------------------

@cli.group()
def server() -> None:
    """Manage servers."""
    pass


@server.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@pass_cli
def server_list(obj: CliContext, as_json: bool) -> None:
    """List managed servers."""
    cfg = obj.load()
    if as_json:
        click.echo(json.dumps({"servers": [s.to_dict() for s in cfg.servers]}, indent=2))
        return

    if not cfg.servers:
        click.echo("No servers configured. Add one with: wordsail server add")
        return

    click.echo(f"\n{'NAME':<16} {'IP':<16} {'STATUS':<14} SITES")
    for srv in cfg.servers:
        click.echo(f"{srv.name:<16} {srv.ip:<16} {srv.status:<14} {len(srv.sites)}")
    click.echo(f"\n{len(cfg.servers)} server(s), {len(cfg.provisioned_servers())} provisioned\n")


@server.command("add")
@click.argument("name")
@click.option("--ip", required=True, help="Server IP address")
@click.option("--hostname", help="Fully qualified hostname (default: NAME)")
@click.option("--user", default="root", show_default=True, help="SSH user")
@click.option("--port", default=22, show_default=True, type=click.IntRange(1, 65535), help="SSH port")
@click.option("--key-file", default="~/.ssh/id_rsa", show_default=True, help="SSH private key")
@pass_cli
def server_add(
    obj: CliContext,
    name: str,
    ip: str,
    hostname: Optional[str],
    user: str,
    port: int,
    key_file: str,
) -> None:
    """Add an unprovisioned server to the configuration."""
    cfg = obj.load()
    if cfg.get_server(name):
        raise click.ClickException(f"Server '{name}' already exists")

    cfg.servers.append(Server(
        name=name,
        hostname=hostname or name,
        ip=ip,
        ssh=SSHConfig(user=user, port=port, key_file=key_file),
    ))
    try:
        obj.config_manager.save(cfg)
    except WordSailError as e:
        raise click.ClickException(str(e))
    click.secho(f"✓ Server '{name}' added successfully", fg="green")


@server.command("remove")
@click.argument("name")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@pass_cli
def server_remove(obj: CliContext, name: str, force: bool) -> None:
    """Remove a server from the WordSail inventory.

    Only the configuration entry is removed; the machine and everything
    running on it keep existing.
    """
    state = StateManager(obj.config_manager)
    try:
        target = state.get_server(name)
    except WordSailError as e:
        raise click.ClickException(str(e))

    click.echo()
    click.secho(f"Warning: This will remove '{name}' from the WordSail inventory only.", fg="yellow")
    click.echo("The server will still exist at your hosting provider.")
    click.echo("You must delete it there manually if needed.")
    if target.sites:
        click.secho(
            f"This server has {len(target.sites)} site(s) that will also be removed "
            "from the inventory.",
            fg="yellow",
        )
    click.echo()

    if not force:
        click.confirm(f"Remove server '{name}' from inventory?", abort=True)

    try:
        state.remove_server(name)
    except WordSailError as e:
        raise click.ClickException(str(e))
    click.secho(f"✓ Server '{name}' removed from inventory", fg="green")


@server.command("provision")
@click.argument("name")
@pass_cli
def server_provision(obj: CliContext, name: str) -> None:
    """Provision a server with the full WordPress stack."""
    cfg = obj.load()
    target = find_server(cfg, name)

    missing = cfg.missing_provision_vars()
    if missing:
        raise click.ClickException(
            f"Missing required configuration: {', '.join(missing)} "
            f"(set them under global_vars in {obj.config_manager.path})"
        )

    mysql_password = target.credentials.get("mysql_wordsailbot_password") or secrets.token_urlsafe(24)
    provision_vars = dict(cfg.global_vars)
    provision_vars["mysql_wordsailbot_password"] = mysql_password

    banner(f"Starting provisioning: {name}\n  Estimated time: 5-10 minutes")
    state = StateManager(obj.config_manager)
    try:
        run_playbook(
            obj.executor(cfg),
            obj.request(cfg, PROVISION_PLAYBOOK, target, global_vars=provision_vars),
            "Provisioning failed",
        )
    except click.ClickException:
        if not obj.dry_run:
            try:
                state.mark_server_error(name)
            except WordSailError as e:
                warn_state(e)
        raise

    if obj.dry_run:
        click.secho("\n✓ Dry run finished; configuration left unchanged", fg="green")
        return

    try:
        state.set_server_credential(name, "mysql_wordsailbot_password", mysql_password)
        state.mark_server_provisioned(name)
    except WordSailError as e:
        warn_state(e)

    banner(f"✓ Server '{name}' provisioned successfully!", color="green")
    click.echo("Server credentials:")
    click.echo(f"  MySQL wordsailbot password: {mysql_password}")
    click.secho("  Save this password! It's stored in your config file.", fg="yellow")
    click.echo("\nNext steps:\n  Create a WordPress site: wordsail site create")


# --- site -----------------------------------------------------------------

@cli.group()
def site() -> None:
    """Manage WordPress sites."""
    pass


@site.command("list")
@click.option("--server", "server_name", help="Only list sites on this server")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@pass_cli
def site_list(obj: CliContext, server_name: Optional[str], as_json: bool) -> None:
    """List WordPress sites across servers."""
    cfg = obj.load()
    rows = [
        (srv, s) for srv in cfg.servers
        if server_name is None or srv.name == server_name
        for s in srv.sites
    ]

    if as_json:
        click.echo(json.dumps(
            [{"server_name": srv.name, "site": s.to_dict()} for srv, s in rows],
            indent=2,
        ))
        return

    if not rows:
        if server_name:
            click.echo(f"No sites found on server '{server_name}'")
        else:
            click.echo("No sites configured. Create one with: wordsail site create")
        return

    where = f"on server '{server_name}'" if server_name else "across all servers"
    click.echo(f"\nSites {where} ({len(rows)} total):\n")
    click.echo(f"{'SERVER':<16} {'DOMAIN':<32} {'SYSTEM NAME':<16} NOTES")
    for srv, s in rows:
        notes = s.notes if len(s.notes) <= 38 else s.notes[:35] + "..."
        click.echo(f"{srv.name:<16} {s.primary_domain:<32} {s.system_name:<16} {notes}")
    click.echo()


@site.command("create")
@click.option("--server", "server_name", required=True, help="Target server")
@click.option("--system-name", required=True, help="Unix-safe site identifier")
@click.option("--domain", required=True, help="Primary domain")
@click.option("--admin-user", default="admin", show_default=True, help="WordPress admin user")
@click.option("--admin-email", required=True, help="WordPress admin email")
@click.option("--admin-password", help="WordPress admin password (generated if omitted)")
@click.option("--php-version", default="8.3", show_default=True, help="PHP version")
@pass_cli
def site_create(
    obj: CliContext,
    server_name: str,
    system_name: str,
    domain: str,
    admin_user: str,
    admin_email: str,
    admin_password: Optional[str],
    php_version: str,
) -> None:
    """Create a WordPress site on a provisioned server."""
    cfg = obj.load()
    target = find_server(cfg, server_name)
    if not target.is_provisioned:
        raise click.ClickException(
            f"Server '{server_name}' is not provisioned "
            f"(run: wordsail server provision {server_name})"
        )
    if target.get_site(system_name):
        raise click.ClickException(f"Site '{system_name}' already exists on '{server_name}'")

    password = admin_password or secrets.token_urlsafe(16)
    extra_vars = {
        "domain": domain,
        "system_name": system_name,
        "wp_admin_user": admin_user,
        "wp_admin_email": admin_email,
        "wp_admin_password": password,
        "php_version": php_version,
    }

    banner(f"Creating WordPress site: {domain}")
    run_playbook(
        obj.executor(cfg),
        obj.request(cfg, WEBSITE_PLAYBOOK, target, extra_vars),
        "Site creation failed",
    )
    if obj.dry_run:
        return

    new_site = Site(
        system_name=system_name,
        primary_domain=domain,
        admin_user=admin_user,
        admin_email=admin_email,
        domains=[Domain(domain=domain)],
        php_version=php_version,
    )
    try:
        StateManager(obj.config_manager).add_site(server_name, new_site)
    except WordSailError as e:
        warn_state(e)

    banner("✓ WordPress site created successfully!", color="green")
    click.echo(f"Site URL:      http://{domain}")
    click.echo(f"Admin URL:     http://{domain}/wp-admin")
    click.echo(f"Admin User:    {admin_user}")
    if not admin_password:
        click.echo(f"Admin Pass:    {password}")
    click.echo("\nNext steps:\n  Issue SSL: wordsail domain ssl")


@site.command("delete")
@click.option("--server", "server_name", required=True, help="Target server")
@click.option("--site", "system_name", required=True, help="Site system name")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@pass_cli
def site_delete(obj: CliContext, server_name: str, system_name: str, force: bool) -> None:
    """Delete a site, its database and its files."""
    cfg = obj.load()
    target = find_server(cfg, server_name)
    target_site = target.get_site(system_name)
    if target_site is None:
        raise click.ClickException(f"Site '{system_name}' not found on '{server_name}'")

    if not force:
        click.confirm(
            f"Delete site '{target_site.primary_domain}' and all its data?",
            abort=True,
        )

    extra_vars = {
        "system_name": target_site.system_name,
        "site_domain": target_site.primary_domain,
        "db_host": target_site.database.host if target_site.database else "localhost",
    }

    banner(f"Deleting site: {target_site.primary_domain}")
    run_playbook(
        obj.executor(cfg),
        obj.request(cfg, DELETE_SITE_PLAYBOOK, target, extra_vars),
        "Site deletion failed (you may need to clean up resources manually)",
    )
    if obj.dry_run:
        return

    try:
        StateManager(obj.config_manager).remove_site(server_name, system_name)
    except WordSailError as e:
        warn_state(e)
    click.secho(f"\n✓ Site '{target_site.primary_domain}' deleted successfully", fg="green")


# --- domain ---------------------------------------------------------------

@cli.group()
def domain() -> None:
    """Manage domains and SSL certificates."""
    pass


def _issue_ssl(
    obj: CliContext,
    cfg: Config,
    target: Server,
    system_name: str,
    domain_name: str,
    email: Optional[str],
) -> None:
    certbot_email = email or cfg.global_vars.get("certbot_email") or "admin@example.com"
    extra_vars = {
        "operation": "issue_ssl",
        "domain": domain_name,
        "certbot_email": certbot_email,
    }

    banner(f"Issuing SSL certificate for: {domain_name}")
    result = run_playbook(
        obj.executor(cfg),
        obj.request(cfg, DOMAIN_PLAYBOOK, target, extra_vars),
        "SSL certificate issuance failed",
        with_result=True,
    )
    if obj.dry_run:
        return

    now = datetime.now()
    expiry_text = result.ssl_info.expiry if result.ssl_info else None
    expires_at = ssl_expiry_or_default(expiry_text, now)
    try:
        StateManager(obj.config_manager).update_domain_ssl(
            target.name, system_name, domain_name, issued_at=now, expires_at=expires_at
        )
    except WordSailError as e:
        warn_state(e)

    click.secho("\n✓ SSL certificate issued successfully", fg="green")
    click.echo(f"Domain:      https://{domain_name}")
    click.echo(f"Issued:      {now:%Y-%m-%d}")
    click.echo(f"Expires:     {expires_at:%Y-%m-%d}")


@domain.command("add")
@click.option("--server", "server_name", required=True, help="Target server")
@click.option("--site", "system_name", required=True, help="Site system name")
@click.option("--domain", "domain_name", required=True, help="Domain to add")
@click.option("--ssl", "issue_ssl", is_flag=True, help="Also issue an SSL certificate")
@pass_cli
def domain_add(
    obj: CliContext,
    server_name: str,
    system_name: str,
    domain_name: str,
    issue_ssl: bool,
) -> None:
    """Add a domain to a site."""
    cfg = obj.load()
    target = find_server(cfg, server_name)
    if target.get_site(system_name) is None:
        raise click.ClickException(f"Site '{system_name}' not found on '{server_name}'")
    owner = target.find_site_by_domain(domain_name)
    if owner is not None:
        raise click.ClickException(
            f"Domain '{domain_name}' is already served by site '{owner.system_name}' "
            f"on '{server_name}'"
        )

    extra_vars = {
        "operation": "add_domain",
        "domain": domain_name,
        "site_id": system_name,
    }
    banner(f"Adding domain: {domain_name}")
    executor = obj.executor(cfg)
    run_playbook(executor, obj.request(cfg, DOMAIN_PLAYBOOK, target, extra_vars), "Domain addition failed")

    if not obj.dry_run:
        try:
            StateManager(obj.config_manager).add_domain(server_name, system_name, Domain(domain=domain_name))
        except WordSailError as e:
            warn_state(e)
    click.secho(f"\n✓ Domain '{domain_name}' added successfully", fg="green")

    if issue_ssl:
        try:
            _issue_ssl(obj, cfg, target, system_name, domain_name, None)
        except click.ClickException as e:
            raise click.ClickException(
                f"{e.message}\nThe domain has been added but SSL is not configured. "
                "Issue it later with: wordsail domain ssl"
            )
    else:
        click.echo(f"\nDomain URL:  http://{domain_name}")
        click.echo("To issue SSL later: wordsail domain ssl")


@domain.command("remove")
@click.option("--server", "server_name", required=True, help="Target server")
@click.option("--site", "system_name", required=True, help="Site system name")
@click.option("--domain", "domain_name", required=True, help="Domain to remove")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@pass_cli
def domain_remove(
    obj: CliContext,
    server_name: str,
    system_name: str,
    domain_name: str,
    force: bool,
) -> None:
    """Remove a domain, its Nginx configuration and its certificate."""
    cfg = obj.load()
    target = find_server(cfg, server_name)
    if not force:
        click.confirm(f"Remove domain '{domain_name}'?", abort=True)

    extra_vars = {"operation": "remove_domain", "domain": domain_name}
    banner(f"Removing domain: {domain_name}")
    run_playbook(
        obj.executor(cfg),
        obj.request(cfg, DOMAIN_PLAYBOOK, target, extra_vars),
        "Domain removal failed",
    )
    if not obj.dry_run:
        try:
            StateManager(obj.config_manager).remove_domain(server_name, system_name, domain_name)
        except WordSailError as e:
            warn_state(e)
    click.secho(f"\n✓ Domain '{domain_name}' removed successfully", fg="green")


@domain.command("ssl")
@click.option("--server", "server_name", required=True, help="Target server")
@click.option("--site", "system_name", required=True, help="Site system name")
@click.option("--domain", "domain_name", required=True, help="Domain to secure")
@click.option("--email", help="Let's Encrypt account email (default: global certbot_email)")
@pass_cli
def domain_ssl(
    obj: CliContext,
    server_name: str,
    system_name: str,
    domain_name: str,
    email: Optional[str],
) -> None:
    """Issue a Let's Encrypt certificate for a domain."""
    cfg = obj.load()
    target = find_server(cfg, server_name)
    if target.get_site(system_name) is None:
        raise click.ClickException(f"Site '{system_name}' not found on '{server_name}'")
    _issue_ssl(obj, cfg, target, system_name, domain_name, email)


@domain.command("check-dns")
@click.option("--server", "server_name", required=True, help="Target server")
@click.option("--domain", "domain_name", required=True, help="Domain to check")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@pass_cli
def domain_check_dns(obj: CliContext, server_name: str, domain_name: str, as_json: bool) -> None:
    """Check that a domain resolves to its server."""
    cfg = obj.load()
    target = find_server(cfg, server_name)
    extra_vars = {"operation": "check_dns", "domain": domain_name}

    result = run_playbook(
        obj.executor(cfg),
        obj.request(cfg, DOMAIN_PLAYBOOK, target, extra_vars),
        "DNS check failed",
        with_result=True,
    )
    status = result.dns_status
    if status is None:
        raise click.ClickException(f"No DNS status reported for {domain_name}")

    if as_json:
        click.echo(json.dumps({
            "domain": status.domain,
            "resolved_ip": status.resolved_ip,
            "server_ip": status.server_ip,
            "matches": status.matches,
        }, indent=2))
    elif status.matches:
        click.secho(f"✓ {status.domain} resolves to {status.resolved_ip}", fg="green")
    else:
        click.secho(
            f"✗ {status.domain} resolves to {status.resolved_ip}, expected {status.server_ip}",
            fg="red",
        )

    if not status.matches:
        raise SystemExit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
