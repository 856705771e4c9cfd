"""Tests for configuration file management."""

import stat

import pytest

from wordsail.config import (
    CONFIG_ENV_VAR,
    REQUIRED_PLAYBOOKS,
    Config,
    ConfigManager,
    default_config,
    resolve_config_path,
    validate_ansible_environment,
    validate_config,
)
from wordsail.exceptions import ConfigError
from wordsail.types import Domain, Server, Site, SSHConfig


@pytest.fixture
def manager(tmp_path):
    return ConfigManager(tmp_path / "wordsail" / "servers.yaml")


def make_server(name="web01", **kwargs):
    return Server(name=name, hostname=f"{name}.example.com", ip="203.0.113.10", **kwargs)


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_initialize(self, manager):
        """Test init writes the defaults."""
        config = manager.initialize(ansible_path="/opt/wordsail/ansible")

        assert manager.exists()
        loaded = manager.load()
        assert loaded == config
        assert loaded.ansible.path == "/opt/wordsail/ansible"
        assert loaded.global_vars["certbot_email"] == "admin@example.com"

    def test_initialize_refuses_overwrite(self, manager):
        """Test init without force keeps an existing file."""
        manager.initialize()
        with pytest.raises(ConfigError, match="already exists"):
            manager.initialize()
        manager.initialize(force=True)

    def test_save_permissions(self, manager):
        """Test the file is private and no temp file is left behind."""
        manager.save(default_config())

        mode = stat.S_IMODE(manager.path.stat().st_mode)
        assert mode == 0o600
        assert list(manager.config_dir.iterdir()) == [manager.path]

    def test_round_trip(self, manager):
        """Test servers and sites survive a save/load cycle."""
        config = default_config()
        site = Site(system_name="blog", primary_domain="blog.example.com",
                    admin_user="admin", admin_email="admin@example.com")
        config.servers.append(make_server(
            ssh=SSHConfig(user="deploy", port=2222),
            status="provisioned",
            sites=[site],
        ))

        manager.save(config)
        loaded = manager.load()

        assert loaded.get_server("web01").ssh.port == 2222
        assert loaded.get_server("web01").get_site("blog").primary_domain == "blog.example.com"
        assert [s.name for s in loaded.provisioned_servers()] == ["web01"]

    def test_load_missing(self, manager):
        """Test a missing file points the user at config init."""
        with pytest.raises(ConfigError, match="config init"):
            manager.load()

    def test_load_invalid_yaml(self, manager):
        """Test unparseable YAML raises ConfigError."""
        manager.config_dir.mkdir(parents=True)
        manager.path.write_text("servers: [unclosed\n")
        with pytest.raises(ConfigError, match="failed to parse"):
            manager.load()

    def test_load_not_a_mapping(self, manager):
        """Test a YAML list is rejected."""
        manager.config_dir.mkdir(parents=True)
        manager.path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            manager.load()

    def test_load_missing_server_field(self, manager):
        """Test a server without an IP is rejected."""
        manager.config_dir.mkdir(parents=True)
        manager.path.write_text("servers:\n  - name: web01\n")
        with pytest.raises(ConfigError):
            manager.load()


class TestValidateConfig:
    """Tests for validate_config."""

    def test_valid(self):
        """Test a default config is valid."""
        validate_config(default_config())

    def test_duplicate_servers(self):
        """Test duplicate server names are reported."""
        config = Config(servers=[make_server(), make_server()])
        with pytest.raises(ConfigError, match="duplicate server name: web01"):
            validate_config(config)

    def test_invalid_status_and_port(self):
        """Test every problem is reported at once."""
        config = Config(servers=[make_server(status="broken", ssh=SSHConfig(port=70000))])
        with pytest.raises(ConfigError) as exc_info:
            validate_config(config)
        assert len(exc_info.value.context["errors"]) == 2

    def test_domain_on_two_servers(self):
        """Test a domain recorded on two servers is reported."""
        def site():
            return Site(system_name="blog", primary_domain="blog.example.com",
                        admin_user="admin", admin_email="admin@example.com",
                        domains=[Domain(domain="blog.example.com")])

        config = Config(servers=[make_server(sites=[site()]), make_server("web02", sites=[site()])])
        with pytest.raises(ConfigError, match="blog.example.com exists on both server web01 and web02"):
            validate_config(config)

    def test_read_skips_rules(self, manager):
        """Test read parses a file that load would reject."""
        manager.save(Config(servers=[make_server(), make_server()]))
        assert len(manager.read().servers) == 2
        with pytest.raises(ConfigError, match="duplicate server name"):
            manager.load()


class TestValidateAnsibleEnvironment:
    """Tests for validate_ansible_environment."""

    @pytest.fixture
    def runner(self, tmp_path, monkeypatch):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        runner = bin_dir / "ansible-playbook"
        runner.write_text("#!/bin/sh\nexit 0\n")
        runner.chmod(0o755)
        monkeypatch.setenv("PATH", str(bin_dir))
        return runner

    @pytest.fixture
    def ansible_root(self, tmp_path):
        root = tmp_path / "ansible"
        root.mkdir()
        for playbook in REQUIRED_PLAYBOOKS:
            (root / playbook).write_text("")
        return root

    def test_valid(self, runner, ansible_root):
        """Test a complete environment passes."""
        validate_ansible_environment(default_config(str(ansible_root)))

    def test_runner_missing(self, runner, ansible_root):
        """Test a runner that is not on PATH is reported."""
        with pytest.raises(ConfigError, match="ansible-nope not found in PATH"):
            validate_ansible_environment(default_config(str(ansible_root)), runner="ansible-nope")

    def test_root_missing(self, runner, tmp_path):
        """Test a missing Ansible root is reported."""
        with pytest.raises(ConfigError, match="ansible path does not exist"):
            validate_ansible_environment(default_config(str(tmp_path / "nowhere")))

    def test_playbook_missing(self, runner, ansible_root):
        """Test each required playbook must exist."""
        (ansible_root / "provision.yml").unlink()
        with pytest.raises(ConfigError, match="required playbook not found: .*provision.yml"):
            validate_ansible_environment(default_config(str(ansible_root)))


class TestMissingProvisionVars:
    """Tests for Config.missing_provision_vars."""

    def test_all_present(self):
        """Test the defaults satisfy provisioning."""
        assert default_config().missing_provision_vars() == []

    def test_missing_and_empty(self):
        """Test unset and empty values are both reported."""
        config = Config(global_vars={"certbot_email": ""})
        assert config.missing_provision_vars() == ["certbot_email", "wordsail_ssh_key"]


class TestResolveConfigPath:
    """Tests for resolve_config_path."""

    def test_explicit_wins(self, monkeypatch, tmp_path):
        """Test an explicit path beats the environment."""
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "env.yaml"))
        assert resolve_config_path(tmp_path / "explicit.yaml") == tmp_path / "explicit.yaml"

    def test_env(self, monkeypatch, tmp_path):
        """Test the environment variable is used when no path is given."""
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "env.yaml"))
        assert resolve_config_path() == tmp_path / "env.yaml"

    def test_default(self, monkeypatch):
        """Test the default lives under ~/.wordsail."""
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        path = resolve_config_path()
        assert path.name == "servers.yaml"
        assert path.parent.name == ".wordsail"
