"""Tests for WordSail type definitions."""

from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from wordsail.types import (
    Domain,
    ExecutionRequest,
    ExecutionResult,
    RecapCounters,
    Server,
    Site,
    SSHConfig,
    merge_variables,
)


def make_server(**kwargs):
    defaults = {"name": "web01", "hostname": "web01.example.com", "ip": "203.0.113.10"}
    defaults.update(kwargs)
    return Server(**defaults)


class TestMergeVariables:
    """Tests for variable precedence."""

    def test_extra_vars_win(self):
        """Test call-specific variables override globals on collision."""
        merged = merge_variables({"a": "global", "b": "global"}, {"b": "call"})
        assert merged == {"a": "global", "b": "call"}

    def test_none_inputs(self):
        """Test missing dictionaries merge to an empty payload."""
        assert merge_variables(None, None) == {}

    def test_inputs_not_mutated(self):
        """Test merging leaves both inputs untouched."""
        global_vars = {"a": 1}
        extra_vars = {"a": 2}
        merge_variables(global_vars, extra_vars)
        assert global_vars == {"a": 1}
        assert extra_vars == {"a": 2}


class TestExecutionRequest:
    """Tests for ExecutionRequest."""

    def test_merged_vars(self):
        """Test request merges globals with extra vars."""
        request = ExecutionRequest(
            playbook="website.yml",
            server=make_server(),
            extra_vars={"domain": "example.com", "certbot_email": "site@example.com"},
            global_vars={"certbot_email": "ops@example.com", "wordsail_ssh_key": "key"},
        )
        assert request.merged_vars() == {
            "certbot_email": "site@example.com",
            "wordsail_ssh_key": "key",
            "domain": "example.com",
        }

    def test_defaults(self):
        """Test default flags."""
        request = ExecutionRequest(playbook="provision.yml", server=make_server())
        assert request.verbose is False
        assert request.dry_run is False
        assert request.merged_vars() == {}
        assert request.label == "wordsail provision.yml"


class TestServer:
    """Tests for Server."""

    def test_defaults(self):
        """Test default SSH settings and status."""
        server = make_server()
        assert server.ssh == SSHConfig(user="root", port=22, key_file="~/.ssh/id_rsa")
        assert server.status == "unprovisioned"
        assert not server.is_provisioned

    def test_round_trip(self):
        """Test to_dict/from_dict preserves sites and domains."""
        site = Site(
            system_name="blog",
            primary_domain="blog.example.com",
            admin_user="admin",
            admin_email="admin@example.com",
            created_at=datetime(2024, 1, 2, 3, 4, 5),
            domains=[Domain(domain="blog.example.com", ssl_enabled=True,
                            ssl_expires_at=datetime(2024, 4, 1))],
        )
        server = make_server(status="provisioned", credentials={"k": "v"}, sites=[site])

        restored = Server.from_dict(server.to_dict())

        assert restored == server
        assert restored.get_site("blog").database.name == "blog"

    def test_find_site_by_domain(self):
        """Test locating a site by an additional domain."""
        site = Site(
            system_name="shop",
            primary_domain="shop.example.com",
            admin_user="admin",
            admin_email="admin@example.com",
            domains=[Domain(domain="www.shop.example.com")],
        )
        server = make_server(sites=[site])
        assert server.find_site_by_domain("www.shop.example.com") is site
        assert server.find_site_by_domain("shop.example.com") is site
        assert server.find_site_by_domain("other.example.com") is None

    def test_hostname_defaults_to_name(self):
        """Test a missing hostname falls back to the server name."""
        server = Server.from_dict({"name": "web02", "ip": "198.51.100.7"})
        assert server.hostname == "web02"


class TestExecutionResult:
    """Tests for ExecutionResult."""

    def test_summary_with_recap(self):
        """Test summary formats the recap counters."""
        result = ExecutionResult(success=True, exit_code=0, recap=RecapCounters(42, 17, 0))
        assert result.summary() == "42 ok, 17 changed, 0 failed"

    def test_summary_without_recap(self):
        """Test summary falls back to zero counters."""
        result = ExecutionResult(success=False, exit_code=1)
        assert result.summary() == "0 ok, 0 changed, 0 failed"
        assert result.is_failure

    def test_immutable(self):
        """Test a finished result cannot be changed."""
        result = ExecutionResult(success=True, exit_code=0, stdout=("ok: [web01]",))
        with pytest.raises(FrozenInstanceError):
            result.success = False
        assert result.output == ()
