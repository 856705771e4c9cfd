"""Temporary Ansible inventory generation for WordSail.

Each playbook run gets its own INI inventory describing exactly one server.
The file is written to the temp directory under a unique name and deleted
once the run finishes, whatever the outcome.
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError

from .exceptions import InventoryError
from .types import Server

logger = logging.getLogger(__name__)

INVENTORY_PREFIX = "wordsail"
DEFAULT_PYTHON_INTERPRETER = "/usr/bin/python3"

INVENTORY_TEMPLATE = """\
# Generated by WordSail on {{ timestamp }}
# Command: {{ command }}
# This file is temporary and is removed when the run finishes.

[wordpress]
{{ server.name }} ansible_host={{ server.ip }} ansible_user={{ server.ssh.user }} \
ansible_port={{ server.ssh.port }} ansible_ssh_private_key_file={{ key_file }} \
ansible_python_interpreter={{ python_interpreter }}

[wordpress:vars]
server_name={{ server.name }}
server_hostname={{ server.hostname }}
{% for key, value in variables | dictsort %}
{{ key }}={{ value }}
{% endfor %}
"""

_environment = Environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def expand_home(path: str) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    return os.path.expanduser(path) if path.startswith("~") else path


def stringify_variables(variables: dict[str, Any]) -> dict[str, str]:
    """Convert variable values to strings and expand environment references.

    Booleans are written the way Ansible spells them in YAML (``true`` /
    ``false``) and ``None`` becomes an empty string. ``$VAR`` and ``${VAR}``
    references are resolved now, not when Ansible reads the file.

    Example:
        >>> os.environ["CERT_EMAIL"] = "ops@example.com"
        >>> stringify_variables({"certbot_email": "$CERT_EMAIL", "debug": True})
        {'certbot_email': 'ops@example.com', 'debug': 'true'}
    """
    result: dict[str, str] = {}
    for key, value in variables.items():
        if isinstance(value, bool):
            text = "true" if value else "false"
        elif value is None:
            text = ""
        else:
            text = str(value)
        result[str(key)] = os.path.expandvars(text)
    return result


class InventoryGenerator:
    """Writes and removes per-run inventory files.

    Attributes:
        output_dir: Directory the inventories are written to
        python_interpreter: Interpreter Ansible uses on the target

    Example:
        >>> generator = InventoryGenerator()
        >>> path = generator.generate(server, "wordsail provision.yml", {"certbot_email": "a@b.c"})
        >>> try:
        ...     run_playbook(path)
        ... finally:
        ...     generator.cleanup(path)
    """

    def __init__(
        self,
        output_dir: str | Path | None = None,
        python_interpreter: str = DEFAULT_PYTHON_INTERPRETER,
    ) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path(tempfile.gettempdir())
        self.python_interpreter = python_interpreter
        self._template = _environment.from_string(INVENTORY_TEMPLATE)

    def render(self, server: Server, command: str, variables: dict[str, Any]) -> str:
        """Render the inventory text for a server.

        Raises:
            InventoryError: If the template cannot be rendered
        """
        try:
            return self._template.render(
                timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
                command=command,
                server=server,
                key_file=expand_home(server.ssh.key_file),
                python_interpreter=self.python_interpreter,
                variables=stringify_variables(variables),
            )
        except TemplateError as e:
            raise InventoryError(
                f"failed to render inventory template: {e}", server=server.name
            ) from e

    def generate(self, server: Server, command: str, variables: dict[str, Any]) -> Path:
        """Write an inventory file for the server.

        The name embeds the server name and a microsecond timestamp, and
        ``mkstemp`` guarantees uniqueness on top of that, so concurrent runs
        never share a file.

        Args:
            server: Target server
            command: Operation label recorded in the file header
            variables: Merged variable payload

        Returns:
            Path to the written inventory

        Raises:
            InventoryError: If the file cannot be rendered or written
        """
        content = self.render(server, command, variables)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                prefix=f"{INVENTORY_PREFIX}-{server.name}-{timestamp}-",
                suffix=".ini",
                dir=self.output_dir,
            )
        except OSError as e:
            raise InventoryError(
                f"failed to create inventory file: {e}", server=server.name
            ) from e

        path = Path(name)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
        except OSError as e:
            self.cleanup(path)
            raise InventoryError(
                f"failed to write inventory file: {e}", server=server.name, path=str(path)
            ) from e

        logger.debug(f"Wrote inventory {path} for {server.name}")
        return path

    def cleanup(self, path: str | Path | None) -> None:
        """Remove a generated inventory. Safe to call repeatedly."""
        if not path:
            return
        Path(path).unlink(missing_ok=True)
        logger.debug(f"Removed inventory {path}")
