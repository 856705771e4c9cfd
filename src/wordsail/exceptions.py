"""WordSail exceptions.

Every error raised by the executor carries a human-readable ``msg`` and any
structured context as keyword fields, so the CLI can print a one-line
message while logs and JSON output keep the details.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import ExecutionResult


class WordSailError(Exception):
    """Base class for all WordSail errors.

    Attributes:
        msg: Human-readable error message
        context: Structured fields describing the failure

    Example:
        raise WordSailError("Server not found", server="web01")
        # context: {"server": "web01"}
    """

    def __init__(self, msg: str, **context: Any) -> None:
        super().__init__(msg)
        self.msg = msg
        self.context: dict[str, Any] = dict(context)

    def __str__(self) -> str:
        return self.msg


class ConfigError(WordSailError):
    """Raised when the config file cannot be read, parsed, validated or saved."""


class StateError(WordSailError):
    """Raised when a state update targets a server, site or domain that is missing."""


class InventoryError(WordSailError):
    """Raised when the temporary inventory cannot be rendered or written."""


class RecipeNotFoundError(WordSailError):
    """Raised when the playbook does not exist under the Ansible root."""

    def __init__(self, playbook_path: str) -> None:
        super().__init__(f"playbook not found: {playbook_path}", playbook=playbook_path)
        self.playbook_path = playbook_path


class LaunchError(WordSailError):
    """Raised when ansible-playbook cannot be started."""


class ExecutionFailedError(WordSailError):
    """Raised when ansible-playbook ran but the aggregated verdict is failure.

    The full ``ExecutionResult`` is attached so callers can still read the
    captured output and any structured markers seen before the failure.
    """

    def __init__(self, msg: str, result: "ExecutionResult") -> None:
        super().__init__(msg, exit_code=result.exit_code)
        self.result = result
