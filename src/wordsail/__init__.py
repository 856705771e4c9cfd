"""WordSail - Ansible wrapper for WordPress hosting management.

Runs the WordSail playbooks against managed servers, turns their output
into a typed result, and records the outcome in ``~/.wordsail/servers.yaml``.

Quick Start:
    from wordsail import ExecutionRequest, PlaybookExecutor, Server

    server = Server(name="web01", hostname="web01.example.com", ip="203.0.113.10")
    executor = PlaybookExecutor("~/.wordsail/ansible")
    result = executor.execute(ExecutionRequest(playbook="provision.yml", server=server))
"""

__version__ = "0.1.0"

from wordsail.exceptions import ExecutionFailedError, RecipeNotFoundError, WordSailError
from wordsail.executor import PlaybookExecutor
from wordsail.types import ExecutionRequest, ExecutionResult, Server

__all__ = [
    "__version__",
    "ExecutionFailedError",
    "ExecutionRequest",
    "ExecutionResult",
    "PlaybookExecutor",
    "RecipeNotFoundError",
    "Server",
    "WordSailError",
]
