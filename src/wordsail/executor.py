"""Playbook execution for WordSail.

``PlaybookExecutor`` runs one ``ansible-playbook`` invocation per request:

1. resolve the playbook under the Ansible root (missing → ``RecipeNotFoundError``)
2. write a temporary inventory for the target server
3. start ``ansible-playbook`` with both output pipes
4. drain stdout and stderr concurrently, classifying every line
5. wait for exit and both streams, then combine exit code, sticky failure
   flag and recap counters into one verdict
6. remove the inventory, whatever happened

The public methods are synchronous and block until the run is over;
``execute_async`` is the same operation for callers already running an
event loop.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Callable, Sequence

from rich.console import Console

from .exceptions import ExecutionFailedError, LaunchError, RecipeNotFoundError
from .inventory import InventoryGenerator, expand_home
from .logging import log_performance
from .output import PlaybookOutput, decide_success
from .progress import ProgressPresenter, create_presenter
from .streams import STREAM_LIMIT, StreamMultiplexer
from .types import ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)

DEFAULT_RUNNER = "ansible-playbook"
VERBOSE_FLAG = "-vv"
CHECK_FLAG = "--check"
EXTRA_VARS_FLAG = "--extra-vars"

PresenterFactory = Callable[[bool, Console | None], ProgressPresenter]


def build_command(
    request: ExecutionRequest,
    playbook_path: str | Path,
    inventory_path: str | Path,
    runner: str = DEFAULT_RUNNER,
) -> list[str]:
    """Build the argument vector for one run.

    The merged variables travel as a single JSON object so that types and
    precedence survive intact; ``--extra-vars`` is omitted when there are no
    variables.

    Example:
        >>> build_command(request, "/opt/wordsail/ansible/provision.yml", "/tmp/inv.ini")
        ['ansible-playbook', '/opt/wordsail/ansible/provision.yml', '-i', '/tmp/inv.ini',
         '--extra-vars', '{"certbot_email": "ops@example.com"}']
    """
    argv = [runner, str(playbook_path), "-i", str(inventory_path)]
    if request.verbose:
        argv.append(VERBOSE_FLAG)
    if request.dry_run:
        argv.append(CHECK_FLAG)

    variables = request.merged_vars()
    if variables:
        argv.extend([EXTRA_VARS_FLAG, json.dumps(variables, default=str)])
    return argv


def redact_command(argv: Sequence[str]) -> list[str]:
    """Hide the extra-vars payload, which may carry passwords."""
    redacted = list(argv)
    for index, arg in enumerate(redacted[:-1]):
        if arg == EXTRA_VARS_FLAG:
            redacted[index + 1] = "<redacted>"
    return redacted


def aggregate_result(state: PlaybookOutput, exit_code: int) -> ExecutionResult:
    """Combine the exit code and the parsed output into the final result.

    Structured markers are attached whatever the verdict: a certificate may
    have been issued before a later task failed.
    """
    return ExecutionResult(
        success=decide_success(exit_code, state.failed, state.recap),
        exit_code=exit_code,
        output=tuple(state.lines),
        stdout=tuple(state.stdout),
        stderr=tuple(state.stderr),
        recap=state.recap,
        current_task=state.current_task or state.current_label,
        failure_seen=state.failed,
        dns_status=state.dns_status,
        ssl_info=state.ssl_info,
    )


class PlaybookExecutor:
    """Runs WordSail playbooks against a single server.

    Attributes:
        ansible_path: Root of the WordSail Ansible tree (``~`` allowed)
        runner: Playbook runner binary
        inventory: Generator for the per-run inventory files
        console: Rich console the presenters write to

    Example:
        >>> executor = PlaybookExecutor("~/.wordsail/ansible")
        >>> request = ExecutionRequest(playbook="provision.yml", server=server,
        ...                            global_vars=config.global_vars)
        >>> result = executor.execute(request)
        >>> result.recap
        RecapCounters(ok=42, changed=17, failed=0)
    """

    def __init__(
        self,
        ansible_path: str | Path,
        runner: str = DEFAULT_RUNNER,
        inventory: InventoryGenerator | None = None,
        console: Console | None = None,
        presenter_factory: PresenterFactory = create_presenter,
    ) -> None:
        self.ansible_path = str(ansible_path)
        self.runner = runner
        self.inventory = inventory or InventoryGenerator()
        self.console = console
        self.presenter_factory = presenter_factory

    def resolve_ansible_path(self) -> Path:
        """Get the Ansible root with ``~`` expanded."""
        return Path(expand_home(self.ansible_path))

    def resolve_playbook(self, playbook: str) -> Path:
        """Get the absolute playbook path.

        Raises:
            RecipeNotFoundError: If the playbook file does not exist
        """
        path = self.resolve_ansible_path() / playbook
        if not path.is_file():
            raise RecipeNotFoundError(str(path))
        return path

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run a playbook and block until it finishes.

        Raises:
            RecipeNotFoundError: If the playbook does not exist
            InventoryError: If the inventory cannot be written
            LaunchError: If ansible-playbook cannot be started
            ExecutionFailedError: If the run failed; the result is attached
        """
        return asyncio.run(self.execute_async(request))

    def execute_with_result(self, request: ExecutionRequest) -> ExecutionResult:
        """Run a playbook and return its result even when the run failed.

        Setup and launch errors are still raised; a failed verdict is
        reported through ``result.success`` so the caller can inspect the
        DNS and SSL markers of a partially failed run.
        """
        return asyncio.run(self.execute_async(request, raise_on_failure=False))

    async def execute_async(
        self,
        request: ExecutionRequest,
        raise_on_failure: bool = True,
    ) -> ExecutionResult:
        """Run a playbook inside the current event loop."""
        server = request.server
        playbook_path = self.resolve_playbook(request.playbook)
        presenter = self.presenter_factory(request.verbose, self.console)

        inventory_path = self.inventory.generate(server, request.label, request.merged_vars())
        try:
            argv = build_command(request, playbook_path, inventory_path, self.runner)
            logger.info(f"Running {request.playbook} on {server.name} (dry_run={request.dry_run})")
            logger.debug(f"Command: {' '.join(redact_command(argv))}")

            with presenter:
                presenter.on_command(redact_command(argv))
                with log_performance(logger, f"Playbook {request.playbook}", server=server.name):
                    state, exit_code = await self._run(argv, self.resolve_ansible_path(), presenter)

            result = aggregate_result(state, exit_code)
            if result.success:
                presenter.show_success(result)
            else:
                presenter.show_failure(result)
        finally:
            self.inventory.cleanup(inventory_path)

        logger.info(
            f"{request.playbook} on {server.name} "
            f"{'succeeded' if result.success else 'failed'}: exit={exit_code} {result.summary()}"
        )

        if result.is_failure and raise_on_failure:
            if exit_code != 0:
                raise ExecutionFailedError(f"{self.runner} failed with exit code {exit_code}", result)
            raise ExecutionFailedError("playbook completed with failures", result)
        return result

    async def _launch(self, argv: list[str], cwd: Path) -> asyncio.subprocess.Process:
        """Start the runner with piped output and the parent's environment.

        Raises:
            LaunchError: If the process cannot be started
        """
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                env=os.environ.copy(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise LaunchError(f"failed to start {argv[0]}: {e}", runner=argv[0]) from e

    async def _run(
        self,
        argv: list[str],
        cwd: Path,
        presenter: ProgressPresenter,
    ) -> tuple[PlaybookOutput, int]:
        """Launch the runner and consume its output until it exits."""
        state = PlaybookOutput(on_label=presenter.on_label)

        def handle(line: str, stream: str) -> None:
            state.feed(line, stream)
            presenter.on_line(line, stream)

        process = await self._launch(argv, cwd)
        multiplexer = StreamMultiplexer(handle)
        try:
            _, exit_code = await asyncio.gather(
                multiplexer.run(process.stdout, process.stderr),
                process.wait(),
            )
        except BaseException:
            await self._kill(process)
            raise
        return state, exit_code

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Kill the runner after an error, drain its pipes and reap it."""
        if process.returncode is None:
            logger.warning(f"Killing {self.runner} (pid {process.pid}) after an error")
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.communicate()
