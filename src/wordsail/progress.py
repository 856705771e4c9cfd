"""Progress presentation for playbook runs.

Two presenters share one interface:

- ``SpinnerPresenter`` (default) shows a single transient line with a rich
  spinner and the current play/task name, and prints a diagnostic excerpt
  only if the run fails.
- ``VerbosePresenter`` echoes every line as it arrives, coloured by
  category.

Presenters are context managers. Leaving the context stops any live
display, so summaries and errors never interleave with a spinner frame.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.text import Text

from .output import STDERR, LineCategory, categorize, failure_excerpt
from .types import ExecutionResult

CATEGORY_STYLES = {
    LineCategory.FAILURE: "red",
    LineCategory.OK: "green",
    LineCategory.CHANGED: "yellow",
    LineCategory.SECTION: "cyan",
    LineCategory.RECAP: "magenta",
    LineCategory.PLAIN: "",
}


class ProgressPresenter(ABC):
    """Base class for presenters."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)

    def __enter__(self) -> "ProgressPresenter":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()

    def start(self) -> None:
        """Start any live display."""

    def stop(self) -> None:
        """Stop any live display. Must be safe to call more than once."""

    def on_command(self, argv: Sequence[str]) -> None:
        """Called once the command line is known, before launch."""

    @abstractmethod
    def on_line(self, line: str, stream: str) -> None:
        """Called for every output line, in arrival order."""

    @abstractmethod
    def on_label(self, label: str) -> None:
        """Called when the current play or task changes."""

    @abstractmethod
    def show_success(self, result: ExecutionResult) -> None:
        """Called after a successful run, once the live display has stopped."""

    @abstractmethod
    def show_failure(self, result: ExecutionResult) -> None:
        """Called after a failed run, once the live display has stopped."""

    def _print(self, line: str, category: LineCategory) -> None:
        self.console.print(Text(line, style=CATEGORY_STYLES[category]))


class VerbosePresenter(ProgressPresenter):
    """Streams the full Ansible output, coloured by line category."""

    def on_command(self, argv: Sequence[str]) -> None:
        self.console.print()
        self.console.print(Text("Running: " + " ".join(argv), style="cyan"))
        self.console.print()

    def on_line(self, line: str, stream: str) -> None:
        self._print(line, categorize(line, stream))

    def on_label(self, label: str) -> None:
        pass

    def show_success(self, result: ExecutionResult) -> None:
        self.console.print(Text(f"✓ Completed: {result.summary()}", style="green"))

    def show_failure(self, result: ExecutionResult) -> None:
        # Output has already been streamed; only the verdict is left to show
        self.console.print(Text(f"✗ Failed: {result.summary()}", style="red"))


class SpinnerPresenter(ProgressPresenter):
    """Shows a spinner with the current play/task name.

    Example:
        >>> with SpinnerPresenter() as presenter:
        ...     presenter.on_label("Install nginx")
    """

    def __init__(self, console: Console | None = None, max_context_lines: int | None = None) -> None:
        super().__init__(console)
        self.max_context_lines = max_context_lines
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )
        self._task_id: Any = None
        self._running = False
        self.label = "Starting..."

    def start(self) -> None:
        if self._running:
            return
        self._task_id = self.progress.add_task(self.label, total=None)
        self.progress.start()
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self.progress.stop()
        self._running = False

    def on_line(self, line: str, stream: str) -> None:
        pass

    def on_label(self, label: str) -> None:
        self.label = label
        if self._task_id is not None:
            self.progress.update(self._task_id, description=label)

    def show_success(self, result: ExecutionResult) -> None:
        self.console.print(Text(f"✓ Completed: {result.summary()}", style="green"))

    def show_failure(self, result: ExecutionResult) -> None:
        self.console.print(Text(f"✗ Task failed: {result.current_task}", style="red"))
        self.console.print()

        for line in result.stderr:
            self._print(line, categorize(line, STDERR))

        if self.max_context_lines is None:
            excerpt = failure_excerpt(result.stdout)
        else:
            excerpt = failure_excerpt(result.stdout, self.max_context_lines)
        for line, category in excerpt:
            self._print(line, category)

        self.console.print()
        self.console.print(Text(f"Failed: {result.summary()}", style="red"))


def create_presenter(verbose: bool, console: Console | None = None) -> ProgressPresenter:
    """Create the presenter for a run.

    Args:
        verbose: Stream full output instead of showing a spinner
        console: Rich Console to use (defaults to stderr)

    Returns:
        ProgressPresenter instance
    """
    if verbose:
        return VerbosePresenter(console)
    return SpinnerPresenter(console)
