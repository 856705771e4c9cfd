"""Parsing of ``ansible-playbook`` output.

``PlaybookOutput`` holds the live state of one run and is fed one line at a
time from both output streams. Each line is matched against an ordered
table of anchored patterns; a match updates the progress label, the sticky
failure flag, the recap counters or one of the structured markers the
WordSail playbooks print:

    DNS_STATUS: domain=example.com resolved_ip=1.2.3.4 server_ip=5.6.7.8 matches=true
    SSL_ISSUED: domain=example.com expiry=Mar 15 12:00:00 2024 GMT

Markers are accepted either bare at the start of a line or as the value of
a ``debug`` task's ``"msg":`` key. A line that only partially matches a
marker is kept as plain output and never raises.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from .types import DNSStatus, RecapCounters, SSLInfo

MAX_CONTEXT_LINES = 15

STDOUT = "stdout"
STDERR = "stderr"

_MSG_PREFIX = r'^\s*(?P<quote>"msg":\s*")?'

PLAY_PATTERN = re.compile(r"^PLAY \[(?P<name>.+?)\]")
TASK_PATTERN = re.compile(r"^TASK \[(?P<name>.+?)\]")
FAILURE_PATTERN = re.compile(r"FAILED!|fatal:")
RECAP_PATTERN = re.compile(
    r"\bok=(?P<ok>\d+)\s+changed=(?P<changed>\d+)\s.*?\bfailed=(?P<failed>\d+)"
)
DNS_STATUS_PATTERN = re.compile(
    _MSG_PREFIX
    + r"DNS_STATUS:\s*domain=(?P<domain>\S+)\s+resolved_ip=(?P<resolved_ip>\S+)"
    r"\s+server_ip=(?P<server_ip>\S+)\s+matches=(?P<matches>(?i:true|false))"
    r'(?(quote)",?)\s*$'
)
SSL_ISSUED_PATTERN = re.compile(
    _MSG_PREFIX
    + r"SSL_ISSUED:\s*domain=(?P<domain>\S+)\s+expiry=(?P<expiry>.*?\S)"
    r'(?(quote)",?)\s*$'
)


class LineCategory(str, Enum):
    """Display category of an output line."""

    FAILURE = "failure"
    OK = "ok"
    CHANGED = "changed"
    SECTION = "section"
    RECAP = "recap"
    PLAIN = "plain"


def categorize(line: str, stream: str = STDOUT) -> LineCategory:
    """Pick the display category of a line.

    Everything on stderr is shown as a failure line.

    Example:
        >>> categorize("changed: [web01]")
        <LineCategory.CHANGED: 'changed'>
    """
    if stream == STDERR or "FAILED" in line or "fatal:" in line:
        return LineCategory.FAILURE
    if line.startswith("PLAY RECAP"):
        return LineCategory.RECAP
    if "ok:" in line or "skipping:" in line:
        return LineCategory.OK
    if "changed:" in line:
        return LineCategory.CHANGED
    if "PLAY [" in line or "TASK [" in line:
        return LineCategory.SECTION
    return LineCategory.PLAIN


@dataclass
class PlaybookOutput:
    """Mutable parsing state for one ``ansible-playbook`` run.

    Not thread-safe by itself; ``StreamMultiplexer`` serializes calls to
    ``feed`` with a lock.

    Attributes:
        lines: Every line seen, in arrival order
        stdout: Lines from standard output
        stderr: Lines from standard error
        current_label: Most recent play or task name
        current_task: Most recent task name
        failed: Sticky flag, set once a failure marker is seen
        recap: Last recap counters seen
        dns_status: First DNS_STATUS marker seen
        ssl_info: First SSL_ISSUED marker seen
        on_label: Optional callback invoked when the progress label changes

    Example:
        >>> state = PlaybookOutput()
        >>> state.feed("TASK [Install nginx] ****")
        >>> state.current_label
        'Install nginx'
        >>> state.feed("web01 : ok=10 changed=2 unreachable=0 failed=0 skipped=1")
        >>> state.recap
        RecapCounters(ok=10, changed=2, failed=0)
    """

    lines: list[str] = field(default_factory=list)
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    current_label: str = ""
    current_task: str = ""
    failed: bool = False
    recap: RecapCounters | None = None
    dns_status: DNSStatus | None = None
    ssl_info: SSLInfo | None = None
    on_label: Callable[[str], None] | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        # Evaluated in order; more than one handler may fire for a line
        self._handlers: list[
            tuple[Callable[[str], re.Match[str] | None], Callable[[re.Match[str]], None]]
        ] = [
            (TASK_PATTERN.match, self._on_task),
            (PLAY_PATTERN.match, self._on_play),
            (FAILURE_PATTERN.search, self._on_failure),
            (RECAP_PATTERN.search, self._on_recap),
            (DNS_STATUS_PATTERN.match, self._on_dns_status),
            (SSL_ISSUED_PATTERN.match, self._on_ssl_issued),
        ]

    def feed(self, line: str, stream: str = STDOUT) -> None:
        """Record one line and update the parsing state."""
        line = line.rstrip("\r\n")
        self.lines.append(line)
        if stream == STDERR:
            self.stderr.append(line)
        else:
            self.stdout.append(line)

        for matcher, handler in self._handlers:
            match = matcher(line)
            if match:
                handler(match)

    def _set_label(self, label: str) -> None:
        self.current_label = label
        if self.on_label:
            self.on_label(label)

    def _on_task(self, match: re.Match[str]) -> None:
        self.current_task = match.group("name")
        self._set_label(self.current_task)

    def _on_play(self, match: re.Match[str]) -> None:
        self._set_label(match.group("name"))

    def _on_failure(self, match: re.Match[str]) -> None:
        self.failed = True

    def _on_recap(self, match: re.Match[str]) -> None:
        self.recap = RecapCounters(
            ok=int(match.group("ok")),
            changed=int(match.group("changed")),
            failed=int(match.group("failed")),
        )

    def _on_dns_status(self, match: re.Match[str]) -> None:
        if self.dns_status is not None:
            return
        self.dns_status = DNSStatus(
            domain=match.group("domain"),
            resolved_ip=match.group("resolved_ip"),
            server_ip=match.group("server_ip"),
            matches=match.group("matches").lower() == "true",
        )

    def _on_ssl_issued(self, match: re.Match[str]) -> None:
        if self.ssl_info is not None:
            return
        self.ssl_info = SSLInfo(
            domain=match.group("domain"),
            expiry=match.group("expiry"),
        )


def decide_success(exit_code: int, failure_seen: bool, recap: RecapCounters | None) -> bool:
    """Combine the three failure signals; any one of them fails the run.

    Example:
        >>> decide_success(0, False, RecapCounters(ok=3, changed=1, failed=0))
        True
        >>> decide_success(0, True, RecapCounters(ok=3, changed=1, failed=0))
        False
    """
    recap_failed = recap is not None and recap.failed > 0
    return exit_code == 0 and not failure_seen and not recap_failed


def failure_excerpt(
    stdout: Sequence[str],
    max_lines: int = MAX_CONTEXT_LINES,
) -> list[tuple[str, LineCategory]]:
    """Select the stdout lines worth showing after a failed run.

    The excerpt starts at the most recent task boundary preceding the last
    failure marker and is at most ``max_lines`` long. When the task printed
    too much to fit, the boundary line is kept and followed by the lines
    leading up to the failure marker; those take priority over anything
    printed after it. Runs with no failure marker show the region after the
    last task boundary, or the tail of the output.

    Returns:
        (line, category) pairs in output order
    """
    if not stdout or max_lines <= 0:
        return []

    failure_index = None
    for index in range(len(stdout) - 1, -1, -1):
        if FAILURE_PATTERN.search(stdout[index]):
            failure_index = index
            break

    search_end = failure_index if failure_index is not None else len(stdout) - 1
    start = None
    for index in range(search_end, -1, -1):
        if TASK_PATTERN.match(stdout[index]):
            start = index
            break

    if start is None:
        start = failure_index if failure_index is not None else max(len(stdout) - max_lines, 0)

    if failure_index is None or failure_index - start < max_lines:
        selected = list(stdout[start:start + max_lines])
    elif max_lines == 1:
        selected = [stdout[failure_index]]
    else:
        body_start = max(start + 1, failure_index + 2 - max_lines)
        selected = [stdout[start], *stdout[body_start:failure_index + 1]]

    return [(line, categorize(line)) for line in selected]
