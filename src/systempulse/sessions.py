"""Discovery of running assistant CLI sessions in the process table."""

from collections.abc import Iterable

from systempulse.models import ProcessCommand, SessionInfo

BYTES_PER_MB = 1024 * 1024

# Editor language servers that outlive the sessions that spawned them
LANGUAGE_SERVERS = (
    "typescript-language-server",
    "tsserver",
    "eslint_d",
    "pyright",
    "pylsp",
    "rust-analyzer",
    "gopls",
    "sourcekit-lsp",
)


def is_assistant_session(command: str) -> bool:
    """
    Decide whether a full command line belongs to an assistant CLI session.

    Matches a claude binary or script running in project mode (``-p`` /
    ``--project``), the bare claude entry point, or the packaged
    ``@anthropic/claude`` binary when not launched through node.
    """
    command = command.strip()
    if not command:
        return False

    in_project_mode = (
        ("/claude" in command or command.startswith("claude "))
        and (" -p " in command or " --project" in command)
    )
    is_entry_point = command.endswith("/claude") or (
        "/@anthropic/claude" in command and "node" not in command
    )
    return in_project_mode or is_entry_point


def find_sessions(rows: Iterable[ProcessCommand]) -> tuple[SessionInfo, ...]:
    """Filter process rows down to assistant sessions, one per pid."""
    seen: set[int] = set()
    sessions: list[SessionInfo] = []
    for row in rows:
        if row.pid in seen or not is_assistant_session(row.command):
            continue
        seen.add(row.pid)
        sessions.append(
            SessionInfo(
                pid=row.pid,
                cpu_percent=row.cpu_percent,
                memory_mb=row.rss_bytes / BYTES_PER_MB,
            )
        )
    return tuple(sessions)


def is_language_server(command: str, patterns: Iterable[str] = LANGUAGE_SERVERS) -> bool:
    """True if any pattern occurs anywhere in the full command line."""
    return any(pattern in command for pattern in patterns)
