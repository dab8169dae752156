"""Tests for assistant session discovery."""

import pytest

from systempulse.models import ProcessCommand
from systempulse.sessions import find_sessions, is_assistant_session, is_language_server


@pytest.mark.parametrize(
    "command",
    [
        "/usr/local/bin/claude",
        "/Users/me/.local/bin/claude -p /Users/me/project --verbose",
        "claude --project ~/src/app",
        "/opt/homebrew/lib/@anthropic/claude-code/bin/claude-native --resume",
    ],
)
def test_matches_sessions(command):
    assert is_assistant_session(command)


@pytest.mark.parametrize(
    "command",
    [
        "",
        "/usr/bin/vim claude.md",
        "/usr/local/bin/claude-helper --daemon",
        "node /opt/lib/@anthropic/claude-code/cli.js",
        "/Applications/Claude.app/Contents/MacOS/Claude",
        "grep claude",
    ],
)
def test_rejects_other_processes(command):
    assert not is_assistant_session(command)


def test_find_sessions_dedupes_by_pid():
    rows = [
        ProcessCommand(pid=1, cpu_percent=2.0, rss_bytes=1024 * 1024, command="/usr/local/bin/claude"),
        ProcessCommand(pid=1, cpu_percent=3.0, rss_bytes=1024 * 1024, command="/usr/local/bin/claude"),
        ProcessCommand(pid=2, cpu_percent=0.0, rss_bytes=0, command="/bin/zsh"),
        ProcessCommand(pid=3, cpu_percent=5.0, rss_bytes=512 * 1024**2, command="claude -p . --debug"),
    ]
    sessions = find_sessions(rows)

    assert [s.pid for s in sessions] == [1, 3]
    assert sessions[0].cpu_percent == 2.0
    assert sessions[0].memory_mb == pytest.approx(1.0)
    assert sessions[1].memory_mb == pytest.approx(512.0)


def test_find_sessions_empty():
    assert find_sessions([]) == ()


@pytest.mark.parametrize(
    "command",
    [
        "node /opt/homebrew/bin/typescript-language-server --stdio",
        "/usr/local/lib/node_modules/typescript/lib/tsserver.js",
        "/home/dev/.cargo/bin/rust-analyzer",
        "/usr/bin/python3 -m pylsp",
        "/Users/dev/go/bin/gopls serve",
    ],
)
def test_matches_language_servers(command):
    assert is_language_server(command)


def test_language_server_patterns_can_be_narrowed():
    assert not is_language_server("/usr/local/bin/claude")
    assert not is_language_server("/Users/dev/go/bin/gopls", patterns=["pyright"])
