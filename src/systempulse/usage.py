"""Assistant usage-log parsing and MCP server discovery.

The usage log is a JSON document written by the assistant CLI::

    {
      "dailyActivity": [{"date": "2026-10-19", "messageCount": 12,
                         "sessionCount": 2, "toolCallCount": 30}],
      "dailyModelTokens": [{"date": "2026-10-19",
                            "tokensByModel": {"claude-sonnet-4": 51000}}]
    }

Cost figures are estimates. They assume a fixed 30% input / 70% output token
split and flat per-model pricing; they are not billing-accurate.
"""

import json
from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from systempulse.log import get_logger
from systempulse.models import DailyActivity, DailyUsage, McpServer, UsageStats

logger = get_logger("usage")

INPUT_SHARE = 0.3
OUTPUT_SHARE = 0.7
TREND_DAYS = 7

# (model name substring, USD per million input tokens, USD per million output tokens)
MODEL_PRICING: list[tuple[str, float, float]] = [
    ("opus", 15.0, 75.0),
]
DEFAULT_PRICING = (3.0, 15.0)


def estimate_cost(tokens_by_model: Mapping[str, int]) -> float:
    """Estimated USD cost for a day's per-model token counts."""
    cost = 0.0
    for model, tokens in tokens_by_model.items():
        input_price, output_price = DEFAULT_PRICING
        for needle, model_input, model_output in MODEL_PRICING:
            if needle in model:
                input_price, output_price = model_input, model_output
                break
        cost += tokens * INPUT_SHARE / 1_000_000 * input_price
        cost += tokens * OUTPUT_SHARE / 1_000_000 * output_price
    return cost


def _count(entry: Mapping[str, Any], key: str) -> int:
    value = entry.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return int(value)


def _dated_entries(document: Mapping[str, Any], key: str) -> Iterable[Mapping[str, Any]]:
    """Entries of a date-keyed list, skipping anything malformed."""
    entries = document.get(key)
    if not isinstance(entries, list):
        return
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("date"), str):
            yield entry


def _tokens_by_date(document: Mapping[str, Any]) -> dict[str, dict[str, int]]:
    result: dict[str, dict[str, int]] = {}
    for entry in _dated_entries(document, "dailyModelTokens"):
        by_model = entry.get("tokensByModel")
        if not isinstance(by_model, dict):
            continue
        result[entry["date"]] = {
            str(model): _count(by_model, model) for model in by_model
        }
    return result


def parse_usage(document: Any, today: date) -> UsageStats:
    """
    Summarise a decoded usage log for ``today`` (local date).

    Today's entry is matched by exact ``yyyy-mm-dd`` string. When it is
    absent, ``today`` on the result is None ("no data"), which is distinct
    from a present day with all-zero counts.
    """
    if not isinstance(document, dict):
        return UsageStats.empty()

    tokens = _tokens_by_date(document)
    today_key = today.isoformat()
    window_start = (today - timedelta(days=TREND_DAYS - 1)).isoformat()

    today_usage: DailyUsage | None = None
    weekly: list[DailyActivity] = []
    trend_days: set[str] = set()
    for entry in _dated_entries(document, "dailyActivity"):
        day = entry["date"]
        day_tokens = tokens.get(day, {})

        if day == today_key and today_usage is None:
            today_usage = DailyUsage(
                message_count=_count(entry, "messageCount"),
                session_count=_count(entry, "sessionCount"),
                tool_call_count=_count(entry, "toolCallCount"),
                token_count=sum(day_tokens.values()),
                estimated_cost_usd=estimate_cost(day_tokens),
            )

        # ISO dates compare correctly as strings. The first entry for a date wins
        if window_start <= day <= today_key and day not in trend_days:
            trend_days.add(day)
            weekly.append(
                DailyActivity(
                    date=day,
                    message_count=_count(entry, "messageCount"),
                    token_count=sum(day_tokens.values()),
                )
            )

    weekly.sort(key=lambda activity: activity.date)
    return UsageStats(today=today_usage, weekly=tuple(weekly))


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)


def load_usage_stats(path: Path, today: date | None = None) -> UsageStats:
    """
    Read and summarise the usage log. Missing or corrupt files mean no data.

    When the log is absent, the result records whether its directory exists,
    so "never installed" can be told apart from "no activity yet".
    """
    try:
        document = _read_json(path)
    except FileNotFoundError:
        return UsageStats.empty(log_dir_present=path.parent.is_dir())
    except (OSError, ValueError) as exc:
        logger.debug("usage_log_unreadable", path=str(path), error=str(exc))
        return UsageStats.empty()
    return parse_usage(document, today or date.today())


def load_mcp_servers(paths: Iterable[Path]) -> tuple[McpServer, ...]:
    """
    Collect configured MCP server names from the given config files.

    Earlier files win when a name appears more than once. Missing or
    unreadable files are skipped.
    """
    servers: list[McpServer] = []
    seen: set[str] = set()
    for path in paths:
        try:
            document = _read_json(path)
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as exc:
            logger.debug("mcp_config_unreadable", path=str(path), error=str(exc))
            continue

        configured = document.get("mcpServers") if isinstance(document, dict) else None
        if not isinstance(configured, dict):
            continue
        for name in configured:
            if name in seen:
                continue
            seen.add(name)
            servers.append(McpServer(name=name, source=str(path)))
    return tuple(servers)
