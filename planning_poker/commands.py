"""Parsing of chat commands and estimate values."""

import math
import re
from dataclasses import dataclass
from enum import Enum

from .errors import UserCommandError


class Command(str, Enum):
    """Commands understood inside a planning room."""

    HELP = "help"
    START = "start"
    SKIP = "skip"
    PASS = "pass"
    VOTE = "vote"
    ESTIMATE = "estimate"
    STATUS = "status"
    PLAN = "plan"
    ADD = "add"
    STOP = "stop"


# Commands accepted in a direct message to the bot
DIRECT_COMMANDS = frozenset({Command.HELP, Command.STATUS, Command.STOP})

# Keyword that opens a new session from any room the bot is in
ACTIVATION_KEYWORD = "poker"


@dataclass(frozen=True)
class ParsedCommand:
    """A command addressed to the bot and its raw argument string."""

    command: Command
    args: str = ""


def _strip_mention(text: str, bot_handle: str) -> str | None:
    """Return the text after a leading ``@bot`` mention, or None if absent."""
    match = re.match(rf"^\s*@{re.escape(bot_handle)}(?=\s|$)(.*)$", text, re.DOTALL)
    if not match:
        return None
    return match.group(1).strip()


def parse_command(
    text: str,
    bot_handle: str,
    require_mention: bool = True,
) -> ParsedCommand | None:
    """
    Parse a chat message into a command.

    Args:
        text: Raw message content
        bot_handle: The bot's handle, without the leading @
        require_mention: Whether the message must start with ``@bot``

    Returns:
        ParsedCommand, or None if the text is not a known command
    """
    body = _strip_mention(text, bot_handle)
    if body is None:
        if require_mention:
            return None
        body = text.strip()

    if not body:
        return None

    word, *rest = body.split(maxsplit=1)
    try:
        command = Command(word.lower())
    except ValueError:
        return None

    return ParsedCommand(command=command, args=rest[0].strip() if rest else "")


def parse_activation(text: str, bot_handle: str) -> list[str] | None:
    """
    Parse ``@bot poker @alice @bob`` into the invited handles.

    Returns:
        List of handles without the @ prefix (possibly empty), or None if the
        message is not an activation request.
    """
    body = _strip_mention(text, bot_handle)
    if not body:
        return None

    word, *rest = body.split(maxsplit=1)
    if word.lower() != ACTIVATION_KEYWORD:
        return None

    handles = []
    for token in (rest[0].split() if rest else []):
        handle = token.strip().lstrip("@").rstrip(",")
        if handle and handle not in handles:
            handles.append(handle)
    return handles


def parse_estimate(value: str) -> float:
    """
    Parse an estimate in hours.

    Raises:
        UserCommandError: If the value is not a positive finite number
    """
    text = value.strip()
    if not text:
        raise UserCommandError("Please provide an estimate. Example: 0.5, 1, 2, 10")

    try:
        estimate = float(text)
    except ValueError:
        raise UserCommandError(f"Invalid estimate {text}.") from None

    if not math.isfinite(estimate) or estimate <= 0:
        raise UserCommandError(
            f"Invalid estimate {text}. Estimates must be a positive number of hours."
        )

    return estimate


def split_hours(value: float) -> tuple[int, int]:
    """Split a number of hours into whole hours and minutes (rounded)."""
    total_minutes = round(value * 60)
    return total_minutes // 60, total_minutes % 60
