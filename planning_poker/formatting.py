"""Chat message formatting for planning sessions."""

from datetime import timedelta
from typing import Any

from .models import RoundStatus, Vote, WorkItem

ICON_ANNOUNCEMENT = ":microphone:"
ICON_WAITING = ":hourglass_flowing_sand:"
ICON_COMPLETE = ":white_check_mark:"
ICON_VOTED = ":heavy_check_mark:"
ICON_CELEBRATE = ":shipit:"
ICON_QUESTION = ":question:"
ICON_ERROR = ":x:"
ICON_HELP = ":sos:"
ICON_MODERATOR = ":wolf:"
ICON_TASK = ":arrow_right:"
ICON_SKIP = ":fast_forward:"
ICON_PASS = ":leftwards_arrow_with_hook:"
ICON_STOP = ":no_entry:"
ICON_WAVE = ":wave:"


def format_hours(value: float) -> str:
    """Format an hour value without trailing zeros (4.0 -> "4")."""
    return f"{value:g}"


def format_average(average: float | None) -> str:
    if average is None:
        return "no estimates"
    return format_hours(round(average, 2))


def format_duration(duration: timedelta) -> str:
    """Format a duration as e.g. "1h 5m", "12m" or "40s"."""
    seconds = int(duration.total_seconds())
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


def format_task_link(item: WorkItem) -> str:
    return f"[{item.title}]({item.link})"


def format_task(item: WorkItem) -> str:
    return f"---\n{ICON_TASK} Task #{item.id}: {format_task_link(item)}"


def format_handles(people: list[Any]) -> str:
    return ", ".join(f"@{person.handle}" for person in people)


def format_first_names(people: list[Any]) -> str:
    return ", ".join(person.first_name for person in people)


def format_result_table(votes: list[Vote]) -> str:
    """Markdown table with one column per participant."""
    names = " | ".join(vote.person.first_name for vote in votes)
    separators = "|".join("---" for _ in votes)
    values = " | ".join(format_hours(vote.value) for vote in votes)
    return "\n".join([
        f"| Person | {names} |",
        f"|---|{separators}|",
        f"| **Estimate** | {values} |",
    ])


def format_help(bot_handle: str, moderator_handle: str) -> str:
    handle = f"@{bot_handle}"
    return "\n".join([
        f"{ICON_HELP} **Sprint Poker Planning Help**",
        f'* *"{handle} plan <tasklist url>"* to set the tasklist to plan.',
        f'* *"{handle} add <handle>"* to add a user to the planning.',
        f'* *"{handle} start"* to begin the planning.',
        f'* *"{handle} skip"* to skip planning a task.',
        f'* *"{handle} pass"* to push the task to the end of the planning queue.',
        f'* *"{handle} estimate <hours>"* to manually set the estimate '
        f"(only the moderator, @{moderator_handle}, can do this).",
        f'* *"{handle} vote <hours>"* to publicly vote your estimate during a round.',
        f'* *"{handle} status"* to get who is still currently estimating.',
        f'* *"{handle} stop"* to end the planning (moderator only).',
    ])


def format_status(
    moderator: Any,
    completed: int,
    total: int,
    current: WorkItem | None,
    estimating: list[Any],
) -> str:
    lines = [
        f"{ICON_MODERATOR} {moderator.first_name} is the moderator.",
        f"{ICON_COMPLETE} {completed} of {total} tasks estimated.",
    ]

    if current is not None:
        lines.append(f"{ICON_ANNOUNCEMENT} Current task: {format_task_link(current)}")
        if estimating:
            lines.append(f"{ICON_WAITING} {format_handles(estimating)} still estimating.")

    return "\n".join(lines)


def format_round_results(rounds: list[Any], skipped: list[Any]) -> str:
    """One line per round in planning order with its final value or outcome."""
    lines = []
    for round_ in rounds:
        item = round_.item
        if round_.status is RoundStatus.COMPLETED:
            outcome = f"**{format_hours(round_.final_value)} hr(s)**"
        elif round_ in skipped:
            outcome = "skipped"
        else:
            outcome = "not estimated"
        lines.append(f"* #{item.id} {format_task_link(item)}: {outcome}")
    return "\n".join(lines)
