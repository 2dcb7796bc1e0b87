"""Teamwork Projects client used as the work-item source."""

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from . import config
from .errors import CollaboratorError, UserCommandError
from .models import Tasklist, WorkItem
from .telemetry import trace_span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TasklistRef:
    """A tasklist on a specific Teamwork installation."""

    installation: str
    tasklist_id: int


def parse_tasklist_url(url: str, domain: str = "teamwork.com") -> TasklistRef:
    """
    Parse a tasklist URL such as
    ``https://acme.teamwork.com/index.cfm#tasklists/434312``.

    Raises:
        UserCommandError: If the URL is not a tasklist link
    """
    pattern = (
        rf"^https?://(?P<installation>[a-zA-Z0-9_\-]+)\.{re.escape(domain)}"
        rf"/(?:index\.cfm)?#/?tasklists/(?P<id>\d+)/?$"
    )
    match = re.match(pattern, url.strip())
    if not match:
        raise UserCommandError("Is that a tasklist URL? I don't recognize it.")
    return TasklistRef(installation=match.group("installation"), tasklist_id=int(match.group("id")))


def _task_to_item(task: dict[str, Any], base_url: str) -> WorkItem:
    estimate = task.get("estimated-minutes")
    try:
        estimate_minutes = int(estimate) if estimate not in (None, "") else None
    except (TypeError, ValueError):
        estimate_minutes = None

    task_id = str(task["id"])
    return WorkItem(
        id=task_id,
        title=task.get("content", ""),
        link=f"{base_url}/index.cfm#tasks/{task_id}",
        estimate_minutes=estimate_minutes or None,
    )


class TeamworkClient:
    """Reads tasklists from and writes estimates to Teamwork."""

    def __init__(
        self,
        api_key: str | None = None,
        domain: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.domain = domain or config.TEAMWORK_DOMAIN
        self.client = httpx.AsyncClient(
            auth=(api_key or config.TEAMWORK_API_KEY or "", "x"),
            timeout=timeout or config.TEAMWORK_TIMEOUT,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def base_url(self, installation: str) -> str:
        return f"https://{installation}.{self.domain}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Teamwork request failed. Method: %s, Url: %s, Status: %d",
                method, url, e.response.status_code,
            )
            raise CollaboratorError(
                f"Teamwork returned HTTP {e.response.status_code}.",
                service="teamwork",
                details={"url": url},
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Teamwork unreachable. Method: %s, Url: %s, Error: %s", method, url, e)
            raise CollaboratorError(
                "I couldn't reach Teamwork, please try again.",
                service="teamwork",
                details={"url": url},
            ) from e
        except ValueError as e:
            raise CollaboratorError(
                "Teamwork sent a response I couldn't read.",
                service="teamwork",
                details={"url": url},
            ) from e

    async def fetch_tasklist(self, reference: str) -> Tasklist:
        """Resolve a tasklist URL into its tasks, in Teamwork's order."""
        ref = parse_tasklist_url(reference, self.domain)
        base_url = self.base_url(ref.installation)

        with trace_span("teamwork.fetch_tasklist", {"teamwork.tasklist_id": ref.tasklist_id}):
            tasklist = (await self._request("GET", f"{base_url}/tasklists/{ref.tasklist_id}.json")).get(
                "todo-list"
            ) or {}
            tasks = (
                await self._request("GET", f"{base_url}/tasklists/{ref.tasklist_id}/tasks.json")
            ).get("todo-items") or []

        logger.info(
            "Fetched tasklist. Installation: %s, TasklistId: %d, Tasks: %d",
            ref.installation, ref.tasklist_id, len(tasks),
        )

        return Tasklist(
            name=tasklist.get("name", f"#{ref.tasklist_id}"),
            items=tuple(_task_to_item(task, base_url) for task in tasks),
        )

    async def update_estimate(self, item: WorkItem, hours: int, minutes: int) -> None:
        """Store a confirmed estimate on the task."""
        url = httpx.URL(item.link)
        base_url = f"{url.scheme}://{url.host}"

        with trace_span("teamwork.update_estimate", {"teamwork.task_id": item.id}):
            await self._request(
                "PUT",
                f"{base_url}/tasks/{item.id}.json",
                json={"todo-item": {"estimated-minutes": hours * 60 + minutes}},
            )

        logger.info("Updated task estimate. Task: %s, Hours: %d, Minutes: %d", item.id, hours, minutes)
