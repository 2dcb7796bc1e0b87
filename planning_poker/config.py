"""Configuration for the planning poker bot."""

import logging
import os
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# Teamwork API key, used as the basic-auth username
TEAMWORK_API_KEY = os.getenv("TEAMWORK_API_KEY")

# Domain that hosts Teamwork installations (<installation>.<domain>)
TEAMWORK_DOMAIN = os.getenv("TEAMWORK_DOMAIN", "teamwork.com")

# Timeout for Teamwork API requests, in seconds
TEAMWORK_TIMEOUT = float(os.getenv("TEAMWORK_TIMEOUT", "30"))

# Pause between the room welcome and the direct greetings, in seconds
POKER_WELCOME_DELAY = float(os.getenv("POKER_WELCOME_DELAY", "2"))

# Port for the read-only status API
POKER_API_PORT = int(os.getenv("POKER_API_PORT", "8001"))

# Question sent to every participant at the start of a round
ESTIMATE_QUESTION = "Please input a time estimate (in hours) e.g. 0.5, 1, 4"

# Example shown to the moderator when asking for a tasklist
TASKLIST_EXAMPLE = "https://example.teamwork.com/index.cfm#tasklists/124424"


def reload_config() -> dict[str, Any]:
    """
    Reload configuration from the .env file and the environment.

    Returns:
        Dict with reload status and current config
    """
    global TEAMWORK_API_KEY, TEAMWORK_DOMAIN, TEAMWORK_TIMEOUT, POKER_WELCOME_DELAY

    load_dotenv(override=True)

    TEAMWORK_API_KEY = os.getenv("TEAMWORK_API_KEY")
    TEAMWORK_DOMAIN = os.getenv("TEAMWORK_DOMAIN", "teamwork.com")
    TEAMWORK_TIMEOUT = float(os.getenv("TEAMWORK_TIMEOUT", "30"))
    POKER_WELCOME_DELAY = float(os.getenv("POKER_WELCOME_DELAY", "2"))

    logger.info("Configuration reloaded")

    return {
        "status": "reloaded",
        "teamwork_configured": bool(TEAMWORK_API_KEY),
        "teamwork_domain": TEAMWORK_DOMAIN,
        "welcome_delay": POKER_WELCOME_DELAY,
    }
