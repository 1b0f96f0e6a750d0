"""Human-readable explanations shown when a permission blocks or prompts.

Each key maps to a title plus why/impact/risk sentences. The gate attaches the
message to ``RequiresApproval`` and ``Denied`` decisions so callers can surface
them without inventing their own wording.
"""

from __future__ import annotations

from typing import Dict

from ..schemas.base import FrozenSchema
from ..schemas.domain import PermissionKey


class PermissionMessage(FrozenSchema):
    title: str
    why: str
    impact: str
    risk: str


_K = PermissionKey

PERMISSION_MESSAGES: Dict[PermissionKey, PermissionMessage] = {
    _K.SOURCE_WRITE: PermissionMessage(
        title="Wants to modify sources",
        why="Permission is needed to add, edit, or delete sources.",
        impact="The scope of information your bot collects will change.",
        risk="Untrusted sources may be included.",
    ),
    _K.WEB_FETCH: PermissionMessage(
        title="Wants to fetch web data",
        why="Needs to retrieve information from external web pages.",
        impact="Data will be read from the internet.",
        risk="Unnecessary data collection may occur.",
    ),
    _K.WEB_RSS: PermissionMessage(
        title="Wants to collect RSS feeds",
        why="Needs to read registered RSS sources.",
        impact="Content from RSS feeds will be collected and stored.",
        risk="Feed volume may increase storage usage.",
    ),
    _K.LLM_USE: PermissionMessage(
        title="Wants to use AI analysis",
        why="AI provider access is needed for content analysis and reports.",
        impact="Content will be sent to an external AI service for processing.",
        risk="API usage costs may be incurred.",
    ),
    _K.LLM_EGRESS_LEVEL: PermissionMessage(
        title="Wants to send more data to AI",
        why="A higher data egress level is needed for full analysis.",
        impact="More content (e.g., full article text) will be sent to the AI provider.",
        risk="Sensitive information may be exposed to external services.",
    ),
    _K.SCHEDULE_WRITE: PermissionMessage(
        title="Wants to modify schedules",
        why="Permission is needed to create or change run schedules.",
        impact="The bot's automated run times will change.",
        risk="Frequent schedules may increase resource usage.",
    ),
    _K.FS_READ: PermissionMessage(
        title="Wants to read local files",
        why="Permission is needed to read files from designated folders.",
        impact="The bot will access files on your local system.",
        risk="Sensitive local files may be read.",
    ),
    _K.FS_WRITE: PermissionMessage(
        title="Wants to write local files",
        why="Permission is needed to create or modify files.",
        impact="New files will be created or existing files modified.",
        risk="Existing files may be overwritten.",
    ),
    _K.FS_DELETE: PermissionMessage(
        title="Wants to delete files",
        why="Permission is needed to move files to trash.",
        impact="Files will be moved to the trash (not permanently deleted).",
        risk="Important files may be accidentally removed.",
    ),
    _K.CAL_READ: PermissionMessage(
        title="Wants to read calendar",
        why="Calendar access is needed to include events in briefings.",
        impact="Your calendar events will be visible to this bot.",
        risk="Private schedule information may be accessed.",
    ),
    _K.CAL_WRITE: PermissionMessage(
        title="Wants to modify calendar",
        why="Permission is needed to create or update calendar events.",
        impact="New events may be added or existing ones changed.",
        risk="Calendar events may be unexpectedly modified.",
    ),
    _K.MEMORY_WRITE: PermissionMessage(
        title="Wants to remember information",
        why="Permission is needed to store rules and notes for later runs.",
        impact="Stored notes will influence how the bot behaves in the future.",
        risk="Incorrect notes may persist across runs.",
    ),
    _K.DATA_RETENTION: PermissionMessage(
        title="Wants to change data retention",
        why="Permission is needed to change how long collected data is kept.",
        impact="Older items may be kept longer or removed sooner.",
        risk="Data may be kept longer than you expect.",
    ),
    _K.AUTONOMY_LEVEL: PermissionMessage(
        title="Wants more autonomy",
        why="A higher autonomy level lets the bot act without confirming each plan.",
        impact="The bot will run tasks with fewer confirmations.",
        risk="Mistakes may take effect before you can review them.",
    ),
    _K.AGENT_RUN: PermissionMessage(
        title="Wants to run an agent task",
        why="Permission is needed to start an autonomous run for this bot.",
        impact="The bot will execute a sequence of tool steps.",
        risk="Steps may consume resources or change data.",
    ),
    _K.TOOL_USE: PermissionMessage(
        title="Wants to use tools",
        why="Permission is needed to invoke tools during a run.",
        impact="Tools will act on your behalf.",
        risk="A tool may behave differently than expected.",
    ),
    _K.TELEGRAM_CONNECT: PermissionMessage(
        title="Wants to connect Telegram",
        why="Permission is needed to link a Telegram chat to this bot.",
        impact="The bot will be reachable from Telegram.",
        risk="Messages may be read by anyone with access to the chat.",
    ),
    _K.TELEGRAM_SEND: PermissionMessage(
        title="Wants to send Telegram messages",
        why="Permission is needed to deliver results to a Telegram chat.",
        impact="Messages will be sent outside this application.",
        risk="Content may be delivered to the wrong audience.",
    ),
}


def message_for(key: PermissionKey) -> PermissionMessage:
    """Return the message for ``key``, falling back to a generic text."""
    msg = PERMISSION_MESSAGES.get(PermissionKey(key))
    if msg is not None:
        return msg
    return PermissionMessage(
        title="Wants additional permission",
        why=f"The action requires the {PermissionKey(key).value} permission.",
        impact="The bot will perform an action on your behalf.",
        risk="Review the action before approving.",
    )
