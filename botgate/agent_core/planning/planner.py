"""Structured planning for agent runs.

This module defines the default planner used by ``AgentService``.

Responsibilities
----------------

- Convert a goal into an ordered list of ``PlanStep`` objects, each annotated
  with the permission key and static risk tier of its tool.
- Wrap the steps into an ``AgentPlan`` with a risk tally and a plan hash.

The planner is intentionally constrained:

- It does not execute tools.
- It does not consult the approval gate or the resolver.
- Every proposed tool key must exist in the tool catalog; anything else is
  dropped, so a model cannot invent a capability or its risk tier.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic_ai import Agent

from ..schemas.base import BaseSchema
from ..tools.base import ToolDefinition
from ..tools.registry import TOOL_CATALOG
from .steps import AgentPlan, PlanStep, build_plan

logger = logging.getLogger(__name__)

# (tool_key, trigger substrings), evaluated in order against the lowercased goal.
KEYWORD_RULES: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("web.rss", ("rss", "collect", "feed")),
    ("web.fetch", ("fetch", "url", "http", "website", "web page")),
    ("files.read", ("read file", "local file", "open file")),
    ("calendar.read", ("agenda", "read calendar", "check calendar")),
    ("llm.analyze", ("analyz", "analys", "report", "summar", "brief")),
    ("files.write", ("write", "save", "export")),
    ("files.delete", ("delete", "trash", "remove file")),
    ("calendar.write", ("meeting", "add event", "add to calendar")),
    ("schedule.set", ("schedule", "every day", "every morning")),
    ("telegram.send", ("telegram", "notify", "send")),
    ("sources.manage", ("add source", "manage source", "new source")),
    ("memory.write", ("remember", "memorize")),
)

DEFAULT_TOOLS: Tuple[str, ...] = ("web.rss", "llm.analyze")


class _ProposedStep(BaseSchema):
    tool_key: str
    description: str = ""


class StructuredPlanner:
    """Planner that produces ``AgentPlan`` objects.

    The planner supports two modes:

    - ``model=None``: deterministic keyword matching against ``KEYWORD_RULES``.
      A goal that matches nothing gets the default collect-then-analyze plan.
    - ``model!=None``: uses Pydantic AI to propose tool keys, then annotates
      them from the catalog. An empty or fully invalid proposal falls back to
      the keyword plan.
    """

    def __init__(
        self,
        *,
        model: Any | None = None,
        max_steps: int = 5,
        catalog: Optional[Dict[str, ToolDefinition]] = None,
    ) -> None:
        self._model = model
        self._max_steps = max_steps
        self._catalog = dict(catalog if catalog is not None else TOOL_CATALOG)

    async def plan(self, *, bot_id: str, goal: str) -> AgentPlan:
        goal = goal.strip()
        if not goal:
            raise ValueError("goal must not be empty")

        steps: List[PlanStep] = []
        if self._model is not None:
            steps = await self._model_steps(goal)
        if not steps:
            steps = self.keyword_steps(goal)

        if len(steps) > self._max_steps:
            logger.info("plan for bot=%s truncated from %d to %d steps", bot_id, len(steps), self._max_steps)
            steps = steps[: self._max_steps]
        return build_plan(bot_id, goal, steps)

    def keyword_steps(self, goal: str) -> List[PlanStep]:
        text = goal.lower()
        keys = [tool_key for tool_key, words in KEYWORD_RULES if any(w in text for w in words)]
        if not keys:
            keys = list(DEFAULT_TOOLS)
        return [PlanStep.from_tool(self._catalog[k]) for k in keys if k in self._catalog]

    async def _model_steps(self, goal: str) -> List[PlanStep]:
        catalog_text = "\n".join(f"- {d.tool_key}: {d.description}" for d in self._catalog.values())
        agent: Agent = Agent(
            self._model,
            output_type=List[_ProposedStep],
            system_prompt=(
                "You plan tool invocations for a personal automation bot. "
                "Return a minimal, strictly sequential list of steps using only these tools:\n"
                f"{catalog_text}"
            ),
        )
        result = await agent.run(f"Create a short plan for this goal.\n\ngoal={goal}\n")

        steps: List[PlanStep] = []
        for proposed in result.output:
            tool = self._catalog.get(proposed.tool_key)
            if tool is None:
                logger.warning("planner model proposed unknown tool %r, dropping it", proposed.tool_key)
                continue
            steps.append(PlanStep.from_tool(tool, description=proposed.description))
        return steps
