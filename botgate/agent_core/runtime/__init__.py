"""LangGraph-based execution runtime for agent runs.

The runtime takes an ordered list of plan steps and executes it with strong
guarantees:

- every step passes the approval gate before its tool is invoked;
- hard budgets (steps, wall clock, tool calls, reasoning calls, cooldown) are
  enforced before each step;
- every run ends in exactly one terminal status, recorded with its steps by
  ``RunRecorder``.

The main entry point is ``AgentExecutor``.
"""

from .engine import AgentExecutor
from .models import ExecutorDeps, RunBudget
from .recorder import RunRecorder

__all__ = [
    "AgentExecutor",
    "ExecutorDeps",
    "RunBudget",
    "RunRecorder",
]
