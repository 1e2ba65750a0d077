"""
Routing functions for LangGraph conditional edges.

Each function inspects the current state dict and returns the name of the
next node.  A phase that fails fatally sets `fatal_error`; every router
sends such a run to `end_failed`.
"""

from __future__ import annotations

from typing import Any, Callable

FAILED_NODE = "end_failed"


def _failed(state: dict[str, Any]) -> bool:
    return bool(state.get("fatal_error"))


def route_to(next_node: str) -> Callable[[dict[str, Any]], str]:
    """Router that proceeds to *next_node* unless the run has failed."""

    def route(state: dict[str, Any]) -> str:
        return FAILED_NODE if _failed(state) else next_node

    route.__name__ = f"route_to_{next_node}"
    return route


# ── After Phase 4 Report ─────────────────────────────────

def route_after_report(state: dict[str, Any]) -> str:
    """
    No report → failed (a completed run always carries one).
    Otherwise → Phase 5 Comparison.
    """
    if _failed(state) or state.get("report") is None:
        return FAILED_NODE
    return "phase5_comparison"
