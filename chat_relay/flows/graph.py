"""LangGraph construction for multi-stage export choreographies."""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Sequence, Tuple

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from chat_relay.flows.state import FeishuExportState


StageFn = Callable[[FeishuExportState], Awaitable[Dict]]


def build_linear_graph(stages: Sequence[Tuple[str, StageFn]]) -> CompiledStateGraph:
    """Chain the stages strictly one after another.

    Each stage reads the identifiers produced by earlier stages from the state
    and returns its own as a partial update. An exception raised by a stage
    ends the run; later stages never execute.
    """

    if not stages:
        raise ValueError("at least one stage is required")
    graph = StateGraph(FeishuExportState)
    for name, fn in stages:
        graph.add_node(name, fn)
    graph.set_entry_point(stages[0][0])
    for (current, _), (following, _) in zip(stages, stages[1:]):
        graph.add_edge(current, following)
    graph.add_edge(stages[-1][0], END)
    return graph.compile()
