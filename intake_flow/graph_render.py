"""Render a compiled :class:`FlowGraph` as Graphviz DOT source."""

from __future__ import annotations

from typing import List

from intake_flow import flow_defaults as defaults
from intake_flow.flow_graph import FlowEdge, FlowGraph, FlowNode

_MAX_LABEL = 40


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ")


def _shorten(text: str, limit: int = _MAX_LABEL) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def node_label(node: FlowNode) -> str:
    """Return the text shown inside ``node``."""

    data = node.data
    if node.type == defaults.QUESTION_NODE:
        prefix = f"{data.get('step_number')}.{data.get('display_order_in_step')}"
        text = _shorten(str(data.get("question_text") or node.id))
        suffix = " (inactive)" if data.get("status") != "active" else ""
        return f"{prefix} {text}{suffix}"
    if node.type == defaults.CONDITIONAL_NODE:
        conditions = (data.get("conditional_display") or {}).get("conditions", [])
        parts = [
            f"{'any' if row.get('operator') == 'OR' else 'all'} of {', '.join(row.get('values', []))}"
            for row in conditions
        ]
        return _shorten(f" {data.get('group_operator', 'AND')} ".join(parts) or "condition", 60)
    position = data.get("position", {})
    return f"+ {position.get('step')}.{position.get('order')}"


def _node_line(node: FlowNode) -> str:
    attributes = [f'label="{_escape(node_label(node))}"']
    if node.type == defaults.QUESTION_NODE:
        attributes.append("shape=box")
        attributes.append('style="rounded"')
    elif node.type == defaults.CONDITIONAL_NODE:
        broken = bool(node.data.get("broken_sources"))
        attributes.append("shape=diamond")
        attributes.append(f'color="{defaults.BROKEN_COLOR if broken else defaults.CONDITION_COLOR}"')
    else:
        attributes.append("shape=circle")
        attributes.append(f'color="{defaults.EDGE_COLOR}"')
        attributes.append("fontsize=10")
    return f'  "{_escape(node.id)}" [{", ".join(attributes)}];'


def _edge_line(edge: FlowEdge) -> str:
    style = edge.style
    color = defaults.BROKEN_COLOR if edge.data.get("broken") else style.get("stroke", defaults.EDGE_COLOR)
    attributes = [f'color="{color}"']
    if edge.kind == defaults.STEP_EDGE:
        attributes.append("style=dashed")
    if edge.label:
        attributes.append(f'label="{_escape(edge.label)}"')
        attributes.append(f'fontcolor="{defaults.LABEL_COLOR}"')
    if edge.kind == defaults.CONDITION_SOURCE_EDGE:
        attributes.append("constraint=false")
    return f'  "{_escape(edge.source)}" -> "{_escape(edge.target)}" [{", ".join(attributes)}];'


def to_graphviz(graph: FlowGraph) -> str:
    """Return DOT source for ``graph`` suitable for ``st.graphviz_chart``."""

    lines: List[str] = ["digraph flow {", "  rankdir=TB;", '  node [fontname="Inter"];']
    lines.extend(_node_line(node) for node in graph.nodes)
    lines.extend(_edge_line(edge) for edge in graph.edges)
    lines.append("}")
    return "\n".join(lines)


__all__ = ["node_label", "to_graphviz"]
