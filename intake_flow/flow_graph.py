"""Compile a category's question list into a positioned node/edge graph.

The compiler is a pure function: equal question lists (by value) always give
identical node ids, edge ids and positions, so the rendering layer can diff
consecutive graphs and tests can run without a UI.

Ids are derived from question ids and step numbers only:

* question node ``{question_id}``
* sequential edge ``e-{a}-{b}``, step transition edge ``e-step-{a}-{b}``
* conditional node ``cond-{target}``, edges ``e-{source}-cond-{target}`` and
  ``e-cond-{target}-{target}``
* add nodes ``add-end-{step}``, ``add-new-step`` and, with
  ``inline_add_nodes``, ``add-{question_id}``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Dict, Iterable, List, Optional, Tuple

from intake_flow import flow_defaults as defaults
from intake_flow.conditions import broken_sources, denormalize, option_labels, question_display
from intake_flow.models import ConditionalDisplay, FlowPosition, Question, sort_by_flow

ACTION_ADD_QUESTION = "add_question"
ACTION_EDIT_QUESTION = "edit_question"
ACTION_DELETE_QUESTION = "delete_question"
ACTION_ADD_CONDITION = "add_condition"
ACTION_EDIT_CONDITION = "edit_condition"
ACTION_REMOVE_CONDITION = "remove_condition"


@dataclass(frozen=True)
class FlowNode:
    id: str
    type: str
    position: Tuple[int, int]
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": {"x": self.position[0], "y": self.position[1]},
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class FlowEdge:
    id: str
    source: str
    target: str
    kind: str
    label: str = ""
    animated: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def style(self) -> Dict[str, object]:
        return dict(defaults.EDGE_STYLES.get(self.kind, {}))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": "smoothstep",
            "kind": self.kind,
            "animated": self.animated,
            "style": self.style,
            "data": dict(self.data),
        }
        if self.label:
            payload["label"] = self.label
            payload["labelStyle"] = {"fill": defaults.LABEL_COLOR, "fontWeight": 600}
        return payload


@dataclass(frozen=True)
class FlowGraph:
    """The compiled graph handed to the rendering layer."""

    nodes: Tuple[FlowNode, ...] = ()
    edges: Tuple[FlowEdge, ...] = ()

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    @property
    def edge_ids(self) -> List[str]:
        return [edge.id for edge in self.edges]

    def node(self, node_id: str) -> Optional[FlowNode]:
        return next((node for node in self.nodes if node.id == node_id), None)

    def edge(self, edge_id: str) -> Optional[FlowEdge]:
        return next((edge for edge in self.edges if edge.id == edge_id), None)

    def nodes_of_type(self, node_type: str) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == node_type]

    def edges_of_kind(self, kind: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.kind == kind]

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


def conditional_node_id(question_id: str) -> str:
    return f"cond-{question_id}"


def target_from_conditional_node_id(node_id: str) -> str:
    """Return the target question id encoded in a conditional node id."""

    prefix = conditional_node_id("")
    return node_id[len(prefix):] if node_id.startswith(prefix) else node_id


def filter_questions(questions: Iterable[Question], *, include_inactive: bool = False) -> List[Question]:
    """Return the questions that take part in the graph."""

    return [
        question
        for question in questions
        if not question.is_deleted and (include_inactive or question.is_active)
    ]


def _add_node(node_id: str, x: int, y: int, position: FlowPosition) -> FlowNode:
    return FlowNode(
        id=node_id,
        type=defaults.ADD_NODE,
        position=(x, y),
        data={"position": position.as_dict(), "actions": [ACTION_ADD_QUESTION]},
    )


def _question_node(question: Question, y: int) -> FlowNode:
    data = question.to_record()
    data.update(
        {
            "id": question.question_id,
            "option_labels": option_labels(question),
            "has_condition": question_display(question) is not None,
            "actions": [ACTION_EDIT_QUESTION, ACTION_DELETE_QUESTION, ACTION_ADD_CONDITION],
        }
    )
    return FlowNode(id=question.question_id, type=defaults.QUESTION_NODE, position=(defaults.X_CENTER, y), data=data)


def _conditional_elements(
    question: Question,
    display: ConditionalDisplay,
    y: int,
    node_ids: Iterable[str],
    broken: List[str],
) -> Tuple[FlowNode, List[FlowEdge]]:
    node_id = conditional_node_id(question.question_id)
    present = set(node_ids)
    drawn = [source for source in display.source_question_ids if source in present]
    first = display.conditions[0]

    data: Dict[str, Any] = {
        "id": node_id,
        "target_question_id": question.question_id,
        "source_question_id": first.source_question_id,
        "operator": first.operator,
        "values": list(first.values),
        "group_operator": display.group_operator,
        "conditional_display": denormalize(display),
        "unresolved_sources": [source for source in display.source_question_ids if source not in present],
        "broken_sources": list(broken),
        "actions": [ACTION_EDIT_CONDITION, ACTION_REMOVE_CONDITION],
    }
    node = FlowNode(
        id=node_id,
        type=defaults.CONDITIONAL_NODE,
        position=(defaults.X_CENTER + defaults.CONDITIONAL_X_OFFSET, y + defaults.CONDITIONAL_Y_OFFSET),
        data=data,
    )

    edges = [
        FlowEdge(
            id=f"e-{source}-{node_id}",
            source=source,
            target=node_id,
            kind=defaults.CONDITION_SOURCE_EDGE,
            data={"broken": source in broken},
        )
        for source in drawn
    ]
    edges.append(
        FlowEdge(
            id=f"e-{node_id}-{question.question_id}",
            source=node_id,
            target=question.question_id,
            kind=defaults.CONDITION_TARGET_EDGE,
            animated=True,
        )
    )
    return node, edges


def compile_flow(
    questions: Iterable[Question],
    *,
    include_inactive: bool = False,
    inline_add_nodes: bool = False,
) -> FlowGraph:
    """Compile ``questions`` into a :class:`FlowGraph`.

    Intra-step insertion points are carried on sequential edges as
    ``data["insert_position"]``; ``inline_add_nodes`` also emits them as
    ``add-{question_id}`` nodes.
    """

    pool = [question for question in questions if not question.is_deleted]
    included = sort_by_flow(filter_questions(pool, include_inactive=include_inactive))
    included_ids = [question.question_id for question in included]
    steps = [(step, list(items)) for step, items in groupby(included, key=lambda item: item.step_number)]

    nodes: List[FlowNode] = []
    edges: List[FlowEdge] = []
    y = defaults.Y_START
    half_spacing = defaults.VERTICAL_SPACING // 2

    for step_index, (step, step_questions) in enumerate(steps):
        for index, question in enumerate(step_questions):
            nodes.append(_question_node(question, y))
            following = step_questions[index + 1] if index + 1 < len(step_questions) else None
            insert_position = FlowPosition(step, question.display_order_in_step + 1)

            if following is not None:
                edges.append(
                    FlowEdge(
                        id=f"e-{question.question_id}-{following.question_id}",
                        source=question.question_id,
                        target=following.question_id,
                        kind=defaults.SEQUENCE_EDGE,
                        data={"insert_position": insert_position.as_dict()},
                    )
                )

            display = question_display(question)
            if display is not None:
                node, condition_edges = _conditional_elements(
                    question, display, y, included_ids, broken_sources(question, pool)
                )
                nodes.append(node)
                edges.extend(condition_edges)

            y += defaults.VERTICAL_SPACING

            if following is not None and inline_add_nodes:
                nodes.append(
                    _add_node(f"add-{question.question_id}", defaults.X_CENTER, y - half_spacing, insert_position)
                )

        last = step_questions[-1]
        if step_index + 1 < len(steps):
            first_next = steps[step_index + 1][1][0]
            edges.append(
                FlowEdge(
                    id=f"e-step-{last.question_id}-{first_next.question_id}",
                    source=last.question_id,
                    target=first_next.question_id,
                    kind=defaults.STEP_EDGE,
                    label=defaults.STEP_EDGE_LABEL,
                    data={"from_step": step, "to_step": steps[step_index + 1][0]},
                )
            )

        nodes.append(
            _add_node(
                f"add-end-{step}",
                defaults.X_CENTER,
                y - half_spacing + defaults.ADD_NODE_VERTICAL_SPACING,
                FlowPosition(step, last.display_order_in_step + 1),
            )
        )
        y += defaults.ADD_NODE_VERTICAL_SPACING

    next_step = steps[-1][0] + 1 if steps else 1
    nodes.append(_add_node(defaults.NEW_STEP_NODE_ID, defaults.X_CENTER, y, FlowPosition(next_step, 1)))

    return FlowGraph(nodes=tuple(nodes), edges=tuple(edges))


__all__ = [
    "ACTION_ADD_CONDITION",
    "ACTION_ADD_QUESTION",
    "ACTION_DELETE_QUESTION",
    "ACTION_EDIT_CONDITION",
    "ACTION_EDIT_QUESTION",
    "ACTION_REMOVE_CONDITION",
    "FlowEdge",
    "FlowGraph",
    "FlowNode",
    "compile_flow",
    "conditional_node_id",
    "filter_questions",
    "target_from_conditional_node_id",
]
