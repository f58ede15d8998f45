"""Conditional question flows for multi-step intake forms."""

from .conditions import denormalize, normalize, option_labels, parse_conditional_display  # noqa: F401
from .flow_graph import FlowEdge, FlowGraph, FlowNode, compile_flow  # noqa: F401
from .models import Condition, ConditionalDisplay, FlowPosition, Question  # noqa: F401
from .visibility import is_visible, selected_labels  # noqa: F401
