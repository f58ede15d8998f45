"""Layout constants and labels shared between the compiler and the editor."""

from __future__ import annotations

from typing import Dict

X_CENTER = 400
Y_START = 50
VERTICAL_SPACING = 150
ADD_NODE_VERTICAL_SPACING = 70
CONDITIONAL_X_OFFSET = -300
CONDITIONAL_Y_OFFSET = -20

QUESTION_NODE = "questionNode"
CONDITIONAL_NODE = "conditionalNode"
ADD_NODE = "addButtonNode"

SEQUENCE_EDGE = "sequence"
STEP_EDGE = "step"
CONDITION_SOURCE_EDGE = "condition_source"
CONDITION_TARGET_EDGE = "condition_target"

STEP_EDGE_LABEL = "Next Step"
NEW_STEP_NODE_ID = "add-new-step"

EDGE_COLOR = "#94a3b8"
CONDITION_COLOR = "#9333ea"
LABEL_COLOR = "#64748b"
BROKEN_COLOR = "#dc2626"

EDGE_STYLES: Dict[str, Dict[str, object]] = {
    SEQUENCE_EDGE: {"stroke": EDGE_COLOR, "strokeWidth": 2},
    STEP_EDGE: {"stroke": EDGE_COLOR, "strokeWidth": 2, "strokeDasharray": "5,5"},
    CONDITION_SOURCE_EDGE: {"stroke": CONDITION_COLOR, "strokeWidth": 2},
    CONDITION_TARGET_EDGE: {"stroke": CONDITION_COLOR, "strokeWidth": 2},
}

DEFAULT_CATEGORY_LABEL = "Untitled category"
UNSELECTED_LABEL = "— Select an option —"
