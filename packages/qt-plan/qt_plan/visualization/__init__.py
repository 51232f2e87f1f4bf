"""Layout and renderer-facing flow data."""

from .flow import ColorMapper, FlowBuilder, FlowData, FlowEdge, FlowNode
from .layout import EdgeConnection, FlowLayout, FlowLayoutResult, NodePosition

__all__ = [
    "ColorMapper",
    "FlowBuilder",
    "FlowData",
    "FlowEdge",
    "FlowNode",
    "EdgeConnection",
    "FlowLayout",
    "FlowLayoutResult",
    "NodePosition",
]
