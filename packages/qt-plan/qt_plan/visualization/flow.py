"""Flow graph data for renderers.

Combines the layout with display attributes: per-node cost color, icon,
border color and subtitle; per-edge row label, thickness and SVG path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import ExecutionPlan, NodeType, PlanNode, Severity
from .layout import FlowLayout


class ColorMapper:
    """Maps costs, severities and operator kinds to display attributes."""

    GREEN = "#3fb950"
    YELLOW = "#d29922"
    ORANGE = "#db6d28"
    RED = "#f85149"
    NEUTRAL_GRAY = "#8b949e"

    ICONS: dict[NodeType, str] = {
        NodeType.TABLE_SCAN: "table-scan",
        NodeType.SEQ_SCAN: "table-scan",
        NodeType.CLUSTERED_INDEX_SCAN: "index-scan",
        NodeType.INDEX_SCAN: "index-scan",
        NodeType.INDEX_SEEK: "index-seek",
        NodeType.CLUSTERED_INDEX_SEEK: "index-seek",
        NodeType.KEY_LOOKUP: "key-lookup",
        NodeType.NESTED_LOOP_JOIN: "nested-loop",
        NodeType.HASH_JOIN: "hash-join",
        NodeType.MERGE_JOIN: "merge-join",
        NodeType.STREAM_AGGREGATE: "aggregate",
        NodeType.HASH_AGGREGATE: "aggregate",
        NodeType.SORT: "sort",
        NodeType.FILTER: "filter",
        NodeType.TOP: "top",
        NodeType.LIMIT: "top",
        NodeType.DISTINCT: "distinct",
        NodeType.UNIQUE: "distinct",
        NodeType.COMPUTE: "compute",
        NodeType.RESULT: "compute",
        NodeType.INSERT: "dml",
        NodeType.UPDATE: "dml",
        NodeType.DELETE: "dml",
        NodeType.BITMAP_HEAP_SCAN: "bitmap-scan",
        NodeType.BITMAP_INDEX_SCAN: "bitmap-scan",
        NodeType.HASH: "hash",
        NodeType.MATERIALIZE: "materialize",
        NodeType.APPEND: "append",
        NodeType.WINDOW_AGGREGATE: "window",
    }

    BORDER_COLORS: dict[NodeType, str] = {
        NodeType.TABLE_SCAN: RED,
        NodeType.SEQ_SCAN: RED,
        NodeType.CLUSTERED_INDEX_SCAN: YELLOW,
        NodeType.INDEX_SCAN: YELLOW,
        NodeType.INDEX_SEEK: GREEN,
        NodeType.CLUSTERED_INDEX_SEEK: GREEN,
        NodeType.KEY_LOOKUP: ORANGE,
        NodeType.HASH_JOIN: YELLOW,
        NodeType.SORT: YELLOW,
    }

    SEVERITY_COLORS: dict[Severity, str] = {
        Severity.LOW: GREEN,
        Severity.MEDIUM: YELLOW,
        Severity.HIGH: ORANGE,
        Severity.CRITICAL: RED,
    }

    def cost_color(self, cost_percentage: float) -> str:
        if cost_percentage < 10:
            return self.GREEN
        if cost_percentage < 30:
            return self.YELLOW
        if cost_percentage < 50:
            return self.ORANGE
        return self.RED

    def severity_color(self, severity: Severity) -> str:
        return self.SEVERITY_COLORS.get(severity, self.NEUTRAL_GRAY)

    def icon(self, node_type: NodeType) -> str:
        return self.ICONS.get(node_type, "operation")

    def border_color(self, node_type: NodeType) -> str:
        return self.BORDER_COLORS.get(node_type, self.NEUTRAL_GRAY)

    def edge_thickness(self, row_count: float) -> float:
        for limit, thickness in ((10, 1.5), (100, 2.0), (1_000, 3.0), (10_000, 4.0)):
            if row_count < limit:
                return thickness
        return 5.0


def format_row_count(rows: float) -> str:
    if rows >= 1_000_000:
        return f"{rows / 1_000_000:.1f}M"
    if rows >= 1_000:
        return f"{rows / 1_000:.1f}K"
    return f"{rows:.0f}"


@dataclass
class FlowNode:
    id: int
    label: str
    subtitle: str
    x: float
    y: float
    width: float
    height: float
    color: str
    border_color: str
    icon: str
    node_type: NodeType
    cost_percentage: float = 0.0
    is_warning: bool = False
    warning_message: str = ""
    estimated_rows: float = 0.0
    actual_rows: float = 0.0
    predicate: str = ""
    table_name: str = ""
    index_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "subtitle": self.subtitle,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "color": self.color,
            "border_color": self.border_color,
            "icon": self.icon,
            "node_type": self.node_type.value,
            "cost_percentage": round(self.cost_percentage, 2),
            "is_warning": self.is_warning,
            "warning_message": self.warning_message,
            "estimated_rows": self.estimated_rows,
            "actual_rows": self.actual_rows,
            "predicate": self.predicate,
            "table_name": self.table_name,
            "index_name": self.index_name,
        }


@dataclass
class FlowEdge:
    source_id: int
    target_id: int
    row_count: float
    label: str
    thickness: float
    color: str
    source_x: float
    source_y: float
    target_x: float
    target_y: float

    @property
    def svg_path(self) -> str:
        """Vertical cubic Bezier from source to target."""
        mid_y = (self.source_y + self.target_y) / 2
        return (
            f"M {self.source_x:g} {self.source_y:g} "
            f"C {self.source_x:g} {mid_y:g}, {self.target_x:g} {mid_y:g}, "
            f"{self.target_x:g} {self.target_y:g}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "row_count": self.row_count,
            "label": self.label,
            "thickness": self.thickness,
            "color": self.color,
            "svg_path": self.svg_path,
        }


@dataclass
class FlowData:
    nodes: list[FlowNode] = field(default_factory=list)
    edges: list[FlowEdge] = field(default_factory=list)
    canvas_width: float = 0.0
    canvas_height: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "canvas_width": self.canvas_width,
            "canvas_height": self.canvas_height,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def build_subtitle(node: PlanNode) -> str:
    """``table | index | rows | cost%``; estimated rows get a ``~`` prefix."""
    parts = []
    if node.table is not None and node.table.table_name:
        parts.append(node.table.table_name)
    if node.index is not None and node.index.index_name:
        parts.append(node.index.index_name)
    if node.cost.actual_rows > 0:
        parts.append(f"{format_row_count(node.cost.actual_rows)} rows")
    elif node.cost.estimated_rows > 0:
        parts.append(f"~{format_row_count(node.cost.estimated_rows)} rows")
    parts.append(f"{node.cost.cost_percentage:.1f}%")
    return " | ".join(parts)


class FlowBuilder:
    """Builds renderer-ready flow data for a plan."""

    def __init__(
        self,
        layout: Optional[FlowLayout] = None,
        color_mapper: Optional[ColorMapper] = None,
    ):
        self.layout = layout or FlowLayout()
        self.color_mapper = color_mapper or ColorMapper()

    def build(self, plan: ExecutionPlan) -> FlowData:
        layout = self.layout.compute_layout(plan.root_node)
        colors = self.color_mapper
        flow = FlowData(canvas_width=layout.canvas_width, canvas_height=layout.canvas_height)

        nodes_by_id: dict[int, PlanNode] = {}
        for node in plan.all_nodes:
            nodes_by_id[node.id] = node
            pos = layout.node_positions.get(node.id)
            if pos is None:
                continue
            flow.nodes.append(FlowNode(
                id=node.id,
                label=node.label,
                subtitle=build_subtitle(node),
                x=pos.x,
                y=pos.y,
                width=pos.width,
                height=pos.height,
                color=colors.cost_color(node.cost.cost_percentage),
                border_color=colors.border_color(node.node_type),
                icon=colors.icon(node.node_type),
                node_type=node.node_type,
                cost_percentage=node.cost.cost_percentage,
                is_warning=node.is_warning,
                warning_message=node.warning_message,
                estimated_rows=node.cost.estimated_rows,
                actual_rows=node.cost.actual_rows,
                predicate=node.predicate,
                table_name=node.table.table_name if node.table else "",
                index_name=node.index.index_name if node.index else "",
            ))

        for edge in layout.edge_connections:
            source = nodes_by_id.get(edge.source_id)
            target = nodes_by_id.get(edge.target_id)
            rows = target.cost.observed_rows if target is not None else 0.0
            warn = source is not None and source.is_warning
            flow.edges.append(FlowEdge(
                source_id=edge.source_id,
                target_id=edge.target_id,
                row_count=rows,
                label=format_row_count(rows),
                thickness=colors.edge_thickness(rows),
                color=colors.ORANGE if warn else colors.NEUTRAL_GRAY,
                source_x=edge.source_x,
                source_y=edge.source_y,
                target_x=edge.target_x,
                target_y=edge.target_y,
            ))

        return flow
