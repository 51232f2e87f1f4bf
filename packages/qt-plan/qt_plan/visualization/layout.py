"""Layered tree layout for plan graphs.

A simplified Sugiyama layout:
1. BFS assigns each node a layer equal to its distance from the root
2. Each layer is stably ordered by its parents' positions in the layer above
3. Layers are centered against the widest one on a fixed grid
4. Edges run from a parent's bottom-center to each child's top-center

Only topology is used, so identical trees always get identical coordinates.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import PlanNode

NODE_WIDTH = 180.0
NODE_HEIGHT = 80.0
HORIZONTAL_SPACING = 60.0
VERTICAL_SPACING = 100.0
PADDING_LEFT = 40.0
PADDING_TOP = 40.0


@dataclass
class NodePosition:
    x: float
    y: float
    width: float
    height: float
    layer: int
    order_in_layer: int

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "layer": self.layer,
            "order_in_layer": self.order_in_layer,
        }


@dataclass
class EdgeConnection:
    source_id: int
    target_id: int
    source_x: float
    source_y: float
    target_x: float
    target_y: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "source_x": self.source_x,
            "source_y": self.source_y,
            "target_x": self.target_x,
            "target_y": self.target_y,
        }


@dataclass
class FlowLayoutResult:
    """Node positions keyed by node id, plus edges and canvas size."""
    node_positions: dict[int, NodePosition] = field(default_factory=dict)
    edge_connections: list[EdgeConnection] = field(default_factory=list)
    canvas_width: float = 0.0
    canvas_height: float = 0.0


@dataclass
class _LayoutNode:
    node: PlanNode
    layer: int
    parent: Optional[_LayoutNode] = None
    parent_order: int = 0
    position: Optional[NodePosition] = None


class FlowLayout:
    """Computes positions for every node of a plan tree.

    Node ids are expected to be unique, which normalized plans guarantee.
    """

    def __init__(
        self,
        node_width: float = NODE_WIDTH,
        node_height: float = NODE_HEIGHT,
        horizontal_spacing: float = HORIZONTAL_SPACING,
        vertical_spacing: float = VERTICAL_SPACING,
        padding_left: float = PADDING_LEFT,
        padding_top: float = PADDING_TOP,
    ):
        self.node_width = node_width
        self.node_height = node_height
        self.horizontal_spacing = horizontal_spacing
        self.vertical_spacing = vertical_spacing
        self.padding_left = padding_left
        self.padding_top = padding_top

    def compute_layout(self, root: PlanNode) -> FlowLayoutResult:
        layers = self._assign_layers(root)
        self._order_layers(layers)

        result = FlowLayoutResult()
        self._assign_positions(layers, result)
        self._connect_edges(layers, result)

        result.canvas_width = (
            max(p.right for p in result.node_positions.values()) + self.padding_left * 2
        )
        result.canvas_height = (
            (len(layers) - 1) * (self.node_height + self.vertical_spacing)
            + self.node_height
            + self.padding_top * 2
        )
        return result

    @staticmethod
    def _assign_layers(root: PlanNode) -> list[list[_LayoutNode]]:
        layers: list[list[_LayoutNode]] = []
        queue = deque([_LayoutNode(node=root, layer=0)])
        while queue:
            entry = queue.popleft()
            if entry.layer == len(layers):
                layers.append([])
            layers[entry.layer].append(entry)
            for child in entry.node.children:
                queue.append(_LayoutNode(node=child, layer=entry.layer + 1, parent=entry))
        return layers

    @staticmethod
    def _order_layers(layers: list[list[_LayoutNode]]) -> None:
        for depth in range(1, len(layers)):
            index_of = {id(entry): i for i, entry in enumerate(layers[depth - 1])}
            for entry in layers[depth]:
                entry.parent_order = index_of.get(id(entry.parent), 0)
            # sort() is stable, so siblings keep child order
            layers[depth].sort(key=lambda e: e.parent_order)

    def _assign_positions(self, layers: list[list[_LayoutNode]], result: FlowLayoutResult) -> None:
        pitch_x = self.node_width + self.horizontal_spacing
        pitch_y = self.node_height + self.vertical_spacing

        widest = max(len(layer) for layer in layers)
        max_width = widest * self.node_width + (widest - 1) * self.horizontal_spacing

        for depth, layer in enumerate(layers):
            layer_width = len(layer) * self.node_width + (len(layer) - 1) * self.horizontal_spacing
            start_x = self.padding_left + (max_width - layer_width) / 2
            y = self.padding_top + depth * pitch_y

            for order, entry in enumerate(layer):
                entry.position = NodePosition(
                    x=start_x + order * pitch_x,
                    y=y,
                    width=self.node_width,
                    height=self.node_height,
                    layer=depth,
                    order_in_layer=order,
                )
                result.node_positions[entry.node.id] = entry.position

    @staticmethod
    def _connect_edges(layers: list[list[_LayoutNode]], result: FlowLayoutResult) -> None:
        for layer in layers[1:]:
            for entry in layer:
                parent, child = entry.parent.position, entry.position
                result.edge_connections.append(EdgeConnection(
                    source_id=entry.parent.node.id,
                    target_id=entry.node.id,
                    source_x=parent.x + parent.width / 2,
                    source_y=parent.bottom,
                    target_x=child.x + child.width / 2,
                    target_y=child.y,
                ))
