"""Runs every bottleneck rule over every node and ranks the results."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..models import BottleneckInfo, ExecutionPlan
from .bottleneck_rules import BottleneckRule, get_bottleneck_rules

logger = logging.getLogger(__name__)


class BottleneckDetector:
    """Applies bottleneck rules uniformly to a plan.

    Output is ranked by severity, then impact, both descending. Ties keep
    node traversal order, then rule order.
    """

    def __init__(self, rules: Optional[Sequence[BottleneckRule]] = None):
        self.rules = list(rules) if rules is not None else get_bottleneck_rules()

    def detect(self, plan: ExecutionPlan) -> list[BottleneckInfo]:
        found: list[BottleneckInfo] = []

        for node in plan.all_nodes:
            for rule in self.rules:
                try:
                    found.extend(rule.check(node))
                except Exception:
                    logger.exception("Rule %s failed on node %d", rule.rule_id, node.id)

        return sorted(
            found,
            key=lambda b: (b.severity, b.impact_percentage),
            reverse=True,
        )
