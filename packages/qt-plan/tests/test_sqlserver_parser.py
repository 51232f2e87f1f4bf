"""Tests for the SQL Server showplan XML parser."""

import pytest

from qt_plan.cancellation import CancellationToken
from qt_plan.errors import CancellationRequested, ParseFailure
from qt_plan.models import NodeType


class TestCanParse:
    """Content sniffing."""

    def test_accepts_showplan(self, sqlserver_parser, simple_seek_xml):
        assert sqlserver_parser.can_parse(simple_seek_xml) is True

    def test_rejects_other_input(self, sqlserver_parser, simple_index_scan_json):
        assert sqlserver_parser.can_parse(simple_index_scan_json) is False
        assert sqlserver_parser.can_parse("<root/>") is False
        assert sqlserver_parser.can_parse("") is False


class TestSimplePlans:
    """Single-operator plans."""

    def test_clustered_index_seek(self, sqlserver_parser, simple_seek_xml):
        plan = sqlserver_parser.parse(simple_seek_xml)

        assert plan.database_engine == "SQL Server"
        assert plan.query_text == "SELECT * FROM Students WHERE Id = 1"
        assert plan.metrics.total_cost == pytest.approx(0.003)

        root = plan.root_node
        assert root.node_type == NodeType.CLUSTERED_INDEX_SEEK
        assert root.physical_operator == "Clustered Index Seek"
        assert root.cost.estimated_rows == 1
        assert root.cost.actual_rows == 1
        assert root.table.table_name == "Students"
        assert root.table.schema == "dbo"
        assert root.index.index_name == "PK_Students"
        assert root.index.is_clustered is True
        assert root.properties["ActualElapsedms"] == "1"
        assert root.is_leaf

    def test_missing_attributes_use_defaults(self, sqlserver_parser, missing_attributes_xml):
        plan = sqlserver_parser.parse(missing_attributes_xml)

        root = plan.root_node
        assert root.node_type == NodeType.COMPUTE
        assert root.label == "Constant Scan"
        assert root.cost.total_cost == 0.0
        assert root.cost.estimated_rows == 0.0
        assert root.cost.cost_percentage == 0.0
        assert root.cost.executions == 1
        assert root.table is None
        assert plan.metrics.total_cost == 0.0


class TestJoinPlan:
    """Hash join over two scans."""

    def test_tree_shape(self, sqlserver_parser, join_xml):
        plan = sqlserver_parser.parse(join_xml)
        root = plan.root_node

        assert root.node_type == NodeType.HASH_JOIN
        assert root.logical_operator == "Inner Join"
        assert len(root.children) == 2
        assert [c.node_type for c in root.children] == [
            NodeType.CLUSTERED_INDEX_SCAN,
            NodeType.TABLE_SCAN,
        ]
        assert [n.id for n in plan.all_nodes] == [0, 1, 2]
        assert [n.depth for n in plan.all_nodes] == [0, 1, 1]

    def test_costs(self, sqlserver_parser, join_xml):
        plan = sqlserver_parser.parse(join_xml)
        root = plan.root_node
        students, enrollments = root.children

        assert plan.metrics.total_cost == pytest.approx(0.45)
        assert root.cost.total_cost == pytest.approx(0.15)
        assert root.cost.subtree_cost == pytest.approx(0.45)
        assert root.cost.cost_percentage == pytest.approx(100 * 0.15 / 0.45)
        assert students.cost.cost_percentage == pytest.approx(100 * 0.12 / 0.45)
        assert enrollments.cost.cost_percentage == pytest.approx(100 * 0.33 / 0.45)

    def test_table_without_index(self, sqlserver_parser, join_xml):
        enrollments = sqlserver_parser.parse(join_xml).root_node.children[1]
        assert enrollments.table.table_name == "Enrollments"
        assert enrollments.index is None

    def test_join_has_no_table(self, sqlserver_parser, join_xml):
        # Objects under child operators belong to the children
        assert sqlserver_parser.parse(join_xml).root_node.table is None


class TestRichPlan:
    """Nested loops with a seek, a key lookup and runtime statistics."""

    def test_statement_metrics(self, sqlserver_parser, lookup_xml):
        metrics = sqlserver_parser.parse(lookup_xml).metrics

        assert metrics.total_cost == pytest.approx(0.5)
        assert metrics.rows_affected == 120
        assert metrics.elapsed_time_ms == 35
        assert metrics.cpu_time_ms == 12
        assert metrics.memory_grant_mb == pytest.approx(2.0)
        assert metrics.degree_of_parallelism == 1
        assert metrics.total_operators == 3

    def test_seek_predicate_and_index(self, sqlserver_parser, lookup_xml):
        seek = sqlserver_parser.parse(lookup_xml).root_node.children[0]

        assert seek.node_type == NodeType.INDEX_SEEK
        assert seek.predicate == "Orders.CustomerId = (42)"
        assert seek.index.index_name == "IX_Orders_CustomerId"
        assert seek.index.columns == ["CustomerId"]
        assert seek.index.is_clustered is False
        assert seek.table.alias == "o"
        assert seek.cost.actual_rows == 150
        assert seek.properties["ActualLogicalReads"] == "4"

    def test_output_columns(self, sqlserver_parser, lookup_xml):
        root = sqlserver_parser.parse(lookup_xml).root_node
        assert root.output_columns == "Orders.OrderId, Orders.Total, Orders.Notes"
        assert root.children[1].output_column_list() == ["Orders.Total", "Orders.Notes"]

    def test_lookup_executions_and_spill(self, sqlserver_parser, lookup_xml):
        lookup = sqlserver_parser.parse(lookup_xml).root_node.children[1]

        assert lookup.node_type == NodeType.KEY_LOOKUP
        assert lookup.cost.executions == 150
        assert lookup.index.is_clustered is True
        assert lookup.is_warning is True
        assert lookup.warning_message == "Spill to TempDb detected"

    def test_lookup_rows_summed_over_executions(self, sqlserver_parser, lookup_xml):
        lookup = sqlserver_parser.parse(lookup_xml).root_node.children[1]

        # 1 row per execution, 120 estimated executions
        assert lookup.cost.estimated_rows == pytest.approx(120)
        assert lookup.cost.actual_rows == 150
        assert 0.1 <= lookup.cost.row_estimate_ratio <= 10

    def test_executions_from_rebinds_and_rewinds(self, sqlserver_parser):
        xml = (
            '<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan">'
            '<BatchSequence><Batch><Statements><StmtSimple StatementSubTreeCost="1"><QueryPlan>'
            '<RelOp NodeId="0" PhysicalOp="Table Spool" LogicalOp="Lazy Spool" EstimateRows="2"'
            ' EstimateRebinds="3" EstimateRewinds="1" EstimatedTotalSubtreeCost="1"/>'
            '</QueryPlan></StmtSimple></Statements></Batch></BatchSequence></ShowPlanXML>'
        )
        cost = sqlserver_parser.parse(xml).root_node.cost

        assert cost.estimated_rows == pytest.approx(10)
        assert cost.executions == 5

    def test_root_warnings(self, sqlserver_parser, lookup_xml):
        root = sqlserver_parser.parse(lookup_xml).root_node

        assert root.is_warning is True
        assert root.warning_message == "No join predicate"
        assert root.properties["MissingIndexImpact"] == "87.5"
        assert root.predicate == ""
        assert root.table is None

    def test_percentages_in_range(self, sqlserver_parser, lookup_xml):
        for node in sqlserver_parser.parse(lookup_xml).all_nodes:
            assert 0.0 <= node.cost.cost_percentage <= 100.0


class TestFailures:
    """Malformed input and cancellation."""

    def test_malformed_xml(self, sqlserver_parser):
        with pytest.raises(ParseFailure, match="Malformed showplan XML"):
            sqlserver_parser.parse(
                '<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan"><Batch>'
            )

    def test_no_operator(self, sqlserver_parser):
        xml = (
            '<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan">'
            '<BatchSequence><Batch><Statements><StmtSimple StatementText="SET NOCOUNT ON"/>'
            '</Statements></Batch></BatchSequence></ShowPlanXML>'
        )
        with pytest.raises(ParseFailure, match="no RelOp"):
            sqlserver_parser.parse(xml)

    def test_cancelled_before_parse(self, sqlserver_parser, simple_seek_xml):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancellationRequested) as exc:
            sqlserver_parser.parse(simple_seek_xml, token)
        assert exc.value.stage == "parse"
