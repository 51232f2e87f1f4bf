"""Pytest configuration and fixtures for qt-plan tests."""

from typing import Optional, Sequence

import pytest

from qt_plan.analyzers.query_analyzer import QueryAnalyzer
from qt_plan.models import (
    ExecutionPlan,
    IndexReference,
    NodeType,
    OperationCost,
    PlanNode,
    QueryMetrics,
    TableReference,
)
from qt_plan.parsers.normalizer import PlanNormalizer
from qt_plan.parsers.postgres import PostgresPlanParser
from qt_plan.parsers.sqlserver import SqlServerPlanParser


# =============================================================================
# SQL SERVER SHOWPLAN SAMPLES
# =============================================================================

SIMPLE_SEEK_XML = """<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan">
  <BatchSequence>
    <Batch>
      <Statements>
        <StmtSimple StatementText="SELECT * FROM Students WHERE Id = 1" StatementSubTreeCost="0.003">
          <QueryPlan>
            <RelOp NodeId="0" PhysicalOp="Clustered Index Seek" LogicalOp="Clustered Index Seek" EstimateRows="1" EstimatedTotalSubtreeCost="0.003">
              <RunTimeInformation>
                <RunTimeCountersPerThread ActualRows="1" ActualElapsedms="1"/>
              </RunTimeInformation>
              <IndexScan>
                <Object Database="SchoolDB" Schema="dbo" Table="Students" Index="PK_Students"/>
              </IndexScan>
            </RelOp>
          </QueryPlan>
        </StmtSimple>
      </Statements>
    </Batch>
  </BatchSequence>
</ShowPlanXML>"""

JOIN_XML = """<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan">
  <BatchSequence>
    <Batch>
      <Statements>
        <StmtSimple StatementText="SELECT s.Name, e.Grade FROM Students s JOIN Enrollments e ON s.Id = e.StudentId" StatementSubTreeCost="0.45">
          <QueryPlan>
            <RelOp NodeId="0" PhysicalOp="Hash Match" LogicalOp="Inner Join" EstimateRows="500" EstimateCPU="0.1" EstimateIO="0.05" EstimatedTotalSubtreeCost="0.45">
              <Hash>
                <RelOp NodeId="1" PhysicalOp="Clustered Index Scan" LogicalOp="Clustered Index Scan" EstimateRows="100" EstimateCPU="0.02" EstimateIO="0.10" EstimatedTotalSubtreeCost="0.12">
                  <IndexScan>
                    <Object Database="SchoolDB" Schema="dbo" Table="Students" Index="PK_Students"/>
                  </IndexScan>
                </RelOp>
                <RelOp NodeId="2" PhysicalOp="Table Scan" LogicalOp="Table Scan" EstimateRows="5000" EstimateCPU="0.05" EstimateIO="0.28" EstimatedTotalSubtreeCost="0.33">
                  <IndexScan>
                    <Object Database="SchoolDB" Schema="dbo" Table="Enrollments"/>
                  </IndexScan>
                </RelOp>
              </Hash>
            </RelOp>
          </QueryPlan>
        </StmtSimple>
      </Statements>
    </Batch>
  </BatchSequence>
</ShowPlanXML>"""

MISSING_ATTRIBUTES_XML = """<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan">
  <BatchSequence>
    <Batch>
      <Statements>
        <StmtSimple StatementText="SELECT 1">
          <QueryPlan>
            <RelOp NodeId="0" PhysicalOp="Constant Scan" LogicalOp="Constant Scan">
            </RelOp>
          </QueryPlan>
        </StmtSimple>
      </Statements>
    </Batch>
  </BatchSequence>
</ShowPlanXML>"""

LOOKUP_XML = """
<ShowPlanXML xmlns="http://schemas.microsoft.com/sqlserver/2004/07/showplan" Version="1.5">
  <BatchSequence>
    <Batch>
      <Statements>
        <StmtSimple StatementText="SELECT o.OrderId, o.Total, o.Notes FROM dbo.Orders o WHERE o.CustomerId = 42" StatementSubTreeCost="0.5" StatementEstRows="120">
          <QueryPlan DegreeOfParallelism="1">
            <MemoryGrantInfo GrantedMemory="2048"/>
            <QueryTimeStats ElapsedTime="35" CpuTime="12"/>
            <MissingIndexes>
              <MissingIndexGroup Impact="87.5">
                <MissingIndex Database="[Shop]" Schema="[dbo]" Table="[Orders]">
                  <ColumnGroup Usage="EQUALITY">
                    <Column Name="[CustomerId]" ColumnId="2"/>
                  </ColumnGroup>
                </MissingIndex>
              </MissingIndexGroup>
            </MissingIndexes>
            <RelOp NodeId="0" PhysicalOp="Nested Loops" LogicalOp="Inner Join" EstimateRows="120" EstimateCPU="0.0005" EstimateIO="0" EstimatedTotalSubtreeCost="0.5">
              <OutputList>
                <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="OrderId"/>
                <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="Total"/>
                <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="Notes"/>
              </OutputList>
              <Warnings NoJoinPredicate="true"/>
              <NestedLoops Optimized="0">
                <OuterReferences>
                  <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="OrderId"/>
                </OuterReferences>
                <RelOp NodeId="1" PhysicalOp="Index Seek" LogicalOp="Index Seek" EstimateRows="120" EstimateCPU="0.0003" EstimateIO="0.003" EstimatedTotalSubtreeCost="0.0033">
                  <OutputList>
                    <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="OrderId"/>
                    <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="CustomerId"/>
                  </OutputList>
                  <RunTimeInformation>
                    <RunTimeCountersPerThread Thread="0" ActualRows="150" ActualExecutions="1" ActualElapsedms="2" ActualLogicalReads="4"/>
                  </RunTimeInformation>
                  <IndexScan Ordered="1" ScanDirection="FORWARD">
                    <Object Database="[Shop]" Schema="[dbo]" Table="[Orders]" Index="[IX_Orders_CustomerId]" Alias="[o]" IndexKind="NonClustered"/>
                    <SeekPredicates>
                      <SeekPredicateNew>
                        <SeekKeys>
                          <Prefix ScanType="EQ">
                            <RangeColumns>
                              <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="CustomerId"/>
                            </RangeColumns>
                            <RangeExpressions>
                              <ScalarOperator ScalarString="(42)">
                                <Const ConstValue="(42)"/>
                              </ScalarOperator>
                            </RangeExpressions>
                          </Prefix>
                        </SeekKeys>
                      </SeekPredicateNew>
                    </SeekPredicates>
                  </IndexScan>
                </RelOp>
                <RelOp NodeId="3" PhysicalOp="Key Lookup" LogicalOp="Key Lookup" EstimateRows="1" EstimateExecutions="120" EstimateCPU="0.0001581" EstimateIO="0.003125" EstimatedTotalSubtreeCost="0.4">
                  <OutputList>
                    <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="Total"/>
                    <ColumnReference Database="[Shop]" Schema="[dbo]" Table="[Orders]" Alias="[o]" Column="Notes"/>
                  </OutputList>
                  <RunTimeInformation>
                    <RunTimeCountersPerThread Thread="0" ActualRows="150" ActualExecutions="150"/>
                  </RunTimeInformation>
                  <Warnings>
                    <SpillToTempDb SpillLevel="1"/>
                  </Warnings>
                  <IndexScan Lookup="1">
                    <Object Database="[Shop]" Schema="[dbo]" Table="[Orders]" Index="[PK_Orders]" Alias="[o]" IndexKind="Clustered"/>
                  </IndexScan>
                </RelOp>
              </NestedLoops>
            </RelOp>
          </QueryPlan>
        </StmtSimple>
      </Statements>
    </Batch>
  </BatchSequence>
</ShowPlanXML>"""


# =============================================================================
# POSTGRESQL EXPLAIN SAMPLES
# =============================================================================

SIMPLE_INDEX_SCAN_JSON = """[
  {
    "Plan": {
      "Node Type": "Index Scan",
      "Relation Name": "students",
      "Schema": "public",
      "Index Name": "pk_students",
      "Scan Direction": "Forward",
      "Total Cost": 8.29,
      "Plan Rows": 1,
      "Actual Rows": 1,
      "Actual Total Time": 0.05,
      "Plan Width": 64
    }
  }
]"""

NESTED_JOIN_JSON = """[
  {
    "Plan": {
      "Node Type": "Hash Join",
      "Join Type": "Inner",
      "Hash Cond": "(s.id = e.student_id)",
      "Total Cost": 120.50,
      "Plan Rows": 500,
      "Actual Rows": 480,
      "Actual Total Time": 15.30,
      "Plans": [
        {
          "Node Type": "Seq Scan",
          "Relation Name": "students",
          "Schema": "public",
          "Alias": "s",
          "Total Cost": 22.00,
          "Plan Rows": 1200,
          "Actual Rows": 1200,
          "Actual Total Time": 2.10
        },
        {
          "Node Type": "Hash",
          "Total Cost": 45.00,
          "Plan Rows": 500,
          "Actual Rows": 500,
          "Actual Total Time": 5.40,
          "Plans": [
            {
              "Node Type": "Index Scan",
              "Relation Name": "enrollments",
              "Schema": "public",
              "Index Name": "idx_enrollments_student_id",
              "Index Cond": "(student_id > 100)",
              "Total Cost": 30.00,
              "Plan Rows": 500,
              "Actual Rows": 500,
              "Actual Total Time": 3.20
            }
          ]
        }
      ]
    },
    "Planning Time": 0.35,
    "Execution Time": 16.2
  }
]"""

FILTER_WASTE_JSON = """{
  "Plan": {
    "Node Type": "Seq Scan",
    "Relation Name": "orders",
    "Alias": "o",
    "Total Cost": 1834.0,
    "Plan Rows": 95,
    "Actual Rows": 100,
    "Actual Loops": 1,
    "Filter": "(customer_id = 42)",
    "Rows Removed by Filter": 99900,
    "Output": ["id", "customer_id", "total"]
  },
  "Planning Time": 0.2,
  "Execution Time": 12.5
}"""


@pytest.fixture
def simple_seek_xml() -> str:
    return SIMPLE_SEEK_XML


@pytest.fixture
def join_xml() -> str:
    return JOIN_XML


@pytest.fixture
def missing_attributes_xml() -> str:
    return MISSING_ATTRIBUTES_XML


@pytest.fixture
def lookup_xml() -> str:
    return LOOKUP_XML


@pytest.fixture
def simple_index_scan_json() -> str:
    return SIMPLE_INDEX_SCAN_JSON


@pytest.fixture
def nested_join_json() -> str:
    return NESTED_JOIN_JSON


@pytest.fixture
def filter_waste_json() -> str:
    return FILTER_WASTE_JSON


# =============================================================================
# PARSER / ANALYZER FIXTURES
# =============================================================================

@pytest.fixture
def sqlserver_parser() -> SqlServerPlanParser:
    return SqlServerPlanParser()


@pytest.fixture
def postgres_parser() -> PostgresPlanParser:
    return PostgresPlanParser()


@pytest.fixture
def normalizer() -> PlanNormalizer:
    return PlanNormalizer()


@pytest.fixture
def analyzer() -> QueryAnalyzer:
    return QueryAnalyzer()


# =============================================================================
# PLAN BUILDERS
# =============================================================================

def _build_node(
    node_type: NodeType = NodeType.COMPUTE,
    cost_pct: float = 0.0,
    estimated_rows: float = 0.0,
    actual_rows: float = 0.0,
    table: Optional[str] = None,
    index: Optional[str] = None,
    index_columns: Sequence[str] = (),
    label: Optional[str] = None,
    predicate: str = "",
    output: str = "",
    cpu: float = 0.0,
    io: float = 0.0,
    total: Optional[float] = None,
    executions: int = 1,
    children: Sequence[PlanNode] = (),
) -> PlanNode:
    name = label or node_type.value.title()
    node = PlanNode(
        label=name,
        physical_operator=name,
        logical_operator=name,
        node_type=node_type,
        cost=OperationCost(
            cpu_cost=cpu,
            io_cost=io,
            total_cost=cpu + io if total is None else total,
            estimated_rows=estimated_rows,
            actual_rows=actual_rows,
            executions=executions,
            cost_percentage=cost_pct,
        ),
        predicate=predicate,
        output_columns=output,
    )
    if table:
        node.table = TableReference(table_name=table)
    if index:
        node.index = IndexReference(index_name=index, table_name=table or "", columns=list(index_columns))
    for child in children:
        node.add_child(child)
    return node


def _build_plan(root: PlanNode, total_cost: float = 1.0, elapsed_ms: float = 0.0) -> ExecutionPlan:
    plan = ExecutionPlan(
        root_node=root,
        database_engine="SQL Server",
        metrics=QueryMetrics(total_cost=total_cost, elapsed_time_ms=elapsed_ms),
    )
    PlanNormalizer.renumber_nodes(plan)
    return plan


@pytest.fixture
def make_node():
    """Factory for plan nodes: ``make_node(NodeType.SORT, cost_pct=40, ...)``."""
    return _build_node


@pytest.fixture
def make_plan():
    """Factory wrapping a root node in an ExecutionPlan with sequential ids."""
    return _build_plan


@pytest.fixture
def table_scan_plan() -> ExecutionPlan:
    """Single 50,000-row scan on Orders carrying 96% of the cost."""
    scan = _build_node(
        NodeType.TABLE_SCAN,
        cost_pct=96.0,
        estimated_rows=50_000,
        table="Orders",
        predicate="[Shop].[dbo].[Orders].[CustomerId]=(42)",
        output="Orders.OrderId, Orders.CustomerId, Orders.Total",
        total=4.8,
    )
    root = _build_node(NodeType.COMPUTE, label="SELECT", cost_pct=4.0, total=0.2, children=[scan])
    return _build_plan(root, total_cost=5.0)


@pytest.fixture
def before_plan() -> ExecutionPlan:
    """Hash join over two large table scans, total cost 8.5."""
    orders = _build_node(
        NodeType.TABLE_SCAN, cost_pct=60.0, estimated_rows=50_000, table="Orders",
        predicate="Orders.Status = 'open'", output="Orders.OrderId, Orders.CustomerId",
    )
    customers = _build_node(
        NodeType.TABLE_SCAN, cost_pct=30.0, estimated_rows=20_000, table="Customers",
        output="Customers.CustomerId, Customers.Name",
    )
    root = _build_node(NodeType.HASH_JOIN, cost_pct=10.0, estimated_rows=1_000,
                       children=[orders, customers])
    plan = _build_plan(root, total_cost=8.5, elapsed_ms=900.0)
    return QueryAnalyzer().analyze(plan)


@pytest.fixture
def after_plan() -> ExecutionPlan:
    """Nested loops over two index seeks, total cost 0.025."""
    orders = _build_node(
        NodeType.INDEX_SEEK, cost_pct=40.0, estimated_rows=120, table="Orders",
        index="IX_Orders_Status", index_columns=["Status"],
    )
    customers = _build_node(
        NodeType.CLUSTERED_INDEX_SEEK, cost_pct=40.0, estimated_rows=1, table="Customers",
        index="PK_Customers", index_columns=["CustomerId"],
    )
    root = _build_node(NodeType.NESTED_LOOP_JOIN, cost_pct=20.0, estimated_rows=120,
                       children=[orders, customers])
    plan = _build_plan(root, total_cost=0.025, elapsed_ms=30.0)
    return QueryAnalyzer().analyze(plan)
