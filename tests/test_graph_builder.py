"""Unit tests for graph construction."""

import pytest

from flowtrace.errors import ConfigurationError
from flowtrace.graph_builder import (
    AggregateLink,
    AggregateNode,
    LinkKey,
    NodeKey,
    build_graph,
    build_graph_from_aggregates,
)
from flowtrace.path_model import UNKNOWN, NullHandling
from flowtrace.record_loader import RecordTable


def _link(graph, source, target):
    return graph.link(LinkKey(NodeKey(0, source), NodeKey(1, target)))


class TestBuildGraph:
    def test_funnel_nodes(self, funnel_graph):
        members = {node.id: node.members for node in funnel_graph.nodes}
        assert members == {
            "0::Online": frozenset({0, 1}),
            "0::Branch": frozenset({2}),
            "1::Won": frozenset({0, 2}),
            "1::Lost": frozenset({1}),
        }

    def test_funnel_links(self, funnel_graph):
        online_won = _link(funnel_graph, "Online", "Won")
        online_lost = _link(funnel_graph, "Online", "Lost")
        branch_won = _link(funnel_graph, "Branch", "Won")

        assert (online_won.count, online_won.amount) == (1, 100)
        assert (online_lost.count, online_lost.amount) == (1, 50)
        assert (branch_won.count, branch_won.amount) == (1, 200)
        assert len(funnel_graph.links) == 3

    def test_first_encounter_order(self, funnel_graph):
        assert [node.id for node in funnel_graph.nodes] == ["0::Online", "0::Branch", "1::Won", "1::Lost"]
        assert [link.id for link in funnel_graph.links] == [
            "0::Online→1::Won",
            "0::Online→1::Lost",
            "0::Branch→1::Won",
        ]

    def test_every_record_has_one_node_per_step(self, loan_graph):
        every_record = frozenset(range(loan_graph.record_count))
        for step_index in range(loan_graph.step_count):
            nodes = loan_graph.nodes_at(step_index)
            union = frozenset().union(*(node.members for node in nodes))
            assert union == every_record
            assert sum(len(node.members) for node in nodes) == loan_graph.record_count

    def test_link_members_sit_in_both_endpoints(self, loan_graph):
        for link in loan_graph.links:
            source = loan_graph.node(link.source)
            target = loan_graph.node(link.target)
            assert link.members <= source.members & target.members

    def test_boundary_union_covers_records(self, loan_graph):
        every_record = frozenset(range(loan_graph.record_count))
        for boundary in range(loan_graph.step_count - 1):
            union = frozenset().union(*(link.members for link in loan_graph.links_at(boundary)))
            assert union == every_record

    def test_rebuild_is_idempotent(self, loan_table):
        first = build_graph(loan_table)
        second = build_graph(loan_table)
        assert {node.key: node.members for node in first.nodes} == {node.key: node.members for node in second.nodes}
        assert {link.key: link.members for link in first.links} == {link.key: link.members for link in second.links}

    def test_fewer_than_two_steps_fails(self, funnel_table):
        with pytest.raises(ConfigurationError):
            build_graph(funnel_table, ["Source"])

    def test_unknown_step_fails(self, funnel_table):
        with pytest.raises(ConfigurationError):
            build_graph(funnel_table, ["Source", "Region"])

    def test_empty_table_gives_empty_graph(self):
        graph = build_graph(RecordTable.empty(["Source", "Stage"]))
        assert graph.is_empty
        assert graph.links == ()
        assert graph.record_count == 0


class TestNullHandling:
    @pytest.fixture
    def gappy_table(self):
        rows = [
            {"id": "1", "name": "one", "Source": "Online", "Stage": None, "Outcome": "Won", "amount": 10},
            {"id": "2", "name": "two", "Source": "Online", "Stage": "", "Outcome": "Lost", "amount": 20},
            {"id": "3", "name": "three", "Source": "Branch", "Stage": "Review", "Outcome": "Won", "amount": 30},
        ]
        return RecordTable.from_records(rows, ["Source", "Stage", "Outcome"])

    def test_group_unknown_collapses_missing_values(self, gappy_table):
        graph = build_graph(gappy_table)
        unknown = graph.node(NodeKey(1, UNKNOWN))
        assert unknown.members == frozenset({0, 1})
        assert unknown.label == "∅"
        assert graph.node(NodeKey(1, "")) is None

    def test_sentinel_is_not_empty_string(self):
        assert UNKNOWN != ""
        assert NodeKey(1, UNKNOWN) != NodeKey(1, "")

    def test_carry_forward_repeats_previous_value(self, gappy_table):
        graph = build_graph(gappy_table, null_handling=NullHandling.CARRY_FORWARD)
        assert graph.node(NodeKey(1, "Online")).members == frozenset({0, 1})
        assert graph.node(NodeKey(1, UNKNOWN)) is None

    def test_stop_ends_the_path(self, gappy_table):
        graph = build_graph(gappy_table, null_handling=NullHandling.STOP)
        assert graph.node(NodeKey(1, UNKNOWN)) is None
        assert graph.node(NodeKey(2, "Won")).members == frozenset({2})
        assert graph.record_paths[0] == (NodeKey(0, "Online"),)
        assert [link.id for link in graph.links] == ["0::Branch→1::Review", "1::Review→2::Won"]
        assert graph.node(NodeKey(0, "Online")).members == frozenset({0, 1})


class TestAggregates:
    def test_membership_rebuilt_from_declared_keys(self, funnel_table):
        nodes = [AggregateNode(0, "Online"), AggregateNode(0, "Branch"), AggregateNode(1, "Won"), AggregateNode(1, "Lost")]
        links = [
            AggregateLink(AggregateNode(0, "Online"), AggregateNode(1, "Won"), count=7, amount=700),
            AggregateLink(AggregateNode(0, "Branch"), AggregateNode(1, "Won"), record_ids=("C",)),
        ]
        graph = build_graph_from_aggregates(funnel_table, nodes, links)

        assert graph.node(NodeKey(1, "Won")).members == frozenset({0, 2})
        online_won = graph.link(LinkKey(NodeKey(0, "Online"), NodeKey(1, "Won")))
        assert online_won.members == frozenset({0})
        assert (online_won.count, online_won.amount) == (7, 700)
        branch_won = graph.link(LinkKey(NodeKey(0, "Branch"), NodeKey(1, "Won")))
        assert branch_won.members == frozenset({2})
        assert (branch_won.count, branch_won.amount) == (1, 200)

    def test_matches_internal_build(self, funnel_table, funnel_graph):
        nodes = [AggregateNode(node.step_index, node.key.value) for node in funnel_graph.nodes]
        links = [
            AggregateLink(AggregateNode(0, link.source.value), AggregateNode(1, link.target.value))
            for link in funnel_graph.links
        ]
        graph = build_graph_from_aggregates(funnel_table, nodes, links)
        assert {link.key: link.members for link in graph.links} == {
            link.key: link.members for link in funnel_graph.links
        }

    def test_payload_parsing(self):
        link = AggregateLink.from_payload(
            {"source": "0::Online", "target": "1::∅", "recordIds": ["A"], "countVal": 2, "amountVal": 10}
        )
        assert link.source == AggregateNode(0, "Online")
        assert link.target == AggregateNode(1, UNKNOWN)
        assert link.record_ids == ("A",)

    def test_numeric_step_values_match_declared_ids(self):
        rows = [
            {"id": "A", "name": "a", "amount": 10, "Year": 2023, "Stage": "Won"},
            {"id": "B", "name": "b", "amount": 20, "Year": 2024, "Stage": "Lost"},
        ]
        table = RecordTable.from_records(rows, ["Year", "Stage"])
        nodes = [
            AggregateNode.from_payload({"stepIndex": 0, "label": "2023"}),
            AggregateNode.from_payload({"stepIndex": 1, "label": "Won"}),
        ]
        links = [AggregateLink.from_payload({"source": "0::2023", "target": "1::Won"})]

        graph = build_graph_from_aggregates(table, nodes, links)

        assert graph.nodes[0].key == NodeKey(0, 2023)
        assert graph.nodes[0].members == frozenset({0})
        assert graph.nodes[1].members == frozenset({0})
        assert graph.links[0].members == frozenset({0})
        assert (graph.links[0].count, graph.links[0].amount) == (1, 10)
        assert graph.element_for_id("0::2023→1::Won") == graph.links[0].key


class TestLookups:
    def test_element_for_id(self, funnel_graph):
        assert funnel_graph.element_for_id("0::Online") == NodeKey(0, "Online")
        assert funnel_graph.element_for_id("0::Online→1::Won") == LinkKey(NodeKey(0, "Online"), NodeKey(1, "Won"))
        assert funnel_graph.element_for_id("9::Nope") is None

    def test_resolve_node_by_label(self, funnel_graph):
        assert funnel_graph.resolve_node(1, "Won").members == frozenset({0, 2})
        assert funnel_graph.resolve_node(1, "Pending") is None


class TestSentinelIds:
    @pytest.fixture
    def graph(self):
        rows = [
            {"id": "A", "name": "a", "amount": 1, "S": "∅", "T": "x"},
            {"id": "B", "name": "b", "amount": 1, "S": None, "T": "x"},
        ]
        return build_graph(RecordTable.from_records(rows, ["S", "T"]))

    def test_literal_and_unknown_get_distinct_ids(self, graph):
        assert [node.id for node in graph.nodes] == ["0::\\∅", "0::∅", "1::x"]
        assert {graph.element_for_id(node.id) for node in graph.nodes} == {node.key for node in graph.nodes}
        assert graph.element_for_id("0::∅") == NodeKey(0, UNKNOWN)
        assert graph.element_for_id("0::\\∅") == NodeKey(0, "∅")

    def test_both_display_as_sentinel(self, graph):
        assert graph.node(NodeKey(0, "∅")).label == "∅"
        assert graph.node(NodeKey(0, UNKNOWN)).label == "∅"

    def test_resolve_node(self, graph):
        assert graph.resolve_node(0, "∅").members == frozenset({1})
        assert graph.resolve_node(0, "\\∅").members == frozenset({0})

    def test_ids_parse_back(self):
        assert AggregateNode.from_id("0::\\∅") == AggregateNode(0, "∅")
        assert AggregateNode.from_id("0::∅") == AggregateNode(0, UNKNOWN)
        assert AggregateNode.from_id("1::\\\\raw") == AggregateNode(1, "\\raw")
        assert AggregateNode(1, "\\raw").id == "1::\\\\raw"
