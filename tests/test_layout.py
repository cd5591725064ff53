import pytest

from flowtrace.layout import LayoutLink, LayoutNode, sankey_layout


def _funnel_layout(height=300.0):
    nodes = [LayoutNode(node_id) for node_id in ("0::Online", "0::Branch", "1::Won", "1::Lost")]
    links = [
        LayoutLink("0::Online→1::Won", "0::Online", "1::Won", 1.0),
        LayoutLink("0::Online→1::Lost", "0::Online", "1::Lost", 1.0),
        LayoutLink("0::Branch→1::Won", "0::Branch", "1::Won", 2.0),
    ]
    return sankey_layout(nodes, links, 500.0, height, node_width=10.0, node_padding=20.0)


class TestSankeyLayout:
    def test_columns_follow_steps(self):
        result = _funnel_layout()
        by_id = {node.id: node for node in result.nodes}
        assert by_id["0::Online"].x0 == 0.0
        assert by_id["1::Won"].x0 == 490.0
        assert by_id["1::Won"].x1 == 500.0

    def test_node_value_is_larger_of_in_and_out(self):
        result = _funnel_layout()
        values = {node.id: node.value for node in result.nodes}
        assert values == {"0::Online": 2.0, "0::Branch": 2.0, "1::Won": 3.0, "1::Lost": 1.0}

    def test_heights_fit(self):
        result = _funnel_layout(height=300.0)
        for node in result.nodes:
            assert 0.0 <= node.y0 <= node.y1 <= 300.0 + 1e-9
        assert result.width == 500.0
        assert result.height == 300.0

    def test_link_widths_are_proportional(self):
        result = _funnel_layout()
        widths = {link.id: link.width for link in result.links}
        assert widths["0::Branch→1::Won"] == pytest.approx(2 * widths["0::Online→1::Won"])

    def test_links_stack_inside_source(self):
        result = _funnel_layout()
        online = next(node for node in result.nodes if node.id == "0::Online")
        first, second = result.links[0], result.links[1]
        assert first.y0 == pytest.approx(online.y0 + first.width / 2)
        assert second.y0 == pytest.approx(online.y0 + first.width + second.width / 2)

    def test_cycle_is_rejected(self):
        nodes = [LayoutNode("a"), LayoutNode("b")]
        links = [LayoutLink("a→b", "a", "b", 1.0), LayoutLink("b→a", "b", "a", 1.0)]
        with pytest.raises(ValueError):
            sankey_layout(nodes, links, 100.0, 100.0)

    def test_empty_input(self):
        result = sankey_layout([], [], 100.0, 100.0)
        assert result.nodes == []
        assert result.links == []
