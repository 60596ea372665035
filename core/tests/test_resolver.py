"""Tests for dependency ordering."""

import pytest

from nodebanana.errors import GraphCycleError
from nodebanana.graph.models import NodeType, Port
from nodebanana.graph.resolver import order_from, resolve_order


def ids(nodes):
    return [node.id for node in nodes]


def assert_topological(order, edges):
    position = {node.id: index for index, node in enumerate(order)}
    for edge in edges:
        assert position[edge.source] < position[edge.target], f"{edge.source} must precede {edge.target}"


class TestResolveOrder:
    def test_sorted_chain_keeps_store_order(self, store):
        a = store.add_node(NodeType.IMAGE_INPUT)
        b = store.add_node(NodeType.GENERATOR)
        c = store.add_node(NodeType.OUTPUT)
        store.connect(a, b, "image", Port.IMAGE)
        store.connect(b, c, "image", Port.IMAGE)

        assert ids(resolve_order(store.nodes, store.edges)) == [a, b, c]

    def test_predecessors_come_first_regardless_of_store_order(self, store):
        output = store.add_node(NodeType.OUTPUT)
        generator = store.add_node(NodeType.GENERATOR)
        prompt = store.add_node(NodeType.PROMPT)
        image = store.add_node(NodeType.IMAGE_INPUT)
        store.connect(generator, output, "image", Port.IMAGE)
        store.connect(prompt, generator, "text", Port.TEXT)
        store.connect(image, generator, "image", Port.IMAGE)

        order = resolve_order(store.nodes, store.edges)

        assert ids(order) == [prompt, image, generator, output]
        assert_topological(order, store.edges)

    def test_diamond_contains_each_node_once(self, store):
        top = store.add_node(NodeType.IMAGE_INPUT)
        left = store.add_node(NodeType.ANNOTATION)
        right = store.add_node(NodeType.ANNOTATION)
        bottom = store.add_node(NodeType.GENERATOR)
        store.connect(top, left)
        store.connect(top, right)
        store.connect(left, bottom, "image", Port.IMAGE)
        store.connect(right, bottom, "image", Port.IMAGE)

        order = resolve_order(store.nodes, store.edges)

        assert sorted(ids(order)) == sorted([top, left, right, bottom])
        assert len(order) == 4
        assert_topological(order, store.edges)

    def test_disconnected_nodes_keep_store_order(self, store):
        created = [store.add_node(NodeType.PROMPT) for _ in range(4)]

        assert ids(resolve_order(store.nodes, store.edges)) == created

    def test_cycle_is_reported(self, store):
        a = store.add_node(NodeType.ANNOTATION)
        b = store.add_node(NodeType.ANNOTATION)
        c = store.add_node(NodeType.ANNOTATION)
        store.connect(a, b)
        store.connect(b, c)
        store.connect(c, a)

        with pytest.raises(GraphCycleError) as exc_info:
            resolve_order(store.nodes, store.edges)
        assert exc_info.value.node_id in {a, b, c}

    def test_self_loop_is_a_cycle(self, store):
        a = store.add_node(NodeType.ANNOTATION)
        store.connect(a, a)

        with pytest.raises(GraphCycleError):
            resolve_order(store.nodes, store.edges)

    def test_long_chain_does_not_recurse(self, store):
        previous = store.add_node(NodeType.ANNOTATION)
        for _ in range(1500):
            current = store.add_node(NodeType.ANNOTATION)
            store.connect(previous, current)
            previous = current

        # Reverse store order forces the deepest possible traversal
        order = resolve_order(list(reversed(store.nodes)), store.edges)

        assert len(order) == 1501
        assert order[-1].id == previous


class TestOrderFrom:
    def test_starts_at_node(self, store):
        created = [store.add_node(NodeType.PROMPT) for _ in range(4)]
        order = resolve_order(store.nodes, store.edges)

        assert ids(order_from(order, created[2])) == created[2:]

    def test_unknown_or_missing_start_keeps_everything(self, store):
        created = [store.add_node(NodeType.PROMPT) for _ in range(3)]
        order = resolve_order(store.nodes, store.edges)

        assert ids(order_from(order, None)) == created
        assert ids(order_from(order, "prompt-404")) == created
