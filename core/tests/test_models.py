"""Tests for the workflow document schema."""

import pytest
from pydantic import ValidationError

from nodebanana.graph.models import (
    EdgeStyle,
    GeneratorNode,
    NodeStatus,
    NodeType,
    WorkflowDocument,
    WorkflowEdge,
    node_adapter,
)

DOCUMENT = {
    "version": 1,
    "id": "wf-1",
    "name": "Portraits",
    "nodes": [
        {
            "id": "imageInput-1",
            "type": "imageInput",
            "position": {"x": 0, "y": 0},
            "data": {"image": "data:image/png;base64,AAAA", "filename": "face.png"},
        },
        {
            "id": "prompt-2",
            "type": "prompt",
            "position": {"x": 0, "y": 300},
            "groupId": "group-1",
            "data": {"prompt": "make it pop"},
        },
        {
            "id": "universalGenerator-3",
            "type": "universalGenerator",
            "position": {"x": 400, "y": 100},
            "style": {"width": 300, "height": 300},
            "data": {
                "model": "vertexai/imagen-3.0-generate-001",
                "aspectRatio": "16:9",
                "seed": 7,
                "status": "success",
                "outputImage": "https://cdn.test/a.png",
            },
        },
    ],
    "edges": [
        {
            "id": "e1",
            "source": "imageInput-1",
            "target": "universalGenerator-3",
            "targetHandle": "image",
        },
        {
            "id": "e2",
            "source": "prompt-2",
            "target": "universalGenerator-3",
            "targetHandle": "text",
            "data": {"hasPause": True},
        },
    ],
    "edgeStyle": "curved",
    "groups": {
        "group-1": {
            "id": "group-1",
            "name": "Group 1",
            "color": "blue",
            "position": {"x": -20, "y": 248},
            "size": {"width": 360, "height": 292},
        }
    },
}


class TestWorkflowDocument:
    def test_parses_node_variants(self):
        doc = WorkflowDocument.model_validate(DOCUMENT)

        assert [n.node_type for n in doc.nodes] == [NodeType.IMAGE_INPUT, NodeType.PROMPT, NodeType.GENERATOR]
        generator = doc.nodes[2]
        assert isinstance(generator, GeneratorNode)
        assert generator.data.status == NodeStatus.SUCCESS
        assert generator.data.output_image == "https://cdn.test/a.png"
        assert doc.edge_style == EdgeStyle.CURVED
        assert doc.groups["group-1"].size.width == 360

    def test_camel_case_fields_map_to_attributes(self):
        doc = WorkflowDocument.model_validate(DOCUMENT)

        assert doc.nodes[1].group_id == "group-1"
        assert doc.edges[0].target_handle == "image"
        assert doc.edges[1].has_pause is True

    def test_legacy_style_is_read_as_size(self):
        doc = WorkflowDocument.model_validate(DOCUMENT)

        assert doc.nodes[2].size.width == 300
        assert "size" not in doc.nodes[0].to_wire()

    def test_dynamic_generator_options_are_kept(self):
        doc = WorkflowDocument.model_validate(DOCUMENT)

        wire = doc.nodes[2].data.to_wire()
        assert wire["aspectRatio"] == "16:9"
        assert wire["seed"] == 7

    def test_round_trip_keeps_document_keys(self):
        wire = WorkflowDocument.model_validate(DOCUMENT).to_wire()

        assert wire["version"] == 1
        assert wire["edgeStyle"] == "curved"
        assert wire["nodes"][1]["groupId"] == "group-1"
        assert wire["edges"][1]["data"] == {"hasPause": True}
        assert "sourceHandle" not in wire["edges"][0]
        assert WorkflowDocument.model_validate(wire).to_wire() == wire

    def test_unknown_node_type_is_rejected(self):
        with pytest.raises(ValidationError):
            node_adapter.validate_python({"id": "x-1", "type": "teleporter", "data": {}})

    def test_only_version_one_is_accepted(self):
        with pytest.raises(ValidationError):
            WorkflowDocument.model_validate({**DOCUMENT, "version": 2})

    def test_edge_style_defaults_to_angular(self):
        doc = WorkflowDocument.model_validate({"version": 1, "name": "empty"})

        assert doc.edge_style == EdgeStyle.ANGULAR
        assert doc.nodes == []


class TestWorkflowEdge:
    def test_top_level_pause_flag_is_folded_into_data(self):
        edge = WorkflowEdge.model_validate({"id": "e", "source": "a", "target": "b", "hasPause": True})

        assert edge.has_pause is True
        assert edge.to_wire() == {"id": "e", "source": "a", "target": "b", "data": {"hasPause": True}}

    def test_pause_defaults_off(self):
        edge = WorkflowEdge(id="e", source="a", target="b")

        assert edge.has_pause is False


class TestExecutableNodes:
    @pytest.mark.parametrize(
        "node_type,executable",
        [
            ("imageInput", False),
            ("prompt", False),
            ("annotation", False),
            ("output", False),
            ("universalGenerator", True),
            ("splitGrid", True),
        ],
    )
    def test_status_bearing_variants(self, node_type, executable):
        node = node_adapter.validate_python({"id": f"{node_type}-1", "type": node_type})

        assert node.is_executable is executable
