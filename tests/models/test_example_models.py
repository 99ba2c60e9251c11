"""Tests for example metadata encoding."""

from __future__ import annotations

import json

from agentchain.models.examples import (
    ComplexityExample,
    PlanExample,
    ThoughtExample,
    decode_json_list,
)
from agentchain.models.outputs import PlanStep


class TestDecodeJsonList:
    """Defensive decoding of list fields stored as strings."""

    def test_native_list_passes_through(self) -> None:
        assert decode_json_list(["a", "b"]) == ["a", "b"]

    def test_json_array(self) -> None:
        assert decode_json_list('["a", "b"]') == ["a", "b"]

    def test_empty_values(self) -> None:
        assert decode_json_list(None) == []
        assert decode_json_list("") == []

    def test_malformed_json_decodes_empty(self) -> None:
        assert decode_json_list("[not json") == []

    def test_non_array_json_decodes_empty(self) -> None:
        assert decode_json_list('{"a": 1}') == []


class TestComplexityExample:
    def test_metadata_encodes_lists_as_strings(self) -> None:
        example = ComplexityExample(
            query="Show me all facilities",
            complexity_score=0.1,
            reasoning_passes=1,
            tags=["simple", "lookup"],
        )
        metadata = example.to_metadata()

        assert metadata["kind"] == "complexity"
        assert metadata["tags"] == json.dumps(["simple", "lookup"])
        assert "confidence" not in metadata

    def test_malformed_field_preserves_others(self) -> None:
        """A broken list degrades to empty while the rest of the example survives."""
        metadata = ComplexityExample(
            query="Analyze every contract",
            complexity_score=0.9,
            reasoning_passes=3,
            tags=["analysis"],
            agent_hints=["planner"],
        ).to_metadata()
        metadata["tags"] = "{broken"

        decoded = ComplexityExample.from_metadata("id-1", metadata)

        assert decoded.tags == []
        assert decoded.agent_hints == ["planner"]
        assert decoded.reasoning_passes == 3
        assert decoded.complexity_score == 0.9
        assert decoded.query == "Analyze every contract"

    def test_out_of_range_passes_are_clamped(self) -> None:
        decoded = ComplexityExample.from_metadata(
            "id-1", {"query": "q", "complexity_score": "0.4", "reasoning_passes": 7}
        )
        assert decoded.reasoning_passes == 3
        assert decoded.complexity_score == 0.4


class TestThoughtExample:
    def test_metadata_round_trip(self) -> None:
        example = ThoughtExample(
            query="Which facilities are at risk?",
            reasoning="Check shipments first",
            approaches=["risk analysis"],
            recommended_tools=["analyze_shipment_risk"],
            success_rating=0.9,
        )
        decoded = ThoughtExample.from_metadata("id-2", example.to_metadata())

        assert decoded.reasoning == "Check shipments first"
        assert decoded.approaches == ["risk analysis"]
        assert decoded.recommended_tools == ["analyze_shipment_risk"]
        assert decoded.success_rating == 0.9


class TestPlanExample:
    def test_malformed_step_is_dropped(self) -> None:
        example = PlanExample(
            query="List facilities",
            goal="List",
            steps=[PlanStep(id="step-1", order=1, action="list_facilities")],
        )
        metadata = example.to_metadata()
        steps = json.loads(metadata["steps"])
        steps.append({"order": "not a number"})
        metadata["steps"] = json.dumps(steps)

        decoded = PlanExample.from_metadata("id-3", metadata)

        assert [s.action for s in decoded.steps] == ["list_facilities"]
        assert decoded.goal == "List"
