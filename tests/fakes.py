"""Test doubles and canned model responses shared across the suite."""

from __future__ import annotations

import hashlib
import json
import math
import re
from typing import Any, Callable

from agentchain.exceptions import ToolRegistryUnavailable
from agentchain.models.outputs import Plan, PlanOutput, PlanStep, Thought, ThoughtOutput
from agentchain.models.request import ComplexityScore, RequestContext

TEST_DIMENSION = 64

FACILITIES = [
    {"id": "HAN", "name": "Hannover Sorting Plant"},
    {"id": "WCR", "name": "West Coast Recycling"},
]


# ============================================================================
# Canned LLM responses
# ============================================================================

THOUGHT_RESPONSE = """REASONING: The user wants every facility. The key step is calling list_facilities once.

APPROACHES:
1. Call list_facilities and present the results
2. Fetch each facility individually with get_facility

CONSTRAINTS: Only registered tools may be used

ASSUMPTIONS: The facility catalog is current

UNCERTAINTIES:
- Whether inactive facilities should be included

TOOLS: list_facilities"""

PLAN_RESPONSE = json.dumps(
    {
        "goal": "List all facilities",
        "steps": [
            {
                "order": 1,
                "description": "Fetch every facility",
                "action": "list_facilities",
                "parameters": {},
                "expected_outcome": "All facilities returned",
                "dependencies": [],
            }
        ],
        "rationale": "A single catalog call answers the question",
        "confidence": 0.85,
        "estimated_complexity": 0.1,
    }
)

CRITIQUE_APPROVE = json.dumps(
    {
        "overall_score": 0.9,
        "feasibility_score": 0.9,
        "correctness_score": 0.9,
        "efficiency_score": 0.9,
        "safety_score": 1.0,
        "strengths": ["Uses a registered tool"],
        "issues": [],
        "follow_up_questions": [],
        "rationale": "Simple and correct",
    }
)

CRITIQUE_REJECT = json.dumps(
    {
        "overall_score": 0.2,
        "issues": [
            {
                "severity": "high",
                "category": "logic",
                "description": "The plan does not answer the question",
                "suggestion": "Call list_facilities",
                "affected_steps": ["step-1"],
            }
        ],
        "rationale": "Wrong approach",
    }
)

META_REPLAN = json.dumps(
    {
        "reasoning_quality": 0.4,
        "should_replan": True,
        "should_deepen_reasoning": False,
        "replan_strategy": "Use list_facilities directly",
        "reasoning_depth_recommendation": 1,
        "focus_areas": [],
        "recommended_actions": ["Address the critic's logic issue"],
        "assessment": "The plan must change",
    }
)

SUMMARY_RESPONSE = """There are two facilities: Hannover Sorting Plant (HAN) and West Coast Recycling (WCR).

KEY TAKEAWAYS:
1. Two facilities are registered
2. Both are available for shipments"""

COMPLEXITY_RESPONSE = json.dumps(
    {"score": 0.5, "reasoning_passes": 2, "confidence": 0.9, "reasoning": "Moderate analysis"}
)


# ============================================================================
# Test doubles
# ============================================================================


class HashingEmbedder:
    """Deterministic bag-of-words embedder: identical texts embed identically."""

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self.dimension = dimension
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(token.encode()).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]


ROLE_MARKERS = {
    "complexity": "complexity classifier",
    "thought": "Thought Agent",
    "planner": "Planner Agent",
    "critic": "Critic Agent",
    "meta": "Meta Agent",
    "summary": "Summary Agent",
}


class ScriptedLLM:
    """
    Language model double that answers by role.

    Each role maps to a string, an exception, or a list consumed in order
    (the last entry repeats once the list is exhausted).
    """

    def __init__(self, script: dict[str, Any] | None = None) -> None:
        self.script: dict[str, Any] = {
            "complexity": COMPLEXITY_RESPONSE,
            "thought": THOUGHT_RESPONSE,
            "planner": PLAN_RESPONSE,
            "critic": CRITIQUE_APPROVE,
            "meta": META_REPLAN,
            "summary": SUMMARY_RESPONSE,
        }
        self.script.update(script or {})
        self.calls: list[tuple[str, str, float]] = []
        self._positions: dict[str, int] = {}

    @staticmethod
    def role_of(system_prompt: str | None) -> str:
        for role, marker in ROLE_MARKERS.items():
            if system_prompt and marker in system_prompt:
                return role
        raise AssertionError(f"Unexpected system prompt: {system_prompt!r}")

    def calls_for(self, role: str) -> list[str]:
        return [prompt for r, prompt, _ in self.calls if r == role]

    async def invoke(
        self,
        prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        system_prompt: str | None = None,
    ) -> str:
        role = self.role_of(system_prompt)
        self.calls.append((role, prompt, temperature))
        entry = self.script[role]
        if isinstance(entry, list):
            position = self._positions.get(role, 0)
            self._positions[role] = position + 1
            entry = entry[min(position, len(entry) - 1)]
        if isinstance(entry, Exception):
            raise entry
        return entry


class FakeToolRegistry:
    """In-process tool catalog."""

    def __init__(self, tools: dict[str, Callable[[dict[str, Any]], Any]] | None = None) -> None:
        self.tools = tools if tools is not None else {
            "list_facilities": lambda args: FACILITIES,
            "get_facility": lambda args: next(
                (f for f in FACILITIES if f["id"] == args.get("facility_id")), None
            ),
            "analyze_shipment_risk": lambda args: {"risk": "low"},
        }
        self.available = True
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def list_tools(self) -> list[str]:
        if not self.available:
            raise ToolRegistryUnavailable("MCP server unreachable")
        return list(self.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        if not self.available:
            raise ToolRegistryUnavailable("MCP server unreachable")
        self.calls.append((name, arguments))
        if name not in self.tools:
            raise ToolRegistryUnavailable(f"Unknown tool {name}")
        return self.tools[name](arguments)



# ============================================================================
# Seed helpers
# ============================================================================


def make_context(
    query: str = "Show me all facilities",
    request_id: str = "req-1",
    passes: int = 1,
) -> RequestContext:
    """Context carrying a complexity verdict, as the router leaves it."""
    return RequestContext.create(user_query=query, request_id=request_id).with_complexity(
        ComplexityScore(score=0.2 if passes == 1 else 0.5, reasoning_passes=passes, confidence=0.6)
    )


async def seed_thought(stores: Any, context: RequestContext, confidence: float = 0.6) -> ThoughtOutput:
    return await stores.thought.save(
        ThoughtOutput(
            request_id=context.request_id,
            request_context=context,
            thoughts=[
                Thought(
                    reasoning="Call list_facilities",
                    approaches=["Call list_facilities"],
                    confidence=confidence,
                )
            ],
            primary_approach="Call list_facilities",
            recommended_tools=["list_facilities"],
            confidence=confidence,
        )
    )


async def seed_plan(stores: Any, context: RequestContext, steps: list[PlanStep] | None = None) -> PlanOutput:
    if steps is None:
        steps = [PlanStep(id="step-1", order=1, action="list_facilities")]
    return await stores.plan.save(
        PlanOutput(
            request_id=context.request_id,
            request_context=context,
            plan=Plan(goal="List all facilities", steps=steps, confidence=0.85),
        )
    )
