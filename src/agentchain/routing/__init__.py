"""Complexity routing: keyword heuristic, detection strategies and the router stage."""

from agentchain.routing.complexity_router import ComplexityRouter, RouterInput
from agentchain.routing.keyword_detector import KeywordResult, detect_keyword_complexity

__all__ = [
    "ComplexityRouter",
    "KeywordResult",
    "RouterInput",
    "detect_keyword_complexity",
]
