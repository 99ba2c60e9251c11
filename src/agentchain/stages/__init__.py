"""
Reasoning stages.

Every stage shares the lifecycle in ``BaseStage``: validate input, check
upstream outputs, mark the request in progress, run, persist a new output
version and mark the request completed or failed.
"""

from agentchain.stages.base import BaseStage, StageInput
from agentchain.stages.critic import CriticInput, CriticStage
from agentchain.stages.executor import ExecutorInput, ExecutorStage
from agentchain.stages.meta import MetaInput, MetaStage
from agentchain.stages.planner import PlannerInput, PlannerStage
from agentchain.stages.summary import SummaryInput, SummaryStage
from agentchain.stages.thought import ThoughtInput, ThoughtStage

__all__ = [
    "BaseStage",
    "CriticInput",
    "CriticStage",
    "ExecutorInput",
    "ExecutorStage",
    "MetaInput",
    "MetaStage",
    "PlannerInput",
    "PlannerStage",
    "StageInput",
    "SummaryInput",
    "SummaryStage",
    "ThoughtInput",
    "ThoughtStage",
]
