"""Pipeline orchestration: runs a request through the stage chain."""

from agentchain.pipeline.controller import PipelineController, PipelineResult

__all__ = ["PipelineController", "PipelineResult"]
