"""
agentchain: complexity-adaptive multi-stage reasoning pipeline.

A user query is routed through a chain of reasoning stages (thought, planner,
critic, meta, executor, summary). Every stage writes a versioned artifact and
advances a shared request record through its pending → in_progress →
completed/failed lifecycle.
"""

__version__ = "0.1.0"
