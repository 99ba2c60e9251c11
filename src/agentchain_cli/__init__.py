"""agentchain CLI - operator command-line interface for the reasoning pipeline."""

__version__ = "0.1.0"
