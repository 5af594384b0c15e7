"""
Claude Relay

OpenAI chat completions relay for Claude Code upstreams.
"""

__version__ = "0.1.0"
