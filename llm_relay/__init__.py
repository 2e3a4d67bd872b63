"""
LLM Relay

Relays OpenAI Chat Completions requests to Codex, Kilo Code and GitHub Copilot
upstreams, rewriting requests and SSE responses between the dialects.
"""

__version__ = "0.1.0"
