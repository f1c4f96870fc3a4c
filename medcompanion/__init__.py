"""
Medical Companion - Conversational Health Assistant
===================================================

A chat companion that answers health questions by streaming completions
from an OpenAI-compatible provider, grounding answers in a medical
knowledge base, and calling tools (web search, emergency alert) mid-answer.

This package provides:
- Agent system: the per-turn completion loop and per-channel sessions
- Chat layer: message envelopes, location resolution, transport contract
- RAG: embeddings, vector stores and the knowledge indexer
- Tools: tool_search and tool_alert
- Slack binding: Bolt app, handlers and the Slack transport
"""

__version__ = "1.0.0"
