"""Agents that talk to the reasoning service."""

from apps.orchestrator.agents.base import BaseAgent

__all__ = ["BaseAgent"]
