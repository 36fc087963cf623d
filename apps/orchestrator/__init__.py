"""Orchestrator module for the LangGraph search pipeline."""
from apps.orchestrator.graph import DeliveryMode, SearchOrchestrator

__all__ = ["DeliveryMode", "SearchOrchestrator"]
