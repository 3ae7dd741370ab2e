"""
Seed data for the Clerkship Scheduler: deterministic scenarios and the LLM-backed generator.
"""

from .scenarios import SCENARIOS, load_scenario

__all__ = ["SCENARIOS", "load_scenario"]
