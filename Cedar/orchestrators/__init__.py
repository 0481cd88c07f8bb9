"""
Orchestration of research sessions.
"""

from .research_runner import ResearchRunner, RunOutcome

__all__ = ["ResearchRunner", "RunOutcome"]
