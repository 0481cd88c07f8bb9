"""
On-disk storage for Cedar projects and sessions.
"""

from .state_store import ProjectState, Reference, ResearchQuestion, StateStore, slugify

__all__ = [
    "ProjectState",
    "Reference",
    "ResearchQuestion",
    "StateStore",
    "slugify",
]
