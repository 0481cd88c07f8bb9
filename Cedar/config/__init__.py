"""
Configuration for Cedar.
"""

from .cedar_config import (
    CedarConfig,
    LLMConfig,
    ExecutionConfig,
    DependencyConfig,
    StorageConfig,
    ResearchConfig,
)

__all__ = [
    "CedarConfig",
    "LLMConfig",
    "ExecutionConfig",
    "DependencyConfig",
    "StorageConfig",
    "ResearchConfig",
]
