"""
Cedar: AI research notebook.

A user states a research goal; Cedar plans steps with a language model,
executes the generated Python, classifies each step's output, has the
model validate every result, and assembles a write-up at the end.

Architecture:
- execution/: script executor, dependency resolver, output parser
- session/: step and session model, the step runner (SessionManager)
- agents/: plan, validate and revise steps through an LLM backend
- llm_backends/: OpenAI and Anthropic clients over HTTPX
- orchestrators/: the research loop
- storage/: JSON project and session records
- publication/: Markdown write-up and academic paper assembly
- commands/: application context and named operations

Quick Start:
    from Cedar import CedarApp, CedarConfig

    async with CedarApp(CedarConfig()) as app:
        project = app.create_project("Mean demo")
        outcome = await app.start_research(project.project_id, "compute the mean of [1,2,3,4,5]")
"""

__version__ = "0.1.0"

# Application context
from .commands import CedarApp, CommandResponse, StepResponse
from .config import CedarConfig

# Core
from .session import SessionManager, SessionState, Step, StepKind, StepResult, ValidationVerdict
from .execution import DependencyResolver, ScriptExecutor, parse_output

# Agents and orchestration
from .agents import ResearchAgent
from .orchestrators import ResearchRunner, RunOutcome

# Storage and publication
from .storage import StateStore
from .publication import AcademicPaper, assemble_paper, generate_write_up

# Console utilities
from .utils import console

__all__ = [
    "__version__",
    "CedarApp",
    "CommandResponse",
    "StepResponse",
    "CedarConfig",
    "SessionManager",
    "SessionState",
    "Step",
    "StepKind",
    "StepResult",
    "ValidationVerdict",
    "DependencyResolver",
    "ScriptExecutor",
    "parse_output",
    "ResearchAgent",
    "ResearchRunner",
    "RunOutcome",
    "StateStore",
    "AcademicPaper",
    "assemble_paper",
    "generate_write_up",
    "console",
]
