"""
Cedar application context.

``CedarApp`` owns everything the named operations share: configuration,
the state store, the language-model backend, the executor, one
dependency resolver per project and the in-memory session map. Create it
once, use it as an async context manager, and pass it wherever an
operation is needed.

Example:
    async with CedarApp(CedarConfig()) as app:
        project = app.create_project("Mean demo", goal="compute the mean of [1,2,3,4,5]")
        outcome = await app.start_research(project.project_id, project.goal)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from .base import (
    AddQuestionInput,
    AddReferenceInput,
    AnswerQuestionInput,
    CommandError,
    CommandResponse,
    CreateProjectInput,
    EmptyInput,
    ExecuteStepInput,
    InstallDependencyInput,
    ListQuestionsInput,
    NewSessionInput,
    ProjectInput,
    ReportInput,
    SessionInput,
    StartResearchInput,
    StepResponse,
)
from ..agents.research_agent import ResearchAgent
from ..config.cedar_config import CedarConfig
from ..execution.dependencies import (
    DependencyRecord,
    DependencyResolver,
    DependencySource,
    DependencyStatus,
    PackageInstaller,
)
from ..execution.executor import ExecutorConfig, ScriptExecutor
from ..infrastructure.errors import CedarError, SessionNotFoundError
from ..llm_backends.base import LLMBackend, create_backend
from ..orchestrators.research_runner import ResearchRunner, RunOutcome, StepCallback
from ..publication.paper import AcademicPaper, assemble_paper
from ..publication.write_up import generate_write_up
from ..session.manager import SessionManager
from ..session.models import SessionState, SessionStatus, Step, StepKind
from ..storage.state_store import ProjectState, Reference, ResearchQuestion, StateStore

logger = logging.getLogger("cedar.app")


class CedarApp:
    """Explicit application context for all Cedar operations."""

    def __init__(
        self,
        config: Optional[CedarConfig] = None,
        store: Optional[StateStore] = None,
        backend: Optional[LLMBackend] = None,
        executor: Optional[ScriptExecutor] = None,
        installer: Optional[PackageInstaller] = None,
    ):
        self.config = config or CedarConfig()
        self.store = store or StateStore(self.config.storage.resolve())
        self.executor = executor or ScriptExecutor(ExecutorConfig(
            python_executable=self.config.execution.python_executable,
            timeout_seconds=self.config.execution.timeout_seconds,
            max_output_bytes=self.config.execution.max_output_bytes,
            working_dir=self.config.execution.working_dir,
            blocked_env_vars=self.config.execution.blocked_env_vars,
        ))
        self.installer = installer or PackageInstaller(
            python_executable=self.config.execution.python_executable,
            timeout_seconds=self.config.dependencies.install_timeout_seconds,
            extra_args=self.config.dependencies.pip_extra_args,
        )
        self._backend = backend
        self._agent: Optional[ResearchAgent] = None
        self._resolvers: dict[str, DependencyResolver] = {}
        self._runners: dict[str, ResearchRunner] = {}
        self.sessions: dict[str, SessionState] = {}

    async def __aenter__(self) -> CedarApp:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Persist loaded sessions and release the model client."""
        for state in self.sessions.values():
            self.store.save_session(state)
        self.sessions.clear()
        self._runners.clear()
        if self._backend is not None:
            await self._backend.aclose()

    # === Collaborators ===

    @property
    def agent(self) -> ResearchAgent:
        """The research agent; the backend is created on first use."""
        if self._agent is None:
            if self._backend is None:
                self._backend = create_backend(
                    self.config.llm.backend,
                    timeout=self.config.llm.timeout_seconds,
                )
            self._agent = ResearchAgent(
                self._backend,
                temperature=self.config.llm.temperature,
                max_tokens=self.config.llm.max_tokens,
            )
        return self._agent

    def resolver_for(self, project_id: Optional[str]) -> DependencyResolver:
        key = project_id or ""
        if key not in self._resolvers:
            resolver = DependencyResolver(
                self.installer,
                auto_install=self.config.dependencies.auto_install,
                working_dir=self.config.execution.working_dir,
            )
            if project_id:
                resolver.load_records(self.store.load_project(project_id).libraries)
            self._resolvers[key] = resolver
        return self._resolvers[key]

    def manager_for(self, project_id: Optional[str]) -> SessionManager:
        return SessionManager(
            self.executor,
            self.resolver_for(project_id),
            echo_last_expression=self.config.execution.echo_last_expression,
            max_output_bytes=self.config.execution.max_output_bytes,
        )

    def runner_for(self, state: SessionState, on_step: Optional[StepCallback] = None) -> ResearchRunner:
        runner = ResearchRunner(
            self.manager_for(state.project_id),
            self.agent,
            self.config.research,
            on_step=on_step,
        )
        self._runners[state.session_id] = runner
        return runner

    def _sync(self, state: SessionState) -> None:
        """Persist a session and fold its dependency records into its project."""
        self.store.save_session(state)
        if not state.project_id:
            return
        project = self.store.load_project(state.project_id)
        project.merge_libraries(self.resolver_for(state.project_id).list_records())
        project.attach_session(state)
        self.store.save_project(project)

    # === Projects ===

    def create_project(self, name: str, goal: str = "") -> ProjectState:
        project = self.store.create_project(name, goal)
        logger.info("Created project %s", project.project_id)
        return project

    def list_projects(self) -> list[dict[str, str]]:
        return self.store.list_projects()

    def delete_project(self, project_id: str) -> None:
        """Delete a project record. Its session files stay on disk."""
        self.store.load_project(project_id)
        self.store.delete_project(project_id)
        self._resolvers.pop(project_id, None)
        logger.info("Deleted project %s", project_id)

    def add_reference(self, project_id: str, reference: Reference) -> ProjectState:
        project = self.store.load_project(project_id)
        project.add_reference(reference)
        self.store.save_project(project)
        return project

    # === Questions ===

    def add_question(self, project_id: str, question: str, answer: Optional[str] = None) -> ResearchQuestion:
        project = self.store.load_project(project_id)
        entry = project.add_question(question, answer)
        self.store.save_project(project)
        return entry

    def list_questions(self, project_id: str, status: Optional[str] = None) -> list[ResearchQuestion]:
        questions = self.store.load_project(project_id).questions
        if status is None:
            return questions
        return [q for q in questions if q.status == status]

    def answer_question(self, project_id: str, question_id: str, answer: str) -> ResearchQuestion:
        project = self.store.load_project(project_id)
        entry = project.answer_question(question_id, answer)
        self.store.save_project(project)
        return entry

    # === Sessions ===

    def new_session(self, project_id: Optional[str] = None, goal: str = "") -> SessionState:
        if project_id:
            project = self.store.load_project(project_id)
            goal = goal or project.goal
        state = SessionState(project_id=project_id, goal=goal)
        self.sessions[state.session_id] = state
        self._sync(state)
        return state

    def get_session(self, session_id: str) -> SessionState:
        if session_id in self.sessions:
            return self.sessions[session_id]
        return self.load_session(session_id)

    def load_session(self, session_id: str) -> SessionState:
        state = self.store.load_session(session_id)
        self.sessions[session_id] = state
        return state

    def save_session(self, session_id: str) -> Path:
        if session_id not in self.sessions:
            raise SessionNotFoundError(f"Session not loaded: {session_id}")
        return self.store.save_session(self.sessions[session_id])

    def cancel(self, session_id: str) -> None:
        """Ask a running research loop to stop before its next step."""
        runner = self._runners.get(session_id)
        if runner is not None:
            runner.cancel()

    async def start_research(
        self,
        project_id: str,
        goal: str,
        on_step: Optional[StepCallback] = None,
    ) -> RunOutcome:
        """Plan a goal and run the steps in a new session of the project."""
        project = self.store.load_project(project_id)
        if not project.goal:
            project.goal = goal
            self.store.save_project(project)

        state = self.new_session(project_id, goal)
        try:
            # Creating the runner also creates the backend, which can fail
            return await self.runner_for(state, on_step).run(goal, state)
        except CedarError:
            state.status = SessionStatus.FAILED
            raise
        finally:
            self._sync(state)
            self._runners.pop(state.session_id, None)

    async def execute_step(
        self,
        session_id: str,
        content: str,
        kind: StepKind = StepKind.EXECUTABLE,
        title: str = "",
        validate: bool = False,
    ) -> Step:
        """Run one user-supplied step in an existing session."""
        state = self.get_session(session_id)
        step = Step(index=state.next_index(), kind=kind, title=title, content=content)
        try:
            if validate:
                await self.runner_for(state).execute(state.goal, step, state)
            else:
                await self.manager_for(state.project_id).run_step(step, state)
        finally:
            self._runners.pop(state.session_id, None)
            self._sync(state)
        return state.steps[-1]

    # === Dependencies ===

    def list_dependencies(self, project_id: str) -> list[DependencyRecord]:
        return self.store.load_project(project_id).libraries

    async def install_dependency(self, project_id: str, package: str) -> DependencyRecord:
        resolver = self.resolver_for(project_id)
        record = await resolver.install(package, source=DependencySource.USER_DECLARED)
        project = self.store.load_project(project_id)
        project.merge_libraries([record])
        self.store.save_project(project)
        return record

    # === Publication ===

    def generate_write_up(self, project_id: str, session_id: str) -> str:
        project = self.store.load_project(project_id)
        write_up = generate_write_up(project, self.get_session(session_id))
        project.write_up = write_up
        project.touch()
        self.store.save_project(project)
        return write_up

    def generate_paper(self, project_id: str, session_id: str) -> AcademicPaper:
        project = self.store.load_project(project_id)
        paper = assemble_paper(project, self.get_session(session_id))
        paper.save(self.store.storage_dir / "papers" / f"{session_id}.json")
        return paper

    # === Command dispatch ===

    async def dispatch(self, command: str, params: Optional[dict[str, Any]] = None) -> CommandResponse:
        """
        Run a named operation with raw parameters.

        Returns a CommandResponse; Cedar errors and invalid parameters are
        reported through ``error`` instead of being raised.
        """
        handlers: dict[str, tuple[type[BaseModel], Callable[[Any], Awaitable[Any]]]] = {
            "create_project": (CreateProjectInput, self._cmd_create_project),
            "list_projects": (EmptyInput, self._cmd_list_projects),
            "delete_project": (ProjectInput, self._cmd_delete_project),
            "add_reference": (AddReferenceInput, self._cmd_add_reference),
            "add_question": (AddQuestionInput, self._cmd_add_question),
            "list_questions": (ListQuestionsInput, self._cmd_list_questions),
            "answer_question": (AnswerQuestionInput, self._cmd_answer_question),
            "start_research": (StartResearchInput, self._cmd_start_research),
            "new_session": (NewSessionInput, self._cmd_new_session),
            "execute_step": (ExecuteStepInput, self._cmd_execute_step),
            "load_session": (SessionInput, self._cmd_load_session),
            "save_session": (SessionInput, self._cmd_save_session),
            "list_dependencies": (ProjectInput, self._cmd_list_dependencies),
            "install_dependency": (InstallDependencyInput, self._cmd_install_dependency),
            "generate_write_up": (ReportInput, self._cmd_generate_write_up),
            "generate_paper": (ReportInput, self._cmd_generate_paper),
        }
        try:
            if command not in handlers:
                raise CommandError(command, "Unknown command")
            schema, handler = handlers[command]
            try:
                request = schema(**(params or {}))
            except ValidationError as e:
                raise CommandError(command, f"Invalid parameters: {e}") from e
            return await handler(request)
        except (CedarError, CommandError) as e:
            logger.warning("Command %s failed: %s", command, e)
            return CommandResponse(success=False, error=str(e))

    async def _cmd_create_project(self, req: CreateProjectInput) -> CommandResponse:
        return CommandResponse(data=self.create_project(req.name, req.goal).to_dict())

    async def _cmd_list_projects(self, req: EmptyInput) -> CommandResponse:
        return CommandResponse(data=self.list_projects())

    async def _cmd_delete_project(self, req: ProjectInput) -> CommandResponse:
        self.delete_project(req.project_id)
        return CommandResponse(data={"project_id": req.project_id})

    async def _cmd_add_reference(self, req: AddReferenceInput) -> CommandResponse:
        reference = Reference(
            title=req.title, authors=req.authors, year=req.year,
            journal=req.journal, url=req.url, doi=req.doi,
        )
        return CommandResponse(data=self.add_reference(req.project_id, reference).to_dict())

    async def _cmd_add_question(self, req: AddQuestionInput) -> CommandResponse:
        return CommandResponse(data=self.add_question(req.project_id, req.question, req.answer).to_dict())

    async def _cmd_list_questions(self, req: ListQuestionsInput) -> CommandResponse:
        return CommandResponse(data=[q.to_dict() for q in self.list_questions(req.project_id, req.status)])

    async def _cmd_answer_question(self, req: AnswerQuestionInput) -> CommandResponse:
        entry = self.answer_question(req.project_id, req.question_id, req.answer)
        return CommandResponse(data=entry.to_dict())

    async def _cmd_start_research(self, req: StartResearchInput) -> CommandResponse:
        outcome = await self.start_research(req.project_id, req.goal)
        return CommandResponse(data={
            "session_id": outcome.session.session_id,
            "completed": outcome.completed,
            "halt_reason": outcome.halt_reason,
            "steps": [StepResponse.from_step(s).model_dump(mode="json") for s in outcome.session.steps],
        })

    async def _cmd_new_session(self, req: NewSessionInput) -> CommandResponse:
        state = self.new_session(req.project_id, req.goal)
        return CommandResponse(data={"session_id": state.session_id})

    async def _cmd_execute_step(self, req: ExecuteStepInput) -> CommandResponse:
        step = await self.execute_step(
            req.session_id, req.content, kind=req.kind, title=req.title, validate=req.validate_step,
        )
        return CommandResponse(data=StepResponse.from_step(step).model_dump(mode="json"))

    async def _cmd_load_session(self, req: SessionInput) -> CommandResponse:
        return CommandResponse(data=self.load_session(req.session_id).model_dump(mode="json"))

    async def _cmd_save_session(self, req: SessionInput) -> CommandResponse:
        return CommandResponse(data={"path": str(self.save_session(req.session_id))})

    async def _cmd_list_dependencies(self, req: ProjectInput) -> CommandResponse:
        records = self.list_dependencies(req.project_id)
        return CommandResponse(data=[r.model_dump(mode="json") for r in records])

    async def _cmd_install_dependency(self, req: InstallDependencyInput) -> CommandResponse:
        record = await self.install_dependency(req.project_id, req.package)
        data = record.model_dump(mode="json")
        if record.status == DependencyStatus.FAILED:
            return CommandResponse(success=False, error=f"Install of {record.name} failed", data=data)
        return CommandResponse(data=data)

    async def _cmd_generate_write_up(self, req: ReportInput) -> CommandResponse:
        return CommandResponse(data=self.generate_write_up(req.project_id, req.session_id))

    async def _cmd_generate_paper(self, req: ReportInput) -> CommandResponse:
        paper = self.generate_paper(req.project_id, req.session_id)
        return CommandResponse(data={"paper": paper.to_dict(), "markdown": paper.to_markdown()})
