from __future__ import annotations

import json
import pathlib
import re
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..execution.dependencies import DependencyRecord
from ..infrastructure.errors import ProjectNotFoundError, QuestionNotFoundError, SessionNotFoundError
from ..session.models import SessionState


def slugify(name: str) -> str:
    """Project id from a display name: lowercase, non-alphanumerics to '_'."""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return slug or "project"


@dataclass
class Reference:
    """A source cited by a project."""
    title: str
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    journal: Optional[str] = None
    url: Optional[str] = None
    doi: Optional[str] = None
    added_date: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Reference:
        return cls(**data)

    def citation(self) -> str:
        """One-line Markdown citation."""
        text = f"**{self.title}**"
        if self.authors:
            text += f" by {', '.join(self.authors)}"
        if self.journal:
            text += f", *{self.journal}*"
        if self.year:
            text += f", {self.year}"
        if self.url:
            text += f". [Link]({self.url})"
        elif self.doi:
            text += f". doi:{self.doi}"
        return text


@dataclass
class ResearchQuestion:
    """An open or answered question raised during research."""
    question: str
    answer: Optional[str] = None
    question_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    status: str = "open"  # open, answered
    created_date: str = field(default_factory=lambda: datetime.now().isoformat())
    answered_date: Optional[str] = None

    def __post_init__(self):
        if self.answer is not None and self.status == "open":
            self.status = "answered"
            self.answered_date = self.answered_date or self.created_date

    def set_answer(self, answer: str) -> None:
        self.answer = answer
        self.status = "answered"
        self.answered_date = datetime.now().isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ResearchQuestion:
        return cls(**data)


@dataclass
class ProjectState:
    """State for one research project."""
    project_id: str
    name: str
    goal: str = ""
    created_date: str = field(default_factory=lambda: datetime.now().isoformat())
    last_modified: str = field(default_factory=lambda: datetime.now().isoformat())

    # Packages used or requested by the project's sessions
    libraries: List[DependencyRecord] = field(default_factory=list)

    references: List[Reference] = field(default_factory=list)
    questions: List[ResearchQuestion] = field(default_factory=list)

    # Latest generated Markdown report
    write_up: str = ""

    session_ids: List[str] = field(default_factory=list)
    session_status: Optional[str] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    def touch(self) -> None:
        self.last_modified = datetime.now().isoformat()

    def add_reference(self, reference: Reference) -> None:
        self.references.append(reference)
        self.touch()

    def add_question(self, question: str, answer: Optional[str] = None) -> ResearchQuestion:
        entry = ResearchQuestion(question=question, answer=answer)
        self.questions.append(entry)
        self.touch()
        return entry

    def get_question(self, question_id: str) -> ResearchQuestion:
        for entry in self.questions:
            if entry.question_id == question_id:
                return entry
        raise QuestionNotFoundError(
            f"No question {question_id} in project {self.project_id}",
            context={"project_id": self.project_id, "question_id": question_id},
        )

    def answer_question(self, question_id: str, answer: str) -> ResearchQuestion:
        entry = self.get_question(question_id)
        entry.set_answer(answer)
        self.touch()
        return entry

    def merge_libraries(self, records: List[DependencyRecord]) -> None:
        """Replace records by package name, keeping first-seen order."""
        by_name = {record.name: record for record in self.libraries}
        for record in records:
            by_name[record.name] = record
        self.libraries = list(by_name.values())
        self.touch()

    def attach_session(self, session: SessionState) -> None:
        if session.session_id not in self.session_ids:
            self.session_ids.append(session.session_id)
        self.session_status = session.status.value
        self.touch()

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "project_id": self.project_id,
            "name": self.name,
            "goal": self.goal,
            "created_date": self.created_date,
            "last_modified": self.last_modified,
            "libraries": [record.model_dump(mode="json") for record in self.libraries],
            "references": [ref.to_dict() for ref in self.references],
            "questions": [q.to_dict() for q in self.questions],
            "write_up": self.write_up,
            "session_ids": self.session_ids,
            "session_status": self.session_status,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProjectState:
        """Deserialize from dictionary."""
        return cls(
            project_id=data["project_id"],
            name=data["name"],
            goal=data.get("goal", ""),
            created_date=data.get("created_date", datetime.now().isoformat()),
            last_modified=data.get("last_modified", datetime.now().isoformat()),
            libraries=[DependencyRecord.model_validate(r) for r in data.get("libraries", [])],
            references=[Reference.from_dict(r) for r in data.get("references", [])],
            questions=[ResearchQuestion.from_dict(q) for q in data.get("questions", [])],
            write_up=data.get("write_up", ""),
            session_ids=data.get("session_ids", []),
            session_status=data.get("session_status"),
            metadata=data.get("metadata", {}),
        )


class StateStore:
    """
    Manages persistent state for Cedar projects and sessions.

    Layout under ``storage_dir``:
        projects/<project_id>.json
        sessions/<session_id>.json
    """

    def __init__(self, storage_dir: pathlib.Path | str | None = None):
        if storage_dir is None:
            # Default to ~/.cedar
            storage_dir = pathlib.Path.home() / ".cedar"
        self.storage_dir = pathlib.Path(storage_dir)
        self.projects_dir = self.storage_dir / "projects"
        self.sessions_dir = self.storage_dir / "sessions"
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    # === Projects ===

    def get_project_path(self, project_id: str) -> pathlib.Path:
        """Get the file path for a project."""
        return self.projects_dir / f"{project_id}.json"

    def load_project(self, project_id: str) -> ProjectState:
        """Load a project state from disk."""
        path = self.get_project_path(project_id)
        if not path.exists():
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        with open(path, "r", encoding="utf-8") as f:
            return ProjectState.from_dict(json.load(f))

    def save_project(self, project: ProjectState) -> None:
        """Save a project state to disk."""
        path = self.get_project_path(project.project_id)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(project.to_dict(), f, indent=2)

    def create_project(self, name: str, goal: str = "") -> ProjectState:
        """Create a new project; the id is a slug of the name, suffixed if taken."""
        base = slugify(name)
        project_id, n = base, 2
        while self.get_project_path(project_id).exists():
            project_id = f"{base}_{n}"
            n += 1
        project = ProjectState(project_id=project_id, name=name, goal=goal)
        self.save_project(project)
        return project

    def list_projects(self) -> List[Dict[str, str]]:
        """List all projects."""
        projects = []
        for path in sorted(self.projects_dir.glob("*.json")):
            project = self.load_project(path.stem)
            projects.append({
                "project_id": project.project_id,
                "name": project.name,
                "goal": project.goal,
                "last_modified": project.last_modified,
            })
        return projects

    def delete_project(self, project_id: str) -> None:
        """Delete a project record (its sessions are kept)."""
        path = self.get_project_path(project_id)
        if path.exists():
            path.unlink()

    # === Sessions ===

    def get_session_path(self, session_id: str) -> pathlib.Path:
        return self.sessions_dir / f"{session_id}.json"

    def save_session(self, session: SessionState) -> pathlib.Path:
        path = self.get_session_path(session.session_id)
        with open(path, "w", encoding="utf-8") as f:
            f.write(session.model_dump_json(indent=2))
        return path

    def load_session(self, session_id: str) -> SessionState:
        path = self.get_session_path(session_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session not found: {session_id}")
        with open(path, "r", encoding="utf-8") as f:
            return SessionState.model_validate_json(f.read())

    def list_sessions(self, project_id: Optional[str] = None) -> List[Dict[str, Any]]:
        sessions = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            session = self.load_session(path.stem)
            if project_id and session.project_id != project_id:
                continue
            sessions.append({
                "session_id": session.session_id,
                "project_id": session.project_id,
                "goal": session.goal,
                "status": session.status.value,
                "steps": len(session.steps),
                "updated_at": session.updated_at,
            })
        return sessions
