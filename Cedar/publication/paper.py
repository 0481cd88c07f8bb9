"""
Academic paper structure assembled from a session.

Sections are filled from recorded step content, outputs and verdicts.
``AcademicPaper.to_markdown`` renders the usual Title / Abstract /
Keywords / Introduction / Methodology / Results / Discussion /
Conclusion / References layout.
"""

import json
import re
from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .write_up import key_findings, success_rate
from ..session.models import SessionState, StepStatus
from ..storage.state_store import ProjectState, Reference

STOPWORDS = {
    "about", "after", "analysis", "analyze", "before", "between", "compute", "could",
    "dataset", "determine", "does", "from", "have", "into", "that", "their", "there",
    "these", "this", "what", "which", "with", "would", "using",
}


@dataclass
class PaperMetadata:
    original_goal: str
    session_id: str
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    word_count: int = 0
    research_duration: Optional[str] = None


@dataclass
class AcademicPaper:
    title: str
    abstract: str
    keywords: List[str]
    introduction: str
    methodology: str
    results: str
    discussion: str
    conclusion: str
    references: List[Reference]
    metadata: PaperMetadata

    def to_markdown(self) -> str:
        md = [f"# {self.title}", "", "## Abstract", "", self.abstract, ""]
        if self.keywords:
            md.extend([f"**Keywords:** {', '.join(self.keywords)}", ""])
        for heading, body in (
            ("Introduction", self.introduction),
            ("Methodology", self.methodology),
            ("Results", self.results),
            ("Discussion", self.discussion),
            ("Conclusion", self.conclusion),
        ):
            md.extend([f"## {heading}", "", body, ""])
        if self.references:
            md.extend(["## References", ""])
            md.extend(f"{i}. {ref.citation()}" for i, ref in enumerate(self.references, start=1))
            md.append("")
        return "\n".join(md)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["references"] = [ref.to_dict() for ref in self.references]
        return data

    def save(self, path: Path) -> Path:
        """Write the paper as JSON, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path


def extract_keywords(goal: str, limit: int = 6) -> List[str]:
    words = re.findall(r"[a-zA-Z][a-zA-Z\-]{3,}", goal.lower())
    counts = Counter(w for w in words if w not in STOPWORDS)
    return [word for word, _ in counts.most_common(limit)]


def _title_from_goal(goal: str) -> str:
    title = goal.strip().rstrip(".?!")
    return title[:1].upper() + title[1:] if title else "Untitled Research"


def _duration(session: SessionState) -> Optional[str]:
    try:
        start = datetime.fromisoformat(session.created_at)
        end = datetime.fromisoformat(session.updated_at)
    except ValueError:
        return None
    seconds = int((end - start).total_seconds())
    minutes, seconds = divmod(max(seconds, 0), 60)
    return f"{minutes}m {seconds}s"


def assemble_paper(project: ProjectState, session: SessionState) -> AcademicPaper:
    """Build the paper for one session of a project."""
    goal = session.goal or project.goal
    code_steps = [s for s in session.steps if s.kind.is_code and s.result is not None]
    narrative = [s.content.strip() for s in session.steps if not s.kind.is_code]
    findings = key_findings(session)
    rate = success_rate(session)

    abstract = (
        f"This study addresses the question: {goal}. "
        f"The analysis was carried out in {len(code_steps)} executed step(s) "
        f"with a {rate:.0f}% success rate."
    )
    if findings:
        abstract += " " + findings[0].split(": ", 1)[-1]

    introduction = f"The aim of this work is to {goal[:1].lower() + goal[1:]}." if goal else ""
    if narrative:
        introduction += "\n\n" + "\n\n".join(narrative)

    methods = []
    for step in code_steps:
        methods.append(f"{step.index}. {step.title or step.kind.value} ({step.kind.value})")
    if project.libraries:
        libs = ", ".join(r.name for r in project.libraries)
        methods.append(f"\nThe analysis used the following Python libraries: {libs}.")
    methodology = "\n".join(methods) or "No code was executed."

    results_parts = []
    for step in code_steps:
        if step.status == StepStatus.SUCCEEDED and step.result.new_output.strip():
            results_parts.append(
                f"**{step.title or f'Step {step.index}'}**\n\n```\n{step.result.new_output.strip()}\n```"
            )
    results = "\n\n".join(results_parts) or "No step produced output."

    issues = [i for s in session.steps if s.verdict for i in s.verdict.issues]
    suggestions = [x for s in session.steps if s.verdict for x in s.verdict.suggestions]
    discussion_parts = []
    if issues:
        discussion_parts.append("Reviewers raised the following issues:\n" + "\n".join(f"- {i}" for i in issues))
    if suggestions:
        discussion_parts.append("Suggested follow-ups:\n" + "\n".join(f"- {s}" for s in suggestions))
    failed = [s for s in code_steps if s.status == StepStatus.FAILED]
    if failed:
        discussion_parts.append(
            f"{len(failed)} step(s) failed: " + ", ".join(str(s.index) for s in failed) + "."
        )
    discussion = "\n\n".join(discussion_parts) or "All steps were accepted without reservations."

    conclusion = f"The research goal was pursued through {len(code_steps)} executed step(s)."
    last_verdict = next((s.verdict for s in reversed(session.steps) if s.verdict), None)
    if last_verdict is not None:
        conclusion += (
            f" The final step was judged {'valid' if last_verdict.valid else 'not valid'}"
            f" with confidence {last_verdict.confidence:.2f}."
        )
        if last_verdict.next_step_recommendation:
            conclusion += f" Future work: {last_verdict.next_step_recommendation}"

    paper = AcademicPaper(
        title=_title_from_goal(goal),
        abstract=abstract,
        keywords=extract_keywords(goal),
        introduction=introduction,
        methodology=methodology,
        results=results,
        discussion=discussion,
        conclusion=conclusion,
        references=list(project.references),
        metadata=PaperMetadata(
            original_goal=goal,
            session_id=session.session_id,
            research_duration=_duration(session),
        ),
    )
    paper.metadata.word_count = len(paper.to_markdown().split())
    return paper
