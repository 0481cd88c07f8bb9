"""
Markdown research report for a finished session.

Pure data transformation: reads the project record and session state,
returns a Markdown string. Nothing is executed and no model is called.
"""

from datetime import datetime, timezone
from typing import List, Optional

from ..session.models import SessionState, Step, StepStatus
from ..storage.state_store import ProjectState

# Output lines containing one of these are surfaced under Key Findings
FINDING_MARKERS = ("mean", "median", "summary", "result", "total", "correlation", "accuracy", "p-value")

MAX_LOG_LINES = 5


def _code_steps(session: SessionState) -> List[Step]:
    return [step for step in session.steps if step.kind.is_code and step.result is not None]


def success_rate(session: SessionState) -> float:
    """Percentage of executed code steps that succeeded."""
    steps = _code_steps(session)
    if not steps:
        return 0.0
    succeeded = sum(1 for step in steps if step.status == StepStatus.SUCCEEDED)
    return succeeded / len(steps) * 100.0


def _step_section(step: Step) -> List[str]:
    result = step.result
    lines = [f"#### Step {step.index}: {step.title or step.kind.value}"]
    if step.revises is not None:
        lines.append(f"*Revision of step {step.revises}*")
    lines.append("")
    lines.append(f"**Kind:** {step.kind.value}  ")
    lines.append(f"**Status:** {step.status.value}  ")
    if result is not None:
        lines.append(f"**Execution Time:** {result.elapsed_ms}ms")
    lines.append("")

    if step.kind.is_code:
        lines.extend(["**Code:**", "```python", step.content.strip(), "```", ""])

    if result is None:
        return lines

    if result.new_output.strip() and step.kind.is_code:
        lines.extend(["**Output:**", "```", result.new_output.strip(), "```", ""])
    elif not step.kind.is_code:
        lines.extend([result.new_output.strip(), ""])

    if result.logs:
        lines.append("**Key Logs:**")
        lines.extend(f"- {log}" for log in result.logs[:MAX_LOG_LINES])
        if len(result.logs) > MAX_LOG_LINES:
            lines.append(f"- ... and {len(result.logs) - MAX_LOG_LINES} more logs")
        lines.append("")

    if step.status == StepStatus.FAILED and result.error:
        lines.extend(["**Error:**", "```", result.error.strip(), "```", ""])

    if step.verdict is not None:
        verdict = step.verdict
        lines.append(
            f"**Validation:** {'valid' if verdict.valid else 'not valid'} "
            f"(confidence {verdict.confidence:.2f}, next: {verdict.next_action.value})"
        )
        lines.extend(f"- Issue: {issue}" for issue in verdict.issues)
        lines.extend(f"- Suggestion: {s}" for s in verdict.suggestions)
        lines.append("")
    return lines


def key_findings(session: SessionState) -> List[str]:
    """New output of successful steps that reads like a result."""
    findings = []
    for step in _code_steps(session):
        output = step.result.new_output.strip() if step.result else ""
        if step.status != StepStatus.SUCCEEDED or not output:
            continue
        if any(marker in output.lower() for marker in FINDING_MARKERS) or len(output) <= 200:
            findings.append(f"- Step {step.index} ({step.title or step.kind.value}): {output.splitlines()[0][:200]}")
    return findings


def generate_write_up(
    project: ProjectState,
    session: SessionState,
    generated_at: Optional[datetime] = None,
) -> str:
    """Assemble the Markdown report for one session of a project."""
    generated_at = generated_at or datetime.now(timezone.utc)
    goal = session.goal or project.goal
    code_steps = _code_steps(session)
    succeeded = sum(1 for step in code_steps if step.status == StepStatus.SUCCEEDED)
    revisions = sum(1 for step in session.steps if step.revises is not None)
    rate = success_rate(session)
    total_ms = sum(step.result.elapsed_ms for step in session.steps if step.result)

    md: List[str] = [
        f"# Research Report: {goal}",
        "",
        f"**Generated on:** {generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "",
        "## Executive Summary",
        "",
        f"This research project aimed to: {goal}",
        "",
        "**Research Execution Summary:**",
        f"- Total steps recorded: {len(session.steps)}",
        f"- Code steps executed: {len(code_steps)}",
        f"- Successful steps: {succeeded}",
        f"- Revised steps: {revisions}",
        f"- Success rate: {rate:.1f}%",
        "",
        "## Methodology",
        "",
        "### Research Approach",
        "The goal was broken into ordered steps. Each code step was appended to one growing "
        "Python script that was replayed in a fresh interpreter, and every result was "
        "checked by a reviewing model before the next step ran.",
        "",
    ]

    if project.libraries:
        md.extend(["### Libraries and Tools", "The following Python libraries were utilized:", ""])
        for record in project.libraries:
            version = f" {record.version}" if record.version else ""
            md.append(f"- **{record.name}**{version}: {record.status.value} ({record.source.value.replace('_', ' ')})")
        md.append("")

    if session.context.variables:
        md.extend(["### Data Variables", "The following variables were created and analyzed:", ""])
        for variable in session.context.variables.values():
            md.append(f"- **{variable.name}**: {variable.type_name} (step {variable.defined_in})")
        md.append("")

    md.extend(["## Execution Steps", "", "### Step-by-Step Analysis", ""])
    for step in session.steps:
        md.extend(_step_section(step))

    md.extend(["## Key Findings", ""])
    findings = key_findings(session)
    md.extend(findings or ["No step produced a reportable result."])
    md.append("")

    if project.questions:
        md.extend(["### Research Questions", ""])
        for q in project.questions:
            md.append(f"- **{q.question}**" + (f" {q.answer}" if q.answer else " (open)"))
        md.append("")

    md.extend([
        "## Conclusions",
        "",
        f"This research completed {len(code_steps)} code steps with a {rate:.1f}% success rate.",
    ])
    if revisions:
        md.append(f"{revisions} step(s) were rewritten after review.")
    last_verdict = next((s.verdict for s in reversed(session.steps) if s.verdict), None)
    if last_verdict and last_verdict.next_step_recommendation:
        md.append(f"Recommended next step: {last_verdict.next_step_recommendation}")
    md.append("")

    md.extend([
        "## Technical Details",
        "",
        "### Execution Environment",
        "- **Framework**: Cedar",
        "- **Language**: Python",
        "- **Execution Mode**: full-script replay per step",
        f"- **Session**: {session.session_id}",
        f"- **Total Execution Time**: {total_ms}ms",
        "",
    ])

    if project.references:
        md.extend(["## References", ""])
        md.extend(f"{i}. {ref.citation()}" for i, ref in enumerate(project.references, start=1))
        md.append("")

    return "\n".join(md)
