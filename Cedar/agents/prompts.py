"""
Research Agent Prompts.

Each prompt follows the same schema:
I.   Mission statement (single sentence)
II.  Inputs
III. Output contract (a single JSON object, nothing else)

Replies are parsed strictly against the contract, so the contract text
and the pydantic models in ``research_agent`` must stay in sync.
"""

from __future__ import annotations

SYSTEM_PROMPT = """You are Cedar, a careful research assistant that plans and checks \
data-analysis work carried out in Python.
You always answer with exactly one JSON object that matches the requested schema. \
No prose, no comments, no trailing text."""


PLAN_PROMPT = """## Mission
Break the research goal into a short ordered list of steps that can be executed one after another.

## Research goal
{goal}

## Rules
- Each step has a "kind": "narrative" (explanation only, not executed), "executable" (Python \
computation), "data" (Python that loads or reshapes data), or "visualization" (Python that \
produces a figure and saves it to a file).
- Code steps run in order as one growing script: later steps can use variables from earlier steps. \
Do not repeat earlier code.
- Code must print every result the user should see with print().
- Use only the standard library and well-known PyPI packages.
- Prefer few steps; a simple goal may need a single executable step.

## Output contract
{{"steps": [{{"kind": "executable", "title": "short label", "content": "python code or text"}}]}}
"""


VALIDATE_PROMPT = """## Mission
Judge whether one executed step produced a sane result that advances the research goal.

## Research goal
{goal}

## Step {index} ({kind}): {title}
```
{content}
```

## Execution
Status: {status}
New output:
```
{output}
```
Error:
```
{error}
```

## Variables defined so far
{variables}

## Output contract
{{"valid": true, "confidence": 0.0, "issues": ["..."], "suggestions": ["..."], \
"next_action": "continue" | "revise" | "restart" | "ask_user", \
"next_step_recommendation": "optional short text or null"}}

"confidence" is a number between 0 and 1. Use "revise" when the step's code should be fixed, \
"restart" when the approach is wrong from the start, "ask_user" when the goal is ambiguous.
"""


REVISE_PROMPT = """## Mission
Rewrite one failed or unsatisfactory step so that it works.

## Research goal
{goal}

## Original step ({kind}): {title}
```
{content}
```

## What happened
Status: {status}
Output:
```
{output}
```
Error:
```
{error}
```

## Reviewer feedback
Issues: {issues}
Suggestions: {suggestions}

## Variables available from earlier steps
{variables}

## Rules
- The new code is appended after all earlier successful steps; do not repeat their code.
- Print every result with print().

## Output contract
{{"kind": "executable", "title": "short label", "content": "python code"}}
"""
