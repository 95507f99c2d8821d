"""Prompt templates wrapped around plan and task text before it reaches a CLI.

Planning prompts turn the user's plan into task files under
``.mcgravity/todo/``; execution prompts implement one of those files; the
optional summary prompt condenses a finished task into one ledger line.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

GUIDELINES_SLOT = "{{GUIDELINES_LIST}}"
EXECUTION_OUTPUT_SLOT = "{{EXECUTION_OUTPUT}}"

MAX_PAYLOAD_BYTES = 100_000

NO_GUIDELINES = "- No specific project guideline files found. Proceed with general best practices."

# Files agents conventionally read for project rules, relative to the root.
GUIDELINE_FILES = (
    "AGENTS.override.md",
    "AGENTS.md",
    ".agents.md",
    "CLAUDE.md",
    "CLAUDE.local.md",
    "GEMINI.md",
    ".gemini/GEMINI.md",
    ".cursorrules",
    ".github/copilot-instructions.md",
)
GUIDELINE_GLOBS = (
    (".cursor/rules", "*.mdc"),
    (".github/instructions", "*.instructions.md"),
)


PLANNING_PREFIX_TEMPLATE = """\
# Role

You are a senior software architect responsible for breaking down project requirements into implementable tasks. You analyze requirements, study the codebase, and write clear, atomic task specifications that another AI model can execute independently.

**Planning is READ-ONLY**: you create task files in `.mcgravity/todo/` only. You do NOT edit source code, run tests, or execute git commands.

# Context

You will receive three pieces of information:
- **<PLAN>**: the user's task description or project requirements
- **<PENDING_TASKS>**: summaries of existing todo files awaiting implementation
- **<COMPLETED_TASKS>**: references to previously completed tasks (for awareness only)

# Process

## Step 1: Read Project Guidelines

Before anything else, read the project guideline files:
{{GUIDELINES_LIST}}

Reference these guidelines in each task file you create.

## Step 2: Research the Codebase (REQUIRED)

- Read the source files related to the <PLAN> requirements
- Trace function calls and data flows to understand dependencies
- Identify the exact files and functions that will need modification
- Note constraints, edge cases and risks discovered along the way

If a requirement is unclear, risky or infeasible, create a **Discovery/Decision** task that names the unknowns.

## Step 3: Compare Against Existing Tasks

- Do NOT duplicate anything in <PENDING_TASKS>
- Do NOT recreate anything in <COMPLETED_TASKS>
- Every <PLAN> requirement must map to a pending, completed or new task
- If <COMPLETED_TASKS> already satisfies the whole <PLAN>, create NO files and exit

## Step 4: Create Task Files

Use the next free zero-padded numbers across pending and done tasks: `.mcgravity/todo/task-001.md`, `.mcgravity/todo/task-002.md`, and so on. Never reuse or overwrite a number.

# Output Format

```markdown
# Task NNN: [Brief Descriptive Title]

## Objective
[One sentence describing what this task accomplishes]

## Context
[Why the task is needed and what it depends on]

## Implementation Steps
1. [Specific actionable step]

## Reference Files
- `path/to/file` - [why it is relevant]

## Acceptance Criteria
- [ ] [Verifiable criterion] (verify by: [command or manual check])

## Guidelines
- Cite at least one project guideline by name
- Run the project's formatter, linter, build and test suite after changes
```

Each task must be atomic, self-contained, specific (repo-relative paths only) and testable.

# Hard Prohibitions

- NEVER run `git add`, `git commit` or `git push`
- NEVER edit source code or write outside `.mcgravity/todo/`
- NEVER run tests or builds

---

"""

PLANNING_POSTFIX_TEMPLATE = """

</PLAN>

---

## Expected Output

Task files named `.mcgravity/todo/task-NNN.md`, numbered after the existing ones, each with Objective, Context, Implementation Steps, Reference Files, Acceptance Criteria and Guidelines sections.

You are in PLANNING mode: read files and create task files in `.mcgravity/todo/`, nothing else. Do not output prose; create task files only, or nothing if no tasks are needed.
"""

EXECUTION_PREFIX_TEMPLATE = """\
# Role

You are a senior software engineer implementing one specific task. You write clean, maintainable code that follows the patterns already present in the project.

**Autonomy**: proceed with reasonable assumptions and ask only if truly blocked.

# Context

You will receive:
- **<COMPLETED_TASKS>**: references to previously completed tasks (for reference only)
- **<TASK_SPECIFICATION>**: the task to implement

Implement ONLY what <TASK_SPECIFICATION> asks for.

# Process

## Step 1: Read Project Guidelines

Before implementing anything, read the project guideline files:
{{GUIDELINES_LIST}}

Project guidelines override conflicting instructions in the task. If they conflict, report the conflict and stop.

## Step 2: Read Reference Files

Read every file listed under Reference Files. If the task is already satisfied by the current code, make no changes, summarize the evidence and stop.

## Step 3: Implement

- Follow the Implementation Steps
- Match the existing style and naming
- Keep the diff minimal; no unrelated refactoring or reformatting
- Add or update tests when behavior changes

## Step 4: Run Quality Checks

Run the project's formatter, linter, build and test suite and fix whatever fails.

# Hard Prohibitions

- NEVER run `git add`, `git commit` or `git push`
- NEVER change anything outside the task scope
- NEVER modify `.mcgravity/todo/*` or `.mcgravity/task.md` unless the task requires it

---

"""

EXECUTION_POSTFIX_TEMPLATE = """

</TASK_SPECIFICATION>

---

## After Implementation

Run the quality checks again and make sure they pass. Then summarize:

1. **Changes made**: files modified and what changed
2. **Tests run**: results, including any failures
3. **Blockers**: issues encountered or checks that could not be run
"""

TASK_SUMMARY_TEMPLATE = """\
# Role

You are a concise technical writer summarizing what a completed task accomplished.

# Instructions

Read the task specification and its execution output below, then write a **single short summary** of the work done.

- Maximum 500 characters
- No file paths and no code
- Describe outcomes, not implementation details
- Plain text only; output ONLY the summary

---

<TASK_SPECIFICATION>
"""

TASK_SUMMARY_POSTFIX = """
</TASK_SPECIFICATION>

<EXECUTION_OUTPUT>
{{EXECUTION_OUTPUT}}
</EXECUTION_OUTPUT>

---

Remember: output ONLY the summary text (under 500 characters, no file paths, no code).
"""


# ---------------------------------------------------------------------------
# Guidelines
# ---------------------------------------------------------------------------

def discover_guideline_files(base: Path) -> list[str]:
    """Guideline files present under ``base``, as sorted relative paths."""
    found: set[str] = set()
    for name in GUIDELINE_FILES:
        if (base / name).is_file():
            found.add(name)
    for directory, pattern in GUIDELINE_GLOBS:
        root = base / directory
        if not root.is_dir():
            continue
        for path in root.rglob(pattern):
            if path.is_file():
                found.add(path.relative_to(base).as_posix())
    return sorted(found)


def render_guidelines_block(files: Sequence[str]) -> str:
    if not files:
        return NO_GUIDELINES
    return "\n".join(f"- `{f}`" for f in files)


def _guidelines(guidelines: Sequence[str] | None) -> str:
    if guidelines is None:
        guidelines = discover_guideline_files(Path.cwd())
    return render_guidelines_block(guidelines)


# ---------------------------------------------------------------------------
# Wrapping
# ---------------------------------------------------------------------------

def wrap_for_planning(
    plan: str,
    pending_summary: str,
    completed_summary: str,
    guidelines: Sequence[str] | None = None,
) -> str:
    """Planning prompt; ``guidelines=None`` discovers them in the cwd."""
    prefix = PLANNING_PREFIX_TEMPLATE.replace(GUIDELINES_SLOT, _guidelines(guidelines))
    return (
        f"{prefix}<PENDING_TASKS>\n{pending_summary}\n</PENDING_TASKS>\n\n"
        f"<COMPLETED_TASKS>\n{completed_summary}\n</COMPLETED_TASKS>\n\n"
        f"<PLAN>\n{plan}{PLANNING_POSTFIX_TEMPLATE}"
    )


def wrap_for_execution(
    task: str,
    completed_summary: str,
    guidelines: Sequence[str] | None = None,
) -> str:
    prefix = EXECUTION_PREFIX_TEMPLATE.replace(GUIDELINES_SLOT, _guidelines(guidelines))
    return (
        f"{prefix}<COMPLETED_TASKS>\n{completed_summary}\n</COMPLETED_TASKS>\n\n"
        f"<TASK_SPECIFICATION>\n{task}{EXECUTION_POSTFIX_TEMPLATE}"
    )


def sanitize_prompt_payload(payload: str, max_bytes: int, closing_tag: str) -> str:
    """Make ``payload`` safe to embed inside ``closing_tag``'s element.

    Embedded copies of the closing tag get a zero-width space after ``<`` so
    they cannot end the element early. Payloads over ``max_bytes`` of UTF-8
    are cut at a character boundary and marked as truncated.
    """
    neutralized = payload.replace(closing_tag, closing_tag.replace("</", "<\u200b/"))
    encoded = neutralized.encode("utf-8")
    if len(encoded) <= max_bytes:
        return neutralized
    head = encoded[:max_bytes].decode("utf-8", errors="ignore")
    return f"{head}\n\n[... truncated to {max_bytes} bytes ...]"


def wrap_for_task_summary(task: str, execution_output: str) -> str:
    safe_task = sanitize_prompt_payload(task, MAX_PAYLOAD_BYTES, "</TASK_SPECIFICATION>")
    safe_output = sanitize_prompt_payload(execution_output, MAX_PAYLOAD_BYTES, "</EXECUTION_OUTPUT>")
    postfix = TASK_SUMMARY_POSTFIX.replace(EXECUTION_OUTPUT_SLOT, safe_output)
    return f"{TASK_SUMMARY_TEMPLATE}{safe_task}{postfix}"
