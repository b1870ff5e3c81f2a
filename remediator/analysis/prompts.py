"""Prompts sent to the model service."""

from typing import Optional

from ..models import Analysis, Attempt, ErrorRecord, PatternMatch

# Prior attempts are summarized, never replayed in full
MAX_HISTORY_IN_PROMPT = 5
MAX_CODE_IN_HISTORY = 400


def build_analysis_prompt(
    record: ErrorRecord,
    pattern_match: Optional[PatternMatch],
    definition_excerpt: Optional[str],
) -> str:
    """Build the prompt asking for a structured diagnosis."""
    known = "None"
    if pattern_match:
        p = pattern_match.pattern
        causes = "\n".join(f"- {c}" for c in p.common_causes) or "- (none recorded)"
        known = (
            f"{p.name} (id: {p.id}, match confidence {pattern_match.match_confidence:.2f})\n"
            f"Common causes:\n{causes}\n"
            f"Quick fix hint: {p.quick_fix_hint or 'None'}"
        )

    return f"""
Analyze the following failure in an n8n workflow node.

ERROR DETAILS:
Type: {record.type.value}
Severity: {record.severity.value}
Message: {record.message}
Workflow: {record.source_ref.workflow_id or "Unknown"}
Node: {record.source_ref.node_id or "Unknown"} ({record.source_ref.node_type or "unknown type"})

KNOWN PATTERN:
{known}

NODE DEFINITION:
{definition_excerpt or "Not available"}

YOUR TASK:
1. Identify the root cause.
2. Estimate how complex a fix is.
3. If a small code change fixes it, provide the complete replacement code for the node.

RESPONSE FORMAT:
You MUST respond with a valid JSON object matching this structure:
{{
    "rootCause": "Short statement of the root cause",
    "problemDescription": "Clear explanation of why the error occurred",
    "severity": "low|medium|high|critical",
    "complexity": "simple|medium|complex",
    "confidence": 0.0,
    "recommendation": {{
        "description": "What the change does",
        "newCode": "Complete replacement code for the node, or omit recommendation",
        "reasoning": "Why this fixes the root cause"
    }}
}}
"""


def _summarize_attempt(attempt: Attempt) -> str:
    fix = attempt.fix
    code = fix.code if fix else ""
    if len(code) > MAX_CODE_IN_HISTORY:
        code = code[:MAX_CODE_IN_HISTORY] + "..."
    lines = [
        f"Attempt {attempt.number} (failed at {attempt.phase.value}):",
        f"  Fix: {fix.description if fix else 'none'}",
        f"  Error: {attempt.error or 'unknown'}",
    ]
    if code:
        lines.append(f"  Code:\n```\n{code}\n```")
    return "\n".join(lines)


def build_fix_prompt(
    record: ErrorRecord,
    analysis: Analysis,
    field: str,
    current_code: Optional[str],
    history: list[Attempt],
) -> str:
    """Build the prompt asking for replacement code (or a parameter value)."""
    recent = history[-MAX_HISTORY_IN_PROMPT:]
    previous = "\n\n".join(_summarize_attempt(a) for a in recent) or "None"

    if field == "pythonCode":
        task = "Fix the failing Python code of an n8n workflow node."
        rules = (
            "The code runs as the body of a function: read items with _input.all() "
            'and return a list of {"json": ...} items.'
        )
    elif field in ("jsCode", "functionCode"):
        task = "Fix the failing JavaScript code of an n8n workflow node."
        rules = (
            "The code runs as the body of a function: read items with $input.all() "
            'and return a list of {"json": ...} items.'
        )
    else:
        task = f"Fix the '{field}' parameter of a failing n8n workflow node."
        rules = f"Return only the new value of '{field}' as fixedCode."

    return f"""
{task}

ERROR:
Type: {record.type.value}
Message: {record.message}
Node: {record.source_ref.node_id or "Unknown"}

ANALYSIS:
Root cause: {analysis.root_cause}
Details: {analysis.problem_description or "None"}

CURRENT VALUE ({field}):
```
{current_code or ""}
```

PREVIOUS FAILED ATTEMPTS:
{previous}

Don't repeat failed approaches. {rules}
Do not use eval, dynamic imports or process/environment access.

RESPONSE FORMAT:
You MUST respond with a valid JSON object matching this structure:
{{
    "fixedCode": "Complete replacement code",
    "description": "What the fix changes",
    "reasoning": "Why it addresses the root cause",
    "testCases": ["Input the fix should handle"],
    "riskLevel": "low|medium|high"
}}
"""
