"""Guards rejecting code that uses disallowed primitives."""

import re
from typing import Optional

JAVASCRIPT_DISALLOWED = [
    (r"\beval\s*\(", "eval("),
    (r"(?<![\w.])(new\s+)?Function\s*\(", "Function("),
    (r"\bprocess\.", "process."),
    (r"\brequire\s*\(", "require("),
    (r"\bglobal(This)?\.", "global."),
    (r"child_process", "child_process"),
    (r"(?<![\w.])import\s*\(", "dynamic import("),
]

PYTHON_DISALLOWED = [
    (r"\beval\s*\(", "eval("),
    (r"\bexec\s*\(", "exec("),
    (r"\bcompile\s*\(", "compile("),
    (r"__import__", "__import__"),
    (r"\bopen\s*\(", "open("),
    (r"^\s*(import|from)\s+(os|sys|subprocess|shutil|socket|importlib)\b", "module import"),
    (r"\b(os|subprocess|sys)\.", "os/sys/subprocess access"),
]

_JS_COMMENT = re.compile(r"//[^\n]*|/\*[\s\S]*?\*/")
_PY_COMMENT = re.compile(r"#[^\n]*")
_RETURN = re.compile(r"\breturn\b")


def strip_comments(code: str, language: str) -> str:
    if language == "python":
        return _PY_COMMENT.sub("", code)
    return _JS_COMMENT.sub("", code)


def check_guards(code: str, language: str) -> Optional[str]:
    """Check code node source against the guard rules.

    The code must return its items and must not reach for dynamic
    evaluation, the process or environment, or module loading.

    Args:
        code: Code node source
        language: "javascript" or "python"

    Returns:
        Description of the first violation, or None
    """
    body = strip_comments(code, language)
    rules = PYTHON_DISALLOWED if language == "python" else JAVASCRIPT_DISALLOWED
    for pattern, label in rules:
        if re.search(pattern, body, re.MULTILINE):
            return f"Disallowed primitive: {label}"
    if not _RETURN.search(body):
        return "Code does not return any items"
    return None
