"""Syntax checks for code node sources.

Code node bodies are function bodies (they ``return`` items), so both
checks wrap the source in a function before parsing it. JavaScript is
checked with ``node --check`` when a Node.js runtime is installed and with
a delimiter balance scan otherwise.
"""

import ast
import logging
import os
import shutil
import subprocess
import tempfile
import textwrap
from typing import Optional

logger = logging.getLogger(__name__)

JS_WRAPPER_PREFIX = "(async function () {\n"
JS_WRAPPER_SUFFIX = "\n})();\n"
PY_WRAPPER_PREFIX = "async def __node__():\n"

_PAIRS = {")": "(", "]": "[", "}": "{"}


def find_node_binary() -> Optional[str]:
    """Path of the Node.js executable, if installed."""
    return shutil.which("node")


def check_python(code: str) -> Optional[str]:
    """Check Python code node source.

    Returns:
        Error description, or None if the code parses
    """
    body = textwrap.indent(code if code.strip() else "pass", "    ")
    try:
        ast.parse(PY_WRAPPER_PREFIX + body)
    except SyntaxError as e:
        line = (e.lineno or 1) - 1
        return f"SyntaxError: {e.msg} (line {max(line, 1)})"
    return None


def check_javascript(
    code: str,
    node_binary: Optional[str] = None,
    timeout: float = 10.0,
) -> Optional[str]:
    """Check JavaScript code node source.

    Args:
        code: Code node body
        node_binary: Node.js executable; when None the balance scan is used
        timeout: Seconds to wait for ``node --check``

    Returns:
        Error description, or None if the code looks valid
    """
    if node_binary:
        result = _node_check(code, node_binary, timeout)
        if result is not _UNAVAILABLE:
            return result
    return scan_delimiters(code)


_UNAVAILABLE = object()


def _node_check(code: str, node_binary: str, timeout: float):
    fd, path = tempfile.mkstemp(suffix=".js", prefix="remediator-check-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(JS_WRAPPER_PREFIX + code + JS_WRAPPER_SUFFIX)
        proc = subprocess.run(
            [node_binary, "--check", path],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"node --check unavailable, falling back to delimiter scan: {e}")
        return _UNAVAILABLE
    finally:
        try:
            os.unlink(path)
        except OSError:
            pass

    if proc.returncode == 0:
        return None
    for line in proc.stderr.splitlines():
        if "Error" in line:
            return line.strip()
    return proc.stderr.strip() or "SyntaxError"


def scan_delimiters(code: str) -> Optional[str]:
    """Check that brackets balance outside strings and comments.

    Returns:
        Error description, or None if all delimiters balance
    """
    stack: list[tuple[str, int]] = []
    line = 1
    i = 0
    n = len(code)
    while i < n:
        ch = code[i]
        if ch == "\n":
            line += 1
            i += 1
            continue
        if ch == "/" and i + 1 < n and code[i + 1] == "/":
            while i < n and code[i] != "\n":
                i += 1
            continue
        if ch == "/" and i + 1 < n and code[i + 1] == "*":
            end = code.find("*/", i + 2)
            if end == -1:
                return f"SyntaxError: Unterminated comment (line {line})"
            line += code.count("\n", i, end)
            i = end + 2
            continue
        if ch in ("'", '"', "`"):
            start_line = line
            i += 1
            while i < n and code[i] != ch:
                if code[i] == "\\":
                    i += 1
                elif code[i] == "\n":
                    if ch != "`":
                        return f"SyntaxError: Invalid or unexpected token (line {start_line})"
                    line += 1
                i += 1
            if i >= n:
                return f"SyntaxError: Unterminated string literal (line {start_line})"
            i += 1
            continue
        if ch in "([{":
            stack.append((ch, line))
        elif ch in ")]}":
            if not stack or stack[-1][0] != _PAIRS[ch]:
                return f"SyntaxError: Unexpected token '{ch}' (line {line})"
            stack.pop()
        i += 1

    if stack:
        opener, opened_at = stack[-1]
        return f"SyntaxError: Unexpected end of input, unclosed '{opener}' (line {opened_at})"
    return None


def check_code(code: str, language: str, node_binary: Optional[str] = None) -> Optional[str]:
    """Check code in the given language ("javascript" or "python")."""
    if language == "python":
        return check_python(code)
    return check_javascript(code, node_binary)
