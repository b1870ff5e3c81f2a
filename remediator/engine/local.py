"""Local execution engine.

Validates workflow definitions and dry-runs a single code node against
synthetic input in a subprocess. JavaScript nodes run under Node.js when it
is installed; Python nodes run under the current interpreter in isolated
mode. Each run gets an empty environment and a throwaway working directory.
"""

import asyncio
import json
import logging
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Any, Optional, Protocol

from ..models import TargetRef, TestPhase, TestResult
from ..workflow import (
    CODE_FIELDS,
    code_field,
    find_node,
    is_code_node,
    language_for_field,
    url_problem,
)
from .syntax import check_code, find_node_binary

logger = logging.getLogger(__name__)

SYNTHETIC_INPUT: list[dict] = [{"json": {"test": "data", "value": 123}}]
DEFAULT_TIMEOUT = 10.0
RESULT_MARKER = "__REMEDIATOR_RESULT__"

_JS_HARNESS = """\
const __items = JSON.parse(require('fs').readFileSync(0, 'utf8'));
const $input = {
  all: () => __items,
  first: () => __items[0],
  last: () => __items[__items.length - 1],
  item: __items[0],
};
const $json = (__items[0] || {}).json || {};
const __emit = (payload) => process.stdout.write('\\n%(marker)s' + JSON.stringify(payload));
(async function () {
%(code)s
})().then(
  (result) => __emit({ ok: true, result: result === undefined ? null : result }),
  (err) => __emit({ ok: false, error: String((err && err.message) || err) }),
);
"""

_PY_HARNESS = """\
import asyncio as __asyncio
import json as __json
import sys as __sys


class _Item:
    def __init__(self, data):
        self.json = data.get("json", {})

    def to_dict(self):
        return {"json": self.json}


class _Input:
    def __init__(self, items):
        self._items = [_Item(i) for i in items]

    def all(self):
        return list(self._items)

    def first(self):
        return self._items[0] if self._items else None

    def last(self):
        return self._items[-1] if self._items else None


_input = _Input(__json.load(__sys.stdin))


async def __node__():
%(code)s


def __plain(value):
    if isinstance(value, _Item):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [__plain(v) for v in value]
    if isinstance(value, dict):
        return {k: __plain(v) for k, v in value.items()}
    return value


try:
    __result = __asyncio.run(__node__())
    __payload = {"ok": True, "result": __plain(__result)}
except Exception as __e:
    __payload = {"ok": False, "error": f"{type(__e).__name__}: {__e}"}
print("\\n%(marker)s" + __json.dumps(__payload, default=str))
"""


class ExecutionEngine(Protocol):
    """Validates and dry-runs workflow definitions."""

    async def validate_syntax(
        self, definition: dict, target_ref: Optional[TargetRef] = None
    ) -> TestResult:
        ...

    async def run_dry_execution(
        self,
        definition: dict,
        target_ref: TargetRef,
        synthetic_input: Optional[list[dict]] = None,
    ) -> TestResult:
        ...


def is_well_formed(result: Any) -> bool:
    """Whether a node's output is a list of ``{json: object}`` items or a single item."""
    if isinstance(result, dict):
        return isinstance(result.get("json"), dict)
    if isinstance(result, list):
        return all(isinstance(item, dict) and isinstance(item.get("json"), dict) for item in result)
    return False


class LocalExecutionEngine:
    """Execution engine running code nodes in local subprocesses.

    Example:
        engine = LocalExecutionEngine()
        result = await engine.run_dry_execution(definition, target_ref)
    """

    def __init__(
        self,
        node_binary: Optional[str] = None,
        python_executable: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        detect_node: bool = True,
    ):
        """Initialize the engine.

        Args:
            node_binary: Node.js executable; looked up on PATH when None
            python_executable: Interpreter for Python code nodes
            timeout: Seconds a single dry run may take
            detect_node: Look up Node.js on PATH when node_binary is None
        """
        self.node_binary = node_binary or (find_node_binary() if detect_node else None)
        self.python_executable = python_executable or sys.executable
        self.timeout = timeout

        self._runs = 0
        self._skipped = 0

    async def validate_syntax(
        self, definition: dict, target_ref: Optional[TargetRef] = None
    ) -> TestResult:
        """Check every code node parses, and the target field when it is not code.

        Args:
            definition: Workflow definition to check
            target_ref: Field that was changed, if any

        Returns:
            TestResult for the syntax phase
        """
        nodes = definition.get("nodes")
        if not isinstance(nodes, list):
            return TestResult(success=False, phase=TestPhase.SYNTAX, error="Workflow has no nodes array")

        checked = 0
        for node in nodes:
            if not isinstance(node, dict) or not is_code_node(node):
                continue
            field = code_field(node)
            code = (node.get("parameters") or {}).get(field)
            if not isinstance(code, str):
                continue
            error = await asyncio.to_thread(
                check_code, code, language_for_field(field), self.node_binary
            )
            checked += 1
            if error:
                node_id = node.get("id") or node.get("name")
                return TestResult(
                    success=False,
                    phase=TestPhase.SYNTAX,
                    error=f"{error} in node {node_id}",
                    details={"node_id": node_id, "field": field},
                )

        if target_ref and target_ref.field in ("url", "endpoint"):
            node = find_node(definition, target_ref.node_id)
            problem = url_problem(node) if node is not None else "target node not found"
            if problem:
                return TestResult(
                    success=False,
                    phase=TestPhase.SYNTAX,
                    error=f"Node {target_ref.node_id}: {problem}",
                    details={"node_id": target_ref.node_id, "field": target_ref.field},
                )

        return TestResult(success=True, phase=TestPhase.SYNTAX, details={"checked_nodes": checked})

    async def run_dry_execution(
        self,
        definition: dict,
        target_ref: TargetRef,
        synthetic_input: Optional[list[dict]] = None,
    ) -> TestResult:
        """Run the target node's code once against synthetic input.

        Non-code targets, and JavaScript when no Node.js runtime is
        installed, are skipped and reported as passing.

        Args:
            definition: Workflow definition containing the node
            target_ref: Node and field to run
            synthetic_input: Input items, defaults to a single test item

        Returns:
            TestResult for the execution phase
        """
        node = find_node(definition, target_ref.node_id)
        if node is None:
            return TestResult(
                success=False,
                phase=TestPhase.EXECUTION,
                error=f"Node {target_ref.node_id} not found",
            )

        code = (node.get("parameters") or {}).get(target_ref.field)
        if target_ref.field not in CODE_FIELDS or not isinstance(code, str):
            return self._skip("target is not code")

        items = synthetic_input if synthetic_input is not None else SYNTHETIC_INPUT
        language = language_for_field(target_ref.field)
        if language == "python":
            command = [self.python_executable, "-I"]
            suffix = ".py"
            body = textwrap.indent(code if code.strip() else "pass", "    ")
            script = _PY_HARNESS % {"code": body, "marker": RESULT_MARKER}
        else:
            if not self.node_binary:
                return self._skip("node runtime not available")
            command = [self.node_binary]
            suffix = ".js"
            script = _JS_HARNESS % {"code": code, "marker": RESULT_MARKER}

        self._runs += 1
        return await self._run(command, suffix, script, items)

    def _skip(self, reason: str) -> TestResult:
        self._skipped += 1
        logger.debug(f"Dry run skipped: {reason}")
        return TestResult(success=True, phase=TestPhase.EXECUTION, details={"skipped": reason})

    async def _run(
        self, command: list[str], suffix: str, script: str, items: list[dict]
    ) -> TestResult:
        with tempfile.TemporaryDirectory(prefix="remediator-run-") as workdir:
            harness = Path(workdir) / f"harness{suffix}"
            harness.write_text(script, encoding="utf-8")
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    str(harness),
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=workdir,
                    env={},
                )
            except OSError as e:
                return TestResult(
                    success=False,
                    phase=TestPhase.EXECUTION,
                    error=f"Could not start runtime: {e}",
                )

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(json.dumps(items).encode()),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                await _kill_process(process)
                return TestResult(
                    success=False,
                    phase=TestPhase.EXECUTION,
                    error=f"Execution timed out after {self.timeout:g}s",
                )
            except asyncio.CancelledError:
                logger.debug("Dry run cancelled, killing the runtime process")
                await _kill_process(process)
                raise

        return self._parse_output(stdout.decode(errors="replace"), stderr.decode(errors="replace"))

    def _parse_output(self, stdout: str, stderr: str) -> TestResult:
        _, marker, payload_text = stdout.rpartition(RESULT_MARKER)
        if not marker:
            error = stderr.strip().splitlines()[-1] if stderr.strip() else "No result produced"
            return TestResult(success=False, phase=TestPhase.EXECUTION, error=error)

        try:
            payload = json.loads(payload_text)
        except json.JSONDecodeError as e:
            return TestResult(
                success=False,
                phase=TestPhase.EXECUTION,
                error=f"Unreadable execution result: {e}",
            )

        if not payload.get("ok"):
            return TestResult(
                success=False,
                phase=TestPhase.EXECUTION,
                error=payload.get("error") or "Execution failed",
            )

        result = payload.get("result")
        if not is_well_formed(result):
            return TestResult(
                success=False,
                phase=TestPhase.EXECUTION,
                error="Output must be a list of {json: object} items",
                details={"output": result},
            )

        count = len(result) if isinstance(result, list) else 1
        return TestResult(success=True, phase=TestPhase.EXECUTION, details={"items": count})

    def get_stats(self) -> dict[str, Any]:
        return {
            "node_available": bool(self.node_binary),
            "runs": self._runs,
            "skipped": self._skipped,
        }


async def _kill_process(process: asyncio.subprocess.Process) -> None:
    """Kill a runtime process and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()
