"""Helpers for navigating workflow definitions.

A workflow definition is a JSON object with a ``nodes`` list; each node
has an ``id``, a ``name``, a ``type`` and a ``parameters`` object. Code
nodes keep their source in ``parameters.jsCode``, ``parameters.pythonCode``
or, for legacy function nodes, ``parameters.functionCode``.
"""

from typing import Optional
from urllib.parse import urlparse

from .models import normalize_node_type

CODE_FIELDS = ("jsCode", "pythonCode", "functionCode")
CODE_NODE_TYPES = {"code", "function", "functionitem"}
PYTHON_LANGUAGES = {"python", "pythonnative"}


def find_node(definition: dict, node_id: str) -> Optional[dict]:
    """Find a node by id, falling back to its name."""
    nodes = definition.get("nodes") or []
    for node in nodes:
        if isinstance(node, dict) and node.get("id") == node_id:
            return node
    for node in nodes:
        if isinstance(node, dict) and node.get("name") == node_id:
            return node
    return None


def is_code_node(node: dict) -> bool:
    if normalize_node_type(node.get("type")) in CODE_NODE_TYPES:
        return True
    params = node.get("parameters") or {}
    return any(f in params for f in CODE_FIELDS)


def is_http_node(node: dict) -> bool:
    node_type = normalize_node_type(node.get("type")) or ""
    return "http" in node_type or node_type.endswith("api")


def code_field(node: dict, default: str = "jsCode") -> str:
    """Name of the parameter holding a code node's source."""
    params = node.get("parameters") or {}
    for name in CODE_FIELDS:
        if name in params:
            return name
    if str(params.get("language", "")).lower() in PYTHON_LANGUAGES:
        return "pythonCode"
    return default


def language_for_field(field: str) -> str:
    return "python" if field == "pythonCode" else "javascript"


def node_language(node: dict) -> str:
    return language_for_field(code_field(node))


def url_problem(node: dict) -> Optional[str]:
    """Describe what is wrong with an HTTP node's URL, or None if it is usable.

    n8n expressions (values starting with ``=``) are resolved at run time
    and are not checked.
    """
    params = node.get("parameters") or {}
    url = params.get("url") or params.get("endpoint")
    if not url or not str(url).strip():
        return "missing url"
    url = str(url).strip()
    if url.startswith("="):
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return f"invalid url: {url}"
    return None
