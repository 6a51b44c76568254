"""
Placeholder substitution for canned responses.

Canned data may contain ``{{name}}`` tokens. Built-in names produce fresh
runtime values; any other name is looked up in the call params.
"""

import json
import random
import re
from datetime import datetime
from typing import Any, Callable, Dict, List
from uuid import uuid4

from content_pipeline.utils.tracing import generate_trace_id

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

BUILTIN_REPLACEMENTS: Dict[str, Callable[[], str]] = {
    "traceId": lambda: generate_trace_id("mock"),
    "timestamp": lambda: datetime.utcnow().isoformat(),
    "created_at": lambda: datetime.utcnow().isoformat(),
    "updated_at": lambda: datetime.utcnow().isoformat(),
    "uuid": lambda: str(uuid4()),
    "randomScore": lambda: f"{random.uniform(0.6, 1.0):.2f}",
    "duration": lambda: str(random.randint(500, 2500)),
}


def extract_placeholders(data: Any) -> List[str]:
    """Distinct placeholder names appearing anywhere in ``data``."""
    found = PLACEHOLDER_PATTERN.findall(json.dumps(data))
    return list(dict.fromkeys(found))


def missing_placeholders(data: Any, params: Dict[str, Any]) -> List[str]:
    """Placeholders that neither a built-in nor ``params`` can fill."""
    return [
        name for name in extract_placeholders(data)
        if name not in BUILTIN_REPLACEMENTS and params.get(name) is None
    ]


def _param_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, default=str)


def apply_replacements(data: Any, params: Dict[str, Any]) -> Any:
    """
    Return a copy of ``data`` with every resolvable placeholder replaced.

    Replacement happens inside string values only, so the structure of the
    canned response is preserved. Unresolvable placeholders are left as-is.
    """
    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in BUILTIN_REPLACEMENTS:
            return BUILTIN_REPLACEMENTS[name]()
        value = params.get(name)
        if value is None:
            return match.group(0)
        return _param_text(value)

    def walk(node: Any) -> Any:
        if isinstance(node, str):
            return PLACEHOLDER_PATTERN.sub(replace, node)
        if isinstance(node, dict):
            return {key: walk(value) for key, value in node.items()}
        if isinstance(node, list):
            return [walk(item) for item in node]
        return node

    return walk(data)
