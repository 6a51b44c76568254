"""
Real response capture.

Writes each real stage response to ``<capture_dir>/<stage>/`` together with a
placeholder template, so it can be promoted to a canned response later.
"""

import hashlib
import json
import re
from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("response_capture")

DYNAMIC_FIELD_PATTERNS = (
    "traceid",
    "trace_id",
    "id",
    "artifactid",
    "artifact_id",
    "timestamp",
    "created_at",
    "updated_at",
    "completedat",
    "completed_at",
    "duration",
    "uuid",
)

SENSITIVE_KEYS = ("token", "apikey", "api_key", "password", "secret", "key")
MAX_INPUT_STRING = 1000

_PATH_PART = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def sanitize_input(params: Dict[str, Any]) -> Dict[str, Any]:
    """Redact secrets and elide long strings."""
    sanitized = {}
    for key, value in params.items():
        if any(s in key.lower() for s in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, str) and len(value) > MAX_INPUT_STRING:
            sanitized[key] = f"[TRUNCATED: {len(value)} chars]"
        else:
            sanitized[key] = value
    return sanitized


def _is_dynamic(key: str) -> bool:
    lowered = key.lower()
    return lowered in DYNAMIC_FIELD_PATTERNS or lowered.endswith("_id")


def identify_dynamic_fields(response: Any) -> List[str]:
    """Dotted paths of fields whose values change from call to call."""
    found = []

    def walk(node: Any, path: str):
        if isinstance(node, dict):
            for key, value in node.items():
                field_path = f"{path}.{key}" if path else key
                if _is_dynamic(key):
                    found.append(field_path)
                else:
                    walk(value, field_path)
        elif isinstance(node, list):
            for index, item in enumerate(node):
                walk(item, f"{path}[{index}]")

    walk(response, "")
    return found


def _set_path(target: Any, path: str, value: Any):
    parts: List[Union[str, int]] = [
        m.group(1) if m.group(1) is not None else int(m.group(2))
        for m in _PATH_PART.finditer(path)
    ]
    current = target
    for part in parts[:-1]:
        current = current[part]
    current[parts[-1]] = value


def create_mock_template(response: Any, dynamic_fields: List[str]) -> Any:
    """Copy of ``response`` with each dynamic field replaced by a placeholder."""
    template = deepcopy(response)
    for path in dynamic_fields:
        name = re.sub(r"\[\d+\]", "", path.split(".")[-1])
        _set_path(template, path, "{{" + name + "}}")
    return template


def capture_response(
    capture_dir: Path,
    stage_id: str,
    variant: str,
    params: Dict[str, Any],
    response: Dict[str, Any],
) -> Optional[Path]:
    """
    Write one capture file. Failures are logged and swallowed; capture must
    never affect the stage that produced the response.
    """
    try:
        stage_dir = Path(capture_dir) / stage_id
        stage_dir.mkdir(parents=True, exist_ok=True)

        input_hash = hashlib.md5(
            json.dumps(params, sort_keys=True, default=str).encode()
        ).hexdigest()[:8]
        stamp = datetime.utcnow().strftime("%Y-%m-%dT%H-%M-%S-%f")
        file_path = stage_dir / f"{variant}_{stamp}_{input_hash}.json"

        dynamic_fields = identify_dynamic_fields(response)
        capture = {
            "captured_at": datetime.utcnow().isoformat(),
            "stage_id": stage_id,
            "variant": variant,
            "input": sanitize_input(params),
            "response": response,
            "metadata": {"dynamic_fields": dynamic_fields, "input_hash": input_hash},
            "mock_template": create_mock_template(response, dynamic_fields),
        }

        with open(file_path, "w") as f:
            json.dump(capture, f, indent=2, default=str)

        logger.info(
            "Captured real response",
            stage_id=stage_id,
            variant=variant,
            file_path=str(file_path),
            dynamic_field_count=len(dynamic_fields),
        )
        return file_path
    except Exception as e:
        logger.error("Response capture failed", stage_id=stage_id, variant=variant, error=str(e))
        return None
