# apiscenario/extraction.py
"""
Value extraction from responses.

Three addressing modes, one per capture definition:

- JSON path: dot-separated segments into the parsed body (`user.items.0.id`)
- header:    first value of a response header
- regex:     first match against the body text (group list if the pattern
             has groups, whole match otherwise)

Captures are best-effort: a failed capture binds nothing and is logged at
DEBUG. Assertions use the same extractors but surface the error.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Mapping

from apiscenario.errors import ExtractionError
from apiscenario.models import Capture
from apiscenario.transport import HTTPResponse
from apiscenario.variables import VariableContext

logger = logging.getLogger(__name__)

_SHORTHAND_PREFIXES = ("json:", "header:")


def parse_json_body(response: HTTPResponse) -> Any:
    try:
        return json.loads(response.body_text)
    except (TypeError, ValueError) as e:
        raise ExtractionError(f"failed to parse JSON: {e}") from e


def walk_path(data: Any, path: str) -> Any:
    """Navigate `data` by dotted path; arrays take integer segments"""
    path = path.strip()
    if path.startswith("$"):
        path = path[1:].lstrip(".")
    if not path:
        return data

    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                raise ExtractionError(f"key {part} not found")
            current = current[part]
        elif isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                raise ExtractionError(f"invalid array index: {part}") from None
            if index < 0 or index >= len(current):
                raise ExtractionError(f"array index out of bounds: {index}")
            current = current[index]
        else:
            raise ExtractionError(f"cannot access property {part} on {type(current).__name__}")
    return current


def extract_json_path(response: HTTPResponse, path: str) -> Any:
    return walk_path(parse_json_body(response), path)


def extract_header(response: HTTPResponse, name: str) -> str:
    values = response.headers.get(name)
    if values is None:
        lowered = name.lower()
        for key, candidate in response.headers.items():
            if key.lower() == lowered:
                values = candidate
                break
    if not values:
        raise ExtractionError(f"header {name} not found")
    return values[0]


def extract_regex(response: HTTPResponse, pattern: str) -> Any:
    """First match of `pattern`; list of groups if the pattern has any"""
    try:
        regex = re.compile(pattern)
    except re.error as e:
        raise ExtractionError(f"invalid regex pattern: {e}") from e

    match = regex.search(response.body_text)
    if match is None:
        raise ExtractionError(f"no matches found for pattern: {pattern}")
    if regex.groups == 0:
        return match.group(0)
    return [g if g is not None else "" for g in match.groups()]


def extract_capture(capture: Capture, response: HTTPResponse) -> Any:
    if capture.jsonpath:
        return extract_json_path(response, capture.jsonpath)
    if capture.header:
        return extract_header(response, capture.header)
    if capture.regex:
        return extract_regex(response, capture.regex)
    raise ExtractionError("capture defines no addressing mode")


def apply_captures(
    captures: Mapping[str, Capture],
    response: HTTPResponse,
    ctx: VariableContext,
) -> Dict[str, Any]:
    """
    Run every capture against `response` and bind the successes.

    Values go into the step scope and are persisted to the local scope so
    the next step of the same context lineage can read them.
    """
    captured: Dict[str, Any] = {}
    for name, capture in captures.items():
        try:
            value = extract_capture(capture, response)
        except ExtractionError as e:
            logger.debug(f"Capture '{name}' dropped: {e}")
            continue
        ctx.set_step(name, value)
        ctx.set_local(name, value)
        captured[name] = value
    return captured


# ==================== Legacy shorthand ====================

def is_extractor(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(_SHORTHAND_PREFIXES)


def extract_by_shorthand(response: HTTPResponse, spec: str) -> Any:
    """`json:<path>`, `header:<name>`, `status` or `body`"""
    if spec.startswith("json:"):
        return extract_json_path(response, spec[len("json:"):])
    if spec.startswith("header:"):
        return extract_header(response, spec[len("header:"):])
    if spec == "status":
        return response.status_code
    if spec == "body":
        return response.body_text
    raise ExtractionError(f"unsupported extractor: {spec}")
