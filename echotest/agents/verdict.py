"""Extraction of the final pass/fail verdict from model text."""

import json
import re

from pydantic import ValidationError

from echotest.core.types import Verdict
from echotest.error_handling.exceptions import InvalidResponseError

# Non-greedy: each flat {...} span counts as one candidate object.
JSON_OBJECT_PATTERN = re.compile(r"{[\s\S]*?}")

_STATUS_ALIASES = {"pass": "passed", "fail": "failed"}


def parse_verdict(text: str) -> Verdict:
    """
    Parse exactly one JSON verdict object out of ``text``.

    Raises:
        InvalidResponseError: No object, more than one object, malformed
            JSON, or a payload that does not match the verdict shape
    """
    matches = JSON_OBJECT_PATTERN.findall(text or "")
    if not matches:
        raise InvalidResponseError("Model did not return a JSON verdict.", response=text)
    if len(matches) > 1:
        raise InvalidResponseError(
            "Ambiguous JSON: multiple JSON objects found.", response=text
        )

    try:
        payload = json.loads(matches[0])
    except json.JSONDecodeError as exc:
        raise InvalidResponseError(
            f"Verdict is not valid JSON: {exc.msg}", response=text, cause=exc
        ) from exc

    if isinstance(payload, dict) and isinstance(payload.get("status"), str):
        status = payload["status"].strip().lower()
        payload["status"] = _STATUS_ALIASES.get(status, status)

    try:
        return Verdict.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "root" for err in exc.errors())
        raise InvalidResponseError(
            f"Invalid verdict payload ({fields}).", response=text, cause=exc
        ) from exc
