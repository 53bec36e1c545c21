"""Client for the AI content / grading model.

The model is a remote HTTP endpoint that takes a prompt and answers with
text that is supposed to be JSON.  In practice it wraps the JSON in
markdown fences, adds a sentence of prose, or gets cut off mid-array, so
parse_model_json() is deliberately forgiving.  Anything it cannot recover
becomes DownstreamFailure, which the dispatcher treats as retryable.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol, runtime_checkable

import httpx

from studyforge.core.errors import DownstreamFailure

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")


@runtime_checkable
class ContentModel(Protocol):
    async def generate(self, prompt: str) -> Any:
        """Return the model's answer parsed as JSON (dict or list)."""
        ...


class HttpContentModel:
    """POSTs {"prompt": ...} and expects {"output": <text or JSON>}."""

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def generate(self, prompt: str) -> Any:
        try:
            resp = await self._client.post(
                self._url, json={"prompt": prompt}, headers=self._headers
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            raise DownstreamFailure(
                f"AI model returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise DownstreamFailure(f"AI model request failed: {e}") from e

        output = body.get("output") if isinstance(body, dict) else body
        if isinstance(output, (dict, list)):
            return output
        if isinstance(output, str):
            return parse_model_json(output)
        raise DownstreamFailure("AI model response has no output")

    async def aclose(self) -> None:
        await self._client.aclose()


class UnconfiguredContentModel:
    """Stand-in used when AI_API_URL is unset: every call fails downstream."""

    async def generate(self, prompt: str) -> Any:
        raise DownstreamFailure("AI model is not configured (AI_API_URL)")


def parse_model_json(text: str) -> Any:
    """Extract the JSON value from model output.

    Handles markdown fences, leading/trailing prose, trailing commas and an
    array truncated after its last complete object.
    """
    cleaned = text.strip()
    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    first_brace = cleaned.find("{")
    first_bracket = cleaned.find("[")
    if first_brace == -1 and first_bracket == -1:
        raise DownstreamFailure("AI model output contains no JSON")

    if first_bracket == -1 or (first_brace != -1 and first_brace < first_bracket):
        end = cleaned.rfind("}")
        candidate = cleaned[first_brace : end + 1] if end > first_brace else ""
    else:
        end = cleaned.rfind("]")
        if end > first_bracket:
            candidate = cleaned[first_bracket : end + 1]
        else:
            candidate = _repair_truncated_array(cleaned[first_bracket:])

    candidate = _TRAILING_COMMA_RE.sub(r"\1", candidate)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("Unparseable AI output: %.200s", text)
        raise DownstreamFailure(f"AI model output is not valid JSON: {e}") from e


def _repair_truncated_array(partial: str) -> str:
    """Keep every complete top-level object of a cut-off array."""
    depth = 0
    in_string = False
    escaped = False
    last_complete = -1
    for i, ch in enumerate(partial):
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                last_complete = i
    if last_complete == -1:
        return ""
    return partial[: last_complete + 1] + "]"
