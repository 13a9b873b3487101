"""Extraction client for the local Ollama inference endpoint.

Sends the fixed receipt prompt to /api/generate and parses the first JSON
object out of the free-form response.

Privacy Constraints:
- Never log prompts or raw receipt content at INFO level
- Remote Ollama: auth header support, no PII in logs
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import LLMConfig
from ..errors import ExtractionError
from ..schemas.extraction import Classification
from .prompts import ReceiptExtractionPrompt

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Classification and structured fields returned for one receipt."""

    classification: Classification
    confidence: float
    data: dict[str, Any] = field(default_factory=dict)
    model: str = ""

    def data_json(self) -> str:
        """Serialized extracted data as stored on the review item."""
        return json.dumps(self.data)


def parse_extraction_response(content: str) -> dict:
    """Locate and parse the JSON object in a model response.

    Takes the substring from the first "{" to the last "}" inclusive. The
    model may wrap the object in prose or code fences; a response containing
    several unrelated objects can still mis-parse.

    Args:
        content: Raw generated text.

    Returns:
        Parsed JSON object.

    Raises:
        ExtractionError: If no braces are found or the substring is not a JSON object.
    """
    start = content.find("{") if content else -1
    end = content.rfind("}") if content else -1
    if start == -1 or end == -1 or end < start:
        raise ExtractionError("No JSON found in Ollama response", raw_response=content)

    try:
        parsed = json.loads(content[start : end + 1])
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Failed to parse LLM JSON: {e}", raw_response=content) from e

    if not isinstance(parsed, dict):
        raise ExtractionError("LLM JSON is not an object", raw_response=content)
    return parsed


def build_extraction_result(parsed: dict, model: str = "") -> ExtractionResult:
    """Validate the parsed object's `type`, `confidence` and `data` fields.

    Junk responses may omit `data`; it defaults to an empty object. A
    confidence outside [0.0, 1.0] is clamped.

    Raises:
        ExtractionError: If a field is missing or has the wrong type.
    """
    raw_type = parsed.get("type")
    try:
        classification = Classification(str(raw_type).strip().lower())
    except ValueError as e:
        raise ExtractionError(f"Unknown classification {raw_type!r} in LLM response") from e

    raw_confidence = parsed.get("confidence")
    if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, (int, float, str)):
        raise ExtractionError(f"Invalid confidence {raw_confidence!r} in LLM response")
    try:
        confidence = float(raw_confidence)
    except (ValueError, OverflowError) as e:
        raise ExtractionError(f"Invalid confidence {raw_confidence!r} in LLM response") from e
    if math.isnan(confidence):
        raise ExtractionError("Confidence is NaN in LLM response")
    if not 0.0 <= confidence <= 1.0:
        logger.warning("Clamping out-of-range confidence %s", confidence)
        confidence = min(max(confidence, 0.0), 1.0)

    data = parsed.get("data")
    if data is None and classification is Classification.JUNK:
        data = {}
    if not isinstance(data, dict):
        raise ExtractionError(
            f"Missing or invalid 'data' object for {classification.value} classification"
        )

    return ExtractionResult(
        classification=classification,
        confidence=confidence,
        data=data,
        model=model,
    )


class OllamaExtractionClient:
    """Receipt classifier backed by an Ollama server.

    Messages are processed one at a time; the client holds a single
    connection pool and never issues concurrent requests.
    """

    def __init__(self, config: LLMConfig, client: httpx.Client | None = None) -> None:
        """Initialize the client.

        Args:
            config: LLM configuration (endpoint, model, timeout, auth).
            client: Optional preconfigured httpx client.
        """
        self.config = config
        self.base_url = config.ollama_url.rstrip("/")
        self._prompt = ReceiptExtractionPrompt()

        headers = {}
        if config.auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in config.auth_header:
                key, value = config.auth_header.split(":", 1)
                headers[key.strip()] = value.strip()
            else:
                headers["Authorization"] = config.auth_header

        # Inference may be slow; only the read timeout follows the config
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
        )

    @property
    def model(self) -> str:
        return self.config.model

    def list_models(self) -> list[str]:
        """Return the model names available on the server.

        Raises:
            ExtractionError: If the server cannot be reached or answers badly.
        """
        url = f"{self.base_url}/api/tags"
        try:
            response = self._client.get(url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise ExtractionError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise ExtractionError(f"Failed to parse Ollama response: {e}") from e

        return [m["name"] for m in payload.get("models", []) if isinstance(m, dict) and "name" in m]

    def generate(self, prompt: str) -> str:
        """Run one non-streaming completion and return the generated text.

        Raises:
            ExtractionError: On timeout, HTTP error or malformed response body.
        """
        url = f"{self.base_url}/api/generate"
        payload = {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
        }

        logger.debug("Calling Ollama model %s at %s", self.config.model, self.base_url)
        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise ExtractionError(
                f"Ollama request timed out after {self.config.timeout_seconds}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise ExtractionError(
                f"Ollama API error {e.response.status_code} for model '{self.config.model}'"
            ) from e
        except httpx.HTTPError as e:
            raise ExtractionError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise ExtractionError(f"Failed to parse Ollama response: {e}") from e

        text = body.get("response") if isinstance(body, dict) else None
        if not isinstance(text, str):
            raise ExtractionError("Ollama response has no 'response' text")

        logger.debug("Ollama %s returned %d chars", self.config.model, len(text))
        return text

    def extract_receipt_data(self, markdown_content: str) -> ExtractionResult:
        """Classify a receipt and extract its structured fields.

        Args:
            markdown_content: Converted receipt text.

        Returns:
            ExtractionResult with classification, confidence and data.

        Raises:
            ExtractionError: If the request fails or the response holds no
                valid extraction object.
        """
        prompt = self._prompt.format(markdown_content)
        response_text = self.generate(prompt)
        parsed = parse_extraction_response(response_text)
        result = build_extraction_result(parsed, model=self.config.model)
        logger.debug(
            "Extraction: %s (confidence %.2f)", result.classification.value, result.confidence
        )
        return result

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> OllamaExtractionClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()
