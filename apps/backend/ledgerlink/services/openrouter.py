"""OpenRouter-backed transaction classifier."""

import json
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from ledgerlink.config import settings
from ledgerlink.logger import get_logger, log_external_api
from ledgerlink.prompts import SYSTEM_PROMPT, get_classification_prompt
from ledgerlink.schemas.classification import AIClassification
from ledgerlink.schemas.transaction import Transaction

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class ClassifierError(Exception):
    """Raised when the AI classifier cannot produce verdicts."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def parse_classification_response(
    data: dict[str, Any], records: Sequence[Transaction]
) -> list[AIClassification]:
    """Extract verdicts from a chat completion body.

    Verdicts without a ``transaction_id`` are assigned to records by position.
    """
    try:
        content = data["choices"][0]["message"]["content"]
        parsed = json.loads(content) if isinstance(content, str) else content
        items = parsed["classifications"] if isinstance(parsed, dict) else parsed
    except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
        raise ClassifierError(f"Malformed classifier response: {e}") from e

    if not isinstance(items, list):
        raise ClassifierError("Classifier response has no classification list")

    verdicts: list[AIClassification] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        if not item.get("transaction_id") and position < len(records):
            item = {**item, "transaction_id": records[position].id}
        try:
            verdicts.append(AIClassification.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Dropping invalid classification",
                transaction_id=item.get("transaction_id"),
                error=str(e),
                error_type=type(e).__name__,
            )
    return verdicts


class OpenRouterClassifier:
    """Classifies batches of transactions with one chat completion per batch."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        categories: Sequence[str] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.base_url = base_url or settings.openrouter_base_url
        self.model = model or settings.primary_model
        self.categories = list(categories) if categories else None
        self.timeout = timeout or settings.openrouter_timeout_seconds
        self._transport = transport

    @log_external_api("openrouter")
    async def classify_batch(self, records: Sequence[Transaction]) -> list[AIClassification]:
        if not records:
            return []
        if not self.api_key:
            raise ClassifierError("OpenRouter API key not configured", retryable=False)

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": get_classification_prompt(records, self.categories)},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "ledgerlink",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions", headers=headers, json=payload
                )
        except httpx.HTTPError as e:
            raise ClassifierError(f"OpenRouter request failed: {e}", retryable=True) from e

        if response.status_code != 200:
            raise ClassifierError(
                f"HTTP {response.status_code}: {response.text}",
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ClassifierError("OpenRouter returned a non-JSON body") from e

        verdicts = parse_classification_response(data, records)
        logger.info(
            "Batch classified",
            model=self.model,
            requested=len(records),
            returned=len(verdicts),
        )
        return verdicts
