"""Tests for the OpenRouter classifier client using a mocked transport."""

import json

import httpx
import pytest

from ledgerlink.services import ClassifierError, OpenRouterClassifier
from ledgerlink.services.openrouter import parse_classification_response
from factories import TransactionFactory


def completion(content) -> dict:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"choices": [{"message": {"content": content}}]}


def make_classifier(handler, **kwargs) -> OpenRouterClassifier:
    return OpenRouterClassifier(
        api_key="test-key",
        base_url="https://openrouter.test/api/v1",
        model="test/model",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestClassifyBatch:
    async def test_success(self):
        records = [TransactionFactory.build(id="t-1", description="UBER *TRIP")]
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json=completion(
                    {
                        "classifications": [
                            {
                                "transaction_id": "t-1",
                                "category": "Transportation",
                                "subcategory": "Rideshare",
                                "confidence": 0.9,
                                "reasoning": "Ride hailing",
                            }
                        ]
                    }
                ),
            )

        verdicts = await make_classifier(handler, categories=["Transportation", "Shopping"]).classify_batch(records)

        assert seen["url"] == "https://openrouter.test/api/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "test/model"
        assert "Categories: Transportation, Shopping" in seen["body"]["messages"][1]["content"]
        assert '"id": "t-1"' in seen["body"]["messages"][1]["content"]
        assert verdicts[0].transaction_id == "t-1"
        assert verdicts[0].subcategory == "Rideshare"

    @pytest.mark.parametrize(("status", "retryable"), [(429, True), (503, True), (400, False), (401, False)])
    async def test_http_errors(self, status, retryable):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="nope")

        with pytest.raises(ClassifierError) as exc_info:
            await make_classifier(handler).classify_batch([TransactionFactory.build()])

        assert exc_info.value.retryable is retryable
        assert str(status) in str(exc_info.value)

    async def test_connection_error_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ClassifierError) as exc_info:
            await make_classifier(handler).classify_batch([TransactionFactory.build()])

        assert exc_info.value.retryable is True

    async def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(ClassifierError):
            await make_classifier(handler).classify_batch([TransactionFactory.build()])

    async def test_missing_api_key(self):
        classifier = OpenRouterClassifier(api_key="")
        with pytest.raises(ClassifierError) as exc_info:
            await classifier.classify_batch([TransactionFactory.build()])
        assert exc_info.value.retryable is False

    async def test_empty_batch_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await make_classifier(handler).classify_batch([]) == []


class TestParseResponse:
    def test_positional_ids(self):
        """GIVEN: Verdicts without transaction ids
        WHEN: Parsing the response
        THEN: Ids are assigned by position"""
        records = [TransactionFactory.build(id="a"), TransactionFactory.build(id="b")]
        data = completion([{"category": "Shopping", "confidence": 0.7}, {"category": "Travel", "confidence": 0.6}])

        verdicts = parse_classification_response(data, records)

        assert [v.transaction_id for v in verdicts] == ["a", "b"]

    def test_invalid_items_are_dropped(self):
        records = [TransactionFactory.build(id="a"), TransactionFactory.build(id="b")]
        data = completion(
            {"classifications": [{"category": "Shopping", "confidence": 7}, {"category": "Travel", "confidence": 0.6}]}
        )

        verdicts = parse_classification_response(data, records)

        assert [(v.transaction_id, v.category) for v in verdicts] == [("b", "Travel")]

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"choices": []},
            completion("not json"),
            completion({"classifications": "nope"}),
        ],
    )
    def test_malformed_bodies(self, data):
        with pytest.raises(ClassifierError):
            parse_classification_response(data, [TransactionFactory.build()])
