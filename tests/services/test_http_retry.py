import httpx
import pytest

from src.core.exceptions import ProviderError
from src.services.http_retry import BackoffPolicy, error_message, send_with_retry


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(responses: list[httpx.Response | Exception]) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        item = responses[min(len(requests), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


class TestBackoffPolicy:
    async def test_delay_grows_and_caps(self) -> None:
        client, requests = _client([httpx.Response(502)])
        sleep = _RecordingSleep()
        policy = BackoffPolicy(max_attempts=5, base_delay=1.0, backoff_factor=2.0, max_delay=5.0)
        with pytest.raises(ProviderError):
            await send_with_retry(client, "GET", "https://api.test/x", policy=policy, sleep=sleep)
        assert len(requests) == 5
        assert sleep.delays == [1.0, 2.0, 4.0, 5.0]

    async def test_rate_limit_delay_is_capped(self) -> None:
        client, _ = _client([httpx.Response(429), httpx.Response(429), httpx.Response(200, json={})])
        sleep = _RecordingSleep()
        policy = BackoffPolicy(base_delay=1.0, backoff_factor=2.0, max_delay=3.0)
        await send_with_retry(client, "GET", "https://api.test/x", policy=policy, sleep=sleep)
        assert sleep.delays == [2.0, 3.0]

    def test_from_settings_overrides_attempts(self, test_settings) -> None:
        policy = BackoffPolicy.from_settings(test_settings, max_attempts=1)
        assert policy.max_attempts == 1
        assert policy.max_delay == test_settings.http_max_delay


class TestSendWithRetry:
    async def test_success_first_attempt(self) -> None:
        client, requests = _client([httpx.Response(200, json={"ok": True})])
        sleep = _RecordingSleep()
        response = await send_with_retry(client, "GET", "https://api.test/x", policy=BackoffPolicy(), sleep=sleep)
        assert response.json() == {"ok": True}
        assert len(requests) == 1
        assert sleep.delays == []

    async def test_unauthorized_is_not_retried(self) -> None:
        client, requests = _client([httpx.Response(401, json={"error": "bad key"})])
        sleep = _RecordingSleep()
        with pytest.raises(ProviderError) as exc_info:
            await send_with_retry(client, "POST", "https://api.test/x", policy=BackoffPolicy(max_attempts=3), sleep=sleep)
        assert len(requests) == 1
        assert exc_info.value.upstream_status == 401
        assert not exc_info.value.retryable
        assert "Authentication failed" in exc_info.value.message
        assert sleep.delays == []

    async def test_bad_request_is_not_retried(self) -> None:
        client, requests = _client([httpx.Response(400, json={"error": {"message": "bad prompt"}})])
        with pytest.raises(ProviderError) as exc_info:
            await send_with_retry(client, "POST", "https://api.test/x", policy=BackoffPolicy(), sleep=_RecordingSleep())
        assert len(requests) == 1
        assert exc_info.value.message == "bad prompt"

    async def test_server_error_exhausts_attempts(self) -> None:
        client, requests = _client([httpx.Response(500, text="boom")])
        sleep = _RecordingSleep()
        with pytest.raises(ProviderError) as exc_info:
            await send_with_retry(client, "GET", "https://api.test/x", policy=BackoffPolicy(max_attempts=3), sleep=sleep)
        assert len(requests) == 3
        assert exc_info.value.upstream_status == 500
        assert sleep.delays == [1.0, 2.0]

    async def test_recovers_after_server_error(self) -> None:
        client, requests = _client([httpx.Response(503), httpx.Response(200, json={"ok": True})])
        response = await send_with_retry(client, "GET", "https://api.test/x", policy=BackoffPolicy(), sleep=_RecordingSleep())
        assert response.status_code == 200
        assert len(requests) == 2

    async def test_rate_limit_doubles_delay(self) -> None:
        client, requests = _client([httpx.Response(429), httpx.Response(200, json={})])
        sleep = _RecordingSleep()
        await send_with_retry(client, "GET", "https://api.test/x", policy=BackoffPolicy(), sleep=sleep)
        assert len(requests) == 2
        assert sleep.delays == [2.0]

    async def test_transport_error_is_retried(self) -> None:
        client, requests = _client([httpx.ConnectError("refused"), httpx.Response(200, json={})])
        response = await send_with_retry(client, "GET", "https://api.test/x", policy=BackoffPolicy(), sleep=_RecordingSleep())
        assert response.status_code == 200
        assert len(requests) == 2

    async def test_transport_error_exhausted(self) -> None:
        client, requests = _client([httpx.ConnectError("refused")])
        with pytest.raises(ProviderError) as exc_info:
            await send_with_retry(client, "GET", "https://api.test/x", policy=BackoffPolicy(max_attempts=2), sleep=_RecordingSleep())
        assert len(requests) == 2
        assert exc_info.value.upstream_status is None
        assert exc_info.value.retryable


class TestErrorMessage:
    def test_nested_error_message(self) -> None:
        assert error_message(httpx.Response(400, json={"error": {"message": "nope"}})) == "nope"

    def test_plain_error(self) -> None:
        assert error_message(httpx.Response(400, json={"error": "nope"})) == "nope"

    def test_text_body(self) -> None:
        assert error_message(httpx.Response(502, text="gateway down")) == "gateway down"

    def test_empty_body(self) -> None:
        assert error_message(httpx.Response(502)) == "HTTP 502"
