"""Unit tests for FetchClient request building and the attempt loop."""

import asyncio
import json
from typing import Dict, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import BaseModel

from fetchkit.client import Configuration, FetchClient
from fetchkit.exceptions import (
    ConfigurationError,
    DecodingFailedError,
    InvalidURLError,
    MissingKeyPathError,
    RequestFailedError,
    StatusCodeError,
)
from fetchkit.models import CachePolicy, HTTPMethod, Request, Response
from fetchkit.utils.http import Interceptor, RetryPolicy, TransportErrorCode


class User(BaseModel):
    id: int
    name: str


class CountingHandler:
    """MockTransport handler replying from a list of (status, body) pairs."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests: List[httpx.Request] = []

    def __call__(self, request):
        self.requests.append(request)
        status, body = self.replies[min(len(self.requests), len(self.replies)) - 1]
        return httpx.Response(status, content=body)


def _client(transport, recording_sleep=None, **config):
    config.setdefault("base_url", "https://api.example.com")
    return FetchClient(
        Configuration(transport=transport, **config), sleep=recording_sleep
    )


class TestConfiguration:
    def test_relative_base_url_rejected(self):
        with pytest.raises(ConfigurationError):
            Configuration(base_url="/api")

    def test_is_immutable(self):
        config = Configuration(default_headers={"A": "1"})
        with pytest.raises(TypeError):
            config.default_headers["B"] = "2"
        with pytest.raises(AttributeError):
            config.base_url = "https://other.example.com"

    def test_source_mapping_copied(self):
        headers = {"A": "1"}
        config = Configuration(default_headers=headers)
        headers["A"] = "2"
        assert config.default_headers["A"] == "1"


class TestBuildRequest:
    def test_url_and_query(self):
        client = FetchClient(
            Configuration(base_url="https://api.example.com", default_query={"locale": "en"})
        )
        built = client.build_request(Request("/users"), {"page": "1"})
        assert str(built.url) == "https://api.example.com/users?locale=en&page=1"

    def test_query_override_wins(self):
        client = FetchClient(
            Configuration(base_url="https://api.example.com", default_query={"locale": "en"})
        )
        built = client.build_request(Request("/users"), {"locale": "fr"})
        assert built.url.params["locale"] == "fr"
        assert str(built.url).count("locale=") == 1

    def test_request_headers_override_defaults_case_insensitively(self):
        client = FetchClient(
            Configuration(
                base_url="https://api.example.com",
                default_headers={"Accept": "application/json", "X-App": "demo"},
            )
        )
        built = client.build_request(Request("/", headers={"accept": "text/plain"}))
        assert built.headers["Accept"] == "text/plain"
        assert built.headers["X-App"] == "demo"

    def test_body_wins_over_stream(self):
        client = FetchClient(Configuration(base_url="https://api.example.com"))
        built = client.build_request(
            Request("/", HTTPMethod.POST, body=b"eager", body_stream=[b"lazy"])
        )
        assert built.content == b"eager"

    def test_timeout_and_cache_policy(self):
        client = FetchClient(Configuration(base_url="https://api.example.com"))
        built = client.build_request(
            Request("/", timeout=2.5, cache_policy=CachePolicy.RELOAD_IGNORING_CACHE)
        )
        assert built.extensions["timeout"]["read"] == 2.5
        assert built.headers["Cache-Control"] == "no-cache"

    def test_explicit_cache_control_kept(self):
        client = FetchClient(Configuration(base_url="https://api.example.com"))
        built = client.build_request(
            Request(
                "/",
                headers={"Cache-Control": "max-age=0"},
                cache_policy=CachePolicy.RETURN_CACHE_DATA_DONT_LOAD,
            )
        )
        assert built.headers["Cache-Control"] == "max-age=0"

    def test_protocol_policy_sends_nothing(self):
        client = FetchClient(Configuration(base_url="https://api.example.com"))
        built = client.build_request(
            Request("/", cache_policy=CachePolicy.USE_PROTOCOL_CACHE_POLICY)
        )
        assert "cache-control" not in built.headers

    def test_relative_without_base(self):
        client = FetchClient(Configuration())
        with pytest.raises(InvalidURLError):
            client.build_request(Request("/users"))


class TestPerform:
    @pytest.mark.asyncio
    async def test_retries_until_success(self, make_transport, recording_sleep):
        handler = CountingHandler([(503, b""), (503, b""), (200, b"{}")])
        client = _client(
            make_transport(handler),
            recording_sleep,
            retry_policy=RetryPolicy(enabled=True, max_retries=2),
        )

        response = await client.perform(Request("/flaky"))

        assert response.status_code == 200
        assert len(handler.requests) == 3
        assert recording_sleep.delays == pytest.approx([0.2, 0.4])
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, make_transport, recording_sleep):
        handler = CountingHandler([(503, b"busy")])
        client = _client(
            make_transport(handler),
            recording_sleep,
            retry_policy=RetryPolicy(enabled=True, max_retries=2),
        )

        with pytest.raises(StatusCodeError) as exc_info:
            await client.perform(Request("/flaky"))

        assert exc_info.value.status_code == 503
        assert exc_info.value.body == b"busy"
        assert len(handler.requests) == 3
        await client.aclose()

    @pytest.mark.asyncio
    async def test_disabled_retry_single_attempt(self, make_transport, recording_sleep):
        handler = CountingHandler([(503, b"")])
        client = _client(make_transport(handler), recording_sleep)

        with pytest.raises(StatusCodeError):
            await client.perform(Request("/flaky"))

        assert len(handler.requests) == 1
        assert recording_sleep.delays == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_retryable_status_not_retried(self, make_transport, recording_sleep):
        handler = CountingHandler([(404, b"")])
        client = _client(
            make_transport(handler),
            recording_sleep,
            retry_policy=RetryPolicy(enabled=True, max_retries=3),
        )

        with pytest.raises(StatusCodeError):
            await client.perform(Request("/missing"))

        assert len(handler.requests) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure_retried(self, make_transport, recording_sleep):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectTimeout("slow", request=request)
            return httpx.Response(200, content=b"ok")

        client = _client(
            make_transport(handler),
            recording_sleep,
            retry_policy=RetryPolicy(enabled=True),
        )

        response = await client.perform(Request("/"))

        assert response.data == b"ok"
        assert calls["n"] == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unknown_transport_failure_not_retried(
        self, make_transport, recording_sleep
    ):
        def handler(request):
            raise RuntimeError("kaboom")

        client = _client(
            make_transport(handler),
            recording_sleep,
            retry_policy=RetryPolicy(enabled=True),
        )

        with pytest.raises(RequestFailedError) as exc_info:
            await client.perform(Request("/"))

        assert exc_info.value.error_code == TransportErrorCode.UNKNOWN
        assert recording_sleep.delays == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_build_errors_not_observed(self, make_transport):
        observed = []

        class Observer(Interceptor):
            async def observe(self, result, request):
                observed.append(result)

        handler = CountingHandler([(200, b"")])
        client = FetchClient(
            Configuration(
                transport=make_transport(handler),
                interceptors=[Observer()],
                retry_policy=RetryPolicy(enabled=True),
            )
        )

        with pytest.raises(InvalidURLError):
            await client.perform(Request("/no-base"))

        assert observed == []
        assert handler.requests == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_interceptors_see_every_attempt(self, make_transport, recording_sleep):
        events = []

        class Recorder(Interceptor):
            async def adapt(self, request):
                events.append("adapt")
                request.headers["X-Signed"] = "yes"
                return request

            async def observe(self, result, request):
                events.append(getattr(result, "status_code", None))

        handler = CountingHandler([(500, b""), (200, b"")])
        client = _client(
            make_transport(handler),
            recording_sleep,
            interceptors=[Recorder()],
            retry_policy=RetryPolicy(enabled=True),
        )

        await client.perform(Request("/"))

        assert events == ["adapt", 500, "adapt", 200]
        assert all(r.headers["X-Signed"] == "yes" for r in handler.requests)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_adapt_failure_observed_and_raised(self, make_transport):
        observed = []

        class Broken(Interceptor):
            async def adapt(self, request):
                raise RuntimeError("cannot sign")

            async def observe(self, result, request):
                observed.append(result)

        handler = CountingHandler([(200, b"")])
        client = _client(make_transport(handler), interceptors=[Broken()])

        with pytest.raises(RequestFailedError):
            await client.perform(Request("/"))

        assert len(observed) == 1
        assert isinstance(observed[0], RequestFailedError)
        assert handler.requests == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_metrics_handler_called_per_attempt(
        self, make_transport, recording_sleep
    ):
        metrics = []

        def on_attempt(request, response, error, elapsed):
            metrics.append((response is not None, error is not None, elapsed >= 0))

        handler = CountingHandler([(502, b""), (200, b"")])
        client = _client(
            make_transport(handler),
            recording_sleep,
            metrics_handler=on_attempt,
            retry_policy=RetryPolicy(enabled=True),
        )

        await client.perform(Request("/"))

        assert metrics == [(False, True, True), (True, False, True)]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_metrics_handler_failure_ignored(self, make_transport):
        def broken(request, response, error, elapsed):
            raise RuntimeError("statsd down")

        client = _client(
            make_transport(CountingHandler([(200, b"ok")])), metrics_handler=broken
        )

        response = await client.perform(Request("/"))

        assert response.data == b"ok"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_mock_transport_protocol(self):
        transport = MagicMock()
        transport.send = AsyncMock(return_value=httpx.Response(200, content=b"hi"))
        metrics = MagicMock()
        client = _client(transport, metrics_handler=metrics)

        response = await client.perform(Request("/hello"))

        assert response.data == b"hi"
        sent = transport.send.await_args.args[0]
        assert str(sent.url) == "https://api.example.com/hello"
        assert metrics.call_count == 1

    @pytest.mark.asyncio
    async def test_streamed_body_resent_on_retry(self, make_transport, recording_sleep):
        bodies = []

        async def handler(request):
            bodies.append(await request.aread())
            return httpx.Response(503 if len(bodies) == 1 else 200)

        client = _client(
            make_transport(handler),
            recording_sleep,
            retry_policy=RetryPolicy(enabled=True),
        )

        await client.perform(
            Request(
                "/upload",
                HTTPMethod.PUT,
                body_stream=lambda: iter([b"a", b"b"]),
                content_length=2,
            )
        )

        assert bodies == [b"ab", b"ab"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, make_transport):
        async def handler(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        client = _client(make_transport(handler))
        task = asyncio.ensure_future(client.perform(Request("/")))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await client.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_performs_are_independent(self, make_transport):
        def handler(request):
            return httpx.Response(200, content=request.url.path.encode())

        client = _client(make_transport(handler))

        responses = await asyncio.gather(
            *(client.perform(Request(f"/item/{i}")) for i in range(5))
        )

        assert [r.data for r in responses] == [f"/item/{i}".encode() for i in range(5)]
        await client.aclose()


class TestDecode:
    def _response(self, payload):
        return Response(data=json.dumps(payload).encode(), status_code=200)

    def test_decode(self):
        client = FetchClient()
        user = client.decode_json(User, self._response({"id": 1, "name": "a"}))
        assert user.name == "a"

    def test_decode_failure(self):
        client = FetchClient()
        with pytest.raises(DecodingFailedError):
            client.decode_json(User, self._response({"id": "x"}))

    def test_key_path_string(self):
        client = FetchClient()
        users = client.decode_json(
            List[User], self._response({"data": [{"id": 1, "name": "a"}]}), key_path="data"
        )
        assert users == [User(id=1, name="a")]

    def test_key_path_missing(self):
        client = FetchClient()
        with pytest.raises(MissingKeyPathError) as exc_info:
            client.decode_json(dict, self._response({"data": {}}), key_path=["missing"])
        assert exc_info.value.path == ["missing"]

    def test_transform(self):
        client = FetchClient()
        value = client.decode_json(
            Dict[str, int],
            self._response({"envelope": {"a": 1}}),
            transform=lambda data: json.dumps(json.loads(data)["envelope"]).encode(),
        )
        assert value == {"a": 1}

    def test_transform_and_key_path_exclusive(self):
        client = FetchClient()
        with pytest.raises(ValueError):
            client.decode_json(
                dict, self._response({}), transform=lambda d: d, key_path="x"
            )
