"""Tests for the compute backend clients (Pixio HTTP API and Replicate SDK)."""

import json
from types import SimpleNamespace

import httpx
import pytest
from replicate.exceptions import ReplicateError

from mediagen.models.generation_job import GenerationMode
from mediagen.services.compute.base import RunState
from mediagen.services.compute.pixio_client import PixioClient, extract_output_url, map_status
from mediagen.services.compute.replicate_client import ReplicateBackend, classify_error
from mediagen.services.exceptions import (
    DispatchError,
    PermanentError,
    TransientError,
    TransientPollError,
)

API_URL = "https://pixio.test/api/run"
DEPLOYMENTS = {
    GenerationMode.IMAGE: "dep-image",
    GenerationMode.VIDEO: "dep-video",
}


def pixio_client(handler) -> PixioClient:
    return PixioClient(API_URL, "pixio-key", DEPLOYMENTS, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
class TestPixioStart:
    async def test_start_posts_deployment_and_inputs(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"run_id": "run-42"})

        run_id = await pixio_client(handler).start(GenerationMode.IMAGE, {"prompt": "a fox"})

        assert run_id == "run-42"
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == API_URL
        assert request.headers["authorization"] == "Bearer pixio-key"
        assert json.loads(request.content) == {
            "deployment_id": "dep-image",
            "inputs": {"prompt": "a fox"},
        }

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="boom"),
            httpx.Response(401, text="bad key"),
            httpx.Response(200, json={"status": "queued"}),
            httpx.Response(200, text="not json"),
        ],
    )
    async def test_start_failures_raise_dispatch_error(self, response):
        client = pixio_client(lambda request: response)

        with pytest.raises(DispatchError):
            await client.start(GenerationMode.IMAGE, {"prompt": "a fox"})

    async def test_start_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DispatchError, match="network error"):
            await pixio_client(handler).start(GenerationMode.IMAGE, {"prompt": "a fox"})

    async def test_start_unconfigured_mode(self):
        client = pixio_client(lambda request: httpx.Response(200, json={"run_id": "x"}))

        with pytest.raises(DispatchError, match="No deployment configured"):
            await client.start(GenerationMode.FIRST_LAST_FRAME_VIDEO, {"prompt": "a fox"})


@pytest.mark.asyncio
class TestPixioStatus:
    async def test_success_with_image_output(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["run_id"] == "run-42"
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "outputs": [{"data": {"images": [{"url": "https://cdn.test/a.png"}]}}],
                },
            )

        status = await pixio_client(handler).get_status("run-42")

        assert status.state == RunState.SUCCEEDED
        assert status.raw_status == "success"
        assert status.output_url == "https://cdn.test/a.png"

    async def test_failed_status_carries_error(self):
        client = pixio_client(
            lambda request: httpx.Response(200, json={"status": "failed", "error": "OOM"})
        )

        status = await client.get_status("run-42")

        assert status.state == RunState.FAILED
        assert status.error == "OOM"

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(503, text="unavailable"), httpx.Response(200, text="<html>")],
    )
    async def test_bad_responses_are_transient(self, response):
        with pytest.raises(TransientPollError):
            await pixio_client(lambda request: response).get_status("run-42")


class TestPixioParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("queued", RunState.RUNNING),
            ("not-started", RunState.RUNNING),
            ("uploading", RunState.RUNNING),
            ("success", RunState.SUCCEEDED),
            ("complete", RunState.SUCCEEDED),
            ("failed", RunState.FAILED),
            ("cancelled", RunState.UNKNOWN),
            (None, RunState.UNKNOWN),
        ],
    )
    def test_map_status(self, raw, expected):
        assert map_status(raw) == expected

    def test_extract_output_url_first_hit_wins(self):
        payload = {
            "outputs": [
                {"data": {"text": ["ignored"]}},
                {"data": {"videos": [{"url": "https://cdn.test/v.mp4"}]}},
                {"data": {"images": [{"url": "https://cdn.test/i.png"}]}},
            ]
        }
        assert extract_output_url(payload) == "https://cdn.test/v.mp4"

    def test_extract_output_url_none(self):
        assert extract_output_url({"outputs": [{"data": {}}]}) is None
        assert extract_output_url({}) is None


class TestClassifyError:
    """Replicate error classification, retry category by message and type."""

    @pytest.mark.parametrize(
        "exception, expected_type",
        [
            (Exception("Request timeout"), TransientError),
            (TimeoutError("read"), TransientError),
            (Exception("HTTP 429: Too Many Requests"), TransientError),
            (Exception("503 Service Unavailable"), TransientError),
            (ConnectionError("reset by peer"), TransientError),
            (Exception("401 Unauthorized"), PermanentError),
            (Exception("Invalid API token"), PermanentError),
            (Exception("NSFW content detected"), PermanentError),
            (Exception("input is malformed"), PermanentError),
        ],
    )
    def test_classification(self, exception, expected_type):
        assert isinstance(classify_error(exception), expected_type)


class FakeReplicateClient:
    """Stands in for replicate.Client: deployments.get(...).predictions.create / predictions.get."""

    def __init__(self, prediction=None, error: Exception | None = None):
        self.prediction = prediction
        self.error = error
        self.created: list[tuple[str, dict]] = []
        self.deployments = SimpleNamespace(get=self._get_deployment)
        self.predictions = SimpleNamespace(get=self._get_prediction)

    def _get_deployment(self, name):
        def create(input):
            if self.error:
                raise self.error
            self.created.append((name, input))
            return self.prediction

        return SimpleNamespace(predictions=SimpleNamespace(create=create))

    def _get_prediction(self, run_id):
        if self.error:
            raise self.error
        return self.prediction


@pytest.mark.asyncio
class TestReplicateBackend:
    async def test_start_creates_prediction(self):
        client = FakeReplicateClient(prediction=SimpleNamespace(id="pred-1"))
        backend = ReplicateBackend("token", {GenerationMode.IMAGE: "acme/flux"}, client=client)

        run_id = await backend.start(GenerationMode.IMAGE, {"prompt": "a fox"})

        assert run_id == "pred-1"
        assert client.created == [("acme/flux", {"prompt": "a fox"})]

    async def test_start_error_becomes_dispatch_error(self):
        client = FakeReplicateClient(error=ReplicateError("401 Unauthorized"))
        backend = ReplicateBackend("token", {GenerationMode.IMAGE: "acme/flux"}, client=client)

        with pytest.raises(DispatchError, match="Authentication failed"):
            await backend.start(GenerationMode.IMAGE, {"prompt": "a fox"})

    @pytest.mark.parametrize(
        "prediction, state, output_url",
        [
            (SimpleNamespace(status="starting", output=None, error=None), RunState.RUNNING, None),
            (
                SimpleNamespace(status="succeeded", output=["https://r.test/out.png"], error=None),
                RunState.SUCCEEDED,
                "https://r.test/out.png",
            ),
            (SimpleNamespace(status="canceled", output=None, error=None), RunState.FAILED, None),
            (SimpleNamespace(status="weird", output=None, error=None), RunState.UNKNOWN, None),
        ],
    )
    async def test_status_mapping(self, prediction, state, output_url):
        backend = ReplicateBackend("token", {}, client=FakeReplicateClient(prediction=prediction))

        status = await backend.get_status("pred-1")

        assert status.state == state
        assert status.output_url == output_url

    async def test_transient_status_error(self):
        client = FakeReplicateClient(error=ConnectionError("reset by peer"))
        backend = ReplicateBackend("token", {}, client=client)

        with pytest.raises(TransientPollError):
            await backend.get_status("pred-1")

    async def test_permanent_status_error(self):
        client = FakeReplicateClient(error=ReplicateError("403 Forbidden"))
        backend = ReplicateBackend("token", {}, client=client)

        with pytest.raises(PermanentError) as exc_info:
            await backend.get_status("pred-1")
        assert not isinstance(exc_info.value, TransientError)
