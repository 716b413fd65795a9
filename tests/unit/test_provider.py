"""Tests for emojiforge.core.provider — job model and Replicate client.

HTTP traffic goes through ``httpx.MockTransport`` so no network access is
needed.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from emojiforge.core.errors import ArtifactFetchFailed, ProviderRequestFailed
from emojiforge.core.provider import GenerationJob, JobStatus, ReplicateProvider

API_URL = "https://api.replicate.test/v1"


def _provider(handler) -> ReplicateProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ReplicateProvider(
        api_url=API_URL,
        api_token="secret",
        model_version="v123",
        client=client,
    )


class TestGenerationJob:
    """Prediction bodies collapse into three job states."""

    @pytest.mark.parametrize("raw", ["starting", "processing"])
    def test_in_progress_is_pending(self, raw):
        job = GenerationJob.from_prediction({"id": "p1", "status": raw})
        assert job.status is JobStatus.PENDING
        assert not job.is_terminal

    def test_succeeded_keeps_output(self):
        job = GenerationJob.from_prediction(
            {"id": "p1", "status": "succeeded", "output": ["https://x/img.png"]}
        )
        assert job.status is JobStatus.SUCCEEDED
        assert job.output == ["https://x/img.png"]
        assert job.error is None

    def test_failed_keeps_error(self):
        job = GenerationJob.from_prediction({"id": "p1", "status": "failed", "error": "boom"})
        assert job.status is JobStatus.FAILED
        assert job.error == "boom"
        assert job.output is None

    def test_canceled_is_failed(self):
        job = GenerationJob.from_prediction({"id": "p1", "status": "canceled"})
        assert job.status is JobStatus.FAILED
        assert job.is_terminal
        assert "canceled" in job.error

    def test_unknown_status_is_pending(self):
        job = GenerationJob.from_prediction({"id": "p1", "status": "queued-somewhere"})
        assert job.status is JobStatus.PENDING

    def test_output_ignored_unless_succeeded(self):
        job = GenerationJob.from_prediction(
            {"id": "p1", "status": "processing", "output": ["partial"]}
        )
        assert job.output is None


class TestReplicateProviderSubmit:
    def test_submit_posts_version_and_input(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "pred-1", "status": "starting"})

        job_id = asyncio.run(_provider(handler).submit({"prompt": "A TOK emoji of a cat"}))

        assert job_id == "pred-1"
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{API_URL}/predictions"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "version": "v123",
            "input": {"prompt": "A TOK emoji of a cat"},
        }

    def test_submit_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"detail": "bad input"})

        with pytest.raises(ProviderRequestFailed):
            asyncio.run(_provider(handler).submit({}))

    def test_submit_without_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"status": "starting"})

        with pytest.raises(ProviderRequestFailed):
            asyncio.run(_provider(handler).submit({}))

    @pytest.mark.parametrize("body", [["not", "an", "object"], "pending", None])
    def test_submit_non_object_body(self, body):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        with pytest.raises(ProviderRequestFailed):
            asyncio.run(_provider(handler).submit({}))

    def test_submit_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderRequestFailed):
            asyncio.run(_provider(handler).submit({}))


class TestReplicateProviderGetJob:
    def test_get_job(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == f"{API_URL}/predictions/pred-1"
            return httpx.Response(
                200,
                json={"id": "pred-1", "status": "succeeded", "output": ["https://x/img.png"]},
            )

        job = asyncio.run(_provider(handler).get_job("pred-1"))
        assert job == GenerationJob(
            id="pred-1", status=JobStatus.SUCCEEDED, output=["https://x/img.png"]
        )

    def test_get_job_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>gateway</html>")

        with pytest.raises(ProviderRequestFailed):
            asyncio.run(_provider(handler).get_job("pred-1"))

    def test_get_job_array_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": "pred-1", "status": "succeeded"}])

        with pytest.raises(ProviderRequestFailed):
            asyncio.run(_provider(handler).get_job("pred-1"))


class TestReplicateProviderFetchArtifact:
    def test_fetch_returns_bytes_without_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"image-bytes")

        data = asyncio.run(_provider(handler).fetch_artifact("https://x/img.png"))

        assert data == b"image-bytes"
        assert "Authorization" not in seen[0].headers

    def test_fetch_non_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(ArtifactFetchFailed) as excinfo:
            asyncio.run(_provider(handler).fetch_artifact("https://x/img.png"))
        assert "404" in excinfo.value.message

    def test_fetch_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ArtifactFetchFailed):
            asyncio.run(_provider(handler).fetch_artifact("https://x/img.png"))
