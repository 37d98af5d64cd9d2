"""Tests for the management API client."""

import json

import httpx
import pytest
import respx

from space_batcher.client import ManagementClient, TargetEnvironment, asset_payload
from space_batcher.config import TargetSpace
from space_batcher.exceptions import (
    ConflictError,
    NotFoundError,
    RemoteError,
    ServerError,
    TooManyRequestsError,
)
from tests.fixtures.exports import make_asset, make_entry
from tests.fixtures.fakes import FakeEnvironment

BASE = "https://api.contentful.com/spaces/space1/environments/master"


@pytest.fixture
def target():
    return TargetSpace(space_id="space1", management_token="CFPAT-test")


class TestProtocol:
    """Both implementations satisfy TargetEnvironment."""

    def test_client(self, target):
        assert isinstance(ManagementClient(target), TargetEnvironment)

    def test_fake(self):
        assert isinstance(FakeEnvironment(), TargetEnvironment)


class TestRequests:
    """Tests for request construction."""

    async def test_connect_sends_credentials(self, target):
        with respx.mock:
            route = respx.get(BASE).mock(
                return_value=httpx.Response(200, json={"sys": {"id": "master"}})
            )
            async with ManagementClient(target) as client:
                environment = await client.connect()

        assert environment["sys"]["id"] == "master"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer CFPAT-test"
        assert request.headers["Content-Type"] == "application/vnd.contentful.management.v1+json"

    async def test_create_entry_sets_content_type(self, target):
        entry = make_entry("e1", "a1")
        with respx.mock:
            route = respx.put(f"{BASE}/entries/e1").mock(
                return_value=httpx.Response(201, json={"sys": {"id": "e1", "version": 1}})
            )
            async with ManagementClient(target) as client:
                created = await client.create_entry("article", entry)

        assert created["sys"]["version"] == 1
        request = route.calls.last.request
        assert request.headers["X-Contentful-Content-Type"] == "article"
        assert json.loads(request.content) == {"fields": entry["fields"]}

    async def test_publish_sends_version(self, target):
        with respx.mock:
            route = respx.put(f"{BASE}/assets/a1/published").mock(
                return_value=httpx.Response(200, json={"sys": {"id": "a1"}})
            )
            async with ManagementClient(target) as client:
                await client.publish_asset({"sys": {"id": "a1", "version": 3}})

        assert route.calls.last.request.headers["X-Contentful-Version"] == "3"

    async def test_process_returns_nothing_on_empty_body(self, target):
        with respx.mock:
            respx.put(f"{BASE}/assets/a1/files/en-US/process").mock(
                return_value=httpx.Response(204)
            )
            async with ManagementClient(target) as client:
                assert await client.process_asset({"sys": {"id": "a1", "version": 1}}, "en-US") is None

    async def test_collection_paging_params(self, target):
        with respx.mock:
            route = respx.get(f"{BASE}/entries").mock(
                return_value=httpx.Response(200, json={"items": [], "total": 0})
            )
            async with ManagementClient(target) as client:
                await client.get_entries(skip=2000)

        params = route.calls.last.request.url.params
        assert params["limit"] == "1000"
        assert params["skip"] == "2000"

    async def test_response_headers_reach_hook(self, target):
        seen = []
        with respx.mock:
            respx.get(f"{BASE}/locales").mock(
                return_value=httpx.Response(
                    200,
                    json={"items": [{"code": "en-US"}]},
                    headers={"x-contentful-ratelimit-second-remaining": "3"},
                )
            )
            async with ManagementClient(target, on_response=seen.append) as client:
                locales = await client.get_locales()

        assert locales == [{"code": "en-US"}]
        assert seen[0]["x-contentful-ratelimit-second-remaining"] == "3"


class TestErrorMapping:
    """Tests for status code mapping."""

    @pytest.mark.parametrize(
        "status,error_cls",
        [
            (404, NotFoundError),
            (409, ConflictError),
            (500, ServerError),
            (503, ServerError),
            (422, RemoteError),
        ],
    )
    async def test_status(self, target, status, error_cls):
        with respx.mock:
            respx.get(f"{BASE}/entries/e1").mock(
                return_value=httpx.Response(
                    status,
                    json={"sys": {"id": "SomeError"}, "message": "nope", "requestId": "r-1"},
                )
            )
            async with ManagementClient(target) as client:
                with pytest.raises(error_cls) as exc_info:
                    await client.get_entry("e1")

        error = exc_info.value
        assert type(error) is error_cls
        assert error.status_code == status
        assert error.request_id == "r-1"
        assert "GET /spaces/space1/environments/master/entries/e1: nope" in str(error)

    async def test_too_many_requests(self, target):
        with respx.mock:
            respx.put(f"{BASE}/entries/e1").mock(
                return_value=httpx.Response(
                    429,
                    json={"sys": {"id": "RateLimitExceeded"}, "message": "slow down"},
                    headers={"x-contentful-ratelimit-reset": "5"},
                )
            )
            async with ManagementClient(target) as client:
                with pytest.raises(TooManyRequestsError) as exc_info:
                    await client.create_entry("article", make_entry("e1"))

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after_seconds == 5.0

    async def test_non_json_error_body(self, target):
        with respx.mock:
            respx.get(f"{BASE}/assets/a1").mock(
                return_value=httpx.Response(502, text="<html>bad gateway</html>")
            )
            async with ManagementClient(target) as client:
                with pytest.raises(ServerError, match="Bad Gateway"):
                    await client.get_asset("a1")


class TestAssetPayload:
    """Tests for asset_payload."""

    def test_url_becomes_upload(self):
        asset = make_asset("a1")
        payload = asset_payload(asset)
        descriptor = payload["fields"]["file"]["en-US"]
        assert descriptor["upload"] == "https://images.example.net/space/a1/hash/a1.png"
        assert "url" not in descriptor
        assert "details" not in descriptor

    def test_source_is_not_modified(self):
        asset = make_asset("a1")
        asset_payload(asset)
        assert asset["fields"]["file"]["en-US"]["url"].startswith("//")

    def test_existing_upload_kept(self):
        asset = make_asset("a1")
        asset["fields"]["file"]["en-US"] = {
            "upload": "https://uploads.example.net/x.png",
            "fileName": "x.png",
            "contentType": "image/png",
        }
        payload = asset_payload(asset)
        assert payload["fields"]["file"]["en-US"]["upload"] == "https://uploads.example.net/x.png"
