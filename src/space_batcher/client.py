"""
Target backend session.

``TargetEnvironment`` is the set of semantic operations the driver and the
validator need from the target space. ``ManagementClient`` implements it
over the content management REST API with httpx. Resources travel as plain
JSON dictionaries in the export's ``sys``/``fields`` shape.
"""

import copy
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

import httpx

from .config import TargetSpace
from .exceptions import (
    ConflictError,
    NotFoundError,
    RemoteError,
    ServerError,
    TooManyRequestsError,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/vnd.contentful.management.v1+json"
DEFAULT_TIMEOUT = 30.0
MAX_PAGE_SIZE = 1000

# Fields of an exported locale accepted on creation
LOCALE_FIELDS = (
    "name",
    "code",
    "fallbackCode",
    "optional",
    "contentDeliveryApi",
    "contentManagementApi",
)
CONTENT_TYPE_FIELDS = ("name", "description", "displayField", "fields")


@runtime_checkable
class TargetEnvironment(Protocol):
    """
    Operations the migration needs from one target space/environment.

    Implementations raise the RemoteError family, including
    TooManyRequestsError for 429, so callers can tell rate limiting apart
    from other failures.
    """

    async def connect(self) -> dict[str, Any]:
        """Verify credentials and return the environment resource."""
        ...

    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        ...

    # Content model

    async def get_locales(self) -> list[dict[str, Any]]: ...

    async def create_locale(self, locale: dict[str, Any]) -> dict[str, Any]: ...

    async def create_tag(self, tag: dict[str, Any]) -> dict[str, Any]: ...

    async def create_content_type(self, content_type: dict[str, Any]) -> dict[str, Any]: ...

    async def publish_content_type(self, content_type: dict[str, Any]) -> dict[str, Any]: ...

    async def get_editor_interface(self, content_type_id: str) -> dict[str, Any]: ...

    async def update_editor_interface(
        self, editor_interface: dict[str, Any]
    ) -> dict[str, Any]: ...

    # Assets

    async def create_asset(self, asset: dict[str, Any]) -> dict[str, Any]: ...

    async def get_asset(self, asset_id: str) -> dict[str, Any]: ...

    async def process_asset(self, asset: dict[str, Any], locale: str) -> None: ...

    async def publish_asset(self, asset: dict[str, Any]) -> dict[str, Any]: ...

    # Entries

    async def create_entry(
        self, content_type_id: str, entry: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def get_entry(self, entry_id: str) -> dict[str, Any]: ...

    async def publish_entry(self, entry: dict[str, Any]) -> dict[str, Any]: ...

    # Collections (validation)

    async def get_content_types(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]: ...

    async def get_entries(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]: ...

    async def get_assets(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]: ...

    async def get_tags(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]: ...


def asset_payload(asset: dict[str, Any]) -> dict[str, Any]:
    """
    Build the create body for an exported asset.

    Exported file descriptors carry the processed ``url`` of the source
    space. The target has to fetch the binary itself, so each descriptor
    without an ``upload`` gets one pointing at the source URL.
    """
    fields = copy.deepcopy(asset.get("fields") or {})
    for locale, descriptor in (fields.get("file") or {}).items():
        if not isinstance(descriptor, dict) or descriptor.get("upload"):
            continue
        url = descriptor.pop("url", None)
        descriptor.pop("details", None)
        if url:
            descriptor["upload"] = f"https:{url}" if url.startswith("//") else url
        fields["file"][locale] = descriptor

    payload: dict[str, Any] = {"fields": fields}
    if asset.get("metadata"):
        payload["metadata"] = asset["metadata"]
    return payload


def _version(resource: dict[str, Any]) -> str:
    return str(resource["sys"]["version"])


class ManagementClient:
    """
    httpx implementation of TargetEnvironment.

    Args:
        target: Space, environment, token and host
        on_response: Called with the headers of every response; used to feed
            the admission controller's rate-limit clamp
        transport: Optional httpx transport (tests)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        target: TargetSpace,
        *,
        on_response: Callable[[Mapping[str, str]], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.target = target
        self._on_response = on_response
        self.base_url = (
            f"https://{target.host}/spaces/{target.space_id}"
            f"/environments/{target.environment_id}"
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {target.management_token}",
                "Content-Type": CONTENT_TYPE,
            },
            timeout=timeout,
            transport=transport,
            event_hooks={"response": [self._response_hook]},
        )

    async def __aenter__(self) -> "ManagementClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _response_hook(self, response: httpx.Response) -> None:
        if self._on_response is not None:
            self._on_response(response.headers)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._client.request(
            method, path, json=json, params=params, headers=headers
        )
        _raise_for_status(response)
        if not response.content:
            return {}
        return response.json()

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def connect(self) -> dict[str, Any]:
        environment = await self._request("GET", self.base_url)
        logger.info(
            "Connected to space: %s, environment: %s",
            self.target.space_id,
            self.target.environment_id,
        )
        return environment

    # -------------------------------------------------------------------------
    # Content model
    # -------------------------------------------------------------------------

    async def get_locales(self) -> list[dict[str, Any]]:
        collection = await self._request("GET", "/locales")
        return list(collection.get("items", []))

    async def create_locale(self, locale: dict[str, Any]) -> dict[str, Any]:
        body = {k: locale[k] for k in LOCALE_FIELDS if k in locale}
        return await self._request("POST", "/locales", json=body)

    async def create_tag(self, tag: dict[str, Any]) -> dict[str, Any]:
        tag_id = tag["sys"]["id"]
        body = {
            "name": tag.get("name", tag_id),
            "sys": {
                "id": tag_id,
                "type": "Tag",
                "visibility": tag["sys"].get("visibility", "private"),
            },
        }
        return await self._request("PUT", f"/tags/{tag_id}", json=body)

    async def create_content_type(self, content_type: dict[str, Any]) -> dict[str, Any]:
        ct_id = content_type["sys"]["id"]
        body = {k: content_type[k] for k in CONTENT_TYPE_FIELDS if k in content_type}
        return await self._request("PUT", f"/content_types/{ct_id}", json=body)

    async def publish_content_type(self, content_type: dict[str, Any]) -> dict[str, Any]:
        ct_id = content_type["sys"]["id"]
        return await self._request(
            "PUT",
            f"/content_types/{ct_id}/published",
            headers={"X-Contentful-Version": _version(content_type)},
        )

    async def get_editor_interface(self, content_type_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/content_types/{content_type_id}/editor_interface")

    async def update_editor_interface(self, editor_interface: dict[str, Any]) -> dict[str, Any]:
        ct_id = editor_interface["sys"]["contentType"]["sys"]["id"]
        body = {k: editor_interface[k] for k in ("controls", "sidebar") if k in editor_interface}
        return await self._request(
            "PUT",
            f"/content_types/{ct_id}/editor_interface",
            json=body,
            headers={"X-Contentful-Version": _version(editor_interface)},
        )

    # -------------------------------------------------------------------------
    # Assets
    # -------------------------------------------------------------------------

    async def create_asset(self, asset: dict[str, Any]) -> dict[str, Any]:
        asset_id = asset["sys"]["id"]
        return await self._request("PUT", f"/assets/{asset_id}", json=asset_payload(asset))

    async def get_asset(self, asset_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/assets/{asset_id}")

    async def process_asset(self, asset: dict[str, Any], locale: str) -> None:
        asset_id = asset["sys"]["id"]
        await self._request(
            "PUT",
            f"/assets/{asset_id}/files/{locale}/process",
            headers={"X-Contentful-Version": _version(asset)},
        )

    async def publish_asset(self, asset: dict[str, Any]) -> dict[str, Any]:
        asset_id = asset["sys"]["id"]
        return await self._request(
            "PUT",
            f"/assets/{asset_id}/published",
            headers={"X-Contentful-Version": _version(asset)},
        )

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def create_entry(self, content_type_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        entry_id = entry["sys"]["id"]
        body: dict[str, Any] = {"fields": entry.get("fields") or {}}
        if entry.get("metadata"):
            body["metadata"] = entry["metadata"]
        return await self._request(
            "PUT",
            f"/entries/{entry_id}",
            json=body,
            headers={"X-Contentful-Content-Type": content_type_id},
        )

    async def get_entry(self, entry_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/entries/{entry_id}")

    async def publish_entry(self, entry: dict[str, Any]) -> dict[str, Any]:
        entry_id = entry["sys"]["id"]
        return await self._request(
            "PUT",
            f"/entries/{entry_id}/published",
            headers={"X-Contentful-Version": _version(entry)},
        )

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    async def _collection(self, path: str, limit: int, skip: int) -> dict[str, Any]:
        return await self._request("GET", path, params={"limit": limit, "skip": skip})

    async def get_content_types(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]:
        return await self._collection("/content_types", limit, skip)

    async def get_entries(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]:
        return await self._collection("/entries", limit, skip)

    async def get_assets(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]:
        return await self._collection("/assets", limit, skip)

    async def get_tags(self, limit: int = MAX_PAGE_SIZE, skip: int = 0) -> dict[str, Any]:
        return await self._collection("/tags", limit, skip)


def _raise_for_status(response: httpx.Response) -> None:
    """Map an error response onto the RemoteError family."""
    if response.is_success:
        return

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = body.get("message") or response.reason_phrase or "Request failed"
    error_id = (body.get("sys") or {}).get("id")
    request_id = body.get("requestId") or response.headers.get("x-contentful-request-id")
    status = response.status_code
    where = f"{response.request.method} {response.request.url.path}"

    if status == 429:
        reset = response.headers.get("x-contentful-ratelimit-reset")
        raise TooManyRequestsError(
            f"{where}: {message}",
            retry_after_seconds=float(reset) if reset and reset.isdigit() else None,
            request_id=request_id,
            details=body,
        )

    error_cls: type[RemoteError] = RemoteError
    if status == 404:
        error_cls = NotFoundError
    elif status == 409:
        error_cls = ConflictError
    elif status >= 500:
        error_cls = ServerError
    raise error_cls(
        f"{where}: {message}",
        status,
        error_id=error_id,
        request_id=request_id,
        details=body,
    )
