"""In-memory stand-ins for the clock and the target environment."""

import copy
from typing import Any

from space_batcher.exceptions import NotFoundError


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEnvironment:
    """
    In-memory TargetEnvironment.

    ``errors`` maps ``(operation, item_id)`` to an exception raised by that
    call; ``item_id=None`` matches every call of the operation. Assets listed
    in ``stuck_assets`` never finish processing.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []
        self.errors: dict[tuple[str, str | None], Exception] = {}
        self.stuck_assets: set[str] = set()
        self.locales: list[dict[str, Any]] = [{"code": "en-US", "name": "English"}]
        self.tags: dict[str, dict[str, Any]] = {}
        self.content_types: dict[str, dict[str, Any]] = {}
        self.editor_interfaces: dict[str, dict[str, Any]] = {}
        self.assets: dict[str, dict[str, Any]] = {}
        self.entries: dict[str, dict[str, Any]] = {}
        self.published: set[str] = set()
        self.connected = 0
        self.closed = 0

    def _record(self, operation: str, item_id: str | None = None) -> None:
        self.calls.append((operation, item_id))
        error = self.errors.get((operation, item_id)) or self.errors.get((operation, None))
        if error is not None:
            raise error

    def count(self, operation: str, item_id: str | None = None) -> int:
        return sum(
            1 for op, i in self.calls if op == operation and (item_id is None or i == item_id)
        )

    @staticmethod
    def _versioned(resource: dict[str, Any], version: int = 1) -> dict[str, Any]:
        stored = copy.deepcopy(resource)
        stored["sys"] = {**stored.get("sys", {}), "version": version}
        return stored

    async def connect(self) -> dict[str, Any]:
        self._record("connect")
        self.connected += 1
        return {"sys": {"id": "master"}}

    async def close(self) -> None:
        self.closed += 1

    async def get_locales(self) -> list[dict[str, Any]]:
        self._record("get_locales")
        return list(self.locales)

    async def create_locale(self, locale: dict[str, Any]) -> dict[str, Any]:
        self._record("create_locale", locale["code"])
        self.locales.append(dict(locale))
        return dict(locale)

    async def create_tag(self, tag: dict[str, Any]) -> dict[str, Any]:
        self._record("create_tag", tag["sys"]["id"])
        self.tags[tag["sys"]["id"]] = tag
        return tag

    async def create_content_type(self, content_type: dict[str, Any]) -> dict[str, Any]:
        ct_id = content_type["sys"]["id"]
        self._record("create_content_type", ct_id)
        self.content_types[ct_id] = self._versioned(content_type)
        return self.content_types[ct_id]

    async def publish_content_type(self, content_type: dict[str, Any]) -> dict[str, Any]:
        self._record("publish_content_type", content_type["sys"]["id"])
        self.published.add(content_type["sys"]["id"])
        return content_type

    async def get_editor_interface(self, content_type_id: str) -> dict[str, Any]:
        self._record("get_editor_interface", content_type_id)
        return {
            "sys": {"id": "default", "version": 1, "contentType": {"sys": {"id": content_type_id}}},
            "controls": [],
        }

    async def update_editor_interface(self, editor_interface: dict[str, Any]) -> dict[str, Any]:
        ct_id = editor_interface["sys"]["contentType"]["sys"]["id"]
        self._record("update_editor_interface", ct_id)
        self.editor_interfaces[ct_id] = editor_interface
        return editor_interface

    async def create_asset(self, asset: dict[str, Any]) -> dict[str, Any]:
        asset_id = asset["sys"]["id"]
        self._record("create_asset", asset_id)
        stored = self._versioned(asset)
        for descriptor in (stored.get("fields") or {}).get("file", {}).values():
            descriptor.pop("url", None)
        self.assets[asset_id] = stored
        return copy.deepcopy(stored)

    async def get_asset(self, asset_id: str) -> dict[str, Any]:
        self._record("get_asset", asset_id)
        if asset_id not in self.assets:
            raise NotFoundError(f"Asset {asset_id} not found", 404)
        return copy.deepcopy(self.assets[asset_id])

    async def process_asset(self, asset: dict[str, Any], locale: str) -> None:
        asset_id = asset["sys"]["id"]
        self._record("process_asset", asset_id)
        if asset_id in self.stuck_assets:
            return
        descriptor = self.assets[asset_id]["fields"]["file"][locale]
        descriptor["url"] = f"//assets.example.net/{asset_id}/{locale}.png"

    async def publish_asset(self, asset: dict[str, Any]) -> dict[str, Any]:
        self._record("publish_asset", asset["sys"]["id"])
        self.published.add(asset["sys"]["id"])
        return asset

    async def create_entry(self, content_type_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        entry_id = entry["sys"]["id"]
        self._record("create_entry", entry_id)
        self.entries[entry_id] = self._versioned(entry)
        return copy.deepcopy(self.entries[entry_id])

    async def get_entry(self, entry_id: str) -> dict[str, Any]:
        self._record("get_entry", entry_id)
        if entry_id not in self.entries:
            raise NotFoundError(f"Entry {entry_id} not found", 404)
        return copy.deepcopy(self.entries[entry_id])

    async def publish_entry(self, entry: dict[str, Any]) -> dict[str, Any]:
        self._record("publish_entry", entry["sys"]["id"])
        self.published.add(entry["sys"]["id"])
        return entry

    def _page(self, items: list[dict[str, Any]], limit: int, skip: int) -> dict[str, Any]:
        return {"items": items[skip : skip + limit], "total": len(items), "skip": skip, "limit": limit}

    async def get_content_types(self, limit: int = 1000, skip: int = 0) -> dict[str, Any]:
        self._record("get_content_types")
        return self._page(list(self.content_types.values()), limit, skip)

    async def get_entries(self, limit: int = 1000, skip: int = 0) -> dict[str, Any]:
        self._record("get_entries")
        return self._page(list(self.entries.values()), limit, skip)

    async def get_assets(self, limit: int = 1000, skip: int = 0) -> dict[str, Any]:
        self._record("get_assets")
        return self._page(list(self.assets.values()), limit, skip)

    async def get_tags(self, limit: int = 1000, skip: int = 0) -> dict[str, Any]:
        self._record("get_tags")
        return self._page(list(self.tags.values()), limit, skip)
