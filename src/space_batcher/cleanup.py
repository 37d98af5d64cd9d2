"""
Draft cleanup of an export document.

Drafts that cannot be imported (missing required fields, unknown content
type, assets without a file) are removed from the export before splitting,
and links pointing at them are stripped from the remaining entries.
"""

import copy
from dataclasses import dataclass, field
from typing import Any

from .links import ASSET, ENTRY, Link, parse_value


def is_draft(sys: dict[str, Any]) -> bool:
    """
    Draft heuristic used by the export tooling.

    An item is a draft when it was never published, or when it has been
    edited more than once since its last publish.
    """
    published = sys.get("publishedVersion")
    if not published:
        return True
    return sys.get("version", 0) > published + 1


@dataclass
class DraftIssue:
    id: str
    reason: str
    content_type: str | None = None
    content_type_name: str | None = None
    missing_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.content_type is not None:
            data["contentType"] = self.content_type
        if self.content_type_name is not None:
            data["contentTypeName"] = self.content_type_name
        if self.missing_fields:
            data["missingFields"] = list(self.missing_fields)
        data["reason"] = self.reason
        return data


@dataclass
class DraftReport:
    total_entries: int = 0
    total_assets: int = 0
    valid_published_entries: int = 0
    valid_draft_entries: int = 0
    valid_published_assets: int = 0
    valid_draft_assets: int = 0
    invalid_drafts: list[DraftIssue] = field(default_factory=list)
    orphan_drafts: list[DraftIssue] = field(default_factory=list)
    invalid_asset_drafts: list[DraftIssue] = field(default_factory=list)

    @property
    def entries_to_remove(self) -> set[str]:
        return {d.id for d in self.invalid_drafts} | {d.id for d in self.orphan_drafts}

    @property
    def assets_to_remove(self) -> set[str]:
        return {d.id for d in self.invalid_asset_drafts}

    @property
    def total_to_remove(self) -> int:
        return len(self.invalid_drafts) + len(self.orphan_drafts) + len(self.invalid_asset_drafts)

    def to_dict(self) -> dict[str, Any]:
        draft_entries = (
            self.valid_draft_entries + len(self.invalid_drafts) + len(self.orphan_drafts)
        )
        return {
            "summary": {
                "totalEntries": self.total_entries,
                "totalAssets": self.total_assets,
                "draftEntries": draft_entries,
                "invalidDrafts": len(self.invalid_drafts),
                "orphanDrafts": len(self.orphan_drafts),
                "validDraftEntries": self.valid_draft_entries,
                "validPublishedEntries": self.valid_published_entries,
                "draftAssets": self.valid_draft_assets + len(self.invalid_asset_drafts),
                "invalidAssetDrafts": len(self.invalid_asset_drafts),
                "validDraftAssets": self.valid_draft_assets,
                "validPublishedAssets": self.valid_published_assets,
                "totalToRemove": self.total_to_remove,
            },
            "invalidDrafts": [d.to_dict() for d in self.invalid_drafts],
            "orphanDrafts": [d.to_dict() for d in self.orphan_drafts],
            "invalidAssetDrafts": [d.to_dict() for d in self.invalid_asset_drafts],
        }


def analyze_drafts(document: dict[str, Any]) -> DraftReport:
    """Classify the entries and assets of an export document."""
    required: dict[str, tuple[str, list[str]]] = {}
    for content_type in document.get("contentTypes") or []:
        required[content_type["sys"]["id"]] = (
            content_type.get("name", content_type["sys"]["id"]),
            [f["id"] for f in content_type.get("fields", []) if f.get("required")],
        )

    entries = document.get("entries") or []
    assets = document.get("assets") or []
    report = DraftReport(total_entries=len(entries), total_assets=len(assets))

    for entry in entries:
        if not is_draft(entry["sys"]):
            report.valid_published_entries += 1
            continue

        ct_id = entry["sys"]["contentType"]["sys"]["id"]
        if ct_id not in required:
            report.orphan_drafts.append(
                DraftIssue(entry["sys"]["id"], "Content type not found", content_type=ct_id)
            )
            continue

        ct_name, required_fields = required[ct_id]
        fields = entry.get("fields") or {}
        missing = [f for f in required_fields if not fields.get(f)]
        if missing:
            report.invalid_drafts.append(
                DraftIssue(
                    entry["sys"]["id"],
                    f"Missing required fields: {', '.join(missing)}",
                    content_type=ct_id,
                    content_type_name=ct_name,
                    missing_fields=missing,
                )
            )
        else:
            report.valid_draft_entries += 1

    for asset in assets:
        if not is_draft(asset["sys"]):
            report.valid_published_assets += 1
        elif (asset.get("fields") or {}).get("file"):
            report.valid_draft_assets += 1
        else:
            report.invalid_asset_drafts.append(DraftIssue(asset["sys"]["id"], "Missing file"))

    return report


def clean_export(document: dict[str, Any], report: DraftReport) -> dict[str, Any]:
    """
    Return a copy of ``document`` without the items flagged in ``report``.

    Direct links to removed items are dropped together with their locale
    value; link lists keep their remaining items.
    """
    removed_entries = report.entries_to_remove
    removed_assets = report.assets_to_remove

    def removed(raw: Any) -> bool:
        link = parse_value(raw)
        if not isinstance(link, Link):
            return False
        if link.kind == ENTRY:
            return link.id in removed_entries
        return link.kind == ASSET and link.id in removed_assets

    cleaned = copy.deepcopy(document)
    cleaned["entries"] = [
        e for e in cleaned.get("entries") or [] if e["sys"]["id"] not in removed_entries
    ]
    cleaned["assets"] = [
        a for a in cleaned.get("assets") or [] if a["sys"]["id"] not in removed_assets
    ]

    for entry in cleaned["entries"]:
        for locales in (entry.get("fields") or {}).values():
            if not isinstance(locales, dict):
                continue
            for locale, value in list(locales.items()):
                if removed(value):
                    del locales[locale]
                elif isinstance(value, list):
                    locales[locale] = [item for item in value if not removed(item)]
    return cleaned
