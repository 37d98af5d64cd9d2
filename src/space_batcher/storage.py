"""JSON documents on disk: export files, batch documents, manifest."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .exceptions import ExportReadError, ManifestNotFoundError
from .models import Manifest


def read_json(path: Path) -> Any:
    """
    Read a JSON document.

    Raises:
        ExportReadError: If the file is missing or not valid JSON
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ExportReadError(str(path), "file not found") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ExportReadError(str(path), str(e)) from e


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Write a JSON document so readers never see a half-written file.

    The document is written to a temporary file in the same directory,
    flushed to disk, then renamed over the target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_document(path: Path) -> dict[str, Any]:
    """Read an export or batch document."""
    data = read_json(path)
    if not isinstance(data, dict):
        raise ExportReadError(str(path), "top-level value is not an object")
    return data


def load_manifest(path: Path) -> Manifest:
    """
    Read the batch manifest.

    Raises:
        ManifestNotFoundError: If the split step has not been run
    """
    if not path.exists():
        raise ManifestNotFoundError(str(path))
    return Manifest.from_dict(load_document(path))


def save_manifest(path: Path, manifest: Manifest) -> None:
    write_json_atomic(path, manifest.to_dict())
