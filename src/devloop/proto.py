"""Protocol snapshot regeneration.

A protocol directory holds one file per service: ``Ptl<Name>.<ext>`` for API
calls and ``Msg<Name>.<ext>`` for messages. The snapshot lists every service
with a stable numeric id and a content hash. It is what client code and API
stubs are generated from.
"""

import fnmatch
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from devloop_core.models import ProtoConfigItem

logger = logging.getLogger(__name__)

SERVICE_PREFIXES = {"Ptl": "api", "Msg": "msg"}
SKIP_DIRS = {"__pycache__", ".git", "node_modules"}


class RegenerationError(Exception):
    """Protocol sources could not be turned into a snapshot."""


def load_prior_snapshot(item: ProtoConfigItem) -> dict[str, Any] | None:
    """Read the snapshot written by a previous run.

    Returns:
        The snapshot, or None when there is none (or it is unreadable)
    """
    if not item.output.exists():
        return None
    try:
        snapshot = json.loads(item.output.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable snapshot {item.output}: {e}")
        return None
    if not isinstance(snapshot, dict) or not isinstance(snapshot.get("services"), list):
        logger.warning(f"Ignoring snapshot with unexpected layout: {item.output}")
        return None
    return snapshot


def _service_kind(filename: str) -> tuple[str, str] | None:
    stem = filename.split(".", 1)[0]
    for prefix, kind in SERVICE_PREFIXES.items():
        if stem.startswith(prefix) and len(stem) > len(prefix):
            return kind, stem[len(prefix) :]
    return None


def _iter_protocol_files(item: ProtoConfigItem):
    output = os.path.normpath(item.output)
    for root, dirs, files in os.walk(item.ptl_dir):
        dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS and not d.startswith("."))
        for filename in sorted(files):
            path = os.path.join(root, filename)
            if os.path.normpath(path) == output:
                continue
            relative = Path(path).relative_to(item.ptl_dir).as_posix()
            if any(fnmatch.fnmatch(relative, pattern) for pattern in item.ignore):
                continue
            kind = _service_kind(filename)
            if kind is not None:
                yield Path(path), relative, kind


def regenerate_schema(item: ProtoConfigItem, prior: dict[str, Any] | None) -> dict[str, Any]:
    """Scan protocol sources and write a fresh snapshot, keeping ids known from `prior`.

    Args:
        item: Protocol configuration
        prior: Last known snapshot, or None

    Returns:
        The new snapshot

    Raises:
        RegenerationError: If the sources are malformed
    """
    if not item.ptl_dir.is_dir():
        raise RegenerationError(f"Protocol directory not found: {item.ptl_dir}")

    prior_services = (prior or {}).get("services", [])
    known_ids = {s["name"]: s["id"] for s in prior_services if "name" in s and "id" in s}
    next_id = max(known_ids.values(), default=-1) + 1

    services = []
    sources: dict[str, str] = {}
    for path, relative, (kind, base) in _iter_protocol_files(item):
        try:
            content = path.read_bytes()
            content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RegenerationError(f"{relative} is not UTF-8 text: {e}") from e
        except OSError as e:
            raise RegenerationError(f"Cannot read {relative}: {e}") from e

        parent = Path(relative).parent.as_posix()
        name = base if parent == "." else f"{parent}/{base}"
        if name in sources:
            raise RegenerationError(f"Duplicate service '{name}' in {sources[name]} and {relative}")
        sources[name] = relative

        service_id = known_ids.get(name)
        if service_id is None:
            service_id = next_id
            next_id += 1
        services.append(
            {
                "id": service_id,
                "name": name,
                "type": kind,
                "source": relative,
                "hash": hashlib.sha256(content).hexdigest(),
            }
        )

    services.sort(key=lambda s: s["id"])
    changed = prior is None or prior_services != services
    version = (prior or {}).get("version", 0) + 1 if changed else prior.get("version", 1)
    snapshot = {"version": version, "services": services}

    if changed or not item.output.exists():
        item.output.parent.mkdir(parents=True, exist_ok=True)
        item.output.write_text(json.dumps(snapshot, indent=2) + "\n", encoding="utf-8")
        logger.info(f"Wrote {item.output} (version {version}, {len(services)} service(s))")
    else:
        logger.debug(f"{item.output} is up to date")
    return snapshot
