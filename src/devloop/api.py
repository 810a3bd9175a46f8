"""API stub generation from a protocol snapshot."""

import logging
import os
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PY_TEMPLATE = '''\
"""Handler for the {name} API (protocol: {source})."""


async def api_{func}(call):
    raise NotImplementedError("{name} is not implemented yet")
'''

TS_TEMPLATE = """\
import {{ ApiCall }} from "tsrpc";
import {{ Req{base}, Res{base} }} from "{import_path}";

export default async function (call: ApiCall<Req{base}, Res{base}>) {{
    call.error("{name} is not implemented yet");
}}
"""

TEMPLATES = {".py": PY_TEMPLATE, ".ts": TS_TEMPLATE}


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def generate_api_stubs(schema: dict[str, Any], ptl_dir: Path, api_dir: Path) -> list[Path]:
    """Create a handler stub for every API service that has none yet.

    Args:
        schema: Snapshot returned by regenerate_schema
        ptl_dir: Protocol directory the snapshot was built from
        api_dir: Directory mirroring the protocol layout with Api<Name> handlers

    Returns:
        Paths of the stubs that were written
    """
    written = []
    for service in schema.get("services", []):
        if service.get("type") != "api":
            continue

        source = Path(service["source"])
        template = TEMPLATES.get(source.suffix)
        if template is None:
            logger.debug(f"No API stub template for {source.suffix} ({service['name']})")
            continue

        base = service["name"].rsplit("/", 1)[-1]
        target = api_dir / source.parent / f"Api{base}{source.suffix}"
        if target.exists():
            continue

        import_path = Path(os.path.relpath(ptl_dir / source.with_suffix(""), target.parent)).as_posix()
        if not import_path.startswith("."):
            import_path = f"./{import_path}"

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            template.format(
                name=service["name"],
                base=base,
                func=_snake_case(base),
                source=service["source"],
                import_path=import_path,
            ),
            encoding="utf-8",
        )
        written.append(target)
        logger.info(f"Generated API stub {target}")
    return written
