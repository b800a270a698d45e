"""Migration config: mongoexport dump source + collection file layout."""

import json
import os
from pathlib import Path
from typing import Any

# ── Dump source ──────────────────────────────────────────────────────
# One file per collection, produced by ``mongoexport --collection X --out X.json``
# (JSON lines) or with ``--jsonArray``; both are accepted.
DUMP_DIR: str = os.environ.get("LEGACY_DUMP_DIR", "./legacy_dump")

COLLECTIONS: dict[str, str] = {
    "companies": "companies.json",
    "productcategories": "productcategories.json",
    "subcategories": "subcategories.json",
    "uniforms": "uniforms.json",
    "employees": "employees.json",
    "designationproducteligibilities": "designationproducteligibilities.json",
    "designationsubcategoryeligibilities": "designationsubcategoryeligibilities.json",
    "orders": "orders.json",
    "returnrequests": "returnrequests.json",
}


def load_collection(dump_dir: str | Path, name: str) -> list[dict[str, Any]]:
    """Read one exported collection; a missing file is an empty collection."""
    path = Path(dump_dir) / COLLECTIONS.get(name, f"{name}.json")
    if not path.is_file():
        return []
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def load_dump(dump_dir: str | Path) -> dict[str, list[dict[str, Any]]]:
    return {name: load_collection(dump_dir, name) for name in COLLECTIONS}
