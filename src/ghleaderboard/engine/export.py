from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger("Export")


def write_documents(documents: Mapping[str, dict[str, Any]], output_dir: str | Path) -> list[Path]:
    """Write each document to output_dir/<name>.json for static hosting."""
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for name, document in sorted(documents.items()):
        path = out_dir / f"{name}.json"
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        # A static server never sees half a file.
        tmp_path.replace(path)
        written.append(path)
    logger.info(
        "Exported leaderboard documents",
        extra={"output_dir": str(out_dir), "documents": [p.name for p in written]},
    )
    return written
