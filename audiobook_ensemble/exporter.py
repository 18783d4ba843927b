"""Write an assembled audiobook and its provenance manifest to disk."""

import json
import os
import re
from dataclasses import asdict
from datetime import datetime, timezone

from audiobook_ensemble.constants import VERSION
from audiobook_ensemble.models import AssembledAudiobook


def slug_from_path(story_path: str) -> str:
    """Convert story filename to output directory slug.

    "Tell-Tale Heart.txt" → "tell_tale_heart"
    "/path/to/The Open Window.txt" → "the_open_window"
    """
    basename = os.path.splitext(os.path.basename(story_path))[0]
    return re.sub(r"[^a-zA-Z0-9]+", "_", basename).strip("_").lower()


def export(
    book: AssembledAudiobook,
    project_dir: str,
    slug: str,
    extra: dict | None = None,
) -> dict[str, str]:
    """Write each encoded stream plus output.json.

    Creates:
      - <project_dir>/final/<slug>.<fmt> for every format in the book
      - <project_dir>/final/output.json (provenance manifest)

    Returns {format: path}.
    """
    final_dir = os.path.join(project_dir, "final")
    os.makedirs(final_dir, exist_ok=True)

    paths = {}
    for fmt, data in book.outputs.items():
        path = os.path.join(final_dir, f"{slug}.{fmt}")
        with open(path, "wb") as f:
            f.write(data)
        paths[fmt] = path

    manifest = {
        "project": slug,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "producer_version": VERSION,
        "metadata": asdict(book.metadata),
        "chapters": [asdict(c) for c in book.chapters],
        "files": {fmt: os.path.basename(p) for fmt, p in paths.items()},
        "stats": {
            "duration_seconds": round(book.total_duration, 1),
            "cost": round(book.total_cost, 4),
            "chapters": len(book.chapters),
        },
    }
    if extra:
        manifest.update(extra)

    with open(os.path.join(final_dir, "output.json"), "w") as f:
        json.dump(manifest, f, indent=2)

    return paths
