from __future__ import annotations

from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))


def make_file(path: Path, size: int = 16) -> Path:
    """Creates a file of the given size (sparse where the filesystem allows)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path


def vdf_escape(path: Path) -> str:
    return str(path).replace("\\", "\\\\")
