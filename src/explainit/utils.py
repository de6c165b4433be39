"""
Small helpers shared by the workflow, registry and output modules.
"""

import json
import math
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

WORDS_PER_MINUTE = 200


def slugify(text: str, fallback: str = "topic") -> str:
    """
    Turn free text into a snake_case identifier usable as a folder name.

    "React Hooks" -> "react_hooks", "C++ & Rust!" -> "c_rust"
    """
    slug = (text or "").lower()
    slug = re.sub(r"[^a-z0-9\s_]", "", slug)
    slug = re.sub(r"\s+", "_", slug)
    slug = re.sub(r"_+", "_", slug).strip("_")
    return slug or fallback


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def count_words(text: str) -> int:
    return len(re.findall(r"\S+", text or ""))


def reading_time_minutes(word_count: int) -> int:
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE)) if word_count else 0


def atomic_write_json(path: Union[str, Path], data: Any, indent: int = 2):
    """
    Write JSON so readers only ever see the old or the new file.

    The payload goes to a temporary file in the same directory, is fsynced
    and then renamed over ``path``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
