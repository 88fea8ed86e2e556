from __future__ import annotations

import os
import tempfile
from typing import Callable


def atomic_write(write_fn: Callable[[str], None], out_path: str) -> None:
    """Write through a temp file in the target directory, then os.replace it into place."""
    d = os.path.dirname(out_path) or "."
    os.makedirs(d, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=d, newline="", encoding="utf-8") as tf:
        tmp_path = tf.name
    try:
        write_fn(tmp_path)
        os.replace(tmp_path, out_path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
