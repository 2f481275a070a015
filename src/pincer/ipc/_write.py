"""IPC file writing — durable, atomically visible envelope files.

Each envelope is written to ``<name>.json.tmp``, fsynced, then renamed to
``<name>.json``. The poller only picks up ``*.json`` so it never sees a
partially written file.
"""

from __future__ import annotations

import json
import os
import random
import time
from pathlib import Path
from typing import Any


def new_envelope_name() -> str:
    """``{epoch-ms}-{6 hex}.json``; lexicographic order follows creation time."""
    return f"{int(time.time() * 1000)}-{random.randbytes(3).hex()}.json"


def write_envelope(directory: Path, data: dict[str, Any]) -> Path:
    """Write one envelope into *directory* and return its final path."""
    directory.mkdir(parents=True, exist_ok=True)
    filepath = directory / new_envelope_name()
    temp_path = filepath.with_suffix(".json.tmp")
    with temp_path.open("w") as f:
        f.write(json.dumps(data, indent=2))
        f.flush()
        os.fsync(f.fileno())
    temp_path.rename(filepath)
    return filepath
