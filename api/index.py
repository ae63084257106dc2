"""Serverless entrypoint.

Serverless functions may only write under ``/tmp``, so the local mirror
store defaults there unless ``MIRROR_STORE_PATH`` is set.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

MIRROR_PATH = "/tmp/tutor_sessions/mirror.json"  # noqa: S108
os.environ.setdefault("MIRROR_STORE_PATH", MIRROR_PATH)

from tutor_sessions.api.asgi import app  # noqa: E402

__all__ = ["app"]
