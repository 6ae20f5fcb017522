# qrlens/config.py

from __future__ import annotations

import os
from pathlib import Path

# Which primitive turns pixels into a payload: "pyzbar" or "opencv"
DECODER = os.getenv("QRLENS_DECODER", "pyzbar")

# Last-result slot shared with other surfaces: "file", "redis" or "memory"
RESULT_STORE = os.getenv("QRLENS_RESULT_STORE", "file")
RESULT_FILE = Path(
    os.getenv("QRLENS_RESULT_FILE", str(Path.home() / ".qrlens" / "last_result.json"))
)
RESULT_TTL_SECONDS = int(os.getenv("QRLENS_RESULT_TTL_SECONDS", "300"))
REDIS_URL = os.getenv("REDIS_URL")

MAX_IMAGE_BYTES = int(os.getenv("QRLENS_MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))

# Only applied by the HTTP collaborators; the scan pipeline itself never times out.
FETCH_TIMEOUT = float(os.getenv("QRLENS_FETCH_TIMEOUT", "15"))

SVG_DEFAULT_SIZE = int(os.getenv("QRLENS_SVG_DEFAULT_SIZE", "200"))

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
