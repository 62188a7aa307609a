"""Root conftest: applies .env.test before chat_client.config builds its settings."""
from __future__ import annotations

import os
from pathlib import Path


def _apply_env_file(path: Path) -> None:
    for raw in path.read_text().splitlines():
        line = raw.strip().removeprefix("export ").strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip().strip("'\""))


_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    _apply_env_file(_env_test)
