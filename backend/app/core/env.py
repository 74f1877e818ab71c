from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):]
    if "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    value = value.strip()
    if not key:
        return None
    # KEY="value" or KEY='value'
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def load_env_if_present(*, override: bool = False, search: Optional[list[Path]] = None) -> None:
    """Load .env files into the process environment.

    - Searches repo root `.env` then `backend/.env` unless `search` is given.
    - Existing variables win unless override=True.
    """

    # backend/app/core/env.py -> backend/app/core -> backend/app -> backend -> repo root
    repo_root = Path(__file__).resolve().parents[3]
    candidates = search if search is not None else [
        repo_root / ".env",
        repo_root / "backend" / ".env",
    ]

    for p in candidates:
        if not p.is_file():
            continue
        try:
            content = p.read_text(encoding="utf-8")
        except OSError:
            continue
        for raw in content.splitlines():
            parsed = _parse_env_line(raw)
            if not parsed:
                continue
            k, v = parsed
            if not override and k in os.environ:
                continue
            os.environ[k] = v


def env_int(name: str, default: int, *, minimum: int = 0) -> int:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    try:
        n = int(v)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name}; must be integer.") from e
    if n < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}.")
    return n
