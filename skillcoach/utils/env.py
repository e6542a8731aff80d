from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_project_dotenv() -> bool:
    """
    Load `.env` from the project root into `os.environ`.

    `pydantic-settings` reads `.env` into Settings but does not populate `os.environ`;
    scripts that shell out or read env directly still need the values.
    No-op in production where the runtime injects env vars.
    """
    here = Path(__file__).resolve()
    project_root = here.parents[2]

    candidates = [
        project_root / ".env",
        project_root / "skillcoach" / ".env",
    ]

    loaded = False
    for p in candidates:
        if p.exists():
            loaded = bool(load_dotenv(p, override=False)) or loaded
    return loaded
