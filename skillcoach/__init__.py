from __future__ import annotations

# Load local `.env` early so scripts and `os.getenv` callers see the same values
# as pydantic Settings.
from skillcoach.utils.env import load_project_dotenv

load_project_dotenv()
