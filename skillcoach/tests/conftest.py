import os
import sys

# Ensure project root is on sys.path for test imports
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Avoid cross-test contamination: Settings and stores are cached and depend on env vars.
import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_process_state() -> None:
    from skillcoach.utils.assessment_store import reset_assessment_store
    from skillcoach.utils.metrics import reset_metrics
    from skillcoach.utils.performance_store import reset_performance_store
    from skillcoach.utils.qbank_store import reset_qbank_store
    from skillcoach.utils.settings import get_settings

    get_settings.cache_clear()
    reset_qbank_store()
    reset_performance_store()
    reset_assessment_store()
    reset_metrics()
    yield
    get_settings.cache_clear()
    reset_qbank_store()
    reset_performance_store()
    reset_assessment_store()
