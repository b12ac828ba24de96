import os
import sys
from pathlib import Path

import pytest

pytest_plugins = [
    "tests.fixtures.backend_fixtures",
    "tests.fixtures.config_fixtures",
]

# Disable OpenTelemetry during tests to prevent exporter connection warnings
os.environ["OTEL_SDK_DISABLED"] = "true"

# The project root is one level up from this conftest.py
project_root = Path(__file__).resolve().parent.parent

# Add the project root to sys.path.
# This allows 'import llm_service...' to resolve without an install.
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture
def anyio_backend():
    """Run coroutine tests on asyncio only; the service is asyncio based."""
    return "asyncio"
