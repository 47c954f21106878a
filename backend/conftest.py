"""Test bootstrap shared by the chat and shared suites.

Loads ``.env.tests`` before any settings class is built and sends structlog
output through stdlib logging, so pytest captures hub and store events with
the rest of the test output.
"""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

ENV_FILE = Path(__file__).resolve().parents[1] / ".env.tests"

load_dotenv(ENV_FILE)

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
)


@pytest.fixture(autouse=True)
def _isolated_log_context():
    """Drop connection_id and other bound context between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
