"""
Pytest fixtures for the capital kernel test suite.

Provides:
- A database engine (SQLite file by default, PostgreSQL when
  CAPITAL_KERNEL_TEST_DATABASE_URL points at one) with tables wiped after
  every test
- A seeded deal with three LPs committed 500k / 300k / 200k
- GP, admin and LP actors
- An orchestrator wired to a deterministic clock
- Captured JSON logs
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO

import pytest

from capital_kernel.db.engine import (
    clear_tables,
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
)
from capital_kernel.domain.clock import DeterministicClock
from capital_kernel.domain.dtos import Actor, ActorRole
from capital_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from capital_kernel.services.capital_call_orchestrator import CapitalCallOrchestrator
from tests.helpers import (
    ORG_ID,
    OTHER_ORG_ID,
    RecordingDispatcher,
    RecordingSnapshotProvider,
    lp_actor_for,
    make_command,
    seed_deal,
)

TEST_DATABASE_URL_ENV = "CAPITAL_KERNEL_TEST_DATABASE_URL"


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL-only tests unless a PostgreSQL URL is configured."""
    if os.environ.get(TEST_DATABASE_URL_ENV, "").startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason=f"requires {TEST_DATABASE_URL_ENV} (PostgreSQL)")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture capital_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_capital_call(...)
            assert any(r["message"] == "capital_call_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("capital_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="session")
def engine(tmp_path_factory):
    url = os.environ.get(TEST_DATABASE_URL_ENV)
    if not url:
        db_path = tmp_path_factory.mktemp("db") / "capital_kernel_test.db"
        url = f"sqlite:///{db_path}"
    engine = create_engine_from_url(url, pool_size=10, max_overflow=10)
    drop_tables(engine)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = create_session_factory(engine)
    yield factory
    clear_tables(engine)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2025, 3, 3, 15, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def deal(session_factory):
    return seed_deal(session_factory)


@pytest.fixture
def gp_maker():
    return Actor(id="gp-maker", name="Grace Maker", role=ActorRole.GP, organization_id=ORG_ID)


@pytest.fixture
def gp_checker():
    return Actor(id="gp-checker", name="Carl Checker", role=ActorRole.GP, organization_id=ORG_ID)


@pytest.fixture
def admin():
    return Actor(id="admin-1", name="Ada Admin", role=ActorRole.ADMIN, organization_id=ORG_ID)


@pytest.fixture
def outsider_gp():
    return Actor(
        id="gp-outsider", name="Otto Outsider", role=ActorRole.GP, organization_id=OTHER_ORG_ID
    )


@pytest.fixture
def lp_alpha():
    return lp_actor_for("lp-alpha")


@pytest.fixture
def lp_beta():
    return lp_actor_for("lp-beta")


@pytest.fixture
def lp_gamma():
    return lp_actor_for("lp-gamma")


# =============================================================================
# Orchestrator fixtures
# =============================================================================


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def snapshot_provider():
    return RecordingSnapshotProvider()


@pytest.fixture
def orchestrator(session_factory, clock, dispatcher):
    return CapitalCallOrchestrator(session_factory, clock=clock, dispatcher=dispatcher)


@pytest.fixture
def draft_call(orchestrator, deal, gp_maker):
    """A DRAFT $100,000.00 call created by gp_maker."""
    result = orchestrator.create_capital_call(deal.id, make_command(), gp_maker)
    assert result.is_success, result
    return result.capital_call


@pytest.fixture
def issued_call(orchestrator, draft_call, gp_checker):
    """The draft call, issued by gp_checker."""
    result = orchestrator.issue_capital_call(draft_call.id, gp_checker)
    assert result.is_success, result
    return result.capital_call
