"""
Tests for capital_config: YAML loading, validation and environment overrides.
"""

import logging
from pathlib import Path

import pytest

from capital_config import (
    DEFAULT_SETTINGS_PATH,
    KernelSettings,
    configure_logging_from_settings,
    get_settings,
)
from capital_config.loader import (
    ENV_DATABASE_URL,
    ENV_LOG_LEVEL,
    compute_checksum,
    load_yaml_file,
    parse_settings,
)
from capital_kernel.db.engine import create_tables
from capital_kernel.domain.clock import DeterministicClock
from capital_kernel.domain.dtos import Actor, ActorRole
from capital_kernel.logging_config import reset_logging
from capital_kernel.services.capital_call_orchestrator import CapitalCallOrchestrator, ResultStatus
from tests.helpers import ORG_ID, make_command, seed_deal


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(text)
    return path


class TestDefaults:

    def test_packaged_defaults_load(self):
        settings = get_settings(environ={})
        assert isinstance(settings, KernelSettings)
        assert settings.database_url.startswith("sqlite")
        assert settings.log_level == "INFO"
        assert settings.notifications_enabled is True
        assert settings.source == str(DEFAULT_SETTINGS_PATH)
        assert len(settings.checksum) == 64

    def test_settings_are_frozen(self):
        settings = get_settings(environ={})
        with pytest.raises(AttributeError):
            settings.log_level = "DEBUG"


class TestFileLoading:

    def test_full_file(self, tmp_path):
        path = write(tmp_path, """
database:
  url: postgresql://capital:pw@db:5432/capital
  echo_sql: true
  pool_size: 5
  max_overflow: 2
  pool_timeout: 10
logging:
  level: debug
notifications:
  enabled: false
""")
        settings = get_settings(path, environ={})
        assert settings.database_url == "postgresql://capital:pw@db:5432/capital"
        assert settings.echo_sql is True
        assert settings.pool_size == 5
        assert settings.max_overflow == 2
        assert settings.pool_timeout == 10
        assert settings.log_level == "DEBUG"
        assert settings.notifications_enabled is False

    def test_missing_optional_keys_default(self, tmp_path):
        path = write(tmp_path, "database:\n  url: sqlite:///x.db\n")
        settings = get_settings(path, environ={})
        assert settings.pool_size == 20
        assert settings.log_level == "INFO"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_settings(tmp_path / "nope.yaml", environ={})

    def test_empty_file_is_empty_mapping(self, tmp_path):
        assert load_yaml_file(write(tmp_path, "")) == {}


class TestValidation:

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(ValueError, match="Malformed"):
            get_settings(write(tmp_path, "database: [unclosed\n"), environ={})

    def test_top_level_list_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            get_settings(write(tmp_path, "- a\n- b\n"), environ={})

    def test_missing_url(self, tmp_path):
        with pytest.raises(ValueError, match="database.url"):
            get_settings(write(tmp_path, "logging:\n  level: INFO\n"), environ={})

    def test_unknown_section(self, tmp_path):
        path = write(tmp_path, "database:\n  url: sqlite://\nmetrics:\n  enabled: true\n")
        with pytest.raises(ValueError, match="metrics"):
            get_settings(path, environ={})

    def test_bad_level(self):
        with pytest.raises(ValueError, match="logging.level"):
            parse_settings({"database": {"url": "sqlite://"}, "logging": {"level": "LOUD"}})

    @pytest.mark.parametrize("value", ["5", -1, True, 1.5])
    def test_bad_pool_size(self, value):
        with pytest.raises(ValueError, match="pool_size"):
            parse_settings({"database": {"url": "sqlite://", "pool_size": value}})

    def test_bad_bool(self):
        with pytest.raises(ValueError, match="echo_sql"):
            parse_settings({"database": {"url": "sqlite://", "echo_sql": "yes please"}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="database"):
            parse_settings({"database": "sqlite://"})


class TestEnvironmentOverrides:

    def test_database_url_override(self, tmp_path):
        path = write(tmp_path, "database:\n  url: sqlite:///file.db\n")
        settings = get_settings(path, environ={ENV_DATABASE_URL: "postgresql://env/db"})
        assert settings.database_url == "postgresql://env/db"

    def test_log_level_override(self, tmp_path):
        path = write(tmp_path, "database:\n  url: sqlite:///file.db\n")
        settings = get_settings(path, environ={ENV_LOG_LEVEL: "warning"})
        assert settings.log_level == "WARNING"

    def test_blank_override_ignored(self, tmp_path):
        path = write(tmp_path, "database:\n  url: sqlite:///file.db\n")
        settings = get_settings(path, environ={ENV_DATABASE_URL: ""})
        assert settings.database_url == "sqlite:///file.db"

    def test_override_changes_checksum(self, tmp_path):
        path = write(tmp_path, "database:\n  url: sqlite:///file.db\n")
        plain = get_settings(path, environ={})
        overridden = get_settings(path, environ={ENV_DATABASE_URL: "sqlite:///other.db"})
        assert plain.checksum != overridden.checksum


class TestChecksum:

    def test_key_order_irrelevant(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestLoggingBridge:

    def test_configures_kernel_logging_level(self):
        reset_logging()
        try:
            settings = parse_settings({"database": {"url": "sqlite://"}, "logging": {"level": "ERROR"}})
            configure_logging_from_settings(settings)
            assert logging.getLogger("capital_kernel").level == logging.ERROR
        finally:
            reset_logging()


class TestOrchestratorFromSettings:

    def test_builds_working_orchestrator(self, tmp_path):
        settings = parse_settings({
            "database": {"url": f"sqlite:///{tmp_path / 'configured.db'}"},
            "notifications": {"enabled": False},
        })
        orchestrator = CapitalCallOrchestrator.from_settings(settings, clock=DeterministicClock())
        engine = orchestrator._session_factory.kw["bind"]
        create_tables(engine)
        try:
            deal = seed_deal(orchestrator._session_factory)
            gp = Actor(id="gp-1", name="GP One", role=ActorRole.GP, organization_id=ORG_ID)
            result = orchestrator.create_capital_call(deal.id, make_command("10.00"), gp)
            assert result.status == ResultStatus.CREATED
            assert result.capital_call.allocated_cents == 1000
        finally:
            engine.dispose()
