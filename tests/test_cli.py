"""
Tests for the operator CLI.

Each command runs end to end against a SQLite file; exit codes carry the
result.
"""

from __future__ import annotations

import pytest
import structlog

from rbi_registry.cli import build_parser, configure_logging, main
from rbi_registry.config import RegistrySettings
from rbi_registry.store.models import HouseholdDB
from rbi_registry.store.service import RegistryStore

PSGC_CSV = (
    "code,name,level,parent_code\n"
    "04,CALABARZON,Reg,\n"
    "0421,Cavite,Prov,04\n"
    "042114,City of Imus,City,0421\n"
    "042114014,Bucandala I,Bgy,042114\n"
)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


def run(database_url, *args):
    with pytest.raises(SystemExit) as exc_info:
        main(["--database-url", database_url, *args])
    return exc_info.value.code


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_migrate_flags(self):
        args = build_parser().parse_args(["migrate-codes", "--dry-run", "--barangay", "042114014"])
        assert args.dry_run
        assert args.barangay == "042114014"


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_console_format_from_settings(self):
        configure_logging(RegistrySettings(log_format="console"))
        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.dev.ConsoleRenderer)

    def test_json_format_from_settings(self):
        configure_logging(RegistrySettings(log_format="json"))
        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.processors.JSONRenderer)


class TestCommands:
    def test_bootstrap_sequence(self, database_url, tmp_path):
        csv_path = tmp_path / "psgc.csv"
        csv_path.write_text(PSGC_CSV, encoding="utf-8")

        assert run(database_url, "init") == 0
        assert run(database_url, "load-psgc", str(csv_path)) == 0
        assert run(database_url, "create-super-admin", "root|founder") == 0
        assert run(database_url, "audit", "--verbose") == 0

    def test_duplicate_super_admin_fails(self, database_url):
        run(database_url, "init")
        assert run(database_url, "create-super-admin", "root|founder") == 0
        assert run(database_url, "create-super-admin", "root|founder") == 2

    def test_broken_psgc_file_fails(self, database_url, tmp_path):
        csv_path = tmp_path / "psgc.csv"
        csv_path.write_text("code,name,level,parent_code\n0421,Cavite,Prov,04\n", encoding="utf-8")
        assert run(database_url, "load-psgc", str(csv_path)) == 2

    def test_migrate_codes(self, database_url, tmp_path):
        csv_path = tmp_path / "psgc.csv"
        csv_path.write_text(PSGC_CSV, encoding="utf-8")
        run(database_url, "load-psgc", str(csv_path))

        store = RegistryStore(database_url)
        with store.transaction() as session:
            session.add(HouseholdDB(code="HH-014-729881", barangay_code="042114014"))
        store.dispose()

        assert run(database_url, "audit") == 1
        assert run(database_url, "migrate-codes", "--dry-run") == 0
        assert run(database_url, "migrate-codes", "--verbose") == 0
        assert run(database_url, "audit") == 0
