import json

import pytest

from ledger_migration.cli import build_source, build_target, main
from ledger_migration.extractors.file_connector import FileConnector
from ledger_migration.loaders.memory_store import InMemoryTargetStore
from ledger_migration.loaders.rest_store import RestTargetStore
from ledger_migration.models.migration import MigrationConfig


@pytest.fixture
def export_dir(tmp_path):
    exports = tmp_path / "exports"
    exports.mkdir()
    (exports / "Customer.json").write_text(json.dumps([
        {"Id": "1", "DisplayName": "Acme"},
        {"Id": "2", "DisplayName": "Globex"},
    ]))
    (exports / "Account.json").write_text(json.dumps({"data": [
        {"Id": "10", "Name": "Rent", "AccountType": "Expense"},
    ]}))
    return exports


@pytest.fixture
def config_file(tmp_path, export_dir):
    path = tmp_path / "migration.json"
    path.write_text(json.dumps({
        "source": {"type": "file", "export_dir": str(export_dir)},
        "target": {"type": "memory"},
        "output_dir": str(tmp_path / "reports"),
    }))
    return path


def test_build_source_and_target_from_config(tmp_path):
    config = MigrationConfig.from_dict({
        "source": {"type": "file", "export_dir": str(tmp_path)},
        "target": {"type": "rest", "base_url": "https://api.example.test/api"},
    })

    assert isinstance(build_source(config), FileConnector)
    assert isinstance(build_target(config), RestTargetStore)

    config.dry_run = True
    assert isinstance(build_target(config), InMemoryTargetStore)


def test_build_rejects_incomplete_settings():
    with pytest.raises(ValueError, match="source.url"):
        build_source(MigrationConfig.from_dict({"source": {"type": "mcp"}}))
    with pytest.raises(ValueError, match="Unknown source type"):
        build_source(MigrationConfig.from_dict({"source": {"type": "ftp"}}))
    with pytest.raises(ValueError, match="target.base_url"):
        build_target(MigrationConfig.from_dict({"target": {"type": "rest"}}))


def test_run_command_migrates_exports_and_saves_report(config_file, tmp_path, capsys):
    exit_code = main(["run", "--config", str(config_file)])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "MIGRATION COMPLETE" in output
    assert "Migrated: 3" in output
    reports = list((tmp_path / "reports").glob("migration_report_*.json"))
    assert len(reports) == 1
    assert json.loads(reports[0].read_text())["summary"]["total_migrated"] == 3


def test_run_command_entity_allow_list(config_file, capsys):
    exit_code = main(["run", "--config", str(config_file), "--entities", "Customer", "--dry-run"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "(DRY RUN)" in output
    assert "Migrated: 2" in output
    assert "Account:" not in output


def test_count_command(config_file, capsys):
    assert main(["count", "--config", str(config_file)]) == 0

    output = capsys.readouterr().out
    assert "Customer: 2" in output
    assert "Account: 1" in output
    assert "JournalEntry: 0" in output


def test_preview_command_prints_mapped_records(tmp_path, capsys):
    input_path = tmp_path / "customers.json"
    input_path.write_text(json.dumps([{"DisplayName": "Acme", "PrimaryEmailAddr": {"Address": "ap@acme.test"}}]))

    assert main(["preview", "--input", str(input_path), "--entity", "customer"]) == 0

    output = capsys.readouterr().out
    mapped = json.loads(output.split("-" * 40)[0])
    assert mapped["Name"] == "Acme"
    assert mapped["SourceId"] == "preview-1"


def test_preview_command_rejects_unknown_entity(tmp_path, capsys):
    input_path = tmp_path / "rows.json"
    input_path.write_text("[]")

    assert main(["preview", "--input", str(input_path), "--entity", "Widget"]) == 1
    assert "Unknown entity type: Widget" in capsys.readouterr().out


def test_seed_command(config_file, capsys):
    assert main(["seed", "--config", str(config_file)]) == 0

    assert "migrationconfigs: 7 rows" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main([]) == 1
