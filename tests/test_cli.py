"""
Tests for the CLI interface.
"""
import os

import pytest
import yaml
from typer.testing import CliRunner

from pantry_admin.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from pantry_admin.demo.seed_demo_data import DEMO_RECORDS
from pantry_admin.storage.db import get_connection

runner = CliRunner()

ADMIN_EMAIL = "info@vostcard.com"


@pytest.fixture
def workspace(tmp_path):
    """Seeded database plus an admin config."""
    db = str(tmp_path / "cli.db")
    config = str(tmp_path / "admin.yaml")
    with open(config, 'w', encoding='utf-8') as f:
        yaml.dump({"admin_emails": [ADMIN_EMAIL]}, f)

    result = runner.invoke(app, ["seed-demo", "--db", db])
    assert result.exit_code == EXIT_CODE_PASS
    return {"db": db, "config": config, "dir": str(tmp_path)}


def _admin_args(workspace):
    return ["--db", workspace["db"], "--config", workspace["config"], "--as", ADMIN_EMAIL]


def _count(db, collection, user_id):
    conn = get_connection(db)
    try:
        return conn.execute(
            "SELECT COUNT(*) FROM record WHERE collection = ? AND json_extract(data, '$.userId') = ?",
            (collection, user_id)
        ).fetchone()[0]
    finally:
        conn.close()


class TestCLI:
    """Test CLI commands."""

    def test_status(self):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "installed" in result.output

    def test_init(self, tmp_path):
        db = str(tmp_path / "new.db")
        result = runner.invoke(app, ["init", "--db", db])
        assert result.exit_code == EXIT_CODE_PASS
        assert os.path.exists(db)

    def test_seed_demo(self, tmp_path):
        result = runner.invoke(app, ["seed-demo", "--db", str(tmp_path / "demo.db")])
        assert result.exit_code == EXIT_CODE_PASS
        assert f"Inserted {len(DEMO_RECORDS)} demo records" in result.output

    def test_stats_requires_admin(self, workspace):
        result = runner.invoke(app, ["stats", "--db", workspace["db"], "--config", workspace["config"]])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Not authorized" in result.output

    def test_stats_without_config_points_to_example(self, workspace, monkeypatch):
        """With no allow-list every command would be refused, so say where to configure one."""
        monkeypatch.delenv("PANTRY_ADMIN_CONFIG", raising=False)
        result = runner.invoke(app, ["stats", "--db", workspace["db"], "--as", ADMIN_EMAIL])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "admin.example.yaml" in result.output

    def test_stats_rejects_non_admin(self, workspace):
        result = runner.invoke(app, [
            "stats", "--db", workspace["db"], "--config", workspace["config"], "--as", "ann@example.com"
        ])
        assert result.exit_code == EXIT_CODE_FAIL

    def test_stats(self, workspace):
        result = runner.invoke(app, ["stats"] + _admin_args(workspace))
        assert result.exit_code == EXIT_CODE_PASS
        assert "Total users: 3" in result.output
        assert "12 of 12 collections scanned" in result.output

    def test_users(self, workspace):
        result = runner.invoke(app, ["users"] + _admin_args(workspace))
        assert result.exit_code == EXIT_CODE_PASS
        assert "user-ann" in result.output
        assert "user-cy" in result.output

    def test_user(self, workspace):
        result = runner.invoke(app, ["user", "user-ann"] + _admin_args(workspace))
        assert result.exit_code == EXIT_CODE_PASS
        assert "ann@example.com" in result.output
        assert "2 requests" in result.output
        assert "~$" in result.output

    def test_invalid_config_fails(self, workspace):
        bad = os.path.join(workspace["dir"], "bad.yaml")
        with open(bad, 'w', encoding='utf-8') as f:
            f.write("admins: []\n")
        result = runner.invoke(app, ["stats", "--db", workspace["db"], "--config", bad, "--as", ADMIN_EMAIL])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading config" in result.output

    def test_delete_user(self, workspace):
        result = runner.invoke(app, ["delete-user", "user-ann", "--yes"] + _admin_args(workspace))
        assert result.exit_code == EXIT_CODE_PASS
        assert "deletes succeeded" in result.output
        assert _count(workspace["db"], "foodItems", "user-ann") == 0
        assert _count(workspace["db"], "aiUsage", "user-ann") == 0
        assert _count(workspace["db"], "foodItems", "user-cy") == 1

    def test_delete_user_aborts_without_confirmation(self, workspace):
        result = runner.invoke(app, ["delete-user", "user-ann"] + _admin_args(workspace), input="n\n")
        assert result.exit_code != EXIT_CODE_PASS
        assert _count(workspace["db"], "foodItems", "user-ann") == 2

    def test_delete_user_requires_admin(self, workspace):
        result = runner.invoke(app, [
            "delete-user", "user-ann", "--yes", "--db", workspace["db"], "--config", workspace["config"]
        ])
        assert result.exit_code == EXIT_CODE_FAIL
        assert _count(workspace["db"], "foodItems", "user-ann") == 2

    def test_populate_attributes(self, workspace):
        directory = os.path.join(workspace["dir"], "directory.yaml")
        with open(directory, 'w', encoding='utf-8') as f:
            yaml.dump({"user-bo": "Bo@Example.com"}, f)

        result = runner.invoke(
            app,
            ["populate-attributes", "user-bo", "--directory", directory] + _admin_args(workspace)
        )
        assert result.exit_code == EXIT_CODE_PASS
        assert "Updated 1" in result.output

        shown = runner.invoke(app, ["user", "user-bo"] + _admin_args(workspace))
        assert "Bo@Example.com" in shown.output

    def test_populate_attributes_missing_directory(self, workspace):
        result = runner.invoke(
            app,
            ["populate-attributes", "user-bo", "--directory", "missing.yaml"] + _admin_args(workspace)
        )
        assert result.exit_code == EXIT_CODE_FAIL
