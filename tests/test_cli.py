"""Smoke tests for the CLI."""

import json
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from effortmap import __version__
from effortmap.cli import app
from effortmap.store import CLUSTER_STORE_FILENAME


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """Run inside an empty directory with no config files or env overrides."""
    for key in ("EFFORTMAP_MODEL", "EFFORTMAP_REFINEMENT_ENABLED", "EFFORTMAP_SELF"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("effortmap.config.GLOBAL_CONFIG_PATH", tmp_path / "no-global.toml")
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def activities_file(workdir: Path) -> Path:
    """Two PRs on the same feature branch plus one unrelated Slack message."""
    records = [
        {
            "id": "pr-1",
            "source": "github",
            "timestamp": "2024-05-01T10:00:00Z",
            "title": "Add billing retries",
            "raw": {"author": "alice", "headRef": "feature/billing-retries"},
        },
        {
            "id": "pr-2",
            "source": "github",
            "timestamp": "2024-05-02T10:00:00Z",
            "title": "Backoff for billing retries",
            "raw": {"author": "alice", "headRef": "feature/billing-retries"},
        },
        {
            "id": "msg-1",
            "source": "slack",
            "timestamp": "2024-05-03T10:00:00Z",
            "title": "Lunch on Friday?",
            "raw": {"author": "bob", "channel": "random"},
        },
    ]
    path = workdir / "activities.json"
    path.write_text(json.dumps(records))
    return path


class TestVersion:
    def test_version_flag(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestSignalsCommand:
    def test_prints_signals(self, runner: CliRunner, activities_file: Path) -> None:
        result = runner.invoke(app, ["signals", str(activities_file), "--self", "alice"])

        assert result.exit_code == 0, result.output
        signals = json.loads(result.stdout)
        assert [s["id"] for s in signals] == ["pr-1", "pr-2", "msg-1"]
        assert signals[0]["container"] == "feature/billing-retries"
        assert signals[0]["collaborators"] == []
        assert signals[2]["collaborators"] == ["bob"]

    def test_invalid_file(self, runner: CliRunner, workdir: Path) -> None:
        bad = workdir / "bad.json"
        bad.write_text('{"not": "a list"}')

        result = runner.invoke(app, ["signals", str(bad)])

        assert result.exit_code == 1
        assert "Could not read activities" in result.output


class TestClusterCommand:
    def test_no_refine_json(self, runner: CliRunner, activities_file: Path) -> None:
        result = runner.invoke(
            app, ["cluster", str(activities_file), "--self", "alice", "--no-refine", "--json"]
        )

        assert result.exit_code == 0, result.output
        run = json.loads(result.stdout)
        groups = run["partition"]["groups"]
        assert len(groups) == 1
        assert groups[0]["kind"] == "heuristic"
        assert sorted(groups[0]["activity_ids"]) == ["pr-1", "pr-2"]
        assert run["partition"]["orphans"] == ["msg-1"]
        assert run["refinement"]["skipped"] is True

    def test_table_output(self, runner: CliRunner, activities_file: Path) -> None:
        result = runner.invoke(app, ["cluster", str(activities_file), "--no-refine"])

        assert result.exit_code == 0, result.output
        assert "Clusters" in result.output
        assert "msg-1" in result.output
        assert "Refinement: skipped" in result.output

    def test_refinement_with_store(
        self, runner: CliRunner, activities_file: Path, workdir: Path
    ) -> None:
        now = datetime.now(UTC).isoformat()
        (workdir / CLUSTER_STORE_FILENAME).write_text(
            json.dumps(
                [
                    {
                        "id": "c-social",
                        "name": "Team social",
                        "date_range": {"start": now, "end": now},
                    }
                ]
            )
        )

        with patch("effortmap.refinement.call_claude") as mock_call:
            mock_call.return_value = '{"msg-1": "MOVE:c-social"}'
            result = runner.invoke(
                app,
                [
                    "cluster",
                    str(activities_file),
                    "--self",
                    "alice",
                    "--store",
                    str(workdir),
                    "--json",
                ],
            )

        assert result.exit_code == 0, result.output
        run = json.loads(result.stdout)
        keys = {g["key"]: g for g in run["partition"]["groups"]}
        assert keys["c-social"]["activity_ids"] == ["msg-1"]
        assert keys["c-social"]["name"] == "Team social"
        assert run["refinement"]["attempts"] == 1
