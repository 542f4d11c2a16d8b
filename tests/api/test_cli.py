"""Tests for the semstore CLI (Click commands)."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from helpers import KeywordEmbedder

from semstore.api.cli import cli
from semstore.engine import StorageEngine

NOTE = "Quarterly budget review with finance"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path):
    data_dir = tmp_path / "data"

    def run(*args: str):
        return runner.invoke(cli, ["--data-dir", str(data_dir), *args])

    return run


@pytest.fixture
def stored(invoke):
    result = invoke("add", NOTE, "--tag", "urgent_action", "--id", "n1")
    assert result.exit_code == 0, result.output
    return invoke


class TestCliVersion:
    def test_version_flag(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "semstore" in result.output
        assert "1.0.0" in result.output


class TestCliAdd:
    def test_add(self, invoke):
        result = invoke("add", NOTE, "--id", "n1", "--source", "screen:Slack")
        assert result.exit_code == 0
        assert "Stored n1" in result.output

    def test_add_json(self, invoke):
        result = invoke("add", NOTE, "--tag", "task", "--json", "--user-created")
        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["text"] == NOTE
        assert payload["tags"] == ["task"]
        assert payload["user_created"] is True

    def test_add_too_short(self, invoke):
        result = invoke("add", "tiny")
        assert result.exit_code == 0
        assert "Skipped" in result.output

    def test_add_unknown_source(self, invoke):
        result = invoke("add", NOTE, "--source", "pigeon")
        assert result.exit_code == 2
        assert "Unknown source key" in result.output

    def test_add_unknown_tag(self, invoke):
        result = invoke("add", NOTE, "--tag", "bogus")
        assert result.exit_code == 2


class TestCliQueries:
    def test_search(self, stored):
        result = stored("search", "quarterly budget review", "--threshold", "0.5")
        assert result.exit_code == 0
        assert "Found 1 results:" in result.output
        assert "n1" in result.output

    def test_search_json(self, stored):
        result = stored("search", "quarterly budget review", "--threshold", "0.5", "--json")
        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert [r["id"] for r in payload] == ["n1"]
        assert payload[0]["match_source"] == "semantic"

    def test_search_no_results(self, stored):
        result = stored("search", "holiday photos from the beach", "--threshold", "0.9")
        assert result.exit_code == 0
        assert "No results." in result.output

    def test_hybrid(self, stored):
        result = stored("hybrid", "budget")
        assert result.exit_code == 0
        assert "n1" in result.output

    def test_query(self, stored):
        result = stored("query", f"urgent: {NOTE}")
        assert result.exit_code == 0
        assert "n1" in result.output

    def test_tag(self, stored):
        result = stored("tag", "urgent_action")
        assert result.exit_code == 0
        assert "Found 1 results:" in result.output
        assert stored("tag", "deadline").output.strip() == "No results."

    def test_recent(self, stored):
        result = stored("recent")
        assert "n1" in result.output
        assert stored("recent", "--source", "manual").output.count("n1") == 1
        assert "No results." in stored("recent", "--source", "clipboard").output


class TestCliMaintenance:
    def test_stats(self, stored):
        result = stored("stats")
        assert result.exit_code == 0
        assert "Records:     1" in result.output
        assert "Dimension:   384" in result.output
        assert "urgent_action: 1" in result.output

    def test_stats_json(self, stored):
        payload = json.loads(stored("stats", "--json").output)
        assert payload["content_count"] == 1
        assert payload["vector_count"] == 1
        assert payload["tag_counts"] == {"urgent_action": 1}

    def test_sweep(self, stored):
        result = stored("sweep")
        assert result.exit_code == 0
        assert "Sweep (retention)" in result.output
        assert "Content deleted:     0" in result.output

    def test_sweep_orphans_json(self, stored):
        payload = json.loads(stored("sweep", "--orphans-only", "--json").output)
        assert payload["operation"] == "orphans"
        assert payload["vectors_deleted"] == 0


class TestCliErrors:
    def test_provider_dimension_conflict(self, invoke):
        with patch(
            "semstore.api.cli._create_engine",
            side_effect=lambda settings: StorageEngine(settings, embedder=KeywordEmbedder()),
        ):
            result = invoke("add", "urgent email about the budget", "--id", "k1")
        assert result.exit_code == 0, result.output

        result = invoke("stats")
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "expects 8" in result.output
