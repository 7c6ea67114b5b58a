"""CLI tests driven through typer's CliRunner."""

import json
import re
from uuid import uuid4

import pytest
from rich.console import Console
from typer.testing import CliRunner

from knowledge.interfaces import cli
from knowledge.interfaces.cli import app

runner = CliRunner()

UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Mock embeddings, in-memory vectors and a sqlite record store under tmp_path."""
    monkeypatch.setenv("KNOWLEDGE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("KNOWLEDGE_EMBEDDING__PROVIDER", "mock")
    monkeypatch.setenv("KNOWLEDGE_RERANK__PROVIDER", "lexical")
    monkeypatch.setenv("KNOWLEDGE_VECTOR_STORE__STORE_TYPE", "memory")
    monkeypatch.setenv("KNOWLEDGE_RECORD_STORE__STORE_TYPE", "sqlite")
    monkeypatch.setenv("KNOWLEDGE_RECORD_STORE__CONNECTION_STRING", str(tmp_path / "kb.db"))
    monkeypatch.setenv("KNOWLEDGE_FILE_RETRIEVAL__PROVIDER", "none")
    monkeypatch.setenv("KNOWLEDGE_CHUNKING__CHUNK_SIZE", "200")
    monkeypatch.setenv("KNOWLEDGE_CHUNKING__CHUNK_OVERLAP", "20")
    # Logging setup binds to the runner's captured streams, so it stays out of these tests.
    monkeypatch.setattr(cli, "configure_from_config", lambda config: None)
    monkeypatch.setattr(cli, "console", Console(width=200))
    return tmp_path


def invoke(workspace, *args):
    return runner.invoke(app, [*args, "--config", str(workspace / "missing.toml")])


class TestCLI:
    def test_info(self, workspace):
        result = invoke(workspace, "info")
        assert result.exit_code == 0
        assert "Embedding Provider" in result.output
        assert "mock" in result.output
        assert "200 / 20" in result.output

    def test_add_list_delete(self, workspace):
        added = invoke(workspace, "add-qa", "How do I reset my password?", "Use the reset link.")
        assert added.exit_code == 0, added.output
        entry_id = UUID_PATTERN.search(added.output).group(0)

        listed = invoke(workspace, "list")
        assert listed.exit_code == 0
        assert entry_id in listed.output
        assert "qa_pair" in listed.output

        deleted = invoke(workspace, "delete-entry", entry_id)
        assert deleted.exit_code == 0
        assert "Deleted entry" in deleted.output

        assert "No entries found" in invoke(workspace, "list").output

    def test_add_schema(self, workspace):
        schema_file = workspace / "schema.json"
        schema_file.write_text(json.dumps({
            "database": "shop",
            "tables": [{"name": "orders", "columns": ["id"]}, {"name": "customers", "columns": ["id"]}],
        }))

        result = invoke(workspace, "add-schema", str(schema_file))

        assert result.exit_code == 0, result.output
        assert "with 2 table(s)" in result.output

    def test_ingest(self, workspace):
        document = workspace / "notes.txt"
        document.write_text(" ".join(f"Note {i} about delivery schedules." for i in range(30)))

        result = invoke(workspace, "ingest", str(document))

        assert result.exit_code == 0, result.output
        count = int(re.search(r"Indexed (\d+) chunk", result.output).group(1))
        assert count > 1

    def test_ingest_missing_file(self, workspace):
        result = invoke(workspace, "ingest", str(workspace / "nope.txt"))
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_search_without_results(self, workspace):
        result = invoke(workspace, "search", "anything at all")
        assert result.exit_code == 0
        assert "No results found" in result.output

    def test_search_rejects_unknown_type(self, workspace):
        result = invoke(workspace, "search", "query", "--type", "poem")
        assert result.exit_code == 1
        assert "Unknown type" in result.output

    def test_delete_entry_invalid_id(self, workspace):
        result = invoke(workspace, "delete-entry", "not-a-uuid")
        assert result.exit_code == 1
        assert "Invalid entry id" in result.output

    def test_delete_entry_unknown_id(self, workspace):
        result = invoke(workspace, "delete-entry", str(uuid4()))
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_delete_source_nothing_indexed(self, workspace):
        result = invoke(workspace, "delete-source", "ghost-file")
        assert result.exit_code == 0
        assert "Deleted source ghost-file" in result.output
        assert "(0 record(s), 0 linked entry(ies))" in result.output

    def test_embed_pending_with_nothing_pending(self, workspace):
        result = invoke(workspace, "embed-pending")
        assert result.exit_code == 0
        assert "Embedded 0 pending entries" in result.output
