"""Tests for automation, credential and run history storage."""

import json
import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from flowpilot.core.errors import DanglingEdgeError, EntryNodeError, StorageError
from flowpilot.engine.executor import ExecutionLog, ExecutionLogEntry, RunState
from flowpilot.graph.editor import new_automation
from flowpilot.graph.model import Automation
from flowpilot.storage.credentials import Credential, CredentialStore
from flowpilot.storage.history import RunHistory
from flowpilot.storage.store import AutomationStore, load_document_file, parse_document


@pytest.fixture
def store(tmp_path):
    return AutomationStore(str(tmp_path / "trees"))


class TestAutomationStore:
    """Test document persistence."""

    def test_save_and_load(self, store, branching_automation):
        """Test save and load."""
        store.save(branching_automation)

        loaded = store.load("branching")
        assert loaded.to_document() == branching_automation.to_document()
        assert store.path_for("branching").name == "tree_branching.json"
        assert store.exists("branching")

    def test_document_is_camel_case(self, store, branching_automation):
        """Test document is camel case."""
        store.save(branching_automation)
        document = json.loads(store.path_for("branching").read_text())

        assert document["nodes"][1]["data"]["conditionType"] == "elementExists"
        assert {e["sourceHandle"] for e in document["edges"] if e["source"] == "2"} == {"if", "else"}
        assert [s["type"] for s in document["steps"]] == ["navigate", "click", "screenshot"]

    def test_no_temporary_files_left(self, store, branching_automation):
        """Test no temporary files left."""
        store.save(branching_automation)
        store.save(branching_automation)

        assert [p.name for p in store.folder.iterdir()] == ["tree_branching.json"]

    def test_load_missing(self, store):
        """Test load missing."""
        assert store.load("nothing") is None
        assert not store.exists("nothing")

    def test_invalid_ids_rejected(self, store):
        """Test invalid ids rejected."""
        for bad in ("", "../x", "a\\b"):
            with pytest.raises(StorageError):
                store.path_for(bad)

    def test_save_rejects_invalid_graph(self, store):
        """Test save rejects invalid graph."""
        automation = Automation(id="broken", nodes=[])

        with pytest.raises(EntryNodeError):
            store.save(automation)
        assert not store.exists("broken")

    def test_list_sorted_and_skips_bad_documents(self, store):
        """Test list sorted and skips bad documents."""
        store.save(new_automation("Zeta", automation_id="z"))
        store.save(new_automation("alpha", automation_id="a"))
        store.folder.joinpath("tree_bad.json").write_text("{not json")

        assert [a.id for a in store.list()] == ["a", "z"]

    def test_list_empty_folder(self, store):
        """Test list empty folder."""
        assert store.list() == []

    def test_delete(self, store, branching_automation):
        """Test delete."""
        store.save(branching_automation)

        assert store.delete("branching") is True
        assert store.delete("branching") is False
        assert store.load("branching") is None


class TestParseDocument:
    """Test validation of raw documents."""

    @pytest.fixture
    def document(self, branching_automation):
        return branching_automation.to_document()

    def test_valid_document(self, document):
        """Test valid document."""
        automation = parse_document(document)
        assert automation.id == "branching"
        assert len(automation.edges) == 3

    def test_missing_edges(self, document):
        """Test missing edges."""
        del document["edges"]
        with pytest.raises(StorageError, match="edges"):
            parse_document(document)

    def test_unknown_node_type(self, document):
        """Test unknown node type."""
        document["nodes"][0]["type"] = "mystery"
        with pytest.raises(StorageError):
            parse_document(document)

    def test_unknown_step_type(self, document):
        """Test unknown step type."""
        document["nodes"][0]["data"]["step"]["type"] = "teleport"
        with pytest.raises(StorageError):
            parse_document(document)

    def test_dangling_edge(self, document):
        """Test dangling edge."""
        document["edges"].append({"id": "e3-9", "source": "3", "target": "9"})
        with pytest.raises(DanglingEdgeError):
            parse_document(document)

    def test_load_document_file(self, tmp_path, document):
        """Test load document file."""
        path = tmp_path / "flow.json"
        path.write_text(json.dumps(document))
        assert load_document_file(path).name == "branching"

        path.write_text("[")
        with pytest.raises(StorageError):
            load_document_file(path)
        with pytest.raises(StorageError):
            load_document_file(tmp_path / "missing.json")


class TestCredentialStore:
    """Test credential lookup and persistence."""

    def test_resolve_references(self):
        """Test resolve references."""
        store = CredentialStore(credentials=[
            Credential(id="site", encrypted_values={"username": "ada", "password": "pw"}),
            Credential(id="key", type="api_key", encrypted_values={"api_key": "k-1"}),
            Credential(id="odd", encrypted_values={"pin": "1234"}),
        ])

        assert store.resolve("site") == "pw"
        assert store.resolve("site#username") == "ada"
        assert store.resolve("site#nope") is None
        assert store.resolve("key") == "k-1"
        assert store.resolve("odd") == "1234"
        assert store.resolve("missing") is None

    def test_put_persists(self, tmp_path):
        """Test put persists."""
        path = tmp_path / "credentials.json"
        store = CredentialStore(str(path))
        store.put(Credential(id="site", name="Site", type="username_password",
                             encrypted_values={"password": "pw"}))

        saved = json.loads(path.read_text())
        assert saved[0]["encryptedValues"] == {"password": "pw"}
        assert "lastUpdated" in saved[0]

        reloaded = CredentialStore(str(path))
        assert reloaded.get("site").name == "Site"
        assert reloaded.delete("site") is True
        assert CredentialStore(str(path)).list() == []

    def test_wrapped_document(self, tmp_path):
        """Test wrapped document."""
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"credentials": [{"id": "t", "encryptedValues": {"token": "abc"}}]}))

        assert CredentialStore(str(path)).resolve("t") == "abc"

    def test_unreadable_file(self, tmp_path):
        """Test unreadable file."""
        path = tmp_path / "credentials.json"
        path.write_text("not json")

        with pytest.raises(StorageError):
            CredentialStore(str(path))

    def test_failed_write_leaves_no_temp_file(self, tmp_path, monkeypatch):
        """Test an interrupted save removes its temporary file."""
        def broken_dump(*args, **kwargs):
            raise TypeError("not serializable")

        path = tmp_path / "credentials.json"
        store = CredentialStore(str(path))
        monkeypatch.setattr(json, "dump", broken_dump)

        with pytest.raises(TypeError):
            store.put(Credential(id="site", encrypted_values={"password": "pw"}))

        assert list(tmp_path.glob("*.tmp")) == []
        assert not path.exists()


def make_log(run_id, automation_id, success, minutes=0, duration=1.0):
    return ExecutionLog(
        id=run_id,
        automation_id=automation_id,
        timestamp=datetime(2026, 1, 1, 12, 0) + timedelta(minutes=minutes),
        success=success,
        duration=duration,
        status=RunState.COMPLETED if success else RunState.FAILED,
        steps=[ExecutionLogEntry(step_id="1", node_id="1", success=success)],
        visited=["1"],
        error=None if success else "boom",
    )


class TestRunHistory:
    """Test run history in SQLite."""

    @pytest.fixture
    async def history(self, tmp_path):
        history = RunHistory(str(tmp_path / "history.db"))
        await history.initialize()
        yield history
        await history.close()

    @pytest.mark.asyncio
    async def test_record_and_get(self, history):
        """Test record and get."""
        await history.record(make_log("r1", "flow", False))

        record = await history.get("r1")
        assert record.automation_id == "flow"
        assert record.status == "failed"
        assert record.error == "boom"
        assert record.visited == ["1"]
        assert record.steps[0]["stepId"] == "1"
        assert await history.get("nope") is None

    @pytest.mark.asyncio
    async def test_record_as_dict(self, history):
        """Test a record serializes with camelCase keys."""
        record = await history.record(make_log("r1", "flow", True, duration=2.5))

        data = record.to_dict()
        assert data["id"] == "r1"
        assert data["automationId"] == "flow"
        assert data["success"] is True
        assert data["duration"] == 2.5
        assert data["status"] == "completed"
        assert data["visited"] == ["1"]
        assert json.loads(json.dumps(data)) == data

    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, history):
        """Test list most recent first."""
        await history.record(make_log("r1", "flow", True, minutes=0))
        await history.record(make_log("r2", "flow", True, minutes=5))
        await history.record(make_log("r3", "other", True, minutes=10))

        assert [r.run_id for r in await history.list_runs()] == ["r3", "r2", "r1"]
        assert [r.run_id for r in await history.list_runs("flow", limit=1)] == ["r2"]

    @pytest.mark.asyncio
    async def test_statistics(self, history):
        """Test run statistics per automation."""
        await history.record(make_log("r1", "flow", True, duration=2.0))
        await history.record(make_log("r2", "flow", False, minutes=1, duration=4.0))
        await history.record(make_log("r3", "other", True, minutes=2))

        stats = await history.statistics("flow")
        assert stats == {
            "total": 2,
            "succeeded": 1,
            "failed": 1,
            "success_rate": 0.5,
            "avg_duration": 3.0,
        }
        assert (await history.statistics())["total"] == 3

    @pytest.mark.asyncio
    async def test_empty_statistics(self, history):
        """Test empty statistics."""
        stats = await history.statistics()
        assert stats["total"] == 0
        assert stats["success_rate"] == 0.0

    @pytest.mark.asyncio
    async def test_delete_for(self, history):
        """Test deleting runs for one automation."""
        await history.record(make_log("r1", "flow", True))
        await history.record(make_log("r2", "other", True))

        assert await history.delete_for("flow") == 1
        assert [r.run_id for r in await history.list_runs()] == ["r2"]

    @pytest.mark.asyncio
    async def test_context_manager(self, tmp_path):
        """Test context manager opens and closes the database."""
        async with RunHistory(str(tmp_path / "nested" / "h.db")) as history:
            await history.record(make_log("r1", "flow", True))
            assert len(await history.list_runs()) == 1
