"""
Session registry: folder allocation, persistence and resume data.
"""
import json

import pytest

from explainit.core.session_registry import REGISTRY_VERSION, SessionRegistry
from explainit.exceptions import SessionNotFoundError
from explainit.workflow.state import WorkflowStateStore
from explainit.workflow.types import SessionStatus


@pytest.fixture
def registry_file(tmp_path):
    return tmp_path / "output" / "sessions.json"


class TestSessionRegistry:

    def test_folder_names_are_unique_per_topic(self, registry_file):
        registry = SessionRegistry(registry_file)

        first = registry.create_session("React Hooks", "Novice", 2)
        second = registry.create_session("React Hooks", "Expert", 3)
        third = registry.create_session("react   hooks!", "Novice", 1)

        assert [first.folder_name, second.folder_name, third.folder_name] == [
            "react_hooks", "react_hooks_2", "react_hooks_3"
        ]
        assert first.folder.is_dir()
        assert first.status == SessionStatus.RUNNING
        assert len({first.id, second.id, third.id}) == 3

    def test_existing_directory_is_not_reused(self, registry_file):
        (registry_file.parent / "rust").mkdir(parents=True)
        registry = SessionRegistry(registry_file)

        session = registry.create_session("Rust", "Novice", 2)

        assert session.folder_name == "rust_2"

    def test_sessions_survive_reload(self, registry_file):
        registry = SessionRegistry(registry_file)
        session = registry.create_session("Rust", "Novice", 2)
        registry.update_session(session.id, status=SessionStatus.FAILED, error="boom")

        reloaded = SessionRegistry(registry_file).require_session(session.id)

        assert reloaded.topic == "Rust"
        assert reloaded.status == SessionStatus.FAILED
        assert reloaded.error == "boom"
        assert reloaded.completed_at is not None
        assert reloaded.created_at == session.created_at

        with open(registry_file, encoding="utf-8") as f:
            assert json.load(f)["version"] == REGISTRY_VERSION

    def test_update_unknown_session(self, registry_file):
        registry = SessionRegistry(registry_file)

        assert registry.update_session("missing", status=SessionStatus.COMPLETED) is False

    def test_update_rejects_unknown_field(self, registry_file):
        registry = SessionRegistry(registry_file)
        session = registry.create_session("Rust", "Novice", 2)

        with pytest.raises(AttributeError):
            registry.update_session(session.id, colour="blue")

    def test_interrupted_sessions_have_no_completion_time(self, registry_file):
        registry = SessionRegistry(registry_file)
        session = registry.create_session("Rust", "Novice", 2)

        registry.update_session(session.id, status="interrupted")

        assert session.status == SessionStatus.INTERRUPTED
        assert session.completed_at is None

    def test_active_and_archived(self, registry_file):
        registry = SessionRegistry(registry_file)
        running = registry.create_session("Go", "Novice", 1)
        interrupted = registry.create_session("Rust", "Novice", 1)
        done = registry.create_session("Zig", "Novice", 1)
        registry.update_session(interrupted.id, status=SessionStatus.INTERRUPTED)
        registry.update_session(done.id, status=SessionStatus.COMPLETED)

        assert {s.id for s in registry.get_active_sessions()} == {running.id, interrupted.id}
        assert [s.id for s in registry.get_archived_sessions()] == [done.id]
        assert len(registry.list_sessions()) == 3

    def test_delete_keeps_files(self, registry_file):
        registry = SessionRegistry(registry_file)
        session = registry.create_session("Rust", "Novice", 2)

        registry.delete_session(session.id)
        registry.delete_session(session.id)

        assert registry.get_session(session.id) is None
        assert SessionRegistry(registry_file).get_session(session.id) is None
        assert session.folder.is_dir()

    def test_malformed_registry_starts_empty(self, registry_file):
        registry_file.parent.mkdir(parents=True)
        registry_file.write_text("{ definitely not json", encoding="utf-8")

        registry = SessionRegistry(registry_file)

        assert registry.list_sessions() == []
        registry.create_session("Rust", "Novice", 2)
        assert len(SessionRegistry(registry_file).list_sessions()) == 1

    def test_require_unknown_session(self, registry_file):
        with pytest.raises(SessionNotFoundError):
            SessionRegistry(registry_file).require_session("missing")

    def test_load_resume_data(self, registry_file):
        registry = SessionRegistry(registry_file)
        session = registry.create_session("Rust", "Novice", 2)
        store = WorkflowStateStore(session.folder)
        store.reset(topic="Rust")
        store.add_explanation("Ownership", {"concept_name": "Ownership"})
        (session.folder / "nodes.json").write_text(json.dumps({"id": "root"}), encoding="utf-8")
        (session.folder / "debug.log").write_text("line one\n\nline two\n", encoding="utf-8")

        data = registry.load_resume_data(session.id)

        assert data.session is session
        assert list(data.state.explanations) == ["Ownership"]
        assert data.nodes == {"id": "root"}
        assert data.logs == ["line one", "line two"]

    def test_load_resume_data_without_files(self, registry_file):
        registry = SessionRegistry(registry_file)
        session = registry.create_session("Rust", "Novice", 2)

        data = registry.load_resume_data(session.id)

        assert data.state is None
        assert data.nodes is None
        assert data.logs == []
