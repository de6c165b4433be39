"""
Behaviour of the orchestration engine against a scripted provider.
"""
import asyncio
import json

import pytest

from explainit.config.config import ExplainItConfig
from explainit.exceptions import (
    ConfigurationError,
    RootNodeError,
    SessionNotFoundError,
    StateError,
    TerminalProviderError,
    TransientProviderError,
    UnknownPersonaError,
)
from explainit.workflow.events import EventBus
from explainit.workflow.models import BuilderOutput, Clarification, Critique, ValidationResult
from explainit.workflow.orchestrator import Orchestrator
from explainit.workflow.state import WorkflowStateStore
from explainit.workflow.types import EventTopic, NodeStatus, SessionStatus

from conftest import make_decomposition


def only_session(registry):
    sessions = registry.list_sessions()
    assert len(sessions) == 1
    return sessions[0]


def node_snapshot(result):
    return [(node.id, node.status, node.explanation) for node in result.node.iter_nodes()]


class TestRun:

    @pytest.mark.asyncio
    async def test_builds_tree_pages_and_site(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])

        result = await orchestrator.run("Python", depth=1)

        session = only_session(registry)
        docs = session.folder / "docs"
        assert session.status == SessionStatus.COMPLETED
        assert session.completed_at is not None
        assert session.folder_name == "python"

        assert [child.id for child in result.node.children] == ["1_variables", "2_functions"]
        assert all(child.status == NodeStatus.DONE for child in result.node.children)
        assert result.stats.page_count == 3
        assert result.stats.failed_count == 0

        assert (docs / "index.md").exists()
        assert (docs / "1_variables" / "index.md").exists()
        assert (docs / "2_functions" / "index.md").exists()
        assert (session.folder / "mkdocs.yml").exists()
        assert (session.folder / "nodes.json").exists()

        index = (docs / "index.md").read_text(encoding="utf-8")
        assert "[Variables](1_variables/index.md)" in index

    @pytest.mark.asyncio
    async def test_depth_limits_recursion(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"])
        provider.decompositions["Variables"] = make_decomposition(["Scope"])

        result = await orchestrator.run("Python", depth=2)

        variables = result.node.children[0]
        assert [child.id for child in variables.children] == ["1_1_scope"]
        assert variables.children[0].relative_output_path == "1_variables/1_1_scope/index.md"
        assert provider.count("decompose") == 2
        assert provider.count("decompose", "Scope") == 0

    @pytest.mark.asyncio
    async def test_atomic_concepts_are_not_decomposed(self, orchestrator, provider):
        decomposition = make_decomposition(["Variables"])
        decomposition.concepts[0] = decomposition.concepts[0].model_copy(update={"is_atomic": True})
        provider.decompositions["Python"] = decomposition

        await orchestrator.run("Python", depth=3)

        assert provider.count("decompose", "Variables") == 0

    @pytest.mark.asyncio
    async def test_rejects_bad_depth_and_persona(self, orchestrator):
        with pytest.raises(ConfigurationError):
            await orchestrator.run("Python", depth=0)
        with pytest.raises(ConfigurationError):
            await orchestrator.run("Python", depth=6)
        with pytest.raises(UnknownPersonaError):
            await orchestrator.run("Python", persona="Wizard")
        with pytest.raises(ConfigurationError):
            await orchestrator.run("   ")

    @pytest.mark.asyncio
    async def test_persona_is_case_insensitive(self, orchestrator, registry):
        await orchestrator.run("Python", depth=1, persona="expert")

        assert only_session(registry).persona == "Expert"

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried_and_logged(self, orchestrator, provider, registry, config):
        provider.explain_failures["Python"] = [TransientProviderError("rate limited")]

        await orchestrator.run("Python", depth=1)

        session = only_session(registry)
        assert session.status == SessionStatus.COMPLETED
        assert provider.count("explain", "Python") == 2

        failure_log = session.folder / config.retry.failure_log_name
        entries = [json.loads(line) for line in failure_log.read_text(encoding="utf-8").splitlines()]
        assert len(entries) == 1
        assert entries[0]["operation"] == "explain"
        assert entries[0]["topic"] == "Python"
        assert entries[0]["will_retry"] is True


class TestCritiqueLoop:

    @pytest.mark.asyncio
    async def test_revisions_are_capped(self, orchestrator, provider, registry):
        provider.critiques["Python"] = [Critique(verdict="REVISE", fixes=[{"problem": "too vague"}])]

        result = await orchestrator.run("Python", depth=1)

        assert provider.count("revise", "Python") == 2
        assert provider.count("critique", "Python") == 3
        assert result.node.explanation.body.endswith("(revised) (revised)")
        state = WorkflowStateStore(only_session(registry).folder).load()
        assert state.concept_iterations["Python"] == 2
        assert "Python: accepted with critique verdict REVISE" in state.warnings

    @pytest.mark.asyncio
    async def test_loop_stops_on_pass(self, orchestrator, provider):
        provider.critiques["Python"] = [Critique(verdict="RETHINK"), Critique(verdict="PASS")]

        await orchestrator.run("Python", depth=1)

        assert provider.count("revise", "Python") == 1
        assert provider.count("critique", "Python") == 2

    @pytest.mark.asyncio
    async def test_max_revisions_is_configurable(self, provider, registry, config, error_handler):
        config = config.merge_with({"workflow": {"max_revisions": 0}})
        orchestrator = Orchestrator(provider, registry, config, error_handler=error_handler)
        provider.critiques["Python"] = [Critique(verdict="REVISE")]

        await orchestrator.run("Python", depth=1)

        assert provider.count("revise") == 0


class TestValidation:

    @pytest.mark.asyncio
    async def test_confident_decomposition_is_not_validated(self, orchestrator, provider):
        provider.decompositions["Python"] = make_decomposition(["Variables"], confidence=9)

        await orchestrator.run("Python", depth=1)

        assert provider.count("validate") == 0

    @pytest.mark.asyncio
    async def test_missing_confidence_skips_validation(self, orchestrator, provider):
        provider.decompositions["Python"] = make_decomposition(["Variables"], confidence=None)

        await orchestrator.run("Python", depth=1)

        assert provider.count("validate") == 0

    @pytest.mark.asyncio
    async def test_valid_verdict_keeps_original(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"], confidence=5)

        result = await orchestrator.run("Python", depth=1)

        assert provider.count("validate", "Python") == 1
        assert provider.count("redecompose") == 0
        assert [child.name for child in result.node.children] == ["Variables"]
        state = WorkflowStateStore(only_session(registry).folder).load()
        assert state.validation_attempts == 1
        assert state.redecomposition_count == 0

    @pytest.mark.asyncio
    async def test_low_confidence_redecomposes_once(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Cooking", "Variables"], confidence=4)
        provider.redecompositions["Python"] = make_decomposition(["Variables", "Functions"], confidence=2)
        provider.validation = ValidationResult(
            verdict="NEEDS_REDECOMPOSITION",
            issues=[{"concept": "Cooking", "problem": "not part of Python"}],
        )

        result = await orchestrator.run("Python", depth=1)

        assert provider.count("validate") == 1
        assert provider.count("redecompose") == 1
        assert [child.name for child in result.node.children] == ["Variables", "Functions"]
        state = WorkflowStateStore(only_session(registry).folder).load()
        assert state.redecomposition_count == 1


class TestFiltering:

    @pytest.mark.asyncio
    async def test_topic_and_duplicates_are_dropped(self, orchestrator, provider):
        provider.decompositions["Python"] = make_decomposition(["Python", "Variables", "Variable", "Functions"])

        result = await orchestrator.run("Python", depth=1)

        assert [child.name for child in result.node.children] == ["Variables", "Functions"]

    @pytest.mark.asyncio
    async def test_ancestors_and_explored_concepts_are_dropped(self, orchestrator, provider):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.decompositions["Variables"] = make_decomposition(["Python", "Functions", "Scope"])

        result = await orchestrator.run("Python", depth=2)

        variables = result.node.children[0]
        assert [child.name for child in variables.children] == ["Scope"]

    @pytest.mark.asyncio
    async def test_semantic_duplicates_are_dropped(self, orchestrator, provider):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Bindings", "Closures"])
        provider.similar["Bindings"] = "Variables"

        result = await orchestrator.run("Python", depth=1)

        assert [child.name for child in result.node.children] == ["Variables", "Closures"]
        assert provider.count("check_similarity", "Closures") == 1

    @pytest.mark.asyncio
    async def test_learning_sequence_orders_children(self, orchestrator, provider):
        provider.decompositions["Python"] = make_decomposition(
            ["Functions", "Variables"], learning_sequence=["variables", "functions"]
        )

        result = await orchestrator.run("Python", depth=1)

        assert [child.id for child in result.node.children] == ["1_variables", "2_functions"]


class TestFailureContainment:

    @pytest.mark.asyncio
    async def test_failed_child_does_not_abort_siblings(self, orchestrator, provider, registry, error_handler):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions", "Modules"])
        provider.explain_failures["Functions"] = TerminalProviderError("content policy")
        warnings = []
        orchestrator.events.subscribe(EventTopic.ERROR, warnings.append)

        result = await orchestrator.run("Python", depth=1)

        session = only_session(registry)
        statuses = {child.name: child.status for child in result.node.children}
        assert session.status == SessionStatus.COMPLETED
        assert statuses == {
            "Variables": NodeStatus.DONE,
            "Functions": NodeStatus.FAILED,
            "Modules": NodeStatus.DONE,
        }
        assert result.stats.failed_count == 1
        assert result.stats.page_count == 3
        assert not (session.folder / "docs" / "2_functions" / "index.md").exists()
        assert "content policy" in result.node.children[1].error

        state = WorkflowStateStore(session.folder).load()
        assert state.failed_concepts == ["Functions"]
        assert any(event.type == "warning" for event in warnings)
        assert error_handler.get_error_stats()["total_errors"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_only_that_child(self, orchestrator, provider, config):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.explain_failures["Functions"] = TransientProviderError("timeout")

        result = await orchestrator.run("Python", depth=1)

        assert provider.count("explain", "Functions") == config.retry.max_attempts
        assert result.node.children[1].status == NodeStatus.FAILED
        assert result.node.children[0].status == NodeStatus.DONE

    @pytest.mark.asyncio
    async def test_failed_child_decomposition_fails_the_child(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"])
        provider.decompose_failures["Variables"] = TerminalProviderError("rejected")

        result = await orchestrator.run("Python", depth=2)

        session = only_session(registry)
        variables = result.node.children[0]
        assert variables.status == NodeStatus.FAILED
        assert session.status == SessionStatus.COMPLETED
        assert not (session.folder / "docs" / "1_variables" / "index.md").exists()
        # the explanation survives for a later resume
        assert WorkflowStateStore(session.folder).load().explanations["Variables"]["concept_name"] == "Variables"

    @pytest.mark.asyncio
    async def test_recovered_child_is_no_longer_failed(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"])
        provider.decompose_failures["Variables"] = TerminalProviderError("rejected")
        await orchestrator.run("Python", depth=2)
        session = only_session(registry)
        assert WorkflowStateStore(session.folder).load().failed_concepts == ["Variables"]

        provider.decompose_failures.clear()
        provider.calls.clear()
        result = await orchestrator.resume(session.id)

        assert result.node.children[0].status == NodeStatus.DONE
        assert provider.count("explain") == 0
        assert provider.count("decompose", "Variables") == 1
        assert WorkflowStateStore(session.folder).load().failed_concepts == []
        assert (session.folder / "docs" / "1_variables" / "index.md").exists()

    @pytest.mark.asyncio
    async def test_root_explanation_failure_is_fatal(self, orchestrator, provider, registry):
        provider.explain_failures["Python"] = TerminalProviderError("invalid api key")

        with pytest.raises(RootNodeError):
            await orchestrator.run("Python", depth=2)

        session = only_session(registry)
        assert session.status == SessionStatus.FAILED
        assert "invalid api key" in session.error
        assert provider.count("decompose") == 0
        assert orchestrator.active_session_ids == []

    @pytest.mark.asyncio
    async def test_root_decomposition_failure_is_contained(self, orchestrator, provider, registry):
        provider.decompose_failures["Python"] = TerminalProviderError("rejected")

        result = await orchestrator.run("Python", depth=2)

        session = only_session(registry)
        assert session.status == SessionStatus.COMPLETED
        assert result.node.status == NodeStatus.FAILED
        assert (session.folder / "docs" / "index.md").exists()


class TestResume:

    @pytest.mark.asyncio
    async def test_resume_of_finished_session_calls_nothing(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.decompositions["Variables"] = make_decomposition(["Scope"])
        first = await orchestrator.run("Python", depth=2)
        session = only_session(registry)
        provider.calls.clear()

        second = await orchestrator.resume(session.id)

        assert provider.calls == []
        assert node_snapshot(second) == node_snapshot(first)
        assert all(status == NodeStatus.DONE for _, status, _ in node_snapshot(second))
        assert second.stats.page_count == first.stats.page_count
        assert registry.get_session(session.id).status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_corrupted_state_is_left_untouched(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"])
        await orchestrator.run("Python", depth=1)
        session = only_session(registry)
        state_file = session.folder / "state.json"
        corrupted = state_file.read_text(encoding="utf-8")[:40]
        state_file.write_text(corrupted, encoding="utf-8")
        provider.calls.clear()

        for _ in range(2):
            with pytest.raises(StateError):
                await orchestrator.resume(session.id)

        assert provider.calls == []
        assert state_file.read_text(encoding="utf-8") == corrupted
        stored = registry.get_session(session.id)
        assert stored.status == SessionStatus.FAILED
        assert "Cannot load workflow state" in stored.error

    @pytest.mark.asyncio
    async def test_resume_only_regenerates_missing_topics(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.explain_failures["Functions"] = TerminalProviderError("flaky")
        await orchestrator.run("Python", depth=1)
        session = only_session(registry)

        provider.explain_failures.clear()
        provider.calls.clear()
        result = await orchestrator.resume(session)

        assert provider.count("explain") == 1
        assert provider.count("explain", "Functions") == 1
        assert provider.count("decompose") == 0
        assert all(child.status == NodeStatus.DONE for child in result.node.children)
        state = WorkflowStateStore(session.folder).load()
        assert state.failed_concepts == []

    @pytest.mark.asyncio
    async def test_resume_rebuilds_explored_set(self, orchestrator, provider, registry):
        session = registry.create_session("Python", "Novice", 1)
        store = WorkflowStateStore(session.folder)
        store.reset(topic="Python", persona="Novice", depth=1)
        store.add_explanation("Variables", {"concept_name": "Variables"})
        provider.decompositions["Python"] = make_decomposition(["Variable", "Functions"])

        result = await orchestrator.resume(session.id)

        assert [child.name for child in result.node.children] == ["Functions"]

    @pytest.mark.asyncio
    async def test_resume_unknown_session(self, orchestrator):
        with pytest.raises(SessionNotFoundError):
            await orchestrator.resume("missing")


class TestSessionsAndEvents:

    @pytest.mark.asyncio
    async def test_interrupt_stops_new_fan_out(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"])

        def interrupt(topic):
            for session_id in orchestrator.active_session_ids:
                orchestrator.interrupt(session_id)

        provider.on_explain = interrupt

        result = await orchestrator.run("Python", depth=2)

        assert only_session(registry).status == SessionStatus.INTERRUPTED
        assert provider.count("decompose") == 0
        assert result.node.children == []
        assert provider.count("build") == 0

    @pytest.mark.asyncio
    async def test_interrupt_ignores_sessions_not_running_here(self, orchestrator, registry):
        await orchestrator.run("Python", depth=1)
        session = only_session(registry)

        assert orchestrator.interrupt(session.id) is False
        assert orchestrator.interrupt("missing") is False

        assert registry.get_session(session.id).status == SessionStatus.COMPLETED
        assert registry.get_active_sessions() == []

    @pytest.mark.asyncio
    async def test_concurrent_sessions_do_not_share_state(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.decompositions["Rust"] = make_decomposition(["Ownership", "Functions"])

        python, rust = await asyncio.gather(
            orchestrator.run("Python", depth=1),
            orchestrator.run("Rust", depth=1),
        )

        # each session has its own explored set, so both keep "Functions"
        assert [child.name for child in python.node.children] == ["Variables", "Functions"]
        assert [child.name for child in rust.node.children] == ["Ownership", "Functions"]

        sessions = {session.topic: session for session in registry.list_sessions()}
        assert {s.status for s in sessions.values()} == {SessionStatus.COMPLETED}
        python_state = WorkflowStateStore(sessions["Python"].folder).load()
        rust_state = WorkflowStateStore(sessions["Rust"].folder).load()
        assert sorted(python_state.explanations) == ["Functions", "Python", "Variables"]
        assert sorted(rust_state.explanations) == ["Functions", "Ownership", "Rust"]
        assert orchestrator.active_session_ids == []

    @pytest.mark.asyncio
    async def test_events_carry_session_id(self, provider, registry, config, error_handler):
        bus = EventBus("global")
        orchestrator = Orchestrator(provider, registry, config, events=bus, error_handler=error_handler)
        provider.decompositions["Python"] = make_decomposition(["Variables"])
        events = []
        bus.subscribe_all(events.append)

        await orchestrator.run("Python", depth=1)

        session = only_session(registry)
        assert events
        assert {event.session_id for event in events} == {session.id}
        discovered = [e.data["node_id"] for e in events if e.type == "node_discovered"]
        assert discovered == ["root", "1_variables"]
        assert any(e.type == "phase_changed" and e.data["phase"] == "complete" for e in events)

    @pytest.mark.asyncio
    async def test_same_topic_gets_separate_folders(self, orchestrator, registry):
        await orchestrator.run("React Hooks", depth=1)
        await orchestrator.run("React Hooks", depth=1)

        folders = sorted(session.folder_name for session in registry.list_sessions())
        assert folders == ["react_hooks", "react_hooks_2"]

    @pytest.mark.asyncio
    async def test_start_clarifies_query(self, orchestrator, provider, registry):
        provider.clarification = Clarification(confirmed_topic="React Hooks", suggested_depth=9)

        await orchestrator.start("how do react hooks work?")

        session = only_session(registry)
        assert session.topic == "React Hooks"
        assert session.depth == 5
        assert provider.count("clarify") == 1

    @pytest.mark.asyncio
    async def test_clarify_failures_reach_the_failure_log(self, orchestrator, provider, registry, config):
        provider.clarify_failures = [TransientProviderError("rate limited")]
        provider.clarification = Clarification(confirmed_topic="React Hooks", suggested_depth=1)

        await orchestrator.start("hooks?")

        assert provider.count("clarify") == 2
        log_path = registry.output_dir / config.retry.failure_log_name
        entries = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
        assert [(e["operation"], e["topic"]) for e in entries] == [("clarify", "hooks?")]

    @pytest.mark.asyncio
    async def test_default_depth_and_persona_from_config(self, provider, registry, error_handler):
        config = ExplainItConfig.from_dict({
            "retry": {"base_delay": 0, "max_delay": 0},
            "workflow": {"default_depth": 3, "default_persona": "Layman"},
            "paths": {"output_dir": str(registry.output_dir)},
        })
        orchestrator = Orchestrator(provider, registry, config, error_handler=error_handler)

        await orchestrator.run("Python")

        session = only_session(registry)
        assert session.depth == 3
        assert session.persona == "Layman"


class TestGettingStartedGuide:

    def setup_method(self):
        self.guide = BuilderOutput(
            prerequisites=["A terminal"],
            quick_start=["Install Python"],
            implementation_steps=[{"step": "Write hello.py", "expected_output": "Hello"}],
            next_steps=["Read about modules"],
        )

    @pytest.mark.asyncio
    async def test_guide_is_built_from_every_explanation(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.builder_output = self.guide
        phases = []
        orchestrator.events.subscribe(
            EventTopic.WORKFLOW,
            lambda event: phases.append(event.data.get("phase")) if event.type == "phase_changed" else None,
        )

        result = await orchestrator.run("Python", depth=1)

        assert provider.built_from == ["Python", "Variables", "Functions"]
        assert result.builder_output == self.guide
        assert phases.index("build") < phases.index("synthesize")

        session = only_session(registry)
        index = (session.folder / "docs" / "index.md").read_text(encoding="utf-8")
        assert "## Getting started" in index
        assert "1. Install Python" in index
        assert "1. **Write hello.py**" in index
        assert index.index("## Getting started") < index.index("## Contents")
        state = WorkflowStateStore(session.folder).load()
        assert state.builder_output["prerequisites"] == ["A terminal"]

    @pytest.mark.asyncio
    async def test_failed_build_only_loses_the_guide(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables"])
        provider.build_failure = TerminalProviderError("quota exceeded")
        warnings = []
        orchestrator.events.subscribe(EventTopic.ERROR, warnings.append)

        result = await orchestrator.run("Python", depth=1)

        session = only_session(registry)
        assert session.status == SessionStatus.COMPLETED
        assert result.builder_output is None
        assert result.stats.page_count == 2
        assert provider.count("build") == 1
        index = (session.folder / "docs" / "index.md").read_text(encoding="utf-8")
        assert "## Getting started" not in index
        assert any("quota exceeded" in event.data["message"] for event in warnings)
        state = WorkflowStateStore(session.folder).load()
        assert state.builder_output is None
        assert any("Getting-started guide skipped" in w for w in state.warnings)

    @pytest.mark.asyncio
    async def test_guide_is_rebuilt_only_after_new_explanations(self, orchestrator, provider, registry):
        provider.decompositions["Python"] = make_decomposition(["Variables", "Functions"])
        provider.explain_failures["Functions"] = TerminalProviderError("flaky")
        await orchestrator.run("Python", depth=1)
        session = only_session(registry)
        assert provider.built_from == ["Python", "Variables"]

        provider.explain_failures.clear()
        provider.calls.clear()
        await orchestrator.resume(session.id)

        assert provider.count("build") == 1
        assert provider.built_from == ["Python", "Variables", "Functions"]

        provider.calls.clear()
        await orchestrator.resume(session.id)

        assert provider.calls == []
