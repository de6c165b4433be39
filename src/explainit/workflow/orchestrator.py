"""
Orchestrator - drives the recursive explain / decompose / synthesize workflow.

For every node of the concept tree the orchestrator:
- reuses a stored explanation when the session already produced one
- otherwise generates an explanation and runs the bounded critique/revise loop
- persists the explanation, writes its page and reports the node as done
- decomposes the topic while depth remains, validating low-confidence
  decompositions once
- filters children that repeat an ancestor or something already explored
- processes the surviving children concurrently, containing their failures
- merges its own page with the children's results

Once the whole tree has settled, a getting-started guide is built from every
explanation and placed on the landing page.

A failure of the root explanation is fatal to the run. Any other node failure
marks that node failed and the rest of the tree carries on.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

from explainit.config.config import ExplainItConfig
from explainit.config.personas import describe_persona, get_persona
from explainit.core.logging_config import add_event_bus_sink, add_session_log_sink, remove_sink
from explainit.core.session_registry import NODES_FILE_NAME, Session, SessionRegistry
from explainit.error_handler import ErrorHandler, get_error_handler
from explainit.exceptions import ConfigurationError, NodeProcessingError, RootNodeError
from explainit.output.mkdocs_site import MkDocsSite
from explainit.providers.base import ContentProvider
from explainit.providers.retry_handler import RetryContext, RetryHandler
from explainit.utils import atomic_write_json, slugify
from .context import DecomposeTask, ExploredSet, RunContext
from .events import EventBus, log_event
from .models import (
    BuilderOutput,
    Concept,
    ConceptNode,
    Decomposition,
    DecompositionContext,
    Explanation,
    ExplanationContext,
    SimilarityResult,
    SynthesisResult,
)
from .similarity import SimilarityPolicy, normalize
from .state import WorkflowStateStore
from .synthesis import Synthesizer, render_page
from .types import NodeStatus, SessionStatus, WorkflowPhase

MIN_DEPTH = 1
MAX_DEPTH = 5


class Orchestrator:
    """
    Runs sessions against a content provider.

    One orchestrator can drive several sessions concurrently; everything a
    session mutates lives in its own ``RunContext``. Every session bus is piped
    into ``self.events`` so a single subscriber can follow all of them.
    """

    def __init__(self,
                 provider: ContentProvider,
                 registry: SessionRegistry,
                 config: Optional[ExplainItConfig] = None,
                 events: Optional[EventBus] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.provider = provider
        self.registry = registry
        self.config = config or ExplainItConfig()
        self.events = events or EventBus("orchestrator")
        self.error_handler = error_handler or get_error_handler()
        self.synthesizer = Synthesizer()
        self._runs: Dict[str, RunContext] = {}

    @property
    def active_session_ids(self) -> List[str]:
        return list(self._runs)

    # Public entry points

    async def start(self, query: str, persona: Optional[str] = None,
                    depth: Optional[int] = None) -> SynthesisResult:
        """Clarify a raw query into a topic, then run it."""
        self.events.phase_changed(WorkflowPhase.CLARIFY)
        retry = RetryHandler.from_config(
            self.config.retry,
            failure_log_path=self.registry.output_dir / self.config.retry.failure_log_name,
        )
        clarification = await retry.execute_with_retry(
            lambda: self.provider.clarify(query),
            RetryContext(operation="clarify", topic=query, provider=self.provider.name),
        )

        if not clarification.is_clear and clarification.question:
            self.events.request_input(clarification.question)
            logger.warning(f"Query is ambiguous, proceeding with '{clarification.confirmed_topic}': "
                           f"{clarification.question}")

        topic = clarification.confirmed_topic.strip() or query.strip()
        if depth is None and clarification.suggested_depth is not None:
            depth = min(max(clarification.suggested_depth, MIN_DEPTH), MAX_DEPTH)
        return await self.run(topic, depth, persona)

    async def run(self, topic: str, depth: Optional[int] = None,
                  persona: Optional[str] = None) -> SynthesisResult:
        """Run a fresh session for ``topic``."""
        if not topic or not topic.strip():
            raise ConfigurationError("Topic cannot be empty")
        persona = get_persona(persona or self.config.workflow.default_persona)
        depth = self._resolve_depth(depth)

        session = self.registry.create_session(topic.strip(), persona, depth)
        return await self._execute(session, fresh=True)

    async def resume(self, session: Union[Session, str]) -> SynthesisResult:
        """Continue a session from its persisted state, skipping finished topics."""
        if isinstance(session, str):
            session = self.registry.require_session(session)
        if session.id in self._runs:
            raise ConfigurationError(f"Session {session.id} is already running")

        self.registry.update_session(session.id, status=SessionStatus.RUNNING, error=None, completed_at=None)
        return await self._execute(session, fresh=False)

    def interrupt(self, session_id: str) -> bool:
        """
        Mark a session interrupted. In-flight provider calls finish, but no
        further children are scheduled and the final status stays interrupted.

        Returns False, without touching the registry, when the session is not
        running in this orchestrator.
        """
        run = self._runs.get(session_id)
        if run is None:
            logger.warning(f"Session {session_id} is not running here, nothing to interrupt")
            return False
        run.interrupted = True
        run.log.warning("Interrupt requested, no new subtopics will be scheduled")
        return self.registry.update_session(session_id, status=SessionStatus.INTERRUPTED)

    def interrupt_all(self):
        for session_id in list(self._runs):
            self.interrupt(session_id)

    # Session lifecycle

    def _resolve_depth(self, depth: Optional[int]) -> int:
        depth = self.config.workflow.default_depth if depth is None else depth
        if not MIN_DEPTH <= depth <= MAX_DEPTH:
            raise ConfigurationError(f"Depth must be between {MIN_DEPTH} and {MAX_DEPTH}, got {depth}")
        return depth

    def _open_run(self, session: Session) -> RunContext:
        log = logger.bind(session_id=session.id)
        events = EventBus(session.id)

        run = RunContext(
            session=session,
            state=WorkflowStateStore(session.folder, log=log),
            events=events,
            retry=RetryHandler.from_config(
                self.config.retry,
                failure_log_path=session.folder / self.config.retry.failure_log_name,
                log=log,
            ),
            site=MkDocsSite(session.folder),
            similarity=SimilarityPolicy(log=log),
            log=log,
            total_depth=session.depth,
            persona=session.persona,
        )
        run.similarity.semantic_check = lambda candidate, existing: self._semantic_check(run, candidate, existing)

        run.unsubscribers.append(events.pipe(self.events))
        run.unsubscribers.append(events.subscribe_all(log_event))
        if self.config.logging.session_debug_log:
            run.sink_ids.append(add_session_log_sink(session.id, session.folder))
        run.sink_ids.append(add_event_bus_sink(events))

        self._runs[session.id] = run
        return run

    def _close_run(self, run: RunContext):
        for sink_id in run.sink_ids:
            remove_sink(sink_id)
        for unsubscribe in run.unsubscribers:
            unsubscribe()
        self._runs.pop(run.session.id, None)

    async def _execute(self, session: Session, fresh: bool) -> SynthesisResult:
        run = self._open_run(session)
        try:
            self._prepare_state(run, fresh)
            run.site.scaffold(session.topic)
            run.log.info(
                f"{'Starting' if fresh else 'Resuming'} session {session.id}: '{session.topic}' "
                f"(depth={session.depth}, persona={session.persona})"
            )
            run.events.workflow("session_started", topic=session.topic, resumed=not fresh,
                                folder=session.folder_path)

            root_task = DecomposeTask.root(session.topic, session.persona)
            root_node = self._new_node(root_task)
            try:
                result = await self.process_node(root_task, root_node, run)
            except NodeProcessingError as e:
                # the root explanation exists; only its subtree could not be planned
                result = self._contain_failure(run, root_task, root_node, e)

            result.builder_output = await self._build_guide(run, result)
            self._enter_phase(run, WorkflowPhase.SYNTHESIZE)
            result.index_content = self.synthesizer.build_index(result)
            run.site.finalize(result)
            atomic_write_json(session.folder / NODES_FILE_NAME, result.node.model_dump(mode="json"))

            final_status = SessionStatus.INTERRUPTED if run.interrupted else SessionStatus.COMPLETED
            self._enter_phase(run, WorkflowPhase.COMPLETE)
            self.registry.update_session(session.id, status=final_status)
            run.events.workflow(
                "session_completed",
                status=str(final_status),
                pages=result.stats.page_count,
                failed=result.stats.failed_count,
                word_count=result.stats.word_count,
            )
            run.log.success(
                f"Session {session.id} {final_status}: {result.stats.page_count} page(s), "
                f"{result.stats.failed_count} failed, ~{result.stats.reading_time} min read"
            )
            return result

        except asyncio.CancelledError:
            self.registry.update_session(session.id, status=SessionStatus.INTERRUPTED)
            run.log.warning(f"Session {session.id} cancelled")
            raise
        except Exception as e:
            self._fail_session(run, e)
            raise
        finally:
            self._close_run(run)

    def _prepare_state(self, run: RunContext, fresh: bool):
        session = run.session
        if fresh:
            run.state.reset(topic=session.topic, persona=session.persona, depth=session.depth)
            run.explored = ExploredSet([session.topic])
            return

        state = run.state.load()
        if not state.topic:
            run.state.update(topic=session.topic, persona=session.persona, depth=session.depth)
        run.explored = ExploredSet(run.state.explored_topics())
        run.log.info(
            f"Resuming with {len(state.explanations)} stored explanation(s) "
            f"and {len(run.explored)} explored concept(s)"
        )

    def _fail_session(self, run: RunContext, error: Exception):
        message = str(error)
        run.log.opt(exception=error).error(f"Session {run.session.id} failed: {message}")
        run.events.error(message, error=error)
        if not run.state.loaded:
            # state.json was never read; writing now would replace it with an empty state
            run.log.warning(f"Workflow state not loaded, leaving {run.state.path} untouched")
        else:
            try:
                self._enter_phase(run, WorkflowPhase.FAILED)
            except Exception as state_error:
                run.log.warning(f"Could not record failed phase: {state_error}")
        self.registry.update_session(run.session.id, status=SessionStatus.FAILED, error=message)

    # Node processing

    def _new_node(self, task: DecomposeTask) -> ConceptNode:
        fields = dict(
            id=task.node_id,
            parent_id=task.parent_id,
            depth=task.depth,
            section=task.section_prefix,
            relative_output_path=task.relative_output_path,
        )
        if task.concept is not None:
            return ConceptNode.from_concept(task.concept, **fields)
        return ConceptNode(name=task.topic, **fields)

    async def process_node(self, task: DecomposeTask, node: ConceptNode, run: RunContext) -> SynthesisResult:
        """
        Explain, decompose and synthesize one node and, recursively, its subtree.

        Raises:
            RootNodeError: the root explanation could not be produced
            NodeProcessingError: this node failed; its parent contains it
        """
        run.events.node_discovered(node.id, node.name, task.parent_id, task.depth, node.relative_output_path)

        cached = run.state.get_explanation(task.topic)
        if cached is not None:
            node.explanation = cached
            run.site.write_page(node.relative_output_path, render_page(node))
            node.update_status(NodeStatus.DONE)
            run.events.node_status(node.id, NodeStatus.DONE, cached=True)
            run.log.info(f"Reusing stored explanation for '{task.topic}'")
        else:
            node.update_status(NodeStatus.IN_PROGRESS)
            run.events.node_status(node.id, NodeStatus.IN_PROGRESS)
            try:
                explanation = await self._generate_explanation(task, node, run)
            except Exception as e:
                if task.is_root:
                    raise RootNodeError(task.topic, e) from e
                raise NodeProcessingError(task.topic, "explain", e) from e

            node.explanation = explanation
            try:
                run.state.add_explanation(task.topic, explanation)
                run.site.write_page(node.relative_output_path, render_page(node))
            except Exception as e:
                if task.is_root:
                    raise RootNodeError(task.topic, e) from e
                raise NodeProcessingError(task.topic, "persist", e) from e
            node.update_status(NodeStatus.DONE)
            run.events.node_status(node.id, NodeStatus.DONE)
            run.log.info(f"Explained '{task.topic}'")

        child_results: List[SynthesisResult] = []
        if self._should_decompose(task, node, run):
            try:
                concepts = await self._plan_children(task, node, run)
            except Exception as e:
                raise NodeProcessingError(task.topic, "decompose", e) from e
            child_results = await self._fan_out(task, node, concepts, run)

        run.state.clear_failure(task.topic)
        return self.synthesizer.synthesize(node, child_results)

    def _should_decompose(self, task: DecomposeTask, node: ConceptNode, run: RunContext) -> bool:
        if task.depth >= run.total_depth:
            return False
        if node.is_atomic:
            run.log.debug(f"'{task.topic}' is atomic, not decomposing")
            return False
        if run.interrupted:
            run.log.info(f"Interrupted, not decomposing '{task.topic}'")
            return False
        return True

    async def _call(self, run: RunContext, operation: str, topic: str,
                    call: Callable[[], Awaitable[Any]]) -> Any:
        return await run.retry.execute_with_retry(
            call,
            RetryContext(operation=operation, topic=topic, provider=self.provider.name),
        )

    async def _generate_explanation(self, task: DecomposeTask, node: ConceptNode, run: RunContext) -> Explanation:
        """Explanation plus at most ``max_revisions`` critique-driven revisions."""
        self._enter_phase(run, WorkflowPhase.SCOUT if task.is_root else WorkflowPhase.EXPLAIN)

        concept = task.concept or Concept(id=slugify(task.topic), name=task.topic)
        context = ExplanationContext(
            root_topic=task.root_topic,
            ancestors=list(task.ancestors),
            persona=task.persona,
            persona_description=describe_persona(task.persona),
        )
        remaining = run.total_depth - task.depth

        run.events.step_progress(node.id, "explain")
        explanation = await self._call(
            run, "explain", task.topic,
            lambda: self.provider.explain(concept, remaining, context),
        )

        max_revisions = self.config.workflow.max_revisions
        iterations = 0
        critique = await self._call(
            run, "critique", task.topic,
            lambda: self.provider.critique(explanation, task.persona),
        )
        while critique.needs_revision and iterations < max_revisions:
            iterations += 1
            run.events.step_progress(
                node.id, "revise",
                f"revision {iterations}/{max_revisions} after {critique.verdict} "
                f"({len(critique.fixes)} fix(es))",
            )
            explanation = await self._call(
                run, "revise", task.topic,
                lambda e=explanation, c=critique: self.provider.revise(e, c),
            )
            critique = await self._call(
                run, "critique", task.topic,
                lambda e=explanation: self.provider.critique(e, task.persona),
            )

        if critique.needs_revision:
            run.log.warning(
                f"'{task.topic}' still rated {critique.verdict} after {iterations} revision(s), accepting it"
            )
            run.state.add_warning(f"{task.topic}: accepted with critique verdict {critique.verdict}")
        run.state.record_iterations(task.topic, iterations)
        return explanation

    async def _plan_children(self, task: DecomposeTask, node: ConceptNode, run: RunContext) -> List[Concept]:
        """Decompose, validate and filter; the accepted children are persisted."""
        cached = run.state.get_decomposition(task.topic)
        if cached is not None:
            run.log.info(f"Reusing stored decomposition of '{task.topic}' ({len(cached)} subtopic(s))")
            return cached

        self._enter_phase(run, WorkflowPhase.DECOMPOSE_ROOT if task.is_root else WorkflowPhase.DECOMPOSE_CHILD)
        run.events.step_progress(node.id, "decompose")
        context = DecompositionContext(
            root_topic=task.root_topic,
            ancestors=list(task.ancestors),
            explanation=node.explanation,
            explored_concepts=run.explored.names(),
        )
        remaining = run.total_depth - task.depth
        decomposition = await self._call(
            run, "decompose", task.topic,
            lambda: self.provider.decompose(task.topic, remaining, context),
        )

        decomposition = await self._validate_decomposition(task, node, decomposition, run)
        concepts = await self._filter_children(task, node, decomposition, run)
        run.state.add_decomposition(task.topic, concepts)
        return concepts

    async def _validate_decomposition(self, task: DecomposeTask, node: ConceptNode,
                                      decomposition: Decomposition, run: RunContext) -> Decomposition:
        """
        Single-shot escalation: a low self-reported score triggers one
        validation and at most one re-decomposition, which is used as-is.
        """
        threshold = self.config.workflow.confidence_threshold
        score = decomposition.confidence_score
        if score is None or score >= threshold:
            return decomposition

        self._enter_phase(run, WorkflowPhase.VALIDATE)
        run.state.increment("validation_attempts")
        run.events.step_progress(node.id, "validate", f"confidence {score} below {threshold}")
        run.log.info(f"Validating decomposition of '{task.topic}' (confidence {score} < {threshold})")

        validation = await self._call(
            run, "validate", task.topic,
            lambda: self.provider.validate(task.topic, decomposition),
        )
        if not validation.needs_redecomposition:
            return decomposition

        run.events.step_progress(node.id, "redecompose", f"{len(validation.issues)} issue(s)")
        redecomposed = await self._call(
            run, "redecompose", task.topic,
            lambda: self.provider.redecompose(decomposition, validation.issues),
        )
        run.state.increment("redecomposition_count")
        run.log.info(
            f"Re-decomposed '{task.topic}': {len(decomposition.concepts)} -> "
            f"{len(redecomposed.concepts)} concept(s)"
        )
        return redecomposed

    async def _filter_children(self, task: DecomposeTask, node: ConceptNode,
                               decomposition: Decomposition, run: RunContext) -> List[Concept]:
        """
        Drop children that repeat the topic, an ancestor or an explored concept.

        Accepted names join the explored set one by one before anything is
        forked, so siblings are also checked against each other.
        """
        blocked = {normalize(name) for name in (task.topic, *task.ancestors)}
        accepted: List[Concept] = []

        for concept in decomposition.ordered_concepts():
            if normalize(concept.name) in blocked:
                run.log.debug(f"Dropping '{concept.name}': repeats '{task.topic}' or an ancestor")
                continue

            decision = await run.similarity.check(concept.name, run.explored)
            if decision.is_duplicate:
                run.log.info(
                    f"Dropping '{concept.name}': {decision.reason} match with '{decision.matched_name}'"
                )
                run.events.step_progress(node.id, "filter", f"skipped duplicate '{concept.name}'")
                continue

            run.explored.add(concept.name)
            accepted.append(concept)

        return accepted

    async def _semantic_check(self, run: RunContext, candidate: str, existing: List[str]) -> SimilarityResult:
        return await self._call(
            run, "check_similarity", candidate,
            lambda: self.provider.check_similarity(candidate, existing),
        )

    async def _fan_out(self, task: DecomposeTask, node: ConceptNode,
                       concepts: List[Concept], run: RunContext) -> List[SynthesisResult]:
        """Process all children concurrently and wait for every one of them to settle."""
        if not concepts:
            return []
        if run.interrupted:
            run.log.info(f"Interrupted, not scheduling {len(concepts)} subtopic(s) of '{task.topic}'")
            return []

        child_tasks = [task.child(concept, index) for index, concept in enumerate(concepts, start=1)]
        child_nodes = [self._new_node(child_task) for child_task in child_tasks]
        node.children = child_nodes

        run.log.info(f"Processing {len(child_tasks)} subtopic(s) of '{task.topic}'")
        outcomes = await asyncio.gather(
            *(self.process_node(child_task, child_node, run)
              for child_task, child_node in zip(child_tasks, child_nodes)),
            return_exceptions=True,
        )

        results: List[SynthesisResult] = []
        for child_task, child_node, outcome in zip(child_tasks, child_nodes, outcomes):
            if isinstance(outcome, Exception):
                results.append(self._contain_failure(run, child_task, child_node, outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return results

    async def _build_guide(self, run: RunContext, result: SynthesisResult) -> Optional[BuilderOutput]:
        """
        Getting-started guide over every explanation in the tree.

        A stored guide is reused until an explanation changes. A failed build
        call only costs the guide: it is logged and reported as a warning.
        """
        cached = run.state.get_builder_output()
        if cached is not None:
            run.log.info("Reusing stored getting-started guide")
            return cached
        if run.interrupted:
            run.log.info("Interrupted, not building the getting-started guide")
            return None

        explanations = [node.explanation for node in result.node.iter_nodes() if node.explanation is not None]
        if not explanations:
            return None

        self._enter_phase(run, WorkflowPhase.BUILD)
        run.events.step_progress(result.node.id, "build", f"{len(explanations)} explanation(s)")
        try:
            guide = await self._call(
                run, "build", run.session.topic,
                lambda: self.provider.build(explanations, run.total_depth),
            )
        except Exception as e:
            message = f"Getting-started guide skipped: {e}"
            self.error_handler.handle_error(e, component="orchestrator", topic=run.session.topic, reraise=False)
            run.state.add_warning(message)
            run.events.warning(message, node_id=result.node.id)
            return None

        run.state.set_builder_output(guide)
        run.log.info(f"Built getting-started guide from {len(explanations)} explanation(s)")
        return guide

    def _contain_failure(self, run: RunContext, task: DecomposeTask, node: ConceptNode,
                         error: Exception) -> SynthesisResult:
        """Turn a node failure into a failed node, a warning and a page-less result."""
        message = str(error)
        node.update_status(NodeStatus.FAILED, error_msg=message)
        self.error_handler.handle_error(error, component="orchestrator", topic=task.topic, reraise=False)

        try:
            run.state.mark_failed(task.topic, message)
        except Exception as state_error:
            run.log.warning(f"Could not record failure of '{task.topic}': {state_error}")
        run.site.discard_page(node.relative_output_path)

        run.events.node_status(node.id, NodeStatus.FAILED, error=message)
        run.events.warning(f"'{task.topic}' failed and was skipped: {message}", node_id=node.id)
        run.log.warning(f"'{task.topic}' failed, continuing with its siblings")
        return self.synthesizer.failed(node)

    def _enter_phase(self, run: RunContext, phase: WorkflowPhase):
        if run.state.state.current_phase != phase:
            run.state.set_phase(phase)
            run.events.phase_changed(phase)
