"""
Bottom-up merge of a subtree's explanations into pages and a table of contents.
"""

import posixpath
from typing import List

from explainit.utils import count_words, reading_time_minutes
from .models import BuilderOutput, ConceptNode, Explanation, Page, SynthesisResult, SynthesisStats, TocEntry
from .types import NodeStatus


def _section(title: str, lines: List[str]) -> List[str]:
    return [f"## {title}", "", *lines, ""]


def render_explanation(node: ConceptNode, explanation: Explanation) -> str:
    """Markdown for a single concept page."""
    parts = [f"# {node.name}", ""]

    if node.one_liner:
        parts += [f"*{node.one_liner}*", ""]
    if explanation.summary:
        parts += [f"> {explanation.summary}", ""]
    if explanation.body:
        parts += [explanation.body.strip(), ""]
    if explanation.analogy:
        parts += _section("Analogy", [explanation.analogy.strip()])
    if explanation.key_points:
        parts += _section("Key points", [f"- {p}" for p in explanation.key_points])
    if explanation.examples:
        parts += _section("Examples", [f"{e.strip()}\n" for e in explanation.examples])
    if explanation.common_misconceptions:
        parts += _section("Common misconceptions", [f"- {m}" for m in explanation.common_misconceptions])
    if explanation.check_understanding:
        parts += _section(
            "Check your understanding",
            [f"{i}. {q}" for i, q in enumerate(explanation.check_understanding, start=1)],
        )

    return "\n".join(parts).rstrip() + "\n"


def render_subtopics(node: ConceptNode) -> str:
    links = []
    page_dir = posixpath.dirname(node.relative_output_path)
    for child in node.children:
        if child.status != NodeStatus.DONE:
            links.append(f"- {child.name} *(not available: generation failed)*")
            continue
        link = posixpath.relpath(child.relative_output_path, page_dir or ".")
        suffix = f": {child.one_liner}" if child.one_liner else ""
        links.append(f"- [{child.name}]({link}){suffix}")
    if not links:
        return ""
    return "\n" + "\n".join(_section("Subtopics", links)).rstrip() + "\n"


def render_page(node: ConceptNode) -> str:
    """Full page of a finished node, including links to its children."""
    if node.explanation is None:
        return f"# {node.name}\n"
    return render_explanation(node, node.explanation) + render_subtopics(node)


def render_guide(guide: BuilderOutput) -> str:
    """The "Getting started" section of the landing page."""
    parts = ["## Getting started", ""]

    if guide.prerequisites:
        parts += ["### Prerequisites", "", *[f"- {p}" for p in guide.prerequisites], ""]
    if guide.quick_start:
        parts += ["### Quick start", "", *[f"{i}. {s}" for i, s in enumerate(guide.quick_start, start=1)], ""]
    if guide.project_structure:
        parts += ["### Project structure", "", "```", guide.project_structure.strip("\n"), "```", ""]
    if guide.implementation_steps:
        parts += ["### Step by step", ""]
        for i, step in enumerate(guide.implementation_steps, start=1):
            line = f"{i}. **{step.step}**"
            if step.description:
                line += f": {step.description}"
            parts.append(line)
            if step.expected_output:
                parts.append(f"    *Expected:* {step.expected_output}")
        parts.append("")
    if guide.checkpoints:
        parts += ["### Checkpoints", "", *[f"- [ ] {c}" for c in guide.checkpoints], ""]
    if guide.common_issues:
        parts += ["### Common issues", "", *[f"- {c}" for c in guide.common_issues], ""]
    if guide.next_steps:
        parts += ["### Next steps", "", *[f"- {n}" for n in guide.next_steps], ""]

    return "\n".join(parts).rstrip() + "\n"


class Synthesizer:
    """Merges a node with the already-synthesized results of its children."""

    def synthesize(self, node: ConceptNode, child_results: List[SynthesisResult]) -> SynthesisResult:
        pages: List[Page] = []
        toc: List[TocEntry] = [
            TocEntry(title=node.name, path=node.relative_output_path, depth=node.depth, status=node.status)
        ]
        failed = 0 if node.status == NodeStatus.DONE else 1

        if node.status == NodeStatus.DONE and node.explanation is not None:
            pages.append(Page(
                id=node.id,
                title=node.name,
                path=node.relative_output_path,
                content=render_page(node),
                depth=node.depth,
            ))

        for child_result in child_results:
            pages.extend(child_result.pages)
            toc.extend(child_result.table_of_contents)
            failed += child_result.stats.failed_count

        words = sum(count_words(page.content) for page in pages)
        stats = SynthesisStats(
            word_count=words,
            reading_time=reading_time_minutes(words),
            page_count=len(pages),
            failed_count=failed,
        )
        return SynthesisResult(node=node, pages=pages, table_of_contents=toc, stats=stats)

    def failed(self, node: ConceptNode) -> SynthesisResult:
        """Result for a node whose processing failed: listed, but without a page."""
        entry = TocEntry(title=node.name, path=node.relative_output_path, depth=node.depth, status=NodeStatus.FAILED)
        return SynthesisResult(
            node=node,
            table_of_contents=[entry],
            stats=SynthesisStats(failed_count=1),
        )

    def build_index(self, result: SynthesisResult) -> str:
        """Landing page: root explanation, getting-started guide, table of contents."""
        root = result.node
        if root.explanation is not None:
            parts = [render_explanation(root, root.explanation).rstrip(), ""]
        else:
            parts = [f"# {root.name}", ""]

        if result.builder_output is not None and not result.builder_output.is_empty:
            parts += [render_guide(result.builder_output).rstrip(), ""]

        entries = result.table_of_contents[1:]
        if entries:
            parts += ["## Contents", ""]
            for entry in entries:
                indent = "    " * max(entry.depth - 1, 0)
                if entry.status == NodeStatus.DONE:
                    parts.append(f"{indent}- [{entry.title}]({entry.path})")
                else:
                    parts.append(f"{indent}- {entry.title} *(generation failed)*")
            parts.append("")

        stats = result.stats
        parts.append(
            f"*{stats.page_count} page(s), {stats.word_count} words, "
            f"about {stats.reading_time} min read.*"
        )
        return "\n".join(parts) + "\n"
