"""
MkDocs document tree written into a session folder.

Pages are written as soon as their node completes so an interrupted run still
leaves readable output; ``finalize`` rewrites every page with its subtopic
links and regenerates the navigation of ``mkdocs.yml``.
"""

from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from loguru import logger

from explainit.workflow.models import ConceptNode, SynthesisResult
from explainit.workflow.types import NodeStatus

PLACEHOLDER_INDEX = "# {topic}\n\n*Generation in progress...*\n"


def build_nav(node: ConceptNode) -> List[Dict[str, Any]]:
    """MkDocs ``nav`` entries for the finished children of ``node``."""
    nav = []
    for child in node.children:
        if child.status != NodeStatus.DONE:
            continue
        grandchildren = build_nav(child)
        if grandchildren:
            nav.append({child.name: [{"Overview": child.relative_output_path}, *grandchildren]})
        else:
            nav.append({child.name: child.relative_output_path})
    return nav


class MkDocsSite:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.docs_dir = self.root / "docs"
        self.config_file = self.root / "mkdocs.yml"

    def scaffold(self, topic: str):
        """Create ``mkdocs.yml`` and a placeholder index unless they already exist."""
        self.docs_dir.mkdir(parents=True, exist_ok=True)
        if not self.config_file.exists():
            self._write_config(topic, [{"Home": "index.md"}])
        index = self.docs_dir / "index.md"
        if not index.exists():
            index.write_text(PLACEHOLDER_INDEX.format(topic=topic), encoding="utf-8")

    def write_page(self, relative_path: str, content: str) -> Path:
        path = self.docs_dir / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.trace(f"Wrote page {path}")
        return path

    def discard_page(self, relative_path: str):
        """Remove the page of a node that did not finish. The root index is kept."""
        if relative_path == "index.md":
            return
        path = self.docs_dir / relative_path
        if path.exists():
            path.unlink()
            logger.debug(f"Discarded page {path}")
        parent = path.parent
        if parent != self.docs_dir and parent.exists() and not any(parent.iterdir()):
            parent.rmdir()

    def finalize(self, result: SynthesisResult):
        """Write index, every page and the navigation once the root is synthesized."""
        root = result.node
        for page in result.pages:
            if page.path != "index.md":
                self.write_page(page.path, page.content)
        self.write_page("index.md", result.index_content or f"# {root.name}\n")

        self._write_config(root.name, [{"Home": "index.md"}, *build_nav(root)])
        logger.info(f"Documentation written to {self.docs_dir} ({len(result.pages)} page(s))")

    def _write_config(self, site_name: str, nav: List[Dict[str, Any]]):
        config = {
            "site_name": site_name,
            "docs_dir": "docs",
            "theme": {"name": "readthedocs"},
            "markdown_extensions": ["admonition", "toc"],
            "nav": nav,
        }
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, sort_keys=False, allow_unicode=True)
