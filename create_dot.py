"""Export one stored generation's link graph to Graphviz DOT.

Usage:
    python main.py export-dot --out graph.dot
    python main.py export-dot --out graph.dot --build-id <id>

Notes:
- Nodes are pages keyed by page id; node labels are page titles.
- Edges are connections (origin -> target) of the same generation.
- Without --build-id the active generation is exported.
- This emits a DOT file only; it does not require the Graphviz system binaries.
"""

from __future__ import annotations

from pathlib import Path

from graphviz import Digraph

from build_store import BuildStore
from errors import NotFoundError
from page_store import PageStore


def build_graph(page_store: PageStore, build_id: str) -> Digraph:
    graph = Digraph("wiki")
    graph.attr("graph", rankdir="LR")
    graph.attr("node", shape="box")

    for page in page_store.get_all_pages(build_id):
        graph.node(page.id, label=page.title)

    for origin, target in sorted(page_store.list_connections(build_id)):
        graph.edge(origin, target)

    return graph


def export_dot(
    page_store: PageStore,
    build_store: BuildStore,
    out_path: str | Path,
    *,
    build_id: str | None = None,
) -> Path:
    """Write the DOT source of `build_id` (default: the active build) to `out_path`."""

    if build_id is None:
        active = build_store.find_active_build()
        if active is None:
            raise NotFoundError("No active build found")
        build_id = active.id
    else:
        build_store.get_build(build_id)

    path = Path(out_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_graph(page_store, build_id).source, encoding="utf-8")
    return path
