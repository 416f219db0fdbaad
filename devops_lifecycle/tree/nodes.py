"""Lazily populated resource tree.

Nodes live in an arena keyed by id and refer to each other by id only. A
node with a fetch function starts out unfetched; the first request for its
children starts the fetch in the background and answers with a transient
``<loading...>`` node. When the fetch completes the children are stored and
a change is published for the nearest displayed node.
"""

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

from devops_lifecycle.models import TreeNodeView

logger = logging.getLogger(__name__)

LOADING_LABEL = "<loading...>"
NO_ITEMS_LABEL = "<no items>"

# collapsed_into value of a single root whose children are shown at top level
WHOLE_TREE = "__tree__"


class Capability(enum.Flag):
    NONE = 0
    RENAMEABLE = enum.auto()
    REMOVABLE = enum.auto()
    RELOADABLE = enum.auto()


class _Pending:
    """Marker for children that were not fetched yet."""

    def __repr__(self) -> str:
        return "PENDING"


PENDING = _Pending()

FetchFn = Callable[["NodeTree"], Awaitable[list["TreeNode"]]]
Listener = Callable[[Optional[str]], None]


@dataclass(eq=False)
class TreeNode:
    label: str
    description: Optional[str] = None
    context_kind: Optional[str] = None
    capabilities: Capability = Capability.NONE
    fetch: Optional[FetchFn] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    parent_id: Optional[str] = None
    children: Union[list[str], None, _Pending] = None
    generation: int = 0
    collapsed_into: Optional[str] = None
    transient: bool = False

    def __post_init__(self) -> None:
        if self.fetch is not None and self.children is None:
            self.children = PENDING

    @property
    def is_lazy(self) -> bool:
        return self.fetch is not None


def text_node(label: str, context_kind: Optional[str] = None) -> TreeNode:
    return TreeNode(label=label, context_kind=context_kind)


class TreeChangeBroadcaster:
    """Single channel through which tree changes reach listeners.

    Listeners receive the id of the changed node, or None when the whole
    tree changed.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self.revision = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, node_id: Optional[str]) -> None:
        self.revision += 1
        for listener in list(self._listeners):
            listener(node_id)


class NodeTree:
    """Arena of tree nodes."""

    def __init__(self, broadcaster: Optional[TreeChangeBroadcaster] = None):
        self.broadcaster = broadcaster or TreeChangeBroadcaster()
        self.nodes: dict[str, TreeNode] = {}
        self.root_ids: list[str] = []
        self._fetching: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    def get(self, node_id: str) -> TreeNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(node_id)
        return node

    def find(self, node_id: str) -> Optional[TreeNode]:
        return self.nodes.get(node_id)

    # -- structure --

    def set_roots(self, roots: list[TreeNode]) -> None:
        """Replace the root nodes; a single root is collapsed into the tree."""
        for root_id in self.root_ids:
            if root_id not in {root.id for root in roots}:
                self.discard(root_id)
        for root in roots:
            root.parent_id = None
            root.collapsed_into = None
            self._register(root)
        self.root_ids = [root.id for root in roots]
        if len(roots) == 1:
            roots[0].collapsed_into = WHOLE_TREE
        self.broadcaster.publish(None)

    def roots(self) -> list[TreeNode]:
        """Top level nodes as displayed."""
        if len(self.root_ids) == 1:
            root = self.nodes[self.root_ids[0]]
            if root.collapsed_into == WHOLE_TREE:
                return self.get_children(root.id)
        return [self.nodes[root_id] for root_id in self.root_ids]

    def _register(self, node: TreeNode) -> None:
        self.nodes[node.id] = node

    def set_children(self, node_id: str, children: list[TreeNode]) -> None:
        """Make ``children`` the children of a node.

        Every child is detached from its previous parent; previous children
        not in the new list are dropped from the arena.
        """
        node = self.get(node_id)
        new_ids = [child.id for child in children]
        if isinstance(node.children, list):
            for old_id in node.children:
                if old_id not in new_ids:
                    self.discard(old_id)

        for child in children:
            if child.parent_id and child.parent_id != node_id:
                previous = self.nodes.get(child.parent_id)
                if previous is not None and isinstance(previous.children, list):
                    previous.children = [c for c in previous.children if c != child.id]
            child.parent_id = node_id
            self._register(child)
        node.children = new_ids

    def remove_from_parent(self, node_id: str) -> None:
        """Detach a node from its parent and notify the parent."""
        node = self.get(node_id)
        parent_id = node.parent_id
        node.parent_id = None
        if parent_id is None:
            return
        parent = self.nodes.get(parent_id)
        if parent is None:
            return
        if isinstance(parent.children, list):
            parent.children = [c for c in parent.children if c != node_id]
        self.notify(parent_id)

    def discard(self, node_id: str) -> None:
        """Drop a node and its descendants from the arena."""
        node = self.nodes.pop(node_id, None)
        if node is None:
            return
        self._fetching.pop(node_id, None)
        if isinstance(node.children, list):
            for child_id in node.children:
                self.discard(child_id)

    def collapse(self, node_id: str, into_id: str) -> None:
        """Display a node's children in place of ``into_id``."""
        self.get(node_id).collapsed_into = into_id

    # -- capabilities --

    def rename(self, node_id: str, label: str) -> None:
        node = self.get(node_id)
        if Capability.RENAMEABLE not in node.capabilities:
            raise ValueError(f"Node {node.label} cannot be renamed")
        node.label = label
        self.notify(node_id)

    def remove(self, node_id: str) -> None:
        node = self.get(node_id)
        if Capability.REMOVABLE not in node.capabilities:
            raise ValueError(f"Node {node.label} cannot be removed")
        self.remove_from_parent(node_id)
        self.discard(node_id)

    # -- lazy children --

    def get_children(self, node_id: str) -> list[TreeNode]:
        """Children of a node as displayed; starts the fetch of an unfetched node."""
        node = self.get(node_id)
        if isinstance(node.children, list) and len(node.children) == 1:
            only = self.nodes.get(node.children[0])
            if only is not None and only.collapsed_into == node.id:
                return self.get_children(only.id)

        if node.children is PENDING:
            if node.id not in self._fetching:
                self._start_fetch(node)
            return [TreeNode(label=LOADING_LABEL, parent_id=node.id, transient=True)]
        if node.children is None:
            return []
        return [self.nodes[child_id] for child_id in node.children if child_id in self.nodes]

    def is_fetching(self, node_id: str) -> bool:
        return node_id in self._fetching

    def state(self, node: TreeNode) -> str:
        if node.transient:
            return "loading"
        if node.children is PENDING:
            return "fetching" if self.is_fetching(node.id) else "unfetched"
        if node.children is None:
            return "leaf"
        return "populated"

    def _start_fetch(self, node: TreeNode) -> None:
        task = asyncio.create_task(self._fetch(node, node.generation))
        self._fetching[node.id] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(self, node: TreeNode, generation: int) -> None:
        try:
            children = await node.fetch(self)
        except Exception:
            # Browsing stays usable when a listing fails.
            logger.exception("Fetching children of %s failed", node.label)
            children = []

        if self._fetching.get(node.id) is asyncio.current_task():
            del self._fetching[node.id]
        if self.nodes.get(node.id) is not node or node.generation != generation:
            logger.debug("Discarding stale children of %s", node.label)
            return

        if not children:
            children = [text_node(NO_ITEMS_LABEL)]
        self.set_children(node.id, children)
        self.notify(node.id)

    async def wait_for_fetches(self) -> None:
        """Wait until every fetch in flight has completed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def reload(self, node_id: str) -> None:
        """Forget the children of a lazy node so the next access fetches again."""
        node = self.get(node_id)
        node.generation += 1
        if isinstance(node.children, list):
            for child_id in node.children:
                self.discard(child_id)
        node.children = PENDING if node.is_lazy else None
        self._fetching.pop(node_id, None)
        self.notify(node_id)

    # -- notification --

    def notify(self, node_id: str) -> None:
        """Publish a change for the nearest displayed node."""
        node = self.nodes.get(node_id)
        seen = set()
        while node is not None and node.collapsed_into is not None and node.id not in seen:
            seen.add(node.id)
            if node.collapsed_into == WHOLE_TREE:
                self.broadcaster.publish(None)
                return
            node = self.nodes.get(node.collapsed_into)
        if node is not None:
            self.broadcaster.publish(node.id)

    # -- views --

    def view(self, node: TreeNode) -> TreeNodeView:
        return TreeNodeView(
            id=node.id,
            label=node.label,
            description=node.description,
            context_kind=node.context_kind,
            state=self.state(node),
            capabilities=[cap.name.lower() for cap in Capability if cap and cap in node.capabilities],
            parent_id=node.parent_id,
        )
