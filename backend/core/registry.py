"""Arena of model nodes addressed by id, with lazily loaded fitted models.

One registry is created per back-test or search run and passed to every
component that needs node lookup. Nodes are only appended while a run is
in progress; removal happens between runs.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Iterator

from core.errors import InvalidStateError, NotFoundError
from core.models.node import DecisionBucket, ModelNode
from core.predictors import Predictor, create_predictor

logger = logging.getLogger(__name__)

ModelLoader = Callable[[int], Any]


class ModelRegistry:
    """Nodes, their predictors and their fitted models, keyed by node id."""

    def __init__(self, load_model: ModelLoader | None = None):
        self._load_model = load_model
        self._nodes: dict[int, ModelNode] = {}
        self._predictors: dict[int, Predictor] = {}
        self._models: dict[int, Any] = {}
        self._node_locks: dict[int, threading.Lock] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ModelRegistry:
        return self

    def __exit__(self, *exc_info) -> None:
        self.unload_all()

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[ModelNode]:
        return iter(list(self._nodes.values()))

    def __len__(self) -> int:
        return len(self._nodes)

    # ── Nodes ───────────────────────────────────────────────────

    def register(
        self,
        node: ModelNode,
        model: Any = None,
        predictor: Predictor | None = None,
    ) -> ModelNode:
        """Add a node; a fitted model may be supplied up front."""
        with self._lock:
            if node.id in self._nodes:
                raise InvalidStateError(f"Node {node.id} is already registered")
            self._nodes[node.id] = node
            self._predictors[node.id] = predictor or create_predictor(node.kind)
            self._node_locks[node.id] = threading.Lock()
            if model is not None:
                self._models[node.id] = model
        return node

    def register_all(self, nodes: Iterable[ModelNode]) -> None:
        for node in nodes:
            self.register(node)

    def get(self, node_id: int) -> ModelNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFoundError(f"Unknown model node {node_id}") from None

    def find(self, node_ids: Iterable[int]) -> list[ModelNode]:
        """Nodes for the given ids, in the given order."""
        return [self.get(node_id) for node_id in node_ids]

    def roots(self) -> list[ModelNode]:
        return [node for node in self._nodes.values() if node.is_root]

    def next_id(self) -> int:
        with self._lock:
            return max(self._nodes, default=0) + 1

    def attach_child(self, parent_id: int, bucket: DecisionBucket, child: ModelNode) -> None:
        """Register `child` (if needed) and hang it under a parent's bucket."""
        parent = self.get(parent_id)
        if parent.children[bucket] is not None:
            raise InvalidStateError(
                f"Node {parent_id} already has child {parent.children[bucket]} for {bucket.name}"
            )
        if child.id not in self._nodes:
            self.register(child)
        child.parent_id = parent_id
        parent.children[bucket] = child.id

    def remove(self, node_id: int) -> list[int]:
        """Remove a node and its subtree, detaching it from its parent first.

        Returns:
            Ids of all removed nodes, subtree first.
        """
        node = self.get(node_id)
        if node.parent_id is not None and node.parent_id in self._nodes:
            parent = self._nodes[node.parent_id]
            parent.children = [None if c == node_id else c for c in parent.children]
            node.parent_id = None

        removed: list[int] = []
        for child_id in node.child_ids():
            if child_id in self._nodes:
                removed.extend(self.remove(child_id))
        with self._lock:
            self._nodes.pop(node_id, None)
            self._predictors.pop(node_id, None)
            self._models.pop(node_id, None)
            self._node_locks.pop(node_id, None)
        removed.append(node_id)
        logger.info(f"Removed model node {node_id}")
        return removed

    # ── Predictors and fitted models ────────────────────────────

    def predictor(self, node_id: int) -> Predictor:
        self.get(node_id)
        return self._predictors[node_id]

    def model(self, node_id: int) -> Any:
        """Fitted model of a node, loading it on first use (one load per node)."""
        model = self._models.get(node_id)
        if model is not None:
            return model

        self.get(node_id)
        with self._node_locks[node_id]:
            model = self._models.get(node_id)
            if model is None:
                if self._load_model is None:
                    raise InvalidStateError(f"Node {node_id} has no fitted model")
                model = self._load_model(node_id)
                self._models[node_id] = model
                logger.debug(f"Loaded model for node {node_id}")
        return model

    def set_model(self, node_id: int, model: Any) -> None:
        self.get(node_id)
        self._models[node_id] = model

    def is_loaded(self, node_id: int) -> bool:
        return node_id in self._models

    def unload(self, node_id: int) -> None:
        """Drop a node's fitted model from memory.

        Models that were handed in directly (no loader) stay resident.
        """
        if self._load_model is not None:
            self._models.pop(node_id, None)

    def unload_all(self) -> None:
        if self._load_model is not None:
            self._models.clear()
