from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional, Protocol

from .model import StorageChange, TreeNode

ChangeListener = Callable[[StorageChange], None]


class TreeSource(Protocol):
    async def get_tree(self) -> TreeNode: ...


class TreeSink(Protocol):
    async def rename(self, node_id: str, title: str) -> None: ...

    async def remove_leaf(self, node_id: str) -> None: ...


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


class ListenerSet:
    """Change listeners shared by the store implementations."""

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    def add(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, change: StorageChange) -> None:
        for listener in list(self._listeners):
            listener(change)


class MemoryTree:
    """Bookmark tree held in memory; both a TreeSource and a TreeSink."""

    def __init__(self, root: TreeNode):
        self.root = root

    async def get_tree(self) -> TreeNode:
        return copy.deepcopy(self.root)

    async def rename(self, node_id: str, title: str) -> None:
        node, _parent = self._find(node_id)
        node.title = title

    async def remove_leaf(self, node_id: str) -> None:
        node, parent = self._find(node_id)
        if not node.is_leaf:
            raise ValueError(f"id is not a bookmark: {node_id}")
        if parent is None or parent.children is None:
            raise ValueError(f"cannot remove root node: {node_id}")
        parent.children.remove(node)

    def _find(self, node_id: str) -> tuple[TreeNode, Optional[TreeNode]]:
        stack: List[tuple[TreeNode, Optional[TreeNode]]] = [(self.root, None)]
        while stack:
            node, parent = stack.pop()
            if node.id == node_id:
                return node, parent
            for child in node.children or []:
                stack.append((child, node))
        raise ValueError(f"bookmark id not found: {node_id}")


class MemoryStore:
    """Key-value store held in memory.

    Values are copied on the way in and out, so callers never share state
    with the store. Every ``set`` notifies all subscribers, the writer
    included.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial or {})
        self._listeners = ListenerSet()

    async def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        old = self._data.get(key)
        self._data[key] = copy.deepcopy(value)
        self._listeners.emit(StorageChange(key=key, old_value=old, new_value=copy.deepcopy(value)))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        return self._listeners.add(listener)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)
