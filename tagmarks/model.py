from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# URL -> ordered custom tag strings, exactly as persisted.
Overlay = Dict[str, List[str]]

# Either an unscoped pattern or a field -> pattern mapping.
QueryExpression = Union[str, Dict[str, str]]


@dataclass
class Tag:
    text: str
    custom: bool = False


@dataclass
class BookmarkRecord:
    id: str
    title: str
    url: str
    date: Optional[int] = None
    tag: List[Tag] = field(default_factory=list)

    def folder_tags(self) -> List[Tag]:
        return [t for t in self.tag if not t.custom]

    def custom_tags(self) -> List[str]:
        return [t.text for t in self.tag if t.custom]


@dataclass
class TreeNode:
    id: str
    title: Optional[str] = None
    url: Optional[str] = None
    date_added: Optional[int] = None
    children: Optional[List["TreeNode"]] = None

    @property
    def is_leaf(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class StorageChange:
    key: str
    old_value: Any = None
    new_value: Any = None


class IndexState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
