"""
Node paths and sparse path-keyed maps.

A node in the cube tree is identified by the sequence of (dimension, key)
choices leading to it from the root. The string form joins
"dimensionId:groupKey" segments with "|"; the root is "".

Breakdown maps (which dimension to break a node down by next) and node
states (expand/collapse) are sparse maps over these paths. Both are stored
as tries so that prefix operations - zoom, truncate below a level, prune a
branch - walk only the affected part of the tree.
"""

from dataclasses import dataclass
from typing import (
    Any, Dict, Generic, Iterable, Iterator, List, Mapping, NamedTuple,
    Optional, Sequence, Tuple, TypeVar, Union
)

SEGMENT_SEPARATOR = "|"
KEY_SEPARATOR = ":"
ESCAPE = "\\"
WILDCARD = "*"


def _escape(text: str, special: str) -> str:
    escaped = text.replace(ESCAPE, ESCAPE * 2)
    for char in special:
        escaped = escaped.replace(char, ESCAPE + char)
    return escaped


class PathSegment(NamedTuple):
    """One step down the tree: the dimension grouped on and the group key."""
    dimension_id: str
    key: str

    def __str__(self) -> str:
        dimension_id = _escape(self.dimension_id, SEGMENT_SEPARATOR + KEY_SEPARATOR)
        return f"{dimension_id}{KEY_SEPARATOR}{_escape(self.key, SEGMENT_SEPARATOR)}"

    @property
    def wildcard(self) -> "PathSegment":
        return PathSegment(self.dimension_id, WILDCARD)


NodePath = Tuple[PathSegment, ...]
PathLike = Union[str, Sequence[Sequence[str]]]

ROOT: NodePath = ()


def format_path(path: PathLike) -> str:
    """
    Render a path in its "dim:key|dim:key" string form.

    A '|' or '\\' inside a key, and a '|', ':' or '\\' inside a dimension id,
    is escaped with a backslash.
    """
    return SEGMENT_SEPARATOR.join(str(segment) for segment in as_path(path))


def _split_segment(part: str, text: str) -> PathSegment:
    dimension_chars: List[str] = []
    key_chars: Optional[List[str]] = None
    chars = iter(part)
    for char in chars:
        if char == ESCAPE:
            char = next(chars, ESCAPE)
        elif char == KEY_SEPARATOR and key_chars is None:
            key_chars = []
            continue
        (dimension_chars if key_chars is None else key_chars).append(char)
    if key_chars is None or not dimension_chars:
        raise ValueError(f"Malformed path segment '{part}' in '{text}'")
    return PathSegment("".join(dimension_chars), "".join(key_chars))


def parse_path(text: str) -> NodePath:
    """Parse a "dim:key|dim:key" string. The key is everything after the first unescaped ':'."""
    if not text:
        return ROOT
    parts = []
    current: List[str] = []
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == ESCAPE:
            current.append(char)
            escaped = True
        elif char == SEGMENT_SEPARATOR:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return tuple(_split_segment(part, text) for part in parts)


def as_path(path: Optional[PathLike]) -> NodePath:
    """Normalize a string, a sequence of (dimension, key) pairs or None to a NodePath."""
    if path is None:
        return ROOT
    if isinstance(path, str):
        return parse_path(path)
    return tuple(
        segment if isinstance(segment, PathSegment) else PathSegment(*segment)
        for segment in path
    )


class _Unset:
    """Marker for "no entry" as opposed to an explicit None value."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()

V = TypeVar("V")


class _TrieNode:
    __slots__ = ("children", "value")

    def __init__(self):
        self.children: Dict[PathSegment, "_TrieNode"] = {}
        self.value: Any = UNSET


class PathTrie(Generic[V]):
    """
    Sparse map from node paths to values.

    Entries whose segment key is "*" match any key for that dimension.
    Exact entries always take precedence over wildcard ones.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[PathLike, V]]] = None):
        self._root = _TrieNode()
        self._size = 0
        for path, value in entries or ():
            self.set(path, value)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, V]) -> "PathTrie[V]":
        return cls(mapping.items())

    @classmethod
    def from_pairs(cls, pairs: Iterable[Sequence[Any]]) -> "PathTrie[V]":
        return cls((pair[0], pair[1]) for pair in pairs)

    # --- basic map operations -------------------------------------------

    def _node(self, path: NodePath, create: bool = False) -> Optional[_TrieNode]:
        node = self._root
        for segment in path:
            child = node.children.get(segment)
            if child is None:
                if not create:
                    return None
                child = node.children[segment] = _TrieNode()
            node = child
        return node

    def set(self, path: PathLike, value: V) -> None:
        node = self._node(as_path(path), create=True)
        if node.value is UNSET:
            self._size += 1
        node.value = value

    def get(self, path: PathLike, default: Any = None) -> Any:
        """Exact lookup (wildcards are not expanded)."""
        node = self._node(as_path(path))
        if node is None or node.value is UNSET:
            return default
        return node.value

    def lookup(self, path: PathLike) -> Any:
        """
        Lookup with wildcard fallback.

        Returns UNSET when no entry matches. An entry holding None is a match.
        """
        return self._match(self._root, as_path(path), 0)

    def _match(self, node: _TrieNode, path: NodePath, index: int) -> Any:
        if index == len(path):
            return node.value
        segment = path[index]
        for candidate in (segment, segment.wildcard):
            child = node.children.get(candidate)
            if child is not None:
                value = self._match(child, path, index + 1)
                if value is not UNSET:
                    return value
            if segment.key == WILDCARD:
                break
        return UNSET

    def remove(self, path: PathLike) -> bool:
        node = self._node(as_path(path))
        if node is None or node.value is UNSET:
            return False
        node.value = UNSET
        self._size -= 1
        return True

    def __contains__(self, path: PathLike) -> bool:
        node = self._node(as_path(path))
        return node is not None and node.value is not UNSET

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[NodePath]:
        for path, _ in self.items():
            yield path

    def items(self) -> Iterator[Tuple[NodePath, V]]:
        """Entries in depth-first, insertion order."""
        stack: List[Tuple[NodePath, _TrieNode]] = [(ROOT, self._root)]
        while stack:
            path, node = stack.pop()
            if node.value is not UNSET:
                yield path, node.value
            for segment, child in reversed(list(node.children.items())):
                stack.append((path + (segment,), child))

    def to_pairs(self) -> List[List[Any]]:
        return [[format_path(path), value] for path, value in self.items()]

    def to_dict(self) -> Dict[str, V]:
        return {format_path(path): value for path, value in self.items()}

    def copy(self) -> "PathTrie[V]":
        return type(self)(self.items())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PathTrie):
            return NotImplemented
        return dict(self.items()) == dict(other.items())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict()!r})"

    # --- prefix operations ------------------------------------------------

    def prune_descendants(self, path: PathLike) -> int:
        """Drop every entry strictly below path. Returns the number dropped."""
        node = self._node(as_path(path))
        if node is None:
            return 0
        dropped = sum(1 for _ in self._walk(node))
        node.children = {}
        self._size -= dropped
        return dropped

    def truncate(self, depth: int) -> int:
        """Drop every entry whose path is at least `depth` segments long."""
        if depth <= 0:
            dropped = self._size
            self._root = _TrieNode()
            self._size = 0
            return dropped
        parents = [self._root]
        for _ in range(depth - 1):
            parents = [child for node in parents for child in node.children.values()]
        dropped = 0
        for node in parents:
            dropped += sum(1 for _ in self._walk(node))
            node.children = {}
        self._size -= dropped
        return dropped

    def _walk(self, node: _TrieNode) -> Iterator[_TrieNode]:
        """Descendant nodes holding a value."""
        for child in node.children.values():
            if child.value is not UNSET:
                yield child
            yield from self._walk(child)

    def subtree(self, path: PathLike) -> "PathTrie[V]":
        """
        Entries at or below `path`, re-keyed relative to it.

        Wildcard branches matching the prefix contribute too; where both an
        exact and a wildcard branch define the same relative path, the exact
        one wins.
        """
        matches: List[_TrieNode] = []
        self._collect(self._root, as_path(path), 0, matches)
        result: PathTrie[V] = type(self)()
        # lowest priority first so that exact matches overwrite
        for node in reversed(matches):
            for rel_path, value in _node_items(node):
                result.set(rel_path, value)
        return result

    def _collect(self, node: _TrieNode, path: NodePath, index: int,
                 matches: List[_TrieNode]) -> None:
        if index == len(path):
            matches.append(node)
            return
        segment = path[index]
        for candidate in (segment, segment.wildcard):
            child = node.children.get(candidate)
            if child is not None:
                self._collect(child, path, index + 1, matches)
            if segment.key == WILDCARD:
                break


def _node_items(node: _TrieNode) -> Iterator[Tuple[NodePath, Any]]:
    stack: List[Tuple[NodePath, _TrieNode]] = [(ROOT, node)]
    while stack:
        path, current = stack.pop()
        if current.value is not UNSET:
            yield path, current.value
        for segment, child in reversed(list(current.children.items())):
            stack.append((path + (segment,), child))


class BreakdownMap(PathTrie[Optional[str]]):
    """
    Path -> dimension id to break the node down by (None = show raw items).
    """

    def dimension_ids(self) -> List[str]:
        return [value for _, value in self.items() if value is not None]


@dataclass
class NodeState:
    """Presentational state of one node; never affects aggregation."""
    is_expanded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"isExpanded": self.is_expanded}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeState":
        return cls(is_expanded=bool(data.get("isExpanded", False)))


class NodeStateMap(PathTrie[NodeState]):
    """Path -> NodeState."""

    def is_expanded(self, path: PathLike) -> bool:
        state = self.get(path)
        return state is not None and state.is_expanded

    def expanded_paths(self) -> List[NodePath]:
        return [path for path, state in self.items() if state.is_expanded]


def resolve_child_dimension(path: NodePath,
                            breakdown_map: Optional[BreakdownMap],
                            group_by: Optional[Sequence[str]]) -> Optional[str]:
    """
    Dimension to group the children of `path` by, or None for a leaf.

    The breakdown map wins (exact entry, then wildcard); otherwise the uniform
    group_by order applies by depth. With neither, the node is a leaf.
    """
    if breakdown_map is not None:
        value = breakdown_map.lookup(path)
        if value is not UNSET:
            return value
    if group_by is not None and len(path) < len(group_by):
        return group_by[len(path)]
    return None
