"""
Route and filter tables.

Both tables are ordered (path pattern, value) pairs in which a pattern may
repeat. Callers can hand them over in whichever shape is convenient:

    {"/status": status_handler, "/api/*": [api_v1, api_v2]}     # dict
    [("/api/*", api_v1), ("/api/*", api_v2)]                     # pairs
    MultiMap().add("/api/*", api_v1).add("/api/*", api_v2)       # MultiMap

iter_entries() flattens any of them into pairs, preserving order.
"""

from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


class MultiMap:
    """
    Ordered mapping where one key can hold several values.

    ``m[key]`` is the first value; ``get_list(key)`` all of them;
    ``items()`` yields every (key, value) pair in insertion order.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[str, Any]]] = None):
        self._entries: List[Tuple[str, Any]] = []
        for key, value in entries or ():
            self.add(key, value)

    def add(self, key: str, value: Any) -> "MultiMap":
        self._entries.append((key, value))
        return self

    def get_list(self, key: str) -> List[Any]:
        return [v for k, v in self._entries if k == key]

    def get(self, key: str, default: Any = None) -> Any:
        values = self.get_list(key)
        return values[0] if values else default

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(list(self._entries))

    def keys(self) -> List[str]:
        return list(dict.fromkeys(k for k, _ in self._entries))

    def __getitem__(self, key: str) -> Any:
        values = self.get_list(key)
        if not values:
            raise KeyError(key)
        return values[0]

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MultiMap({self._entries!r})"


Table = Union[MultiMap, Mapping[str, Any], Iterable[Tuple[str, Any]], None]


def iter_entries(table: Table) -> Iterator[Tuple[str, Any]]:
    """
    Flatten a route or filter table into ordered (path, value) pairs.

    In a plain mapping a list or tuple value stands for several entries
    under the same path.
    """
    if table is None:
        return
    if isinstance(table, MultiMap):
        yield from table.items()
        return
    if isinstance(table, Mapping):
        for path, value in table.items():
            if isinstance(value, (list, tuple)):
                for item in value:
                    yield path, item
            else:
                yield path, value
        return
    for path, value in table:
        yield path, value

