"""Template asset sources.

An asset source resolves a template name (a slash-separated relative path
such as ``ownerref/ns.yaml``) to raw bytes. Two implementations share the
AssetReader protocol and are selected by injection:

- MemFS: in-memory mapping, for embedded templates and tests
- DirFS: a directory tree on disk
"""

import logging
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from applier.common import AssetNotFoundError

logger = logging.getLogger(__name__)


@runtime_checkable
class AssetReader(Protocol):
    """Protocol for template asset sources."""

    def asset(self, name: str) -> bytes:
        """Return the raw content of a named asset."""

    def asset_names(self, excluded: Iterable[str] = ()) -> list[str]:
        """Return all asset names (sorted), minus the excluded ones."""


class MemFS:
    """Asset source backed by a name -> bytes mapping."""

    def __init__(self, data: dict[str, bytes]):
        self._data = {
            name: content.encode('utf-8') if isinstance(content, str) else content
            for name, content in data.items()
        }

    def asset(self, name: str) -> bytes:
        try:
            return self._data[name]
        except KeyError:
            raise AssetNotFoundError(name) from None

    def asset_names(self, excluded: Iterable[str] = ()) -> list[str]:
        skip = set(excluded)
        return sorted(name for name in self._data if name not in skip)


class DirFS:
    """Asset source backed by a directory tree.

    Names are POSIX-style paths relative to the root; paths escaping the
    root are rejected as not found.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _path(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if path != self.root and self.root not in path.parents:
            raise AssetNotFoundError(name)
        return path

    def asset(self, name: str) -> bytes:
        path = self._path(name)
        if not path.is_file():
            raise AssetNotFoundError(name)
        return path.read_bytes()

    def asset_names(self, excluded: Iterable[str] = ()) -> list[str]:
        skip = set(excluded)
        if not self.root.is_dir():
            logger.warning(f"Asset root {self.root} is not a directory")
            return []
        names = []
        for path in self.root.rglob('*'):
            if not path.is_file():
                continue
            name = path.relative_to(self.root).as_posix()
            if name not in skip:
                names.append(name)
        return sorted(names)


def expand_assets(reader: AssetReader, files: Iterable[str],
                  excluded: Iterable[str] = ()) -> list[str]:
    """Expand asset names and directory prefixes into concrete asset names.

    Exact names are kept in the given order; an entry that is not an asset
    name selects every asset under it (``prefix/...``) in sorted order.
    Duplicates are dropped, keeping the first occurrence.

    Raises:
        AssetNotFoundError: If an entry matches neither a name nor a prefix
    """
    skip = set(excluded)
    available = reader.asset_names(skip)
    known = set(available)
    expanded: list[str] = []
    for entry in files:
        if entry in skip:
            continue
        if entry in known:
            matches = [entry]
        else:
            prefix = entry.rstrip('/') + '/'
            matches = [name for name in available if name.startswith(prefix)]
            if not matches:
                raise AssetNotFoundError(entry)
        for name in matches:
            if name not in expanded:
                expanded.append(name)
    return expanded
