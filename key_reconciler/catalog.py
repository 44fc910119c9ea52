import asyncio
import json
import logging
import os
import tempfile
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from key_reconciler.models import ConfigurationError, LocaleRecord, PendingWrite

logger = logging.getLogger(__name__)

CATALOG_EXTENSION = '.json'

KeyParts = Tuple[str, ...]


def iter_leaves(tree: Dict[str, Any], parts: KeyParts = ()) -> Iterator[Tuple[KeyParts, Any]]:
    """Yield ``(key parts, value)`` for every leaf; lists and scalars are leaves."""
    for key, value in tree.items():
        key_parts = parts + (str(key),)
        if isinstance(value, dict):
            yield from iter_leaves(value, key_parts)
        else:
            yield key_parts, value


def flatten_tree(tree: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten a nested JSON object into dot-delimited keypaths.

    An empty object contributes no keys. A literal dotted key such as
    ``"errors.404"`` reads the same as the nested form.

    Args:
        tree: The nested dictionary loaded from a catalog file.

    Returns:
        An insertion-ordered mapping of keypath to leaf value.
    """
    return {'.'.join(parts): value for parts, value in iter_leaves(tree)}


def resolve_key_parts(tree: Dict[str, Any], keypath: str) -> KeyParts:
    """
    Map ``keypath`` onto the keys of ``tree``.

    Existing keys win, including literal dotted ones, longest match first.
    Segments with no existing key become new nested objects.
    """
    segments = keypath.split('.')
    parts: List[str] = []
    node: Any = tree
    index = 0
    while index < len(segments):
        match = None
        if isinstance(node, dict):
            for end in range(len(segments), index, -1):
                candidate = '.'.join(segments[index:end])
                if candidate in node:
                    match = (candidate, end)
                    break
        if match is None:
            parts.extend(segments[index:])
            break
        parts.append(match[0])
        node = node[match[0]]
        index = match[1]
    return tuple(parts)


def set_in_tree(tree: Dict[str, Any], parts: KeyParts, value: Any) -> None:
    node = tree
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            if child is not None:
                logger.warning(f"Key '{'.'.join(parts)}' shadows leaf '{part}'; the leaf value is replaced.")
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def delete_from_tree(tree: Dict[str, Any], parts: KeyParts) -> bool:
    """
    Remove one leaf. Objects left empty by the removal are removed too;
    untouched empty objects stay.

    Returns:
        True if the leaf existed.
    """
    trail = []
    node = tree
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            return False
        trail.append((node, part))
        node = child
    if parts[-1] not in node:
        return False
    del node[parts[-1]]
    while trail and not node:
        parent, part = trail.pop()
        del parent[part]
        node = parent
    return True


class JsonCatalog:
    """
    Catalog of JSON locale files laid out as ``<root>/<locale>/<name>.json``.

    A locale may be split across several files. Each file keeps its parsed
    tree; writes and deletes edit that tree in place, so keys a run does not
    touch are saved exactly as they were read. Writes go through a single
    lock so that one file write completes before the next one starts.
    """

    def __init__(self, root: str):
        self.root = root
        # file path -> locale
        self._file_locales: Dict[str, str] = {}
        # file path -> parsed JSON tree
        self._file_trees: Dict[str, Dict[str, Any]] = {}
        # file path -> keypath -> (key parts, value)
        self._file_entries: Dict[str, Dict[str, Tuple[KeyParts, Any]]] = {}
        self._write_lock = asyncio.Lock()

    @classmethod
    def load(cls, root: str, locales: Optional[Iterable[str]] = None) -> 'JsonCatalog':
        """
        Load every catalog file under ``root``.

        Args:
            root: The directory holding one sub-directory per locale.
            locales: Restrict loading to these locales; all directories when None.

        Returns:
            The loaded catalog.

        Raises:
            ConfigurationError: If ``root`` is not a directory.
        """
        if not os.path.isdir(root):
            raise ConfigurationError(f"Locales root '{root}' does not exist or is not a directory.")

        catalog = cls(root)
        wanted = set(locales) if locales is not None else None
        for locale in sorted(os.listdir(root)):
            locale_dir = os.path.join(root, locale)
            if not os.path.isdir(locale_dir) or locale.startswith('.'):
                continue
            if wanted is not None and locale not in wanted:
                continue
            for filename in sorted(os.listdir(locale_dir)):
                if filename.endswith(CATALOG_EXTENSION):
                    catalog._load_file(os.path.join(locale_dir, filename), locale)
        logger.info(f"Loaded {len(catalog._file_trees)} catalog file(s) from '{root}'.")
        return catalog

    def _load_file(self, file_path: str, locale: str) -> None:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                tree = json.load(f)
        except json.JSONDecodeError as json_exc:
            logger.error(f"Skipping catalog file '{file_path}': invalid JSON ({json_exc}).")
            return
        if not isinstance(tree, dict):
            logger.error(f"Skipping catalog file '{file_path}': top level must be an object.")
            return
        self.add_file(file_path, locale, tree)

    def add_file(self, file_path: str, locale: str, tree: Optional[Dict[str, Any]] = None) -> None:
        """Register a catalog file and its parsed tree."""
        self._file_locales[file_path] = locale
        self._file_trees[file_path] = tree if tree is not None else {}
        self._reindex(file_path)

    def _reindex(self, file_path: str) -> None:
        self._file_entries[file_path] = {
            '.'.join(parts): (parts, value) for parts, value in iter_leaves(self._file_trees[file_path])
        }

    @property
    def locales(self) -> List[str]:
        return sorted(set(self._file_locales.values()))

    @property
    def keys(self) -> List[str]:
        """All keypaths present in at least one locale, sorted."""
        all_keys = set()
        for entries in self._file_entries.values():
            all_keys.update(entries.keys())
        return sorted(all_keys)

    def files_for_locale(self, locale: str) -> List[str]:
        return [path for path, file_locale in self._file_locales.items() if file_locale == locale]

    def get_records(self, keypath: str, locale: Optional[str] = None) -> List[LocaleRecord]:
        """
        Return every record of ``keypath``, optionally limited to one locale.

        A keypath can live in more than one file of the same locale.
        """
        records = []
        for path, entries in self._file_entries.items():
            file_locale = self._file_locales[path]
            if locale is not None and file_locale != locale:
                continue
            if keypath in entries:
                value = entries[keypath][1]
                records.append(LocaleRecord(
                    keypath=keypath,
                    locale=file_locale,
                    value=value if value is None or isinstance(value, str) else json.dumps(value),
                    filepath=path
                ))
        return records

    def get_record(self, keypath: str, locale: str) -> Optional[LocaleRecord]:
        records = self.get_records(keypath, locale)
        return records[0] if records else None

    def get_filepath(self, keypath: str, locale: str) -> Optional[str]:
        record = self.get_record(keypath, locale)
        return record.filepath if record else None

    def _key_parts(self, file_path: str, keypath: str) -> KeyParts:
        entry = self._file_entries[file_path].get(keypath)
        if entry is not None:
            return entry[0]
        return resolve_key_parts(self._file_trees[file_path], keypath)

    async def write(self, pending_writes: Iterable[PendingWrite]) -> None:
        """Persist a batch of pending writes, one file at a time."""
        async with self._write_lock:
            touched = set()
            for pending in pending_writes:
                self._ensure_file(pending.filepath, pending.locale)
                parts = self._key_parts(pending.filepath, pending.keypath)
                set_in_tree(self._file_trees[pending.filepath], parts, pending.value)
                touched.add(pending.filepath)
            for path in sorted(touched):
                self._reindex(path)
                await asyncio.to_thread(self._save_file, path)

    async def set_value(self, keypath: str, locale: str, value: str, filepath: str) -> None:
        await self.write([PendingWrite(keypath=keypath, locale=locale, filepath=filepath, value=value)])

    async def delete(self, records: Iterable[LocaleRecord]) -> int:
        """
        Remove a batch of records and save every touched file once.

        Returns:
            The number of records actually removed.
        """
        removed = 0
        async with self._write_lock:
            touched = set()
            for record in records:
                entries = self._file_entries.get(record.filepath)
                if entries is None or record.keypath not in entries:
                    logger.warning(f"Record '{record.keypath}' not found in '{record.filepath}'. Skipping.")
                    continue
                parts = entries[record.keypath][0]
                if delete_from_tree(self._file_trees[record.filepath], parts):
                    touched.add(record.filepath)
                    removed += 1
            for path in sorted(touched):
                self._reindex(path)
                await asyncio.to_thread(self._save_file, path)
        return removed

    def _ensure_file(self, file_path: str, locale: str) -> None:
        if file_path not in self._file_trees:
            logger.info(f"Creating new catalog file '{file_path}' for locale '{locale}'.")
            self.add_file(file_path, locale)

    def _save_file(self, file_path: str) -> None:
        """Write a catalog file atomically via a temporary file in the same directory."""
        directory = os.path.dirname(file_path) or '.'
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as temp_f:
                json.dump(self._file_trees[file_path], temp_f, ensure_ascii=False, indent=2)
                temp_f.write('\n')
            os.replace(temp_path, file_path)
        except OSError:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise
        logger.debug(f"Saved catalog file '{file_path}'.")
