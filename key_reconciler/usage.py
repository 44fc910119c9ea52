import asyncio
import logging
import os
import re
from typing import Iterable, List, Optional, Sequence, Set

from key_reconciler.models import UsageReport

logger = logging.getLogger(__name__)

# Matches t('key'), $t("key"), this.$t(`key`), i18n.t('key') and similar calls.
KEY_REFERENCE_RE = re.compile(r"(?<![\w$])\$?t\(\s*['\"`]([A-Za-z0-9_][\w.\-]*)['\"`]")

DEFAULT_SOURCE_EXTENSIONS = ('.js', '.jsx', '.ts', '.tsx', '.vue', '.py', '.svelte', '.html')

IGNORED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".idea",
    ".vscode",
    ".venv",
    "venv",
    "__pycache__",
    "build",
    "dist",
    "node_modules",
}


class UsageCache:
    """Holds the last usage report until it is explicitly invalidated."""

    def __init__(self):
        self._report: Optional[UsageReport] = None

    def has_cache(self) -> bool:
        return self._report is not None

    def get(self) -> Optional[UsageReport]:
        return self._report

    def set(self, report: UsageReport) -> None:
        self._report = report

    def invalidate(self) -> None:
        self._report = None


def iter_source_files(root: str, extensions: Sequence[str]) -> List[str]:
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
        for filename in sorted(filenames):
            if filename.endswith(tuple(extensions)):
                files.append(os.path.join(dirpath, filename))
    return files


def scan_key_references(source_roots: Iterable[str], extensions: Sequence[str] = DEFAULT_SOURCE_EXTENSIONS) -> Set[str]:
    """
    Collect every statically referenced keypath under the given source roots.

    Unreadable files are logged and skipped. Keys built at runtime are not detected.

    Args:
        source_roots: Directories to scan recursively.
        extensions: File extensions to include.

    Returns:
        The set of referenced keypaths.
    """
    referenced: Set[str] = set()
    for root in source_roots:
        if not os.path.isdir(root):
            logger.warning(f"Source root '{root}' does not exist. Skipping.")
            continue
        for path in iter_source_files(root, extensions):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    content = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read source file '{path}': {e}")
                continue
            referenced.update(KEY_REFERENCE_RE.findall(content))
    return referenced


def build_usage_report(referenced: Set[str], catalog_keys: Iterable[str]) -> UsageReport:
    catalog_key_set = set(catalog_keys)
    return UsageReport(
        missing=sorted(referenced - catalog_key_set),
        idle=sorted(catalog_key_set - referenced)
    )


class UsageAnalyzer:
    """
    Compares key references found in source code with the catalog.

    The cache is passed in explicitly so the cleanup path can refresh it.
    """

    def __init__(
            self,
            source_roots: Sequence[str],
            extensions: Sequence[str] = DEFAULT_SOURCE_EXTENSIONS,
            cache: Optional[UsageCache] = None
    ):
        self.source_roots = list(source_roots)
        self.extensions = tuple(extensions)
        self.cache = cache if cache is not None else UsageCache()

    def has_cache(self) -> bool:
        return self.cache.has_cache()

    async def analyze_usage(self, catalog, use_cache: bool = True) -> UsageReport:
        """
        Produce a usage report for ``catalog``.

        Args:
            catalog: The catalog whose ``keys`` are compared with code references.
            use_cache: Return the cached report when one is present.

        Returns:
            UsageReport: The point-in-time snapshot.
        """
        if use_cache and self.cache.has_cache():
            return self.cache.get()

        referenced = await asyncio.to_thread(scan_key_references, self.source_roots, self.extensions)
        report = build_usage_report(referenced, catalog.keys)
        self.cache.set(report)
        logger.info(
            f"Usage analysis: {len(referenced)} referenced key(s), "
            f"{len(report.missing)} missing from catalog, {len(report.idle)} idle."
        )
        return report
