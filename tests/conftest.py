import asyncio
import json
import os
from typing import Dict, List, Optional

import pytest

from key_reconciler.catalog import JsonCatalog
from key_reconciler.models import CleanupDecision, UsageReport
from key_reconciler.usage import UsageCache


def write_catalog_files(root: str, files: Dict[str, dict]) -> None:
    """Write ``{"en/frontend.json": {...}}`` style fixtures below ``root``."""
    for relative_path, tree in files.items():
        path = os.path.join(root, relative_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(tree, f, ensure_ascii=False, indent=2)


@pytest.fixture
def make_catalog(tmp_path):
    """Factory fixture that writes catalog files and loads them."""
    def _make(files: Dict[str, dict], locales: Optional[List[str]] = None) -> JsonCatalog:
        root = str(tmp_path / 'i18n')
        os.makedirs(root, exist_ok=True)
        write_catalog_files(root, files)
        return JsonCatalog.load(root, locales)
    return _make


class FakeUsageAnalyzer:
    """Returns a fixed usage report and counts how often it was asked."""

    def __init__(self, report: Optional[UsageReport] = None, cached: bool = True):
        self.report = report or UsageReport()
        self.cache = UsageCache()
        if cached:
            self.cache.set(self.report)
        self.calls: List[bool] = []

    def has_cache(self) -> bool:
        return self.cache.has_cache()

    async def analyze_usage(self, catalog, use_cache: bool = True) -> UsageReport:
        self.calls.append(use_cache)
        self.cache.set(self.report)
        return self.report


class FakeSurface:
    def __init__(self, confirm: bool = True, cleanup_mode: Optional[bool] = False,
                 decisions: Optional[List[CleanupDecision]] = None, selection: Optional[List[str]] = None):
        self.confirm = confirm
        self.cleanup_mode = cleanup_mode
        self.decisions = list(decisions or [])
        self.selection = selection
        self.summaries = []
        self.messages: List[str] = []
        self.errors: List[str] = []

    async def info(self, message: str) -> None:
        self.messages.append(message)

    async def error(self, message: str) -> None:
        self.errors.append(message)

    async def confirm_translation(self, summary) -> bool:
        self.summaries.append(summary)
        return self.confirm

    async def choose_cleanup_mode(self) -> Optional[bool]:
        return self.cleanup_mode

    async def select_unused_keys(self, unused_keys) -> List[str]:
        if self.selection is not None:
            return self.selection
        return [info.keypath for info in unused_keys]

    async def confirm_removal(self, key_info) -> CleanupDecision:
        return self.decisions.pop(0) if self.decisions else CleanupDecision.REMOVE


class StaticPreferences:
    def __init__(self, prefs: Optional[Dict[str, str]] = None):
        self.prefs = dict(prefs or {})

    def get_all(self) -> Dict[str, str]:
        return dict(self.prefs)


class GatedBackend:
    """
    Translation backend whose completions are released by the test or
    immediately, recording every invocation and how many were in flight.
    """

    def __init__(self, catalog=None, auto_complete: bool = True, fail_on=None, on_invoke=None):
        self.catalog = catalog
        self.auto_complete = auto_complete
        self.fail_on = set(fail_on or ())
        self.on_invoke = on_invoke
        self.invocations = []
        self.pending: List[asyncio.Future] = []
        self.max_in_flight = 0

    def translate(self, record, source_locale, target_locale, source_value):
        loop = asyncio.get_running_loop()
        completion = loop.create_future()
        self.invocations.append((record.keypath, target_locale))
        self.pending = [f for f in self.pending if not f.done()]
        self.pending.append(completion)
        self.max_in_flight = max(self.max_in_flight, len(self.pending))
        if self.on_invoke is not None:
            self.on_invoke(record.keypath, target_locale)
        if (record.keypath, target_locale) in self.fail_on:
            loop.call_soon(completion.set_exception, RuntimeError("backend exploded"))
        elif self.auto_complete:
            loop.call_soon(self._complete, completion, record, target_locale, source_value)
        return completion

    def _complete(self, completion, record, target_locale, source_value):
        if not completion.done():
            completion.set_result(f"[{target_locale}] {source_value}")
