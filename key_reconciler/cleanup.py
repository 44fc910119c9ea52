import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from key_reconciler.models import CleanupDecision, ConfigurationError, LocaleRecord, UnusedKeyInfo
from key_reconciler.reconciler import analyze_unused_keys

logger = logging.getLogger(__name__)

# Delay before the usage analysis is refreshed after a deletion, in seconds.
REFRESH_DELAY = 0.5


class CleanupExecutor:
    """
    Removes unused keys from every locale in a single batch deletion.

    After a deletion the usage analysis is refreshed in the background, so
    the caller does not wait for the rescan.
    """

    def __init__(self, catalog, usage_analyzer, surface=None, refresh_delay: float = REFRESH_DELAY,
                 dry_run: bool = False):
        self.catalog = catalog
        self.usage_analyzer = usage_analyzer
        self.surface = surface
        self.refresh_delay = refresh_delay
        self.dry_run = dry_run
        self._refresh_handle: Optional[asyncio.TimerHandle] = None
        self._refresh_task: Optional[asyncio.Task] = None

    async def analyze(self, locales: Sequence[str], preferences) -> List[UnusedKeyInfo]:
        usage_report = await self.usage_analyzer.analyze_usage(self.catalog)
        logger.info(f"Analysis: found {len(usage_report.idle)} idle key(s) from usage analysis")
        return analyze_unused_keys(self.catalog, locales, usage_report, preferences)

    async def run(self, locales: Sequence[str], preference_store) -> int:
        """
        Interactive cleanup: analyze, let the surface choose, then remove.

        Returns:
            The number of keypaths removed.
        """
        try:
            if self.catalog is None:
                raise ConfigurationError("No i18n catalog found. Please configure locales first.")

            confirm_each = await self.surface.choose_cleanup_mode()
            if confirm_each is None:
                return 0

            preferences = preference_store.get_all()
            unused_keys = await self.analyze(locales, preferences)
            if not unused_keys:
                if preferences:
                    await self.surface.info("No unused keys found in your preferred files! Your translation files are clean.")
                else:
                    await self.surface.info("No unused keys found! Your translation files are clean.")
                return 0

            selection = await self.surface.select_unused_keys(unused_keys)
            if not selection:
                return 0
            return await self.cleanup(unused_keys, selection, confirm_each)

        except Exception as exc:
            logger.exception("Failed to cleanup unused keys")
            await self.surface.error(f"Failed to cleanup unused keys: {exc}")
            return 0

    async def cleanup(self, unused_keys: Sequence[UnusedKeyInfo], selection: Optional[Iterable[str]] = None,
                      confirm_each: bool = False) -> int:
        """
        Remove the selected unused keys.

        Args:
            unused_keys: The candidates produced by the analysis.
            selection: Keypaths to remove; all candidates when None.
            confirm_each: Ask the surface before each key. A CANCEL_ALL answer
                stops the queue; keys already queued are still removed.

        Returns:
            The number of keypaths removed.
        """
        selected = set(selection) if selection is not None else None
        records_to_delete: List[LocaleRecord] = []
        removed_count = 0

        for key_info in unused_keys:
            if selected is not None and key_info.keypath not in selected:
                continue
            if confirm_each:
                decision = await self.surface.confirm_removal(key_info)
                if decision == CleanupDecision.CANCEL_ALL:
                    logger.info("Cleanup cancelled; remaining keys are kept.")
                    break
                if decision != CleanupDecision.REMOVE:
                    continue

            records = self.catalog.get_records(key_info.keypath)
            if not records:
                logger.warning(f"Key '{key_info.keypath}' no longer exists in the catalog. Skipping.")
                continue
            records_to_delete.extend(records)
            removed_count += 1
            logger.info(f"Queued key '{key_info.keypath}' for removal from {len(records)} locale record(s)")

        if not records_to_delete:
            return 0

        if self.dry_run:
            logger.info(f"[Dry Run] Would remove {removed_count} key(s) ({len(records_to_delete)} records).")
            return removed_count

        try:
            await self.catalog.delete(records_to_delete)
        except Exception as exc:
            logger.error(f"Failed to delete records: {exc}", exc_info=True)
            if self.surface is not None:
                await self.surface.error(f"Failed to delete records: {exc}")
            return 0

        if self.usage_analyzer.has_cache():
            self.usage_analyzer.cache.invalidate()
            self.schedule_refresh()

        if self.surface is not None:
            await self.surface.info(
                f"Cleanup completed! Removed {removed_count} unused keys ({len(records_to_delete)} total records)."
            )
        return removed_count

    def schedule_refresh(self) -> None:
        """Schedule one usage rescan after ``refresh_delay``; a pending one is replaced."""
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
        loop = asyncio.get_running_loop()
        self._refresh_handle = loop.call_later(self.refresh_delay, self._start_refresh)

    def _start_refresh(self) -> None:
        self._refresh_handle = None
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh())

    async def _refresh(self) -> None:
        try:
            await self.usage_analyzer.analyze_usage(self.catalog, use_cache=False)
        except Exception as exc:
            logger.error(f"Background usage refresh failed: {exc}", exc_info=True)

    async def wait_for_refresh(self) -> None:
        """Wait until a scheduled refresh (if any) has finished."""
        while self._refresh_handle is not None:
            await asyncio.sleep(0.01)
        if self._refresh_task is not None:
            await self._refresh_task
