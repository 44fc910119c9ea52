import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from tqdm.asyncio import tqdm

from key_reconciler.models import (
    ConfigurationError,
    MissingKeyInfo,
    PendingWrite,
    ReconciliationResult,
    RunState,
    TERMINAL_STATES,
    TranslationRunResult,
    TranslationTimeoutError,
    is_blank,
)
from key_reconciler.reconciler import reconcile
from key_reconciler.routing import CATALOG_BASENAMES, resolve_target_file

logger = logging.getLogger(__name__)

# Fixed-interval throttle between backend invocations, in seconds.
LOCALE_DELAY = 0.5
KEY_DELAY = 1.0
# Upper bound for a single completion wait; None waits forever.
COMPLETION_TIMEOUT = 120.0


@dataclass
class TranslationSummary:
    """What the confirmation surface is shown before translating."""
    total_keys: int
    keys_per_locale: Dict[str, int]
    source_locale: str
    target_locales: List[str]
    untranslatable: List[str] = field(default_factory=list)

    def describe(self) -> str:
        locale_summary = ', '.join(f"{locale}: {count} keys" for locale, count in self.keys_per_locale.items())
        message = (
            f"Found {self.total_keys} missing keys across {len(self.keys_per_locale)} locales.\n"
            f"Missing keys by locale: {locale_summary}\n"
            f"This will translate from {self.source_locale} to {len(self.target_locales)} locale(s)."
        )
        if self.untranslatable:
            message += (
                f"\n{len(self.untranslatable)} key(s) used in code have no {self.source_locale} value "
                f"and need manual authoring."
            )
        return message


class TranslationOrchestrator:
    """
    Single-lane pipeline that fills missing translations one (key, locale) at a time.

    A run moves through ANALYZING, AWAITING_CONFIRMATION and TRANSLATING and
    ends in COMPLETED, CANCELLED or FAILED. Only one backend invocation is in
    flight at any time; cancellation is observed between keypaths.
    """

    def __init__(
            self,
            catalog,
            usage_analyzer,
            backend,
            preference_store,
            surface,
            source_locale: str,
            target_locales: Sequence[str],
            key_delay: float = KEY_DELAY,
            locale_delay: float = LOCALE_DELAY,
            completion_timeout: Optional[float] = COMPLETION_TIMEOUT,
            active_context: Optional[str] = None,
            catalog_basenames: Sequence[str] = CATALOG_BASENAMES,
            dry_run: bool = False
    ):
        self.catalog = catalog
        self.usage_analyzer = usage_analyzer
        self.backend = backend
        self.preference_store = preference_store
        self.surface = surface
        self.source_locale = source_locale
        self.target_locales = [locale for locale in target_locales if locale != source_locale]
        self.key_delay = key_delay
        self.locale_delay = locale_delay
        self.completion_timeout = completion_timeout
        self.active_context = active_context
        self.catalog_basenames = tuple(catalog_basenames)
        self.dry_run = dry_run
        self.state = RunState.IDLE
        self._preferences: Dict[str, str] = {}
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation; the current keypath finishes first."""
        logger.info("Cancellation requested.")
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def _transition(self, new_state: RunState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Run already finished in state '{self.state.value}'")
        logger.debug(f"Orchestrator state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def analyze(self) -> ReconciliationResult:
        """Read preferences and usage, then reconcile the catalog."""
        self._preferences = self.preference_store.get_all()
        logger.info(f"Auto save preferences: {self._preferences}")
        usage_report = await self.usage_analyzer.analyze_usage(self.catalog)
        return reconcile(self.catalog, self.source_locale, self.target_locales, usage_report, self._preferences)

    def build_summary(self, result: ReconciliationResult) -> TranslationSummary:
        return TranslationSummary(
            total_keys=len(result.missing),
            keys_per_locale=result.keys_per_locale(),
            source_locale=self.source_locale,
            target_locales=list(self.target_locales),
            untranslatable=list(result.untranslatable)
        )

    async def run(self) -> TranslationRunResult:
        """
        Execute one complete auto-translation run.

        Returns:
            TranslationRunResult: The terminal state and the number of keypaths
            attempted. Failures of single keys or locales are only logged.
        """
        try:
            if self.catalog is None:
                raise ConfigurationError("No i18n catalog found. Please configure locales first.")

            self._transition(RunState.ANALYZING)
            result = await self.analyze()
            if not result.missing:
                self._transition(RunState.COMPLETED)
                await self.surface.info("No missing keys found! Your translation files are complete.")
                return TranslationRunResult(state=RunState.COMPLETED, nothing_to_do=True)

            self._transition(RunState.AWAITING_CONFIRMATION)
            if not await self.surface.confirm_translation(self.build_summary(result)):
                self._transition(RunState.CANCELLED)
                logger.info("Auto-translation declined; catalog left untouched.")
                return TranslationRunResult(state=RunState.CANCELLED)

            self._transition(RunState.TRANSLATING)
            run_result = TranslationRunResult(state=RunState.TRANSLATING)
            await self.translate_missing_keys(result.missing, run_result)

            run_result.state = RunState.CANCELLED if self.cancel_requested else RunState.COMPLETED
            self._transition(run_result.state)
            await self.surface.info(
                f"Auto-translation {'cancelled' if self.cancel_requested else 'completed'}! "
                f"Translated {run_result.translated_count} keys across {len(self.target_locales)} locale(s)."
            )
            return run_result

        except Exception as exc:
            logger.exception("Failed to auto-translate missing keys")
            self.state = RunState.FAILED
            await self.surface.error(f"Failed to auto-translate missing keys: {exc}")
            return TranslationRunResult(state=RunState.FAILED, error=str(exc))

    async def translate_missing_keys(self, missing: List[MissingKeyInfo], run_result: TranslationRunResult) -> None:
        total = len(missing)
        progress = tqdm(total=total, desc="Auto-translating missing keys", unit="key")
        try:
            for index, key_info in enumerate(missing):
                if self.cancel_requested:
                    logger.info(f"Auto-translation cancelled before '{key_info.keypath}' ({index}/{total} done).")
                    break

                progress.set_postfix_str(key_info.keypath)
                try:
                    if await self._translate_key(key_info, run_result):
                        run_result.translated_count += 1
                except Exception as exc:
                    logger.error(f"Failed to translate key '{key_info.keypath}': {exc}", exc_info=True)
                    run_result.skipped.append((key_info.keypath, None, str(exc)))
                progress.update(1)

                if index < total - 1 and self.key_delay > 0 and not self.cancel_requested:
                    await asyncio.sleep(self.key_delay)
        finally:
            progress.close()

    async def _translate_key(self, key_info: MissingKeyInfo, run_result: TranslationRunResult) -> bool:
        """
        Translate one keypath into each of its missing locales, in order.

        Returns:
            True if at least one locale was attempted.
        """
        source_record = self.catalog.get_record(key_info.keypath, self.source_locale)
        if source_record is None or is_blank(source_record.value):
            logger.warning(f"Source value for '{key_info.keypath}' is blank or gone. Skipping.")
            run_result.skipped.append((key_info.keypath, None, "blank source value"))
            return False

        attempted = False
        for locale in key_info.locales:
            try:
                if not await self._translate_locale(key_info.keypath, locale, source_record.value, run_result):
                    continue
            except Exception as exc:
                logger.error(f"Failed to translate '{key_info.keypath}' into '{locale}': {exc}", exc_info=True)
                run_result.skipped.append((key_info.keypath, locale, str(exc)))
            attempted = True
            if self.locale_delay > 0:
                await asyncio.sleep(self.locale_delay)

        if attempted:
            logger.info(f"Translated key '{key_info.keypath}' to {len(key_info.locales)} locale(s)")
        return attempted

    async def _translate_locale(self, keypath: str, locale: str, source_value: str,
                                run_result: TranslationRunResult) -> bool:
        target_file = resolve_target_file(
            locale,
            self.catalog.files_for_locale(locale),
            self._preferences,
            self.active_context,
            self.catalog_basenames
        )
        if target_file is None:
            logger.warning(f"No target file resolvable for '{keypath}' in '{locale}'. Skipping.")
            run_result.skipped.append((keypath, locale, "no target file"))
            return False

        pending = PendingWrite(keypath=keypath, locale=locale, filepath=target_file)
        if self.dry_run:
            logger.info(f"[Dry Run] Would create '{keypath}' in '{target_file}' and translate it into '{locale}'.")
            return True

        await self.catalog.write([pending])
        completion = self.backend.translate(pending, self.source_locale, locale, source_value)
        try:
            if self.completion_timeout is None:
                await completion
            else:
                await asyncio.wait_for(completion, timeout=self.completion_timeout)
        except asyncio.TimeoutError as exc:
            raise TranslationTimeoutError(keypath, locale, self.completion_timeout) from exc
        logger.debug(f"Completion received for '{keypath}' ({locale}).")
        return True
