"""Cross-reference catalog coverage with the usage report."""
import logging
from typing import Dict, List, Optional, Sequence

from key_reconciler.coverage import compute_coverage, source_backed_keys
from key_reconciler.models import (
    MissingKeyInfo,
    ReconciliationResult,
    UnusedKeyInfo,
    UsageReport,
)
from key_reconciler.routing import file_stem

logger = logging.getLogger(__name__)


def analyze_missing_keys(
        catalog,
        source_locale: str,
        target_locales: Sequence[str],
        usage_report: UsageReport,
        result: ReconciliationResult
) -> None:
    """
    Fill the missing-key part of ``result``.

    Only keys with a non-blank source value become translatable
    MissingKeyInfo entries. Keys referenced in code with no source value are
    recorded as untranslatable.
    """
    source_keys = source_backed_keys(catalog, source_locale)
    missing_by_locale: Dict[str, List[str]] = {}
    translatable = set()

    for locale in target_locales:
        if locale == source_locale:
            continue
        coverage = compute_coverage(source_keys, locale, catalog)
        if coverage.missing_keys:
            missing_by_locale[locale] = sorted(coverage.missing_keys)
            translatable.update(coverage.missing_keys)
            logger.info(f"{locale}: {len(coverage.missing_keys)} missing key(s) with a source value.")

    for keypath in sorted(translatable):
        locales = [locale for locale in target_locales if keypath in missing_by_locale.get(locale, ())]
        record = catalog.get_record(keypath, source_locale)
        result.missing.append(MissingKeyInfo(
            keypath=keypath,
            locales=locales,
            source_locale=source_locale,
            source_value=record.value
        ))

    code_missing = sorted(set(usage_report.missing))
    result.code_detected_missing = code_missing
    result.untranslatable = [key for key in code_missing if key not in source_keys]
    if result.untranslatable:
        logger.warning(
            f"{len(result.untranslatable)} key(s) referenced in code have no {source_locale} value "
            f"and need manual authoring."
        )
    result.missing_by_locale = missing_by_locale


def analyze_catalog_gaps(catalog, locales: Sequence[str], usage_report: UsageReport,
                         result: ReconciliationResult) -> None:
    """
    Record missing and empty keys over the full catalog key universe.

    This view feeds the missing-keys report; it is not used to drive translation.
    """
    universe = set(catalog.keys)
    all_missing = set(usage_report.missing)
    missing_by_locale: Dict[str, List[str]] = {}
    empty_by_locale: Dict[str, List[str]] = {}
    for locale in locales:
        coverage = compute_coverage(universe, locale, catalog)
        all_missing.update(coverage.missing_keys)
        if coverage.missing_keys:
            missing_by_locale[locale] = sorted(coverage.missing_keys)
        if coverage.empty_keys:
            empty_by_locale[locale] = sorted(coverage.empty_keys)
    result.catalog_missing_by_locale = missing_by_locale
    result.empty_by_locale = empty_by_locale
    result.all_missing_keys = sorted(all_missing)


def analyze_unused_keys(
        catalog,
        locales: Sequence[str],
        usage_report: UsageReport,
        preferences: Dict[str, str]
) -> List[UnusedKeyInfo]:
    """
    Turn the idle keys of a usage report into UnusedKeyInfo entries.

    When a locale has a preferred file, records living in any other file of
    that locale are left out.
    """
    unused: List[UnusedKeyInfo] = []
    for keypath in usage_report.idle:
        key_locales: List[str] = []
        files: List[str] = []
        for locale in locales:
            records = catalog.get_records(keypath, locale)
            if not records:
                continue
            preferred = preferences.get(locale)
            if preferred:
                records = [record for record in records if file_stem(record.filepath) == preferred]
                if not records:
                    logger.debug(f"{keypath} in {locale} skipped: not in preferred file '{preferred}'.")
                    continue
            key_locales.append(locale)
            for record in records:
                if record.filepath not in files:
                    files.append(record.filepath)

        if key_locales:
            unused.append(UnusedKeyInfo(keypath=keypath, locales=key_locales, files=files))

    logger.info(f"Analysis: found {len(unused)} unused key(s) that can be removed.")
    return unused


def reconcile(
        catalog,
        source_locale: str,
        target_locales: Sequence[str],
        usage_report: UsageReport,
        preferences: Optional[Dict[str, str]] = None
) -> ReconciliationResult:
    """
    Run one reconciliation pass.

    Args:
        catalog: The loaded catalog.
        source_locale: The locale translations are made from.
        target_locales: The locales expected to contain every source key.
        usage_report: Snapshot from the usage analyzer.
        preferences: Mapping of locale to preferred file basename.

    Returns:
        ReconciliationResult: Translatable missing keys, unused keys and the
        per-locale missing/empty views.
    """
    preferences = preferences or {}
    active_locales = [source_locale] + [locale for locale in target_locales if locale != source_locale]

    result = ReconciliationResult()
    analyze_missing_keys(catalog, source_locale, active_locales, usage_report, result)
    analyze_catalog_gaps(catalog, active_locales, usage_report, result)
    result.unused = analyze_unused_keys(catalog, active_locales, usage_report, preferences)
    logger.info(f"Analysis: found {len(result.missing)} missing key(s) that can be translated.")
    return result
