from typing import Iterable, Set

from key_reconciler.models import CoverageReport, is_blank


def present_keys(catalog, locale: str) -> Set[str]:
    """
    Return the keypaths that have a record in ``locale``.

    Args:
        catalog: Any object exposing ``keys`` and ``get_record(keypath, locale)``.
        locale: The locale to inspect.

    Returns:
        The set of keypaths with a record, blank or not.
    """
    return {key for key in catalog.keys if catalog.get_record(key, locale) is not None}


def source_backed_keys(catalog, source_locale: str) -> Set[str]:
    """Keypaths that exist in the source locale with a non-blank value."""
    keys = set()
    for key in catalog.keys:
        record = catalog.get_record(key, source_locale)
        if record is not None and not is_blank(record.value):
            keys.add(key)
    return keys


def compute_coverage(key_universe: Iterable[str], locale: str, catalog) -> CoverageReport:
    """
    Classify a key universe against one locale.

    The catalog is only read, never modified.

    Args:
        key_universe: The keypaths the locale is expected to contain.
        locale: The locale to check.
        catalog: The catalog to read records from.

    Returns:
        A CoverageReport where:
        - missing_keys: Keys in the universe with no record in the locale.
        - empty_keys: Keys in the universe whose record has a blank value.
    """
    report = CoverageReport(locale=locale)
    for key in set(key_universe):
        record = catalog.get_record(key, locale)
        if record is None:
            report.missing_keys.add(key)
        elif is_blank(record.value):
            report.empty_keys.add(key)
    return report
