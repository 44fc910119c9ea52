import logging
import os
import re
from typing import Dict, Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

# Catalog basenames recognised when falling back to the active editing context.
CATALOG_BASENAMES = ("frontend", "bot")

LOCALE_DIR_RE = re.compile(r'^[a-z]{2}(?:-[A-Z]{2})?$')


def file_stem(filepath: str) -> str:
    """Return the basename of ``filepath`` without its extension."""
    return os.path.splitext(os.path.basename(filepath))[0]


def extract_locale_from_path(filepath: str) -> Optional[str]:
    """
    Extract the locale directory from a catalog path (e.g. ``/i18n/de/bot.json``).

    Args:
        filepath (str): The path to inspect.

    Returns:
        Optional[str]: The locale code if the parent directory is named like one, else None.
    """
    parts = filepath.replace('\\', '/').split('/')
    if len(parts) < 2 or not LOCALE_DIR_RE.match(parts[-2]):
        return None
    return parts[-2]


def _find_by_stem(stem: str, available_files: Iterable[str]) -> Optional[str]:
    for candidate in available_files:
        if file_stem(candidate) == stem:
            return candidate
    return None


def resolve_target_file(
        locale: str,
        available_files: Sequence[str],
        preferences: Dict[str, str],
        active_context: Optional[str] = None,
        catalog_basenames: Sequence[str] = CATALOG_BASENAMES
) -> Optional[str]:
    """
    Decide which catalog file a new record for ``locale`` should be written to.

    Resolution order, first match wins:
    1. The stored preference for the locale, matched against file basenames.
    2. The active editing context, if it belongs to the same locale and its
       basename is one of ``catalog_basenames``.
    3. None. The caller must skip the (key, locale) pair.

    No filesystem access happens here; ``available_files`` is the full list of
    candidates for the locale.

    Args:
        locale: The locale a record is about to be created in.
        available_files: The catalog files that exist for the locale.
        preferences: Mapping of locale to preferred file basename.
        active_context: Path of the file currently being edited, if any.
        catalog_basenames: Basenames accepted from the active context.

    Returns:
        The chosen file path, or None when no destination can be resolved.
    """
    preference = preferences.get(locale)
    if preference:
        match = _find_by_stem(preference, available_files)
        if match:
            return match
        logger.debug(f"Preferred file '{preference}' not found among files for '{locale}'.")

    if active_context:
        context_locale = extract_locale_from_path(active_context)
        context_stem = file_stem(active_context)
        if context_locale == locale and context_stem in catalog_basenames:
            return _find_by_stem(context_stem, available_files)

    return None
