"""Per-locale auto-save preferences and locale directory auto-detection."""
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import jsonschema

from key_reconciler.catalog import CATALOG_EXTENSION
from key_reconciler.models import ReconcilerError
from key_reconciler.routing import CATALOG_BASENAMES, LOCALE_DIR_RE

logger = logging.getLogger(__name__)

# Locale directory containers scanned by detect_locales, relative to the workspace root.
LOCALE_CONTAINER_DIRS = ('i18n', 'locales', 'lang', 'languages', 'translations')

PREFERENCES_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.*$": {"type": "string", "minLength": 1}
    },
    "additionalProperties": False
}


def is_valid_locale_code(locale: str) -> bool:
    return bool(LOCALE_DIR_RE.match(locale.strip()))


class AutoSavePreferenceStore:
    """
    Persisted mapping of locale to preferred catalog file basename.

    The file is created on first update. Every update rewrites the whole
    mapping through a temporary file and ``os.replace``, so readers never see
    a partially applied change.
    """

    def __init__(self, path: str):
        self.path = path

    def get_all(self) -> Dict[str, str]:
        """
        Load the stored preferences.

        Returns:
            Dict[str, str]: The mapping; empty when the file does not exist.

        Raises:
            ReconcilerError: If the file is not valid JSON or fails schema validation.
        """
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            jsonschema.validate(instance=data, schema=PREFERENCES_SCHEMA)
        except json.JSONDecodeError as json_exc:
            raise ReconcilerError(f"Preferences file '{self.path}' is not valid JSON: {json_exc}") from json_exc
        except jsonschema.ValidationError as schema_exc:
            raise ReconcilerError(
                f"Preferences file '{self.path}' is malformed: {schema_exc.message}"
            ) from schema_exc
        return data

    def get(self, locale: str) -> Optional[str]:
        return self.get_all().get(locale)

    def set(self, locale: str, basename: str) -> None:
        prefs = self.get_all()
        prefs[locale] = basename
        self._save(prefs)
        logger.info(f"Auto save preference set: {locale} -> {basename}{CATALOG_EXTENSION}")

    def clear(self) -> None:
        self._save({})
        logger.info("Auto save preferences cleared")

    def _save(self, prefs: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as temp_f:
                json.dump(prefs, temp_f, ensure_ascii=False, indent=2, sort_keys=True)
            os.replace(temp_path, self.path)
        except OSError:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise


@dataclass
class DetectedLocale:
    locale: str
    path: str
    basenames: List[str] = field(default_factory=list)


def detect_locales(workspace_root: str, catalog_basenames: Sequence[str] = CATALOG_BASENAMES) -> List[DetectedLocale]:
    """
    Find locale directories under the usual container folders of a workspace.

    A directory counts as a locale when it holds at least one recognised
    catalog file (e.g. ``frontend.json`` or ``bot.json``).

    Args:
        workspace_root: The workspace to scan.
        catalog_basenames: The catalog basenames to look for.

    Returns:
        List[DetectedLocale]: One entry per locale directory found.
    """
    detected: List[DetectedLocale] = []
    for container in LOCALE_CONTAINER_DIRS:
        base_path = os.path.join(workspace_root, container)
        if not os.path.isdir(base_path):
            continue
        for entry in sorted(os.listdir(base_path)):
            locale_path = os.path.join(base_path, entry)
            if not os.path.isdir(locale_path):
                continue
            present = [
                name for name in catalog_basenames
                if os.path.isfile(os.path.join(locale_path, f"{name}{CATALOG_EXTENSION}"))
            ]
            if present:
                detected.append(DetectedLocale(locale=entry, path=locale_path, basenames=present))
    logger.info(f"Detected {len(detected)} locale(s): {', '.join(d.locale for d in detected)}")
    return detected


def apply_detected_preferences(
        store: AutoSavePreferenceStore,
        detected: Sequence[DetectedLocale],
        choices: Optional[Dict[str, str]] = None
) -> int:
    """
    Store a preference for each detected locale that can be resolved.

    A locale with a single candidate file is applied automatically; a locale
    with several candidates is applied only when ``choices`` names one of them.

    Returns:
        The number of preferences applied.
    """
    choices = choices or {}
    applied = 0
    for item in detected:
        if len(item.basenames) == 1:
            basename = item.basenames[0]
        else:
            basename = choices.get(item.locale)
            if basename not in item.basenames:
                logger.info(f"No preference chosen for '{item.locale}' ({', '.join(item.basenames)}). Skipping.")
                continue
        store.set(item.locale, basename)
        applied += 1
    logger.info(f"Auto save preferences applied for {applied} locale(s)")
    return applied
