"""Missing and empty keys report, written as JSON or Markdown text."""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from key_reconciler.models import ReconciliationResult

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def _all_empty_keys(result: ReconciliationResult) -> List[str]:
    keys = set()
    for locale_keys in result.empty_by_locale.values():
        keys.update(locale_keys)
    return sorted(keys)


def build_missing_keys_report(result: ReconciliationResult, generated_at: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the JSON-serialisable report for one reconciliation result.

    Args:
        result: The reconciliation pass to report on.
        generated_at: Timestamp override, mostly for tests.

    Returns:
        The report dictionary.
    """
    all_empty = _all_empty_keys(result)
    return {
        "summary": {
            "totalMissingKeys": len(result.all_missing_keys),
            "totalEmptyKeys": len(all_empty),
            "codeDetectedMissingKeys": len(result.code_detected_missing),
            "untranslatableKeys": len(result.untranslatable),
            "locales": len(result.catalog_missing_by_locale),
            "generatedAt": generated_at or _utc_timestamp()
        },
        "missingKeysByLocale": result.catalog_missing_by_locale,
        "emptyKeysByLocale": result.empty_by_locale,
        "codeDetectedMissingKeys": sorted(result.code_detected_missing),
        "untranslatableKeys": sorted(result.untranslatable),
        "allMissingKeys": sorted(result.all_missing_keys),
        "allEmptyKeys": all_empty
    }


def _bullets(keys: List[str]) -> List[str]:
    return [f"- {key}" for key in keys]


def render_text_report(report: Dict[str, Any]) -> str:
    summary = report["summary"]
    lines = [
        "# Translation Keys Report",
        f"Generated: {summary['generatedAt']}",
        f"Total Missing Keys: {summary['totalMissingKeys']}",
        f"Total Empty Keys: {summary['totalEmptyKeys']}",
        f"Code-Detected Missing Keys: {summary['codeDetectedMissingKeys']}",
        f"Locales: {summary['locales']}",
        "",
        "## Code-Detected Missing Keys (Used in code but not in any locale)",
        *_bullets(report["codeDetectedMissingKeys"]),
        "",
        "## Missing Keys by Locale",
    ]
    for locale, keys in report["missingKeysByLocale"].items():
        lines += ["", f"### {locale} ({len(keys)} missing)", *_bullets(keys)]
    lines += ["", "## Empty Keys by Locale"]
    for locale, keys in report["emptyKeysByLocale"].items():
        lines += ["", f"### {locale} ({len(keys)} empty)", *_bullets(keys)]
    lines += [
        "",
        "## All Missing Keys (Alphabetical)",
        *_bullets(report["allMissingKeys"]),
        "",
        "## All Empty Keys (Alphabetical)",
        *_bullets(report["allEmptyKeys"]),
    ]
    return "\n".join(lines) + "\n"


def write_missing_keys_report(result: ReconciliationResult, output_path: str) -> Dict[str, Any]:
    """
    Write the report to ``output_path``; a ``.json`` suffix selects JSON output.

    Returns:
        The report dictionary that was written.
    """
    report = build_missing_keys_report(result)
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        if os.path.splitext(output_path)[1].lower() == '.json':
            json.dump(report, f, ensure_ascii=False, indent=2)
        else:
            f.write(render_text_report(report))
    logger.info(f"Missing keys report saved to: {output_path}")
    return report
