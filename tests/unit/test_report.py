import json

from key_reconciler.models import ReconciliationResult
from key_reconciler.report import build_missing_keys_report, render_text_report, write_missing_keys_report


def _result() -> ReconciliationResult:
    return ReconciliationResult(
        untranslatable=["ghost.key"],
        code_detected_missing=["ghost.key"],
        empty_by_locale={"de": ["menu.close"], "fr": ["menu.close", "menu.open"]},
        catalog_missing_by_locale={"de": ["greeting.bye"], "fr": []},
        all_missing_keys=["greeting.bye"],
    )


def test_report_summary_counts():
    report = build_missing_keys_report(_result(), generated_at="2024-01-01T00:00:00Z")

    assert report["summary"] == {
        "totalMissingKeys": 1,
        "totalEmptyKeys": 2,
        "codeDetectedMissingKeys": 1,
        "untranslatableKeys": 1,
        "locales": 2,
        "generatedAt": "2024-01-01T00:00:00Z",
    }
    assert report["allEmptyKeys"] == ["menu.close", "menu.open"]
    assert report["missingKeysByLocale"]["de"] == ["greeting.bye"]


def test_text_report_lists_sections():
    text = render_text_report(build_missing_keys_report(_result(), generated_at="now"))

    assert text.startswith("# Translation Keys Report\n")
    assert "### de (1 missing)\n- greeting.bye" in text
    assert "### fr (2 empty)\n- menu.close\n- menu.open" in text
    assert "## Code-Detected Missing Keys (Used in code but not in any locale)\n- ghost.key" in text


def test_write_report_picks_format_from_suffix(tmp_path):
    json_path = tmp_path / "reports" / "missing.json"
    text_path = tmp_path / "missing.md"

    write_missing_keys_report(_result(), str(json_path))
    write_missing_keys_report(_result(), str(text_path))

    with open(json_path, "r", encoding="utf-8") as f:
        assert json.load(f)["allMissingKeys"] == ["greeting.bye"]
    assert text_path.read_text(encoding="utf-8").startswith("# Translation Keys Report")
