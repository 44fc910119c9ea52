"""Integration tests for the single-lane translation orchestrator."""
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeSurface, FakeUsageAnalyzer, GatedBackend, StaticPreferences
from key_reconciler.models import RunState, UsageReport
from key_reconciler.orchestrator import TranslationOrchestrator

PREFS = {"de": "frontend", "fr": "frontend"}


@pytest.fixture
def catalog(make_catalog):
    return make_catalog({
        "en/frontend.json": {"a": "Alpha", "b": "Beta {count}", "c": "Gamma"},
        "de/frontend.json": {},
        "fr/frontend.json": {},
    })


def _orchestrator(catalog, backend, surface=None, prefs=PREFS, target_locales=("en", "de", "fr"), **kwargs):
    kwargs.setdefault("key_delay", 0)
    kwargs.setdefault("locale_delay", 0)
    return TranslationOrchestrator(
        catalog=catalog,
        usage_analyzer=FakeUsageAnalyzer(UsageReport()),
        backend=backend,
        preference_store=StaticPreferences(prefs),
        surface=surface or FakeSurface(),
        source_locale="en",
        target_locales=list(target_locales),
        **kwargs
    )


@pytest.mark.asyncio
async def test_translates_one_pair_at_a_time_in_order(catalog):
    backend = GatedBackend(catalog)
    surface = FakeSurface()
    orchestrator = _orchestrator(catalog, backend, surface)

    result = await orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert orchestrator.state == RunState.COMPLETED
    assert result.translated_count == 3
    assert backend.invocations == [
        ("a", "de"), ("a", "fr"), ("b", "de"), ("b", "fr"), ("c", "de"), ("c", "fr")
    ]
    assert backend.max_in_flight == 1
    # The empty slot is created before the backend is asked
    assert catalog.get_record("b", "fr").value == ""
    assert surface.summaries[0].keys_per_locale == {"de": 3, "fr": 3}
    assert surface.messages[-1] == "Auto-translation completed! Translated 3 keys across 2 locale(s)."


@pytest.mark.asyncio
async def test_nothing_to_do(make_catalog):
    catalog = make_catalog({"en/frontend.json": {"a": "Alpha"}, "de/frontend.json": {"a": "Alfa"}})
    backend = GatedBackend(catalog)
    surface = FakeSurface()
    orchestrator = TranslationOrchestrator(
        catalog, FakeUsageAnalyzer(), backend, StaticPreferences(), surface, "en", ["de"]
    )

    result = await orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert result.nothing_to_do is True
    assert backend.invocations == []
    assert surface.summaries == []
    assert surface.messages == ["No missing keys found! Your translation files are complete."]


@pytest.mark.asyncio
async def test_declined_confirmation_leaves_catalog_untouched(catalog):
    backend = GatedBackend(catalog)
    orchestrator = _orchestrator(catalog, backend, FakeSurface(confirm=False))

    result = await orchestrator.run()

    assert result.state == RunState.CANCELLED
    assert backend.invocations == []
    assert catalog.get_record("a", "de") is None


@pytest.mark.asyncio
async def test_cancellation_finishes_current_keypath(catalog):
    backend = GatedBackend(catalog)
    orchestrator = _orchestrator(catalog, backend)
    backend.on_invoke = lambda keypath, locale: orchestrator.cancel() if (keypath, locale) == ("b", "de") else None

    result = await orchestrator.run()

    assert result.state == RunState.CANCELLED
    assert backend.invocations == [("a", "de"), ("a", "fr"), ("b", "de"), ("b", "fr")]
    assert result.translated_count == 2
    assert catalog.get_record("c", "de") is None


@pytest.mark.asyncio
async def test_unresolvable_target_file_skips_locale(catalog):
    backend = GatedBackend(catalog)
    orchestrator = _orchestrator(catalog, backend, prefs={"de": "frontend"})

    result = await orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert [locale for _, locale in backend.invocations] == ["de", "de", "de"]
    assert ("a", "fr", "no target file") in result.skipped
    assert catalog.get_record("a", "fr") is None


@pytest.mark.asyncio
async def test_active_context_routes_when_no_preference(catalog):
    backend = GatedBackend(catalog)
    fr_file = catalog.files_for_locale("fr")[0]
    orchestrator = _orchestrator(catalog, backend, prefs={"de": "frontend"}, active_context=fr_file,
                                 catalog_basenames=("frontend",))

    result = await orchestrator.run()

    assert result.skipped == []
    assert catalog.get_filepath("a", "fr") == fr_file


@pytest.mark.asyncio
async def test_backend_failure_only_skips_that_locale(catalog):
    backend = GatedBackend(catalog, fail_on={("a", "de")})
    orchestrator = _orchestrator(catalog, backend)

    result = await orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert ("a", "de", "backend exploded") in result.skipped
    assert len(backend.invocations) == 6
    assert result.translated_count == 3


@pytest.mark.asyncio
async def test_missing_completion_times_out(make_catalog):
    catalog = make_catalog({"en/frontend.json": {"a": "Alpha", "b": "Beta"}, "de/frontend.json": {}})
    backend = GatedBackend(catalog, auto_complete=False)
    orchestrator = _orchestrator(catalog, backend, prefs={"de": "frontend"}, target_locales=["de"],
                                 completion_timeout=0.05)

    result = await orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert backend.invocations == [("a", "de"), ("b", "de")]
    assert [entry[:2] for entry in result.skipped] == [("a", "de"), ("b", "de")]
    assert all("did not complete within 0.05s" in reason for _, _, reason in result.skipped)
    assert all(future.cancelled() for future in backend.pending)


@pytest.mark.asyncio
async def test_dry_run_never_writes_or_translates(catalog):
    backend = GatedBackend(catalog)
    orchestrator = _orchestrator(catalog, backend, dry_run=True)

    result = await orchestrator.run()

    assert result.translated_count == 3
    assert backend.invocations == []
    assert catalog.get_record("a", "de") is None


@pytest.mark.asyncio
async def test_missing_catalog_fails_run():
    surface = FakeSurface()
    orchestrator = TranslationOrchestrator(
        None, FakeUsageAnalyzer(), GatedBackend(), StaticPreferences(), surface, "en", ["de"]
    )

    result = await orchestrator.run()

    assert result.state == RunState.FAILED
    assert orchestrator.state == RunState.FAILED
    assert surface.errors == ["Failed to auto-translate missing keys: No i18n catalog found. Please configure locales first."]


@pytest.mark.asyncio
async def test_delays_follow_locales_and_separate_keypaths(catalog):
    backend = GatedBackend(catalog)
    orchestrator = _orchestrator(catalog, backend, target_locales=["de"], key_delay=7, locale_delay=3)

    with patch("key_reconciler.orchestrator.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert [call.args[0] for call in mock_sleep.await_args_list] == [3, 7, 3, 7, 3]


@pytest.mark.asyncio
async def test_no_key_delay_after_cancelled_keypath(catalog):
    backend = GatedBackend(catalog)
    orchestrator = _orchestrator(catalog, backend, target_locales=["de"], key_delay=7, locale_delay=3)
    backend.on_invoke = lambda keypath, locale: orchestrator.cancel()

    with patch("key_reconciler.orchestrator.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await orchestrator.run()

    assert result.state == RunState.CANCELLED
    assert backend.invocations == [("a", "de")]
    assert [call.args[0] for call in mock_sleep.await_args_list] == [3]
