"""Command-line entry point: report, translate, cleanup and prefs commands."""
import argparse
import asyncio
import logging
import signal
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional

from aiolimiter import AsyncLimiter

from key_reconciler.app_config import AppConfig, load_app_config
from key_reconciler.catalog import JsonCatalog
from key_reconciler.cleanup import CleanupExecutor
from key_reconciler.console import ConsoleSurface
from key_reconciler.models import ReconcilerError, RunState
from key_reconciler.orchestrator import TranslationOrchestrator
from key_reconciler.preferences import (
    AutoSavePreferenceStore,
    apply_detected_preferences,
    detect_locales,
    is_valid_locale_code,
)
from key_reconciler.reconciler import reconcile
from key_reconciler.report import write_missing_keys_report
from key_reconciler.translator import OpenAITranslationBackend
from key_reconciler.usage import UsageAnalyzer

logger = logging.getLogger("key_reconciler.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="key-reconciler",
        description="Reconcile i18n catalogs with code usage and fill missing translations."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    report = subparsers.add_parser("report", help="Write a missing/empty keys report")
    report.add_argument("--output", default="translation_keys_report.txt",
                        help="Report path; a .json suffix selects JSON output")

    translate = subparsers.add_parser("translate", help="Auto-translate missing keys")
    translate.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    translate.add_argument("--dry-run", action="store_true", help="Log what would be done without writing")
    translate.add_argument("--context", default=None,
                           help="Catalog file currently being edited, used when no preference is stored")

    cleanup = subparsers.add_parser("cleanup", help="Remove keys that are not used in code")
    cleanup.add_argument("--yes", action="store_true", help="Remove all unused keys without asking")
    cleanup.add_argument("--confirm-each", action="store_true", help="Ask before removing each key")
    cleanup.add_argument("--dry-run", action="store_true", help="Log what would be removed without writing")

    prefs = subparsers.add_parser("prefs", help="Manage auto-save file preferences")
    prefs_sub = prefs.add_subparsers(dest="prefs_command", required=True)
    prefs_sub.add_parser("show", help="Show stored preferences")
    prefs_set = prefs_sub.add_parser("set", help="Set the preferred file for a locale")
    prefs_set.add_argument("locale")
    prefs_set.add_argument("basename", help="Catalog file basename without extension, e.g. frontend")
    prefs_sub.add_parser("clear", help="Remove all stored preferences")
    prefs_sub.add_parser("detect", help="Detect locale folders and apply preferences")

    return parser


def _active_locales(config: AppConfig, catalog: JsonCatalog) -> List[str]:
    """Source locale first; targets from config, else every catalog locale."""
    targets = config.target_locales or [locale for locale in catalog.locales if locale != config.source_locale]
    return [config.source_locale] + targets


@contextmanager
def _cancel_on_interrupt(orchestrator: TranslationOrchestrator) -> Iterator[None]:
    """
    Turn Ctrl-C into a cooperative cancel while the run is active.

    The keypath in progress finishes and the run ends as CANCELLED instead of
    being torn down mid-write. Platforms without loop signal handlers keep
    the default KeyboardInterrupt behaviour.
    """
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except (NotImplementedError, RuntimeError, ValueError) as exc:
        logger.debug(f"Interrupt handler not installed: {exc}")
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


def _load_catalog(config: AppConfig) -> JsonCatalog:
    locales = config.locales if len(config.locales) > 1 else None
    return JsonCatalog.load(config.locales_root, locales)


async def run_report(config: AppConfig, args) -> int:
    catalog = _load_catalog(config)
    analyzer = UsageAnalyzer(config.source_roots, config.source_extensions)
    store = AutoSavePreferenceStore(config.preferences_file)
    locales = _active_locales(config, catalog)
    usage_report = await analyzer.analyze_usage(catalog)
    result = reconcile(catalog, config.source_locale, locales[1:], usage_report, store.get_all())
    if not result.all_missing_keys and not result.empty_by_locale:
        print("No missing or empty keys found!")
        return 0
    report = write_missing_keys_report(result, args.output)
    summary = report["summary"]
    print(
        f"Translation keys report saved to: {args.output}\n"
        f"Found {summary['totalMissingKeys']} missing keys ({summary['codeDetectedMissingKeys']} from code) "
        f"and {summary['totalEmptyKeys']} empty keys."
    )
    return 0


async def run_translate(config: AppConfig, args) -> int:
    dry_run = config.dry_run or args.dry_run
    catalog = _load_catalog(config)
    locales = _active_locales(config, catalog)
    backend = None
    if not dry_run:
        backend = OpenAITranslationBackend(
            client=config.openai_client,
            catalog=catalog,
            model_name=config.model_name,
            language_names=config.language_names,
            rate_limiter=AsyncLimiter(max_rate=config.rate_limit, time_period=config.rate_period),
            max_retries=config.max_retries
        )
    orchestrator = TranslationOrchestrator(
        catalog=catalog,
        usage_analyzer=UsageAnalyzer(config.source_roots, config.source_extensions),
        backend=backend,
        preference_store=AutoSavePreferenceStore(config.preferences_file),
        surface=ConsoleSurface(assume_yes=args.yes),
        source_locale=config.source_locale,
        target_locales=locales[1:],
        key_delay=config.key_delay,
        locale_delay=config.locale_delay,
        completion_timeout=config.completion_timeout,
        active_context=args.context,
        catalog_basenames=config.catalog_basenames,
        dry_run=dry_run
    )
    with _cancel_on_interrupt(orchestrator):
        result = await orchestrator.run()
    return 1 if result.state == RunState.FAILED else 0


async def run_cleanup(config: AppConfig, args) -> int:
    catalog = _load_catalog(config)
    executor = CleanupExecutor(
        catalog=catalog,
        usage_analyzer=UsageAnalyzer(config.source_roots, config.source_extensions),
        surface=ConsoleSurface(assume_yes=args.yes, confirm_each=True if args.confirm_each else None),
        refresh_delay=config.refresh_delay,
        dry_run=config.dry_run or args.dry_run
    )
    await executor.run(_active_locales(config, catalog), AutoSavePreferenceStore(config.preferences_file))
    await executor.wait_for_refresh()
    return 0


def run_prefs(config: AppConfig, args) -> int:
    store = AutoSavePreferenceStore(config.preferences_file)
    if args.prefs_command == "show":
        prefs = store.get_all()
        if not prefs:
            print("No auto save preferences configured.")
        for locale, basename in sorted(prefs.items()):
            print(f"{locale} -> {basename}.json")
    elif args.prefs_command == "set":
        if not is_valid_locale_code(args.locale):
            print(f"Invalid locale format '{args.locale}' (use: en, de, es, en-US, etc.)", file=sys.stderr)
            return 2
        store.set(args.locale.strip(), args.basename)
        print(f"Auto save preference set: {args.locale.strip()} -> {args.basename}.json")
    elif args.prefs_command == "clear":
        store.clear()
        print("All auto save preferences have been cleared")
    elif args.prefs_command == "detect":
        detected = detect_locales(config.project_root, config.catalog_basenames)
        if not detected:
            print("No locale folders detected. Expected a structure like: i18n/en/, i18n/de/, etc.")
            return 0
        applied = apply_detected_preferences(store, detected)
        print(f"Auto save preferences applied for {applied} locale(s)!")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_app_config(require_client=args.command == "translate" and not getattr(args, "dry_run", False))

    if args.command == "prefs":
        return run_prefs(config, args)
    if args.command == "report":
        return await run_report(config, args)
    if args.command == "translate":
        return await run_translate(config, args)
    return await run_cleanup(config, args)


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except ReconcilerError as exc:
        logger.error(f"{exc}")
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as main_exc:
        logger.error(f"An unexpected error occurred during execution: {main_exc}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
