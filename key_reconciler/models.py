"""Data model shared by the reconciliation engine and the translation pipeline."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple


class ReconcilerError(Exception):
    """Base class for all errors raised by the reconciler."""


class ConfigurationError(ReconcilerError):
    """Raised when no catalog, locale root or credentials are configured."""


class TranslationTimeoutError(ReconcilerError):
    """Raised when a translation completion signal does not arrive in time."""

    def __init__(self, keypath: str, locale: str, timeout: float):
        super().__init__(
            f"Translation of '{keypath}' into '{locale}' did not complete within {timeout:g}s"
        )
        self.keypath = keypath
        self.locale = locale
        self.timeout = timeout


class TranslationBackendError(ReconcilerError):
    """Raised when the translation backend gives up on a single record."""


def is_blank(value: Optional[str]) -> bool:
    """Return True for None, empty and whitespace-only values."""
    return value is None or not str(value).strip()


@dataclass(frozen=True)
class LocaleRecord:
    """The value of one keypath in one locale, and the file it lives in."""
    keypath: str
    locale: str
    value: Optional[str]
    filepath: str


@dataclass(frozen=True)
class PendingWrite:
    """An empty slot that is created before the translation fills it."""
    keypath: str
    locale: str
    filepath: str
    value: str = ""


@dataclass
class CoverageReport:
    locale: str
    missing_keys: Set[str] = field(default_factory=set)
    empty_keys: Set[str] = field(default_factory=set)


@dataclass
class UsageReport:
    """
    Point-in-time snapshot produced by the usage analyzer.

    Attributes:
        missing: Keypaths referenced in source code but absent from every locale.
        idle: Keypaths present in the catalog but never referenced in code.
    """
    missing: List[str] = field(default_factory=list)
    idle: List[str] = field(default_factory=list)


@dataclass
class MissingKeyInfo:
    keypath: str
    locales: List[str]
    source_locale: str
    source_value: str


@dataclass
class UnusedKeyInfo:
    keypath: str
    locales: List[str]
    files: List[str]


@dataclass
class ReconciliationResult:
    """Everything one reconciliation pass knows about the catalog."""
    missing: List[MissingKeyInfo] = field(default_factory=list)
    unused: List[UnusedKeyInfo] = field(default_factory=list)
    # Referenced in code, no source value: needs manual authoring.
    untranslatable: List[str] = field(default_factory=list)
    code_detected_missing: List[str] = field(default_factory=list)
    missing_by_locale: Dict[str, List[str]] = field(default_factory=dict)
    empty_by_locale: Dict[str, List[str]] = field(default_factory=dict)
    # Missing over the whole catalog key universe, source value or not.
    catalog_missing_by_locale: Dict[str, List[str]] = field(default_factory=dict)
    all_missing_keys: List[str] = field(default_factory=list)

    def keys_per_locale(self) -> Dict[str, int]:
        """Count translatable missing keys per target locale."""
        counts: Dict[str, int] = {}
        for info in self.missing:
            for locale in info.locales:
                counts[locale] = counts.get(locale, 0) + 1
        return counts


class RunState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    TRANSLATING = "translating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RunState.COMPLETED, RunState.CANCELLED, RunState.FAILED})


@dataclass
class TranslationRunResult:
    state: RunState
    translated_count: int = 0
    nothing_to_do: bool = False
    # (keypath, locale or None, reason)
    skipped: List[Tuple[str, Optional[str], str]] = field(default_factory=list)
    error: Optional[str] = None


class CleanupDecision(str, Enum):
    REMOVE = "remove"
    SKIP = "skip"
    CANCEL_ALL = "cancel_all"
