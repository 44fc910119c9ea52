"""Application configuration for the key reconciler."""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from key_reconciler.cleanup import REFRESH_DELAY
from key_reconciler.logging_config import setup_logger
from key_reconciler.models import ConfigurationError
from key_reconciler.orchestrator import COMPLETION_TIMEOUT, KEY_DELAY, LOCALE_DELAY
from key_reconciler.routing import CATALOG_BASENAMES
from key_reconciler.usage import DEFAULT_SOURCE_EXTENSIONS


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    locales_root: str
    source_roots: List[str]
    source_extensions: List[str]
    preferences_file: str

    # Locale configuration
    source_locale: str
    locales: List[str]
    language_names: Dict[str, str]
    catalog_basenames: List[str]

    # Pipeline settings
    dry_run: bool
    key_delay: float
    locale_delay: float
    completion_timeout: Optional[float]
    refresh_delay: float

    # Backend settings
    model_name: str
    max_retries: int
    rate_limit: int
    rate_period: float

    # OpenAI client
    openai_client: Optional[AsyncOpenAI]

    @property
    def target_locales(self) -> List[str]:
        return [locale for locale in self.locales if locale != self.source_locale]


def _compute_project_root() -> str:
    """The project root is the working directory unless overridden."""
    return os.path.abspath(os.environ.get('KEY_RECONCILER_PROJECT_ROOT', os.getcwd()))


def _load_dotenv_files(project_root: str) -> None:
    """Load .env files from project root or docker directory."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        load_dotenv(dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        load_dotenv(dotenv_path_docker_dir)


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """Load the YAML configuration file, falling back to defaults on any problem."""
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = os.environ.get('KEY_RECONCILER_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    config = {}
    try:
        if not os.path.exists(config_file):
            print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
                  file=sys.stderr)
            print(f"Tip: Create a config.yaml file in '{project_root}' or set KEY_RECONCILER_CONFIG_FILE.",
                  file=sys.stderr)
            return config

        if not os.access(config_file, os.R_OK):
            print(f"Error: Configuration file '{config_file}' exists but is not readable. Check file permissions.",
                  file=sys.stderr)
            return config

        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
            if loaded_config is None:
                print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
                      file=sys.stderr)
            elif isinstance(loaded_config, dict):
                config = loaded_config
            else:
                print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
                      file=sys.stderr)

    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
    except OSError as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        print("Using default configuration.", file=sys.stderr)

    return config


def _setup_logger_from_config(config: Dict[str, Any], project_root: str) -> logging.Logger:
    log_config = config.get('logging', {})
    log_level_str = log_config.get('log_level', 'INFO').upper()
    log_file_path = log_config.get('log_file_path', 'logs/key_reconciler.log')
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console, project_root)


def _build_locale_mappings(locales_list: List[Any]) -> tuple[List[str], Dict[str, str]]:
    """
    Accept locales either as plain codes or as ``{code, name}`` mappings.

    Returns:
        The ordered locale codes and a code-to-name mapping.
    """
    codes: List[str] = []
    names: Dict[str, str] = {}
    for locale in locales_list:
        if isinstance(locale, str):
            code, name = locale, None
        else:
            code, name = locale.get('code'), locale.get('name')
        if code and code not in codes:
            codes.append(code)
            if name:
                names[code] = name
    return codes, names


def _resolve_path(project_root: str, path: str) -> str:
    return path if os.path.isabs(path) else os.path.join(project_root, path)


def _create_openai_client(dry_run: bool, require_client: bool, logger: logging.Logger) -> Optional[AsyncOpenAI]:
    """Create the OpenAI client when translations may actually be requested."""
    if dry_run:
        logger.info("Running in dry-run mode, OpenAI client will not be initialized")
        return None

    api_key_from_env = os.environ.get('OPENAI_API_KEY')
    if not api_key_from_env:
        if require_client:
            logger.critical("CRITICAL: OPENAI_API_KEY environment variable not found.")
            logger.critical("Please set OPENAI_API_KEY or enable dry_run mode in configuration.")
            raise ConfigurationError("OPENAI_API_KEY is not set")
        return None

    if not api_key_from_env.startswith('sk-'):
        logger.warning("Warning: OPENAI_API_KEY does not start with 'sk-'. This may be invalid.")

    client = AsyncOpenAI(api_key=api_key_from_env)
    logger.info("OpenAI client initialized successfully")
    return client


def load_app_config(require_client: bool = False) -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Args:
        require_client: Fail when no OpenAI client can be created outside dry-run.

    Returns:
        AppConfig: The loaded application configuration.

    Raises:
        ConfigurationError: If ``require_client`` is set and OPENAI_API_KEY is missing.
    """
    project_root = _compute_project_root()
    _load_dotenv_files(project_root)
    config = _load_yaml_config(project_root)
    logger = _setup_logger_from_config(config, project_root)

    locales, language_names = _build_locale_mappings(config.get('locales', []))
    source_locale = os.environ.get('SOURCE_LOCALE', config.get('source_locale', 'en'))
    if source_locale not in locales:
        locales.insert(0, source_locale)

    dry_run = config.get('dry_run', False)
    completion_timeout = config.get('completion_timeout', COMPLETION_TIMEOUT)

    return AppConfig(
        project_root=project_root,
        locales_root=_resolve_path(project_root, config.get('locales_root', 'i18n')),
        source_roots=[_resolve_path(project_root, p) for p in config.get('source_roots', ['src'])],
        source_extensions=list(config.get('source_extensions', DEFAULT_SOURCE_EXTENSIONS)),
        preferences_file=_resolve_path(
            project_root, config.get('preferences_file', '.key_reconciler/preferences.json')
        ),
        source_locale=source_locale,
        locales=locales,
        language_names=language_names,
        catalog_basenames=list(config.get('catalog_basenames', CATALOG_BASENAMES)),
        dry_run=dry_run,
        key_delay=float(config.get('key_delay', KEY_DELAY)),
        locale_delay=float(config.get('locale_delay', LOCALE_DELAY)),
        completion_timeout=float(completion_timeout) if completion_timeout is not None else None,
        refresh_delay=float(config.get('refresh_delay', REFRESH_DELAY)),
        model_name=os.environ.get('MODEL_NAME', config.get('model_name', 'gpt-4o-mini')),
        max_retries=int(config.get('max_retries', 5)),
        rate_limit=int(config.get('rate_limit', 60)),
        rate_period=float(config.get('rate_period', 60)),
        openai_client=_create_openai_client(dry_run, require_client, logger)
    )
