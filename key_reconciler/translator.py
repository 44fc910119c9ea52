import asyncio
import logging
import random
import re
import uuid
from collections import Counter
from typing import Dict, Optional, Set, Tuple

from aiolimiter import AsyncLimiter
from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
    APITimeoutError
)
from openai.types.chat import (
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam
)

from key_reconciler.models import PendingWrite, TranslationBackendError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'(<[^<>]+>)|({[^{}]+})')
PLACEHOLDER_NAME_RE = re.compile(r'\{([^{}]+)\}')

SYSTEM_PROMPT = """
You are an expert translator specializing in software localization. Translate the following text from {source_language} to {target_language}.

**Instructions**:
- **Do not translate or modify placeholder tokens**: Any text enclosed within double underscores `__` (e.g., `__PH_abc123__`) should remain exactly as is.
- **Preserve formatting**: Keep special characters and formatting such as `\\n` and `\\t`.
- **Do not add** any additional characters or punctuation (e.g., no square brackets, quotation marks, etc.).
- **Provide only** the translated text corresponding to the Value.

Keep the translation brief and consistent with typical software terminology.
"""

USER_PROMPT = """
**Text to Translate:**
Key: {keypath}
Value: {processed_text}

Provide the translation **of the Value only**, following the instructions above.
"""


def extract_placeholders(text: str) -> Tuple[str, Dict[str, str]]:
    """
    Extract and replace placeholders in the text with unique tokens.

    Args:
        text (str): The text to process.

    Returns:
        Tuple[str, Dict[str, str]]: The processed text and placeholder mapping.
    """
    if not isinstance(text, str):
        raise ValueError("Input text must be a string.")

    placeholder_mapping = {}

    def replace_placeholder(match):
        placeholder_token = f"__PH_{uuid.uuid4().hex}__"
        placeholder_mapping[placeholder_token] = match.group(0)
        return placeholder_token

    return PLACEHOLDER_PATTERN.sub(replace_placeholder, text), placeholder_mapping


def restore_placeholders(text: str, placeholder_mapping: Dict[str, str]) -> str:
    for token, placeholder in placeholder_mapping.items():
        text = text.replace(token, placeholder)
    return text


def clean_translated_text(translated_text: str, original_text: str) -> str:
    """
    Remove quotes or square brackets the model wrapped around the translation,
    unless the original text was wrapped the same way.
    """
    if translated_text.startswith('"') and translated_text.endswith('"') and not (
            original_text.startswith('"') and original_text.endswith('"')):
        translated_text = translated_text[1:-1]
    if translated_text.startswith('[') and translated_text.endswith(']') and not (
            original_text.startswith('[') and original_text.endswith(']')):
        translated_text = translated_text[1:-1]
    return translated_text


def check_placeholder_parity(source_text: str, translated_text: str) -> bool:
    """True when both strings carry the same ``{name}`` placeholders, in any order."""
    return Counter(PLACEHOLDER_NAME_RE.findall(source_text)) == Counter(PLACEHOLDER_NAME_RE.findall(translated_text))


async def _handle_retry(attempt: int, max_retries: int, base_delay: float, keypath: str,
                        api_exc: Optional[Exception] = None) -> bool:
    """
    Handle the retry mechanism with exponential backoff and jitter.

    Args:
        attempt (int): The current attempt number.
        max_retries (int): The maximum number of retry attempts.
        base_delay (float): The base delay in seconds.
        keypath (str): The keypath being translated.
        api_exc (Optional[Exception]): The exception object from the API, if available.

    Returns:
        bool: True if the operation should retry, False otherwise.
    """
    if attempt >= max_retries:
        logger.error(f"Translation failed for key '{keypath}' after {max_retries} attempts.")
        return False

    retry_after = None
    if api_exc is not None and isinstance(api_exc, OpenAIError):
        headers = getattr(api_exc, "headers", None)
        if headers is None and isinstance(api_exc, APIStatusError):
            headers = api_exc.response.headers
        headers = headers or {}
        retry_after_header = headers.get("Retry-After") if hasattr(headers, "get") else None
        if retry_after_header:
            try:
                if retry_after_header.endswith("ms"):
                    retry_after = float(retry_after_header[:-2]) / 1000
                else:
                    retry_after = float(retry_after_header)
            except ValueError as exc:
                logger.warning(f"Failed to parse Retry-After header: {exc}. Falling back to exponential backoff.")
    if retry_after is None:
        retry_after = base_delay * (2 ** (attempt - 1)) + random.uniform(0, 1)

    logger.info(f"Retrying translation of '{keypath}' in {retry_after:.2f} seconds (Attempt {attempt}/{max_retries})")
    await asyncio.sleep(retry_after)
    return True


class OpenAITranslationBackend:
    """
    Translates one record at a time through the OpenAI chat completions API.

    ``translate`` returns a future that resolves once the translated value has
    been written to the catalog, or carries the exception that stopped it.
    """

    def __init__(
            self,
            client: AsyncOpenAI,
            catalog,
            model_name: str,
            language_names: Optional[Dict[str, str]] = None,
            rate_limiter: Optional[AsyncLimiter] = None,
            max_retries: int = 5,
            base_delay: float = 1.0,
            request_timeout: float = 60.0
    ):
        self.client = client
        self.catalog = catalog
        self.model_name = model_name
        self.language_names = language_names or {}
        self.rate_limiter = rate_limiter or AsyncLimiter(max_rate=60, time_period=60)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.request_timeout = request_timeout
        self._tasks: Set[asyncio.Task] = set()

    def language_name(self, locale: str) -> str:
        return self.language_names.get(locale, locale)

    def translate(self, record: PendingWrite, source_locale: str, target_locale: str,
                  source_value: str) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        completion = loop.create_future()
        task = loop.create_task(self._translate_and_store(record, source_locale, target_locale, source_value, completion))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # Abandoning the completion (e.g. on timeout) stops the work behind it.
        completion.add_done_callback(lambda fut: task.cancel() if fut.cancelled() else None)
        return completion

    async def _translate_and_store(self, record: PendingWrite, source_locale: str, target_locale: str,
                                   source_value: str, completion: asyncio.Future) -> None:
        try:
            translated = await self.translate_text(source_value, record.keypath, source_locale, target_locale)
            await self.catalog.set_value(record.keypath, target_locale, translated, record.filepath)
        except asyncio.CancelledError:
            if not completion.done():
                completion.cancel()
            raise
        except Exception as exc:
            if not completion.done():
                completion.set_exception(exc)
        else:
            if not completion.done():
                completion.set_result(translated)

    async def translate_text(self, text: str, keypath: str, source_locale: str, target_locale: str) -> str:
        """
        Translate a single value, retrying transient API errors.

        Raises:
            TranslationBackendError: If every attempt fails, the model returns
                nothing, or the placeholders of the result do not match.
        """
        processed_text, placeholder_mapping = extract_placeholders(text)
        messages = [
            ChatCompletionSystemMessageParam(role="system", content=SYSTEM_PROMPT.format(
                source_language=self.language_name(source_locale),
                target_language=self.language_name(target_locale)
            )),
            ChatCompletionUserMessageParam(role="user", content=USER_PROMPT.format(
                keypath=keypath,
                processed_text=processed_text
            ))
        ]

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.rate_limiter:
                    response = await self.client.chat.completions.create(
                        model=self.model_name,
                        messages=messages,
                        temperature=0.3,
                        timeout=self.request_timeout,
                    )
            except (RateLimitError, APITimeoutError, APIConnectionError, APIStatusError, OpenAIError) as api_exc:
                logger.error(f"API error occurred: {api_exc.__class__.__name__} - {api_exc}")
                if await _handle_retry(attempt, self.max_retries, self.base_delay, keypath, api_exc):
                    continue
                raise TranslationBackendError(f"Giving up on '{keypath}' for '{target_locale}'") from api_exc

            content = response.choices[0].message.content
            if not content or not content.strip():
                raise TranslationBackendError(f"Empty translation returned for '{keypath}' ({target_locale})")

            translated_text = restore_placeholders(content.strip(), placeholder_mapping)
            translated_text = clean_translated_text(translated_text, text)
            if not check_placeholder_parity(text, translated_text):
                raise TranslationBackendError(f"Placeholder mismatch in translation of '{keypath}' ({target_locale})")
            logger.debug(f"Translated key '{keypath}' into '{target_locale}' successfully.")
            return translated_text

        raise TranslationBackendError(f"Giving up on '{keypath}' for '{target_locale}'")
