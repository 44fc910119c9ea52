"""Terminal confirmation and reporting surface."""
import asyncio
import logging
import os
import sys
from typing import List, Optional, Sequence

from key_reconciler.models import CleanupDecision, UnusedKeyInfo

logger = logging.getLogger(__name__)


class ConsoleSurface:
    """
    Asks questions on stdin and prints results to stdout.

    With ``assume_yes`` every question is answered affirmatively without
    prompting, which is what non-interactive CI runs need.
    """

    def __init__(self, assume_yes: bool = False, confirm_each: Optional[bool] = None, stream=None):
        self.assume_yes = assume_yes
        self.confirm_each = confirm_each
        self.stream = stream or sys.stdout

    async def _ask(self, prompt: str) -> str:
        answer = await asyncio.to_thread(input, prompt)
        return answer.strip().lower()

    def _print(self, message: str) -> None:
        print(message, file=self.stream)

    async def info(self, message: str) -> None:
        logger.info(message)
        self._print(message)

    async def error(self, message: str) -> None:
        self._print(f"Error: {message}")

    async def confirm_translation(self, summary) -> bool:
        self._print(summary.describe())
        if self.assume_yes:
            return True
        return await self._ask("Continue with auto-translation? [y/N] ") in ('y', 'yes')

    async def choose_cleanup_mode(self) -> Optional[bool]:
        """Return True for per-key confirmation, False for batch, None to abort."""
        if self.confirm_each is not None:
            return self.confirm_each
        if self.assume_yes:
            return False
        answer = await self._ask("Remove all unused keys [a], confirm each key [e], or cancel [c]? ")
        if answer in ('a', 'all'):
            return False
        if answer in ('e', 'each'):
            return True
        return None

    async def select_unused_keys(self, unused_keys: Sequence[UnusedKeyInfo]) -> List[str]:
        """List the candidates; all are selected unless the user excludes some by number."""
        self._print(f"Found {len(unused_keys)} unused keys:")
        for index, key_info in enumerate(unused_keys, 1):
            files = ', '.join(os.path.basename(f) for f in key_info.files)
            self._print(f"  {index:>3}. {key_info.keypath}  [{', '.join(key_info.locales)}]  ({files})")
        selected = [key_info.keypath for key_info in unused_keys]
        if self.assume_yes:
            return selected
        answer = await self._ask("Numbers to keep (comma separated), 'none' to abort, Enter to select all: ")
        if answer == 'none':
            return []
        excluded = set()
        for part in answer.split(','):
            part = part.strip()
            if part.isdigit() and 1 <= int(part) <= len(unused_keys):
                excluded.add(unused_keys[int(part) - 1].keypath)
        return [keypath for keypath in selected if keypath not in excluded]

    async def confirm_removal(self, key_info: UnusedKeyInfo) -> CleanupDecision:
        if self.assume_yes:
            return CleanupDecision.REMOVE
        answer = await self._ask(
            f"Remove key \"{key_info.keypath}\" from {len(key_info.locales)} locale(s)? [r]emove/[s]kip/[c]ancel all "
        )
        if answer in ('r', 'remove', 'y', 'yes'):
            return CleanupDecision.REMOVE
        if answer in ('c', 'cancel'):
            return CleanupDecision.CANCEL_ALL
        return CleanupDecision.SKIP
