"""
Conversation Ledger — Bounded history of request/response turns.

Provides:
- Append-only record of turns with the files each one modified
- FIFO eviction beyond the history limit
- Recent turns and recently modified files for the context assembler

Process lifetime only; nothing is written to disk.
"""
import logging
from collections import deque
from typing import Iterable, Optional

from rhombus.models.context import ConversationTurn

logger = logging.getLogger(__name__)


class ConversationLedger:
    """
    Usage:
        ledger = ConversationLedger(max_turns=10)
        ledger.record("add retries", "done", ["/proj/src/client.ts"])

        ledger.recent_turns(3)
        ledger.recently_modified_files()
    """

    def __init__(self, max_turns: int = 10):
        self.max_turns = max_turns
        self._turns: deque[ConversationTurn] = deque(maxlen=max_turns)

    def record(
        self,
        request: str,
        response: str,
        files_modified: Optional[Iterable[str]] = None,
    ) -> ConversationTurn:
        """Append a turn; the oldest turn is evicted once the ledger is full"""
        files: list[str] = []
        for path in files_modified or []:
            if path not in files:
                files.append(path)

        turn = ConversationTurn(request=request, response=response, files_modified=files)
        self._turns.append(turn)
        logger.debug(f"ConversationLedger: recorded turn ({len(files)} files, {len(self._turns)}/{self.max_turns})")
        return turn

    def recent_turns(self, n: int = 3) -> list[ConversationTurn]:
        """Last `n` turns, oldest first"""
        if n <= 0:
            return []
        return list(self._turns)[-n:]

    def recently_modified_files(self, limit: int = 10) -> list[str]:
        """Files touched by recorded turns, in recording order, last `limit` entries"""
        files = [path for turn in self._turns for path in turn.files_modified]
        return files[-limit:] if limit > 0 else []

    def all_turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def clear(self):
        self._turns.clear()
        logger.info("ConversationLedger: cleared history")

    def __len__(self) -> int:
        return len(self._turns)
