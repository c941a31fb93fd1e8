"""Near-duplicate suppression for server pushes.

Some flows make the server emit logically identical pushes back to back (a
join followed by a reconnect, two list refreshes for one score change). The
filter drops an exact fingerprint repeat seen inside a short window so
subscribers do not re-render twice. It is an anti-flicker measure only: game
logic must never rely on it for exactly-once delivery.
"""
from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable

from partyroom.config import settings

logger = logging.getLogger(__name__)

# Per-item ids that make two otherwise identical game pushes distinct.
_ITEM_ID_FIELDS = ("cardId", "cardIds", "envelopeId", "moleId", "messageId")


def _player_signature(player: Any) -> str:
    if not isinstance(player, dict):
        return str(player)
    return f"{player.get('nickname')}:{player.get('score')}:{player.get('connected', True)}"


def message_fingerprint(message: dict[str, Any]) -> str:
    data = message.get("data")
    players = data if isinstance(data, list) else None
    payload = data if isinstance(data, dict) else {}

    fingerprint: dict[str, Any] = {
        "type": message.get("type"),
        "players": sorted(_player_signature(player) for player in players) if players is not None else None,
        "playerCount": len(players) if players is not None else 0,
        "gameStarted": message.get("gameStarted"),
        "gameEnded": message.get("gameEnded"),
        "waitingForPlayers": message.get("waitingForPlayers"),
        "nickname": message.get("nickname", payload.get("nickname")),
        "score": message.get("score", payload.get("score")),
        "reason": message.get("reason"),
        "message": message.get("message", payload.get("message")),
    }
    for key in _ITEM_ID_FIELDS:
        value = message.get(key, payload.get(key))
        if value is not None:
            fingerprint[key] = value
    return json.dumps(fingerprint, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


class DuplicateFilter:
    def __init__(
        self,
        window_s: float | None = None,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_s = window_s if window_s is not None else settings.client_dedup_window_ms / 1000
        self.capacity = max(2, capacity if capacity is not None else settings.client_dedup_cache_size)
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def is_duplicate(self, message: dict[str, Any]) -> bool:
        fingerprint = message_fingerprint(message)
        now = self._clock()
        seen_at = self._seen.get(fingerprint)
        if seen_at is not None and now - seen_at < self.window_s:
            logger.debug("[DEDUP] dropped %s", message.get("type"))
            return True

        self._seen[fingerprint] = now
        self._seen.move_to_end(fingerprint)
        if len(self._seen) > self.capacity:
            for _ in range(len(self._seen) // 2):
                self._seen.popitem(last=False)
        return False

    def clear(self) -> None:
        self._seen.clear()
