"""Game catalogue.

The coordination layer does not know any mini-game rules. A game type only
decides which start parameters are required, how the ``gameData`` push is
shaped, and which of its own message types the router may rebroadcast to the
room unchanged.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable

from .runtime_constants import CARD_FACES, MAX_GAME_TIME
from .runtime_types import SessionParams
from .runtime_utils import message_field, parse_positive_int

logger = logging.getLogger(__name__)

DEFAULT_GAME_TYPE = "memory"


@dataclass(frozen=True)
class GameDefinition:
    game_type: str
    build_game_data: Callable[[SessionParams], dict[str, Any]]
    requires_pairs: bool = False
    max_pairs: int | None = None
    optional_settings: dict[str, int] = field(default_factory=dict)
    forwarded_types: frozenset[str] = frozenset()


def generate_cards(num_pairs: int) -> list[dict[str, Any]]:
    cards: list[dict[str, Any]] = []
    for index, value in enumerate(CARD_FACES[:num_pairs]):
        cards.append({"id": index * 2, "value": value, "isFlipped": False, "isMatched": False})
        cards.append({"id": index * 2 + 1, "value": value, "isFlipped": False, "isMatched": False})
    random.shuffle(cards)
    return cards


def _memory_game_data(params: SessionParams) -> dict[str, Any]:
    num_pairs = params.num_pairs or 0
    return {
        "gameType": params.game_type,
        "cards": generate_cards(num_pairs),
        "gameTime": params.game_time,
        "gameSettings": {"numPairs": num_pairs, "gameDuration": params.game_time},
    }


def _timed_game_data(params: SessionParams) -> dict[str, Any]:
    return {
        "gameType": params.game_type,
        "gameTime": params.game_time,
        "gameSettings": {"duration": params.game_time, **params.settings},
    }


GAME_CATALOG: dict[str, GameDefinition] = {
    "memory": GameDefinition(
        game_type="memory",
        build_game_data=_memory_game_data,
        requires_pairs=True,
        max_pairs=len(CARD_FACES),
        forwarded_types=frozenset(
            {"cardClick", "twoCardsClick", "cardFlipped", "cardsMatched", "cardsFlippedBack"}
        ),
    ),
    "redenvelope": GameDefinition(
        game_type="redenvelope",
        build_game_data=_timed_game_data,
        optional_settings={"envelopeCount": 10, "spawnInterval": 2, "envelopeLifetime": 5},
        forwarded_types=frozenset({"collectEnvelope", "envelopeCollected", "redEnvelopeScoreUpdate"}),
    ),
    "whackmole": GameDefinition(
        game_type="whackmole",
        build_game_data=_timed_game_data,
        optional_settings={"moleCount": 9, "spawnInterval": 1},
        forwarded_types=frozenset({"moleHit", "hitMole", "moleSpawned", "moleHidden"}),
    ),
}


def get_game(game_type: str) -> GameDefinition | None:
    return GAME_CATALOG.get(game_type)


def forwarded_message_types() -> frozenset[str]:
    return frozenset().union(*(game.forwarded_types for game in GAME_CATALOG.values()))


def resolve_game_type(message: dict[str, Any]) -> str:
    raw = message_field(message, "gameType")
    value = str(raw or "").strip().lower()
    return value or DEFAULT_GAME_TYPE


def parse_session_params(message: dict[str, Any]) -> SessionParams | None:
    """Well-formedness only: required counts must be positive integers."""
    game = get_game(resolve_game_type(message))
    if game is None:
        return None

    game_time = parse_positive_int(message_field(message, "gameTime"))
    if game_time is None and not game.requires_pairs:
        game_time = parse_positive_int(message_field(message, "duration"))
    if game_time is None or game_time > MAX_GAME_TIME:
        return None

    num_pairs: int | None = None
    if game.requires_pairs:
        num_pairs = parse_positive_int(message_field(message, "numPairs"))
        if num_pairs is None:
            return None
        if game.max_pairs is not None and num_pairs > game.max_pairs:
            return None

    settings: dict[str, int] = {}
    for key, default in game.optional_settings.items():
        raw = message_field(message, key)
        if raw is None:
            settings[key] = default
            continue
        value = parse_positive_int(raw)
        if value is None:
            return None
        settings[key] = value

    return SessionParams(
        game_type=game.game_type,
        game_time=game_time,
        num_pairs=num_pairs,
        settings=settings,
    )


def build_game_data(params: SessionParams) -> dict[str, Any]:
    game = get_game(params.game_type)
    if game is None:
        logger.warning("[SESSION] unknown game type %s, sending bare parameters", params.game_type)
        return _timed_game_data(params)
    return game.build_game_data(params)
