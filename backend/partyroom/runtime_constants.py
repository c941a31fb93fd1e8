from __future__ import annotations

NORMAL_CLOSURE = 1000

TIME_UP_REASON = "Time's up!"
GAME_COMPLETED_REASON = "Game completed"
HOST_ENDED_REASON = "Host ended the game"
HOST_CLOSED_REASON = "Host closed the game"

ERROR_HOST_ONLY_START = "Only the host can start the game."
ERROR_HOST_ONLY_END = "Only the host can end the game."
ERROR_HOST_ONLY_CLOSE = "Only the host can close the game."
ERROR_HOST_ONLY_NOTIFY = "Only the host can notify players."
ERROR_INVALID_PARAMS = "Invalid game parameters."
ERROR_GAME_IN_PROGRESS = "Game already in progress."
ERROR_GAME_ALREADY_ENDED = "Game has already ended."
ERROR_GAME_NOT_RUNNING = "Game is not running."
ERROR_INVALID_SCORE = "Invalid score."
ERROR_HOST_TAKEN = "Room already has a host."

# Upper bound for gameTime, in game-time seconds.
MAX_GAME_TIME = 3600

WAITING_MESSAGE = "Waiting for host to start the game"

ANIMAL_AVATARS: tuple[str, ...] = (
    "cat",
    "dog",
    "rabbit",
    "bear",
    "fox",
    "panda",
    "lion",
    "tiger",
)

CARD_SUITS: tuple[str, ...] = ("heart", "diamond", "club", "spade")
CARD_RANKS: tuple[str, ...] = (
    "1",
    "2",
    "3",
    "4",
    "5",
    "6",
    "7",
    "8",
    "9",
    "10",
    "jack",
    "queen",
    "king",
)
CARD_FACES: tuple[str, ...] = tuple(
    f"/assets/images/cards/{suit}_{rank}.png" for suit in CARD_SUITS for rank in CARD_RANKS
)
