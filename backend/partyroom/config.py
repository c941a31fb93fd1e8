from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self) -> None:
        self.ws_host = os.getenv("WS_HOST", "0.0.0.0").strip() or "0.0.0.0"
        self.ws_port = int(os.getenv("WS_PORT", "8080"))
        self.cors_allow_origins = tuple(
            origin.strip()
            for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
            if origin.strip()
        ) or ("*",)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
        self.default_room_id = os.getenv("DEFAULT_ROOM_ID", "default").strip() or "default"
        self.default_nickname = os.getenv("DEFAULT_NICKNAME", "Anonymous").strip() or "Anonymous"
        self.game_time_unit_ms = max(1, int(os.getenv("GAME_TIME_UNIT_MS", "1000")))

        self.client_ws_base_url = os.getenv("CLIENT_WS_BASE_URL", "ws://localhost:8080").strip().rstrip("/")
        self.client_max_reconnect_attempts = max(
            0,
            int(os.getenv("CLIENT_MAX_RECONNECT_ATTEMPTS", "5")),
        )
        self.client_reconnect_delay_ms = max(
            10,
            int(os.getenv("CLIENT_RECONNECT_DELAY_MS", "1000")),
        )
        self.client_dedup_window_ms = max(0, int(os.getenv("CLIENT_DEDUP_WINDOW_MS", "25")))
        self.client_dedup_cache_size = max(2, int(os.getenv("CLIENT_DEDUP_CACHE_SIZE", "100")))
        self.client_open_timeout_ms = max(100, int(os.getenv("CLIENT_OPEN_TIMEOUT_MS", "10000")))


settings = Settings()
