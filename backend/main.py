from __future__ import annotations

from partyroom.application import app

__all__ = ["app"]
