"""Journalisation structurée des événements consommables par un tableau de bord."""
from __future__ import annotations

import json
import logging
import time


class StructuredLogger:
    """Logger avec sortie JSON structurée."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log(self, level: str, message: str, **kwargs) -> None:
        """Log un message avec métadonnées."""
        log_entry = {
            "timestamp": time.time(),
            "level": level,
            "message": message,
            **kwargs,
        }
        self.logger.log(getattr(logging, level), json.dumps(log_entry, ensure_ascii=False, default=str))


events = StructuredLogger("puretranslate.events")
