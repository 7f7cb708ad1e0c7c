"""Configuration du service de traduction pure."""
import os
from pathlib import Path
from typing import Optional

DATA_DIR = Path(__file__).parent / "data"


class Settings:
    """Paramètres de configuration de l'application."""

    # Ollama
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "mistral-small:latest")
    OLLAMA_TIMEOUT: int = int(os.getenv("OLLAMA_TIMEOUT", "120"))

    # Proxy
    HTTP_PROXY: Optional[str] = os.getenv("HTTP_PROXY")
    HTTPS_PROXY: Optional[str] = os.getenv("HTTPS_PROXY")
    NO_PROXY: Optional[str] = os.getenv("NO_PROXY")

    # App
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Langues supportées
    SUPPORTED_LANGUAGES: dict = {
        "fr": "Français",
        "en": "English",
        "ar": "العربية"
    }

    RTL_LANGUAGES: set = {"ar"}

    # Écriture attendue pour chaque langue
    LANGUAGE_SCRIPTS: dict = {
        "fr": "latin",
        "en": "latin",
        "ar": "arabic",
    }

    # Données éditables sans redéploiement
    PATTERN_LIBRARY_PATH: Path = Path(os.getenv("PATTERN_LIBRARY_PATH", str(DATA_DIR / "patterns.json")))
    PATTERN_LIBRARY_PERSIST: bool = os.getenv("PATTERN_LIBRARY_PERSIST", "false").lower() == "true"
    REGRESSION_CASES_PATH: Path = Path(
        os.getenv("REGRESSION_CASES_PATH", str(DATA_DIR / "regression_cases.json"))
    )
    TERMINOLOGY_PATH: Path = Path(os.getenv("TERMINOLOGY_PATH", str(DATA_DIR / "terminology.json")))
    CANNED_CONTENT_PATH: Path = Path(os.getenv("CANNED_CONTENT_PATH", str(DATA_DIR / "canned.json")))

    # Nettoyage
    MAX_CLEANING_PASSES: int = int(os.getenv("MAX_CLEANING_PASSES", "5"))

    # Récupération
    DEGRADE_TOLERANT_STRATEGIES: set = set(
        os.getenv("DEGRADE_TOLERANT_STRATEGIES", "targeted-recleaning,canned-fallback").split(",")
    )
    GENERATION_CACHE_SIZE: int = int(os.getenv("GENERATION_CACHE_SIZE", "256"))

    # Suivi qualité
    MONITOR_WINDOW_SECONDS: int = int(os.getenv("MONITOR_WINDOW_SECONDS", "3600"))
    MONITOR_MIN_SAMPLES: int = int(os.getenv("MONITOR_MIN_SAMPLES", "20"))
    FALLBACK_ALERT_THRESHOLD: float = float(os.getenv("FALLBACK_ALERT_THRESHOLD", "0.2"))
    RECENT_REQUESTS_SIZE: int = int(os.getenv("RECENT_REQUESTS_SIZE", "1000"))
    REVIEW_QUEUE_SIZE: int = int(os.getenv("REVIEW_QUEUE_SIZE", "500"))

    # Suite de non-régression planifiée (0 = désactivée)
    REGRESSION_INTERVAL_SECONDS: int = int(os.getenv("REGRESSION_INTERVAL_SECONDS", "3600"))


settings = Settings()
