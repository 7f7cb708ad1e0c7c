"""Client de génération (Ollama) et fonctions de génération interchangeables."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple

import httpx

from puretranslate.config import settings
from puretranslate.errors import TransportFailure

logger = logging.getLogger(__name__)

PRIMARY_METHOD = "primary"
STRICT_METHOD = "strict"


class CircuitBreaker:
    """Circuit breaker léger pour éviter les appels répétés en cas d'échec."""

    def __init__(self, failure_threshold: int = 5, timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"  # closed, open, half-open

    def call_failed(self) -> None:
        """Enregistre un échec."""
        self.failures += 1
        self.last_failure_time = time.time()

        if self.failures >= self.failure_threshold:
            self.state = "open"
            logger.warning("Circuit breaker OPEN after %s failures", self.failures)

    def call_succeeded(self) -> None:
        """Réinitialise l'état après un succès."""
        self.failures = 0
        self.state = "closed"

    def can_attempt(self) -> bool:
        """Indique si un appel peut être tenté."""
        if self.state == "closed":
            return True

        if self.state == "open":
            elapsed = time.time() - self.last_failure_time
            if elapsed > self.timeout:
                self.state = "half-open"
                logger.info("Circuit breaker moving to HALF-OPEN")
                return True
            return False

        # half-open: autoriser une tentative
        return True


PROMPTS: Dict[str, Dict[Tuple[str, str], str]] = {
    PRIMARY_METHOD: {
        ("fr", "en"): (
            "You are a French to English legal translator. "
            "Translate the user's French text into English. "
            "Output ONLY the English translation. No explanations, no original text, no extra words."
        ),
        ("fr", "ar"): (
            "أنت مترجم قانوني من الفرنسية إلى العربية. "
            "ترجم النص الفرنسي إلى العربية. "
            "أخرج الترجمة العربية فقط. لا تفسيرات، لا نص أصلي، لا كلمات إضافية."
        ),
        ("en", "fr"): (
            "Tu es un traducteur juridique anglais vers français. "
            "Traduis le texte anglais de l'utilisateur en français. "
            "Retourne UNIQUEMENT la traduction française. Pas d'explications, pas de texte original, pas de mots supplémentaires."
        ),
        ("en", "ar"): (
            "أنت مترجم قانوني من الإنجليزية إلى العربية. "
            "ترجم النص الإنجليزي إلى العربية. "
            "أخرج الترجمة العربية فقط. لا تفسيرات، لا نص أصلي، لا كلمات إضافية."
        ),
        ("ar", "fr"): (
            "Tu es un traducteur juridique arabe vers français. "
            "Traduis le texte arabe de l'utilisateur en français. "
            "Retourne UNIQUEMENT la traduction française. Pas d'explications, pas de texte original, pas de mots supplémentaires."
        ),
        ("ar", "en"): (
            "You are an Arabic to English legal translator. "
            "Translate the user's Arabic text into English. "
            "Output ONLY the English translation. No explanations, no original text, no extra words."
        ),
    },
    # Méthode alternative : consignes d'écriture explicites, rédigées dans la langue cible
    STRICT_METHOD: {
        ("fr", "en"): (
            "Translate the following French legal text into English. "
            "Use only the Latin alphabet. Never copy French words, interface labels, version numbers or product names. "
            "If a term has no English equivalent, paraphrase it in English. Output the translation only."
        ),
        ("fr", "ar"): (
            "ترجم النص القانوني الفرنسي التالي إلى اللغة العربية الفصحى. "
            "استعمل الحروف العربية فقط، ولا تترك أي كلمة فرنسية أو إنجليزية أو أي حروف لاتينية أو سيريلية. "
            "لا تنسخ أسماء الأزرار أو أرقام الإصدارات أو أسماء المنتجات. "
            "إذا لم يوجد مقابل لمصطلح فاشرحه بالعربية. أخرج الترجمة فقط."
        ),
        ("en", "fr"): (
            "Traduis le texte juridique anglais suivant en français. "
            "N'utilise que l'alphabet latin et des mots français. Ne recopie aucun libellé d'interface, numéro de version ou nom de produit. "
            "Si un terme n'a pas d'équivalent, paraphrase-le en français. Retourne uniquement la traduction."
        ),
        ("en", "ar"): (
            "ترجم النص القانوني الإنجليزي التالي إلى اللغة العربية الفصحى. "
            "استعمل الحروف العربية فقط، ولا تترك أي كلمة إنجليزية أو أي حروف لاتينية أو سيريلية. "
            "لا تنسخ أسماء الأزرار أو أرقام الإصدارات أو أسماء المنتجات. أخرج الترجمة فقط."
        ),
        ("ar", "fr"): (
            "Traduis le texte juridique arabe suivant en français. "
            "N'utilise que l'alphabet latin. Ne laisse aucun mot en caractères arabes, ne recopie aucun libellé d'interface. "
            "Retourne uniquement la traduction."
        ),
        ("ar", "en"): (
            "Translate the following Arabic legal text into English. "
            "Use only the Latin alphabet and never leave Arabic script in the output. "
            "Do not copy interface labels. Output the translation only."
        ),
    },
}


def build_prompt(method: str, source_lang: str, target_lang: str, domain_hint: Optional[str] = None) -> str:
    """Construit la consigne envoyée au modèle pour une méthode de génération."""
    try:
        prompt = PROMPTS[method][(source_lang, target_lang)]
    except KeyError as exc:
        raise TransportFailure(f"No {method} prompt for {source_lang} -> {target_lang}") from exc
    if domain_hint:
        prompt = f"{prompt}\n[domain: {domain_hint}]"
    return prompt


class GenerateFn(Protocol):
    """Appel opaque vers la capacité de génération externe."""

    def __call__(self, prompt: str, source_text: str) -> Awaitable[str]:
        ...


class OllamaGenerator:
    """Client asynchrone pour interagir avec Ollama.

    ``generate`` effectue un seul appel : la liste de stratégies du
    coordinateur de récupération borne les nouvelles tentatives.
    """

    def __init__(self, temperature: float = 0.3) -> None:
        self.base_url = settings.OLLAMA_BASE_URL.rstrip("/")
        self.model = settings.OLLAMA_MODEL
        self.timeout = settings.OLLAMA_TIMEOUT
        self.temperature = temperature
        self.circuit_breaker = CircuitBreaker()

        proxies: Dict[str, str] = {}
        if settings.HTTP_PROXY:
            proxies["http://"] = settings.HTTP_PROXY
        if settings.HTTPS_PROXY:
            proxies["https://"] = settings.HTTPS_PROXY

        mounts = {scheme: httpx.AsyncHTTPTransport(proxy=url) for scheme, url in proxies.items()}
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            mounts=mounts or None,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )

    async def __aenter__(self) -> "OllamaGenerator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def __call__(self, prompt: str, source_text: str) -> str:
        return await self.generate(prompt, source_text)

    async def close(self) -> None:
        """Ferme le client HTTP."""
        await self.client.aclose()

    async def check_health(self) -> bool:
        """Vérifie que Ollama est disponible."""
        try:
            response = await self.client.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except Exception as exc:  # pragma: no cover - logging path
            logger.error("Ollama health check failed: %s", exc)
            return False

    async def generate(self, prompt: str, source_text: str) -> str:
        """Génère un texte ; lève TransportFailure en cas d'échec."""
        if not self.circuit_breaker.can_attempt():
            logger.warning("Circuit breaker OPEN, skipping generation")
            raise TransportFailure("Circuit breaker open")

        payload = {
            "model": self.model,
            "prompt": source_text,
            "system": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "top_p": 0.9,
            },
        }

        try:
            response = await self.client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout while calling Ollama")
            self.circuit_breaker.call_failed()
            raise TransportFailure("Generation timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Error while calling Ollama: %s", exc)
            self.circuit_breaker.call_failed()
            raise TransportFailure(str(exc)) from exc

        if response.status_code != 200:
            logger.error("Ollama returned status %s", response.status_code)
            self.circuit_breaker.call_failed()
            raise TransportFailure(f"Ollama returned status {response.status_code}")

        generated = (response.json().get("response") or "").strip()
        if not generated:
            logger.warning("Empty response from Ollama")
            self.circuit_breaker.call_failed()
            raise TransportFailure("Empty response")

        self.circuit_breaker.call_succeeded()
        return generated


class ReplayGenerator:
    """Rejoue une sortie enregistrée (cas de non-régression issus d'incidents)."""

    def __init__(self, recorded_output: str):
        self.recorded_output = recorded_output
        self.calls = 0

    async def __call__(self, prompt: str, source_text: str) -> str:
        self.calls += 1
        return self.recorded_output


GenerationKey = Tuple[str, str]


class GenerationCache:
    """Cache LRU borné des générations abandonnées pendant la récupération.

    Seul le résultat d'un appel dont la requête a été abandonnée est
    conservé, et il n'est servi qu'une fois : une requête terminée
    normalement ne fige jamais la sortie du modèle pour les suivantes.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or settings.GENERATION_CACHE_SIZE
        self._items: "OrderedDict[GenerationKey, str]" = OrderedDict()

    @staticmethod
    def key(prompt: str, source_text: str) -> GenerationKey:
        return (prompt, source_text)

    def get(self, key: GenerationKey) -> Optional[str]:
        value = self._items.get(key)
        if value is not None:
            self._items.move_to_end(key)
        return value

    def take(self, key: GenerationKey) -> Optional[str]:
        return self._items.pop(key, None)

    def put(self, key: GenerationKey, value: str) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def __len__(self) -> int:
        return len(self._items)

    async def shielded_generate(
        self,
        key: GenerationKey,
        generate: Callable[[str, str], Awaitable[str]],
        prompt: str,
        source_text: str,
    ) -> str:
        """Lance la génération protégée de l'annulation.

        Si l'appelant abandonne la requête, l'appel continue et son résultat
        est servi une seule fois à la prochaine requête identique.
        """
        cached = self.take(key)
        if cached is not None:
            logger.info("Reusing abandoned generation (%s chars)", len(cached))
            return cached

        task = asyncio.ensure_future(generate(prompt, source_text))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(lambda done: self._store(key, done))
            raise

    def _store(self, key: GenerationKey, task: "asyncio.Future[str]") -> None:
        if task.cancelled() or task.exception() is not None:
            return
        self.put(key, task.result())
