"""AnkiConnect flashcard RPC adapter.

Speaks the AnkiConnect JSON-RPC dialect (``{"action", "version": 6, "params"}``
POSTed to the local endpoint) and adapts compiled card text to whatever fields
the target note type declares.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from geo_recall.config import settings
from geo_recall.errors import CardSubmissionError, ConfigurationMismatch, ServiceUnavailable
from geo_recall.models import CardContent

ANKI_CONNECT_VERSION = 6

logger = logging.getLogger(__name__)


def model_remediation(model_name: str) -> str:
    return (
        f'Make sure you have a note type named "{model_name}" in Anki. '
        'For best results, use a "Basic" note type with just "Front" and "Back" fields, '
        "or change the model name in settings (GEO_RECALL_MODEL_NAME)."
    )


class CardSink(Protocol):
    """Anything that can store a compiled card."""

    async def submit(self, card: CardContent) -> int | None:
        """Store ``card`` and return the created note id."""


def adapt_fields(available: list[str], front: str, back: str) -> dict[str, str]:
    """Map card text onto the note type's field names.

    Exact ``Front``/``Back`` wins; otherwise names containing ``front``/``question`` and
    ``back``/``answer`` are matched case-insensitively. Other fields are empty.
    """
    if "Front" in available and "Back" in available:
        return {"Front": front, "Back": back}

    fields: dict[str, str] = {}
    for name in available:
        lowered = name.lower()
        if "front" in lowered or "question" in lowered:
            fields[name] = front
        elif "back" in lowered or "answer" in lowered:
            fields[name] = back
        else:
            fields[name] = ""
    return fields


class AnkiConnectClient:
    """Async client for a locally running AnkiConnect add-on."""

    def __init__(
        self,
        *,
        url: str | None = None,
        deck_name: str | None = None,
        model_name: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url or settings.anki_connect_url
        self.deck_name = deck_name or settings.deck_name
        self.model_name = model_name or settings.model_name
        self.timeout_seconds = timeout_seconds or settings.rpc_timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _client_get(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._client

    async def invoke(self, action: str, **params: Any) -> Any:
        """Run one RPC action and return its ``result``.

        Raises ``ServiceUnavailable`` when the endpoint cannot be reached and
        ``CardSubmissionError`` when AnkiConnect reports an error.
        """
        payload: dict[str, Any] = {"action": action, "version": ANKI_CONNECT_VERSION}
        if params:
            payload["params"] = params
        client = await self._client_get()
        try:
            response = await asyncio.wait_for(client.post(self.url, json=payload), timeout=self.timeout_seconds)
            response.raise_for_status()
            body = response.json()
        except asyncio.TimeoutError as exc:
            raise ServiceUnavailable(f"AnkiConnect did not answer {action} within {self.timeout_seconds}s") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ServiceUnavailable(
                f"Failed to reach AnkiConnect at {self.url}. Is Anki running with AnkiConnect? ({exc})"
            ) from exc

        if not isinstance(body, dict):
            raise CardSubmissionError(f"Unexpected AnkiConnect response to {action}: {body!r}")
        if body.get("error"):
            raise CardSubmissionError(str(body["error"]))
        logger.debug("anki_connect_invoked", extra={"action": action})
        return body.get("result")

    async def list_decks(self) -> list[str]:
        return list(await self.invoke("deckNames") or [])

    async def create_deck(self, deck_name: str) -> Any:
        return await self.invoke("createDeck", deck=deck_name)

    async def list_models(self) -> list[str]:
        return list(await self.invoke("modelNames") or [])

    async def list_note_fields(self, model_name: str | None = None) -> list[str]:
        return list(await self.invoke("modelFieldNames", modelName=model_name or self.model_name) or [])

    async def add_note(self, fields: dict[str, str], *, tags: list[str] | None = None) -> int | None:
        note = {
            "deckName": self.deck_name,
            "modelName": self.model_name,
            "fields": fields,
            "options": {"allowDuplicate": False},
            "tags": tags or ["geoguessr"],
        }
        try:
            return await self.invoke("addNote", note=note)
        except CardSubmissionError as exc:
            if "model" in str(exc).lower():
                raise ConfigurationMismatch(str(exc), model_remediation(self.model_name)) from exc
            raise

    async def ensure_deck_and_model(self) -> dict[str, Any]:
        """Create the deck if missing; raise ``ConfigurationMismatch`` for a missing note type."""
        decks = await self.list_decks()
        created_deck = False
        if self.deck_name not in decks:
            await self.create_deck(self.deck_name)
            created_deck = True
            logger.info("anki_deck_created", extra={"deck_name": self.deck_name})

        models = await self.list_models()
        if self.model_name not in models:
            raise ConfigurationMismatch(
                f'The note type "{self.model_name}" does not exist in your Anki collection.',
                model_remediation(self.model_name),
            )
        return {"deck_name": self.deck_name, "model_name": self.model_name, "created_deck": created_deck}

    async def submit(self, card: CardContent) -> int | None:
        await self.ensure_deck_and_model()
        available = await self.list_note_fields()
        fields = adapt_fields(available, card.front, card.back)
        if card.front not in fields.values() or card.back not in fields.values():
            raise ConfigurationMismatch(
                f'The note type "{self.model_name}" has no usable front/back fields: {available}',
                model_remediation(self.model_name),
            )
        note_id = await self.add_note(fields)
        logger.info("anki_note_added", extra={"round_key": card.round_key, "note_id": note_id})
        return note_id

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
