"""Studio decks: thin client over /api/studio/decks.

Decks are soft-deleted (POST .../delete) and can be restored. Lists arrive
either bare or wrapped ({decks} / {items}).
"""

from typing import Any

import httpx

from dailymir.client import AuthenticatedClient, raise_for_status
from dailymir.quiz.normalize import extract_records, first_of, list_at
from dailymir.schemas import Deck, DeckItem

_DECK_ENVELOPES = (list_at(), list_at("decks"))
_ITEM_ENVELOPES = (list_at(), list_at("items"))


def parse_deck(record: Any) -> Deck | None:
    if not isinstance(record, dict):
        return None
    deck_id = first_of(record, ("id",), (str, int))
    if deck_id is None:
        return None
    return Deck(
        id=str(deck_id),
        name=first_of(record, ("name",), (str,)) or "",
        deleted_at=first_of(record, ("deleted_at", "deletedAt"), (str,)),
    )


def parse_deck_item(record: Any) -> DeckItem | None:
    if not isinstance(record, dict):
        return None
    item_id = first_of(record, ("id",), (str, int))
    if item_id is None:
        return None
    question_id = first_of(record, ("question_id", "questionId"), (str, int))
    return DeckItem(
        id=str(item_id),
        question_id=str(question_id) if question_id is not None else None,
    )


class StudioDecks:
    """Deck CRUD for one user.

    Args:
        client: The user's authenticated API client.
    """

    def __init__(self, client: AuthenticatedClient) -> None:
        self._client = client

    async def list_decks(self) -> list[Deck]:
        response = await self._client.get("/api/studio/decks")
        payload = _checked(response, "No se pudieron cargar los mazos")
        decks = (parse_deck(record) for record in extract_records(payload, _DECK_ENVELOPES))
        return [deck for deck in decks if deck is not None]

    async def create_deck(self, name: str) -> None:
        response = await self._client.post("/api/studio/decks", json={"name": name})
        _checked(response, "No se pudo crear el mazo")

    async def delete_deck(self, deck_id: str) -> None:
        response = await self._client.post(f"/api/studio/decks/{deck_id}/delete")
        _checked(response, "No se pudo eliminar el mazo")

    async def restore_deck(self, deck_id: str) -> None:
        response = await self._client.post(f"/api/studio/decks/{deck_id}/restore")
        _checked(response, "No se pudo restaurar el mazo")

    async def list_items(self, deck_id: str) -> list[DeckItem]:
        response = await self._client.get(f"/api/studio/decks/{deck_id}/items")
        payload = _checked(response, "No se pudieron cargar los items")
        items = (parse_deck_item(record) for record in extract_records(payload, _ITEM_ENVELOPES))
        return [item for item in items if item is not None]

    async def add_item(self, deck_id: str, question_id: str) -> None:
        response = await self._client.post(
            f"/api/studio/decks/{deck_id}/items", json={"questionId": question_id}
        )
        _checked(response, "No se pudo anadir el item")

    async def remove_item(self, deck_id: str, item_id: str) -> None:
        response = await self._client.request("DELETE", f"/api/studio/decks/{deck_id}/items/{item_id}")
        _checked(response, "No se pudo eliminar el item")


def _checked(response: httpx.Response, what: str) -> Any:
    return raise_for_status(response, f"{what} ({response.status_code})")
