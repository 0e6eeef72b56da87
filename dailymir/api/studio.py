"""Studio deck API routes.

Each mutation answers with the refreshed deck (or item) list so the page
never has to issue a second request.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from dailymir.api.deps import get_workspace
from dailymir.schemas import ApiResponse, Deck
from dailymir.workspace import UserWorkspace

router = APIRouter()


class CreateDeckRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)


class AddItemRequest(BaseModel):
    question_id: str


def _deck_data(deck: Deck) -> dict:
    return {**deck.model_dump(), "label": deck.label}


async def _decks(workspace: UserWorkspace) -> dict:
    decks = await workspace.studio.list_decks()
    return ApiResponse(ok=True, data={"decks": [_deck_data(d) for d in decks]}).model_dump()


async def _items(workspace: UserWorkspace, deck_id: str) -> dict:
    items = await workspace.studio.list_items(deck_id)
    return ApiResponse(
        ok=True,
        data={"deck_id": deck_id, "items": [item.model_dump() for item in items]},
    ).model_dump()


@router.get("/decks")
async def list_decks(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    return await _decks(workspace)


@router.post("/decks")
async def create_deck(
    body: CreateDeckRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await workspace.studio.create_deck(body.name.strip())
    return await _decks(workspace)


@router.post("/decks/{deck_id}/delete")
async def delete_deck(deck_id: str, workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Soft delete; the deck stays listed with deleted_at set."""
    await workspace.studio.delete_deck(deck_id)
    return await _decks(workspace)


@router.post("/decks/{deck_id}/restore")
async def restore_deck(deck_id: str, workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    await workspace.studio.restore_deck(deck_id)
    return await _decks(workspace)


@router.get("/decks/{deck_id}/items")
async def list_items(deck_id: str, workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    return await _items(workspace, deck_id)


@router.post("/decks/{deck_id}/items")
async def add_item(
    deck_id: str,
    body: AddItemRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await workspace.studio.add_item(deck_id, body.question_id)
    return await _items(workspace, deck_id)


@router.delete("/decks/{deck_id}/items/{item_id}")
async def remove_item(
    deck_id: str,
    item_id: str,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await workspace.studio.remove_item(deck_id, item_id)
    return await _items(workspace, deck_id)
