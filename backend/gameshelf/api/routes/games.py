"""Game endpoints."""

from fastapi import APIRouter, Query

from gameshelf.api.deps import AppServices
from gameshelf.schemas import GameResponse, GameUpdate, ManualMatchRequest

router = APIRouter()


@router.get("", response_model=list[GameResponse])
async def list_games(
    services: AppServices,
    library_id: int | None = Query(None, description="Only games of this library"),
) -> list[GameResponse]:
    games = await services.games.list_games(library_id)
    return [GameResponse.from_game(game) for game in games]


@router.post("/match", response_model=GameResponse, status_code=201)
async def match_game(services: AppServices, request: ManualMatchRequest) -> GameResponse:
    """Match a path manually. The match is confirmed and survives rescans."""
    game = await services.games.match_manually(
        request.path,
        request.library_id,
        request.original_ids,
        replace_game_id=request.replace_game_id,
    )
    return GameResponse.from_game(game)


@router.get("/{game_id}", response_model=GameResponse)
async def get_game(services: AppServices, game_id: int) -> GameResponse:
    game = await services.games.get_game(game_id)
    return GameResponse.from_game(game)


@router.patch("/{game_id}", response_model=GameResponse)
async def update_game(services: AppServices, game_id: int, data: GameUpdate) -> GameResponse:
    """Edit a game. Edited fields are no longer updated by providers."""
    changes = data.model_dump(exclude_unset=True, exclude={"match_confirmed", "user_id"})
    game = await services.games.edit_game(
        game_id,
        changes,
        user_id=data.user_id,
        match_confirmed=data.match_confirmed,
    )
    return GameResponse.from_game(game)
