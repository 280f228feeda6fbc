from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..flows.practice import PracticeService
from ..models.content import ItemType, PriorityCandidate
from ..models.practice import (
    AttemptRequest,
    Forecast,
    GradeRequest,
    NextItemResult,
    PracticeSession,
    SessionSettings,
)
from ..models.review import ReviewRecord

router = APIRouter(tags=["practice"])


class IndexRequest(BaseModel):
    """Request model for adding catalog items to a user's indexed pool."""

    item_ids: list[str] = Field(min_length=1)


def get_practice_service(request: Request) -> PracticeService:
    """アプリに登録された PracticeService を取り出す依存関数。"""

    return request.app.state.practice_service


@router.get("/{user_id}/session", response_model=PracticeSession)
async def get_session(
    user_id: str,
    item_type: ItemType = Query(default=ItemType.flashcard),
    level: str | None = Query(default=None),
    randomize_order: bool | None = Query(default=None),
    items_per_session: int | None = Query(default=None),
    service: PracticeService = Depends(get_practice_service),
) -> PracticeSession:
    """出題セッションを構成して返す。

    - status=ready: items に出題順で並ぶ
    - status=all_caught_up / empty_pool: items は空（エラーではない）
    - randomize_order / items_per_session のいずれかを指定すると保存済み設定より優先する
    """

    settings = None
    if randomize_order is not None or items_per_session is not None:
        settings = SessionSettings(
            randomize_order=bool(randomize_order),
            items_per_session=items_per_session or 0,
        )
    return await service.get_session(user_id, item_type, settings, level=level)


@router.get("/{user_id}/next", response_model=NextItemResult)
async def get_next_item(
    user_id: str,
    item_type: ItemType = Query(default=ItemType.grammar),
    level: str | None = Query(default=None),
    exclude: list[str] = Query(default=[]),
    service: PracticeService = Depends(get_practice_service),
) -> NextItemResult:
    """次の1問を段階的フォールバックで選ぶ。exclude は直近に出題した ID。"""

    return await service.get_next_item(user_id, exclude, item_type=item_type, level=level)


@router.post("/{user_id}/grade", response_model=ReviewRecord)
async def grade(
    user_id: str,
    req: GradeRequest,
    service: PracticeService = Depends(get_practice_service),
) -> ReviewRecord:
    return await service.grade(user_id, req.item_id, req.outcome)


@router.get("/{user_id}/forecast", response_model=Forecast)
async def forecast(
    user_id: str,
    item_type: ItemType = Query(default=ItemType.flashcard),
    level: str | None = Query(default=None),
    service: PracticeService = Depends(get_practice_service),
) -> Forecast:
    return await service.forecast(user_id, item_type, level=level)


@router.post("/{user_id}/attempts", response_model=PriorityCandidate)
async def record_attempt(
    user_id: str,
    req: AttemptRequest,
    service: PracticeService = Depends(get_practice_service),
) -> PriorityCandidate:
    """穴埋め演習の結果を索引済み候補の統計へ反映する。"""

    try:
        return await service.record_attempt(
            user_id, req.item_id, req.correct_answers, req.total_blanks
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/{user_id}/index", response_model=list[PriorityCandidate])
async def index_items(
    user_id: str,
    req: IndexRequest,
    service: PracticeService = Depends(get_practice_service),
) -> list[PriorityCandidate]:
    return await service.index_items(user_id, req.item_ids)
