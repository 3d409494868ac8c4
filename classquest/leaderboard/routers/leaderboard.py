from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import get_session
from classquest.core.limits import limiter
from classquest.core.dependencies import get_current_user
from classquest.users.models.users import User
from classquest.leaderboard.schemas.leaderboard import LeaderboardResponse
from classquest.leaderboard.crud.leaderboard import get_leaderboard_entries
from classquest.leaderboard.stats import (
    calculate_stats,
    experience_distribution,
    filter_entries,
    group_by_tutor,
    rank_entries,
)

router = APIRouter(prefix="/leaderboard", tags=["Leaderboard"])


@router.get("/", response_model=LeaderboardResponse)
@limiter.limit("30/minute")
async def get_leaderboard(
    request: Request,
    search: Optional[str] = Query(
        None, max_length=100, description="Match username, first or last name"
    ),
    tutor_id: Optional[int] = Query(None, gt=0, description="Only this tutor's students"),
    direction: Literal["asc", "desc"] = Query("desc", description="Sort by experience"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Students ranked by experience, with statistics over the filtered list.

    - **stats**: average (rounded), median, min and max experience
    - **distribution**: student counts per 50-point range, highest first
    - **tutors**: students and average experience per tutor
    """
    entries = await get_leaderboard_entries(db)
    filtered = filter_entries(entries, search=search, tutor_id=tutor_id)
    ranked = rank_entries(filtered, direction=direction)

    return LeaderboardResponse(
        entries=ranked,
        total=len(ranked),
        direction=direction,
        stats=calculate_stats(ranked),
        distribution=experience_distribution(ranked),
        tutors=group_by_tutor(ranked),
    )
