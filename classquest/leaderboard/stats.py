"""
Leaderboard statistics

Pure functions over already loaded entries; nothing here touches the
database, so results are recomputed on every read.
"""
import math
from typing import Dict, Iterable, List, Optional

from classquest.core.config import LEADERBOARD_BUCKET_SIZE
from classquest.leaderboard.schemas.leaderboard import (
    DistributionBucket,
    LeaderboardEntry,
    LeaderboardStats,
    TutorGroup,
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def filter_entries(
    entries: Iterable[LeaderboardEntry],
    search: Optional[str] = None,
    tutor_id: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """Case-insensitive substring match on username, first or last name"""
    filtered = list(entries)

    if search:
        needle = search.strip().lower()
        filtered = [
            entry
            for entry in filtered
            if needle in entry.username.lower()
            or (entry.first_name and needle in entry.first_name.lower())
            or (entry.last_name and needle in entry.last_name.lower())
        ]

    if tutor_id is not None:
        filtered = [entry for entry in filtered if entry.tutor_id == tutor_id]

    return filtered


def rank_entries(
    entries: Iterable[LeaderboardEntry], direction: str = "desc"
) -> List[LeaderboardEntry]:
    """
    Sort by experience and number the result from 1.

    The sort is stable: equal experience keeps the incoming order and
    each entry still gets its own rank.
    """
    if direction not in ("asc", "desc"):
        raise ValueError(f"Unknown sort direction: {direction}")

    ordered = sorted(
        entries, key=lambda entry: entry.experience, reverse=direction == "desc"
    )
    return [
        entry.model_copy(update={"rank": index})
        for index, entry in enumerate(ordered, start=1)
    ]


def calculate_stats(entries: Iterable[LeaderboardEntry]) -> LeaderboardStats:
    values = sorted(entry.experience for entry in entries)
    if not values:
        return LeaderboardStats()

    count = len(values)
    middle = count // 2
    if count % 2 == 0:
        median = (values[middle - 1] + values[middle]) / 2
    else:
        median = values[middle]

    return LeaderboardStats(
        average=_round_half_up(sum(values) / count),
        median=median,
        min=values[0],
        max=values[-1],
    )


def experience_distribution(
    entries: Iterable[LeaderboardEntry], bucket_size: int = LEADERBOARD_BUCKET_SIZE
) -> List[DistributionBucket]:
    """Counts per fixed-width experience range, highest range first"""
    if bucket_size <= 0:
        raise ValueError("Bucket size must be positive")

    counts: Dict[int, int] = {}
    for entry in entries:
        start = (entry.experience // bucket_size) * bucket_size
        counts[start] = counts.get(start, 0) + 1

    return [
        DistributionBucket(
            range=f"{start}-{start + bucket_size - 1}", start=start, count=count
        )
        for start, count in sorted(counts.items(), reverse=True)
    ]


def group_by_tutor(entries: Iterable[LeaderboardEntry]) -> List[TutorGroup]:
    """Students per tutor, largest group first; entries without a tutor are skipped"""
    groups: Dict[int, List[int]] = {}
    for entry in entries:
        if entry.tutor_id is None:
            continue
        groups.setdefault(entry.tutor_id, []).append(entry.experience)

    result = [
        TutorGroup(
            tutor_id=tutor_id,
            count=len(experience),
            total_experience=sum(experience),
            average_experience=_round_half_up(sum(experience) / len(experience)),
        )
        for tutor_id, experience in groups.items()
    ]
    result.sort(key=lambda group: group.count, reverse=True)
    return result
