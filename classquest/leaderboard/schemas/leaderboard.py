"""Leaderboard Schemas"""
from pydantic import BaseModel
from typing import Optional, List, Literal


class LeaderboardEntry(BaseModel):
    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    experience: int = 0
    tutor_id: Optional[int] = None
    rank: Optional[int] = None


class LeaderboardStats(BaseModel):
    average: int = 0
    median: float = 0
    min: int = 0
    max: int = 0


class DistributionBucket(BaseModel):
    range: str
    start: int
    count: int


class TutorGroup(BaseModel):
    tutor_id: int
    count: int
    total_experience: int
    average_experience: int


class LeaderboardResponse(BaseModel):
    entries: List[LeaderboardEntry]
    total: int
    direction: Literal["asc", "desc"] = "desc"
    stats: LeaderboardStats
    distribution: List[DistributionBucket]
    tutors: List[TutorGroup]
