"""Pydantic schemas for the public leaderboard."""

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    user_id: int
    username: str | None
    seconds: int
    position: int
    in_game: bool = False


class SessionCountEntry(BaseModel):
    user_id: int
    username: str | None
    sessions: int
    position: int


class Playtime(BaseModel):
    top_three: list[LeaderboardEntry] = []


class SessionCounts(BaseModel):
    top_three: list[SessionCountEntry] = []


class LeaderboardOut(BaseModel):
    success: bool = True
    playtime: Playtime
    sessions: SessionCounts
    you: LeaderboardEntry | None = None
