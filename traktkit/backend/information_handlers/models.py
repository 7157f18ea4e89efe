"""Typed Trakt domain objects.

Each model is built from the JSON mapping Trakt returns.  Unknown keys are
ignored; a missing or malformed *required* field makes construction fail with
a :class:`pydantic.ValidationError`, which the dispatcher turns into an
object-construction failure (single objects) or drops the element (lists).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError


M = TypeVar("M", bound="TraktModel")


class TraktModel(BaseModel):
    """Base for all decoded Trakt payloads."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def from_json(cls: Type[M], payload: Mapping[str, Any]) -> M:
        return cls.model_validate(payload)


class Ids(TraktModel):
    trakt: int
    slug: Optional[str] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None
    tvdb: Optional[int] = None
    tvrage: Optional[int] = None


class Airs(TraktModel):
    day: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None


class Show(TraktModel):
    title: str
    year: Optional[int] = None
    ids: Ids
    overview: Optional[str] = None
    first_aired: Optional[datetime] = None
    airs: Optional[Airs] = None
    runtime: Optional[int] = Field(default=None, ge=0)
    certification: Optional[str] = None
    network: Optional[str] = None
    country: Optional[str] = None
    trailer: Optional[str] = None
    homepage: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[float] = None
    votes: Optional[int] = Field(default=None, ge=0)
    updated_at: Optional[datetime] = None
    language: Optional[str] = None
    available_translations: Sequence[str] = Field(default_factory=list)
    genres: Sequence[str] = Field(default_factory=list)
    aired_episodes: Optional[int] = Field(default=None, ge=0)


class Movie(TraktModel):
    title: str
    year: Optional[int] = None
    ids: Ids
    tagline: Optional[str] = None
    overview: Optional[str] = None
    released: Optional[date] = None
    runtime: Optional[int] = Field(default=None, ge=0)
    certification: Optional[str] = None
    trailer: Optional[str] = None
    homepage: Optional[str] = None
    rating: Optional[float] = None
    votes: Optional[int] = Field(default=None, ge=0)
    updated_at: Optional[datetime] = None
    language: Optional[str] = None
    available_translations: Sequence[str] = Field(default_factory=list)
    genres: Sequence[str] = Field(default_factory=list)


class Episode(TraktModel):
    season: int = Field(ge=0)
    number: int = Field(ge=0)
    title: Optional[str] = None
    ids: Ids
    overview: Optional[str] = None
    first_aired: Optional[datetime] = None
    runtime: Optional[int] = Field(default=None, ge=0)


class TrendingShow(TraktModel):
    watchers: int = Field(ge=0)
    show: Show


class TrendingMovie(TraktModel):
    watchers: int = Field(ge=0)
    movie: Movie


class Person(TraktModel):
    name: str
    ids: Ids
    biography: Optional[str] = None
    birthday: Optional[date] = None
    death: Optional[date] = None
    birthplace: Optional[str] = None
    homepage: Optional[str] = None


class CastMember(TraktModel):
    character: Optional[str] = None
    person: Person


class CrewMember(TraktModel):
    job: Optional[str] = None
    department: Optional[str] = None
    person: Person


class User(TraktModel):
    username: str
    name: Optional[str] = None
    private: bool = False
    vip: Optional[bool] = None
    vip_ep: Optional[bool] = None


class Comment(TraktModel):
    id: int
    comment: str
    created_at: datetime
    parent_id: Optional[int] = None
    updated_at: Optional[datetime] = None
    spoiler: bool = False
    review: bool = False
    replies: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    user_rating: Optional[int] = None
    user: Optional[User] = None


class SearchResult(TraktModel):
    type: str
    score: Optional[float] = None
    show: Optional[Show] = None
    movie: Optional[Movie] = None
    episode: Optional[Episode] = None
    person: Optional[Person] = None


class CastAndCrew(TraktModel):
    cast: List[CastMember] = Field(default_factory=list)
    crew: List[CrewMember] = Field(default_factory=list)


def validation_reason(exc: ValidationError) -> str:
    """Compact ``field: message`` summary of a pydantic validation failure."""

    parts: List[str] = []
    for error in exc.errors():
        location = ".".join(str(piece) for piece in error.get("loc", ())) or "<root>"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")

    return "; ".join(parts)


def init_each(model: Type[M], payloads: Iterable[Any]) -> List[M]:
    """Build one ``model`` per mapping, silently skipping the ones that don't fit."""

    objects: List[M] = []
    for payload in payloads:
        if not isinstance(payload, Mapping):
            continue
        try:
            objects.append(model.from_json(payload))
        except ValidationError:
            continue

    return objects


__all__ = [
    "Airs",
    "CastAndCrew",
    "CastMember",
    "Comment",
    "CrewMember",
    "Episode",
    "Ids",
    "Movie",
    "Person",
    "SearchResult",
    "Show",
    "TraktModel",
    "TrendingMovie",
    "TrendingShow",
    "User",
    "init_each",
    "validation_reason",
]
