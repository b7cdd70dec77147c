"""Default home-page section definitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


MediaKind = Literal["anime", "manga"]


@dataclass(frozen=True)
class HomeSectionDefinition:
    """Describes a fixed section of the home page layout."""

    key: str
    title_key: str
    kind: MediaKind
    visible: bool = True


HOME_SECTIONS: tuple[HomeSectionDefinition, ...] = (
    HomeSectionDefinition(key="trending", title_key="trending_this_season", kind="anime"),
    HomeSectionDefinition(key="top", title_key="top_rated_anime", kind="anime"),
    HomeSectionDefinition(key="topThisSeason", title_key="top_this_season", kind="anime"),
    HomeSectionDefinition(key="upcoming", title_key="upcoming_season", kind="anime"),
    HomeSectionDefinition(key="airing", title_key="airing_now", kind="anime"),
    HomeSectionDefinition(key="popular", title_key="most_popular", kind="anime"),
    HomeSectionDefinition(key="topMovies", title_key="top_movies", kind="anime"),
    HomeSectionDefinition(key="movies", title_key="latest_movies", kind="anime"),
    HomeSectionDefinition(key="latestAdditions", title_key="latest_additions", kind="anime"),
    HomeSectionDefinition(key="releasingManga", title_key="releasing_manga", kind="manga"),
    HomeSectionDefinition(key="trendingManga", title_key="trending_manga", kind="manga"),
    HomeSectionDefinition(key="upcomingManga", title_key="upcoming_manga", kind="manga"),
    HomeSectionDefinition(key="popularManga", title_key="popular_manga", kind="manga"),
    HomeSectionDefinition(key="topManga", title_key="top_manga", kind="manga"),
)


HOME_SECTION_COUNT = len(HOME_SECTIONS)

SENSITIVE_GENRES: tuple[str, ...] = (
    "Boys Love",
    "Girls Love",
    "Hentai",
    "Ecchi",
    "Erotica",
)
