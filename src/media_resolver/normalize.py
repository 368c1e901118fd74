from __future__ import annotations

import re
from dataclasses import dataclass

MIN_YEAR = 1900
MAX_YEAR = 2030
WATCH_FRAME_COUNT = 2

# A person name: two or more capitalized words ("Christopher Nolan", "Lupita Nyong'o")
_NAME = r"[A-Z][\w'.-]*(?:\s+[A-Z][\w'.-]*)+"

STREAMING_SERVICES = [
    r"HBO\s*Max",
    r"HBO",
    r"Netflix",
    r"Disney\s*(?:\+|Plus)",
    r"Paramount\s*(?:\+|Plus)",
    r"Apple\s*TV\s*\+?",
    r"Amazon\s+Prime(?:\s+Video)?",
    r"Prime\s+Video",
    r"Hulu",
    r"Peacock",
]


@dataclass(frozen=True)
class NormalizedQuery:
    """
    A free-text query broken into a searchable title and extracted hints.

    ``search_title`` is what goes to the catalog: the clean title for movies,
    the bare show name for TV-flavoured queries.
    """

    raw: str
    clean_title: str
    year: int | None = None
    director: str | None = None
    actor: str | None = None
    looks_like_tv: bool = False
    search_title: str = ""

    @property
    def has_creator(self) -> bool:
        return self.director is not None or self.actor is not None

    @property
    def creator(self) -> str | None:
        return self.director or self.actor


class QueryNormalizer:
    """
    Deterministic parser for user-typed media queries.

    Strips conversational framing, pulls out an explicit year and a creator
    reference, and flags queries that are clearly about a TV show. Pure: the
    same input always yields the same ``NormalizedQuery``.
    """

    # Ordered; the first frame that matches is unwrapped. The leading
    # WATCH_FRAME_COUNT entries are the "watch" frames kept by literal mode.
    FRAME_PATTERNS = [
        re.compile(r"^\s*find\s+and\s+watch\s+[\"“']?(.+?)[\"”']?\s*$", re.IGNORECASE),
        re.compile(r"^\s*watch\s+[\"“']?(.+?)[\"”']?\s*$", re.IGNORECASE),
        re.compile(r"^\s*see\s+[\"“'](.+?)[\"”']\s*$", re.IGNORECASE),
        re.compile(r"^\s*[\"“](.+?)[\"”]\s*(?:movie|film)?\s*$", re.IGNORECASE),
        re.compile(r"^(.+?)\s+(?:movie|film)\s*$", re.IGNORECASE),
    ]

    # Priority order; the last one is the catch-all for a year token mid-title.
    # A year at the very start belongs to the title ("1917", "2001: A Space Odyssey").
    YEAR_PATTERNS = [
        re.compile(r"\s*\((\d{4})\)\s*$"),
        re.compile(r"\s*\[(\d{4})\]\s*$"),
        re.compile(r"\s+[-–—]\s+(\d{4})\s*$"),
        re.compile(r"\s+(\d{4})\s*$"),
        re.compile(r"(?<=\S)\s+(19\d{2}|20\d{2})\b"),
    ]

    CREATOR_PATTERNS = [
        (re.compile(rf"\s+(?i:directed\s+by)\s+({_NAME})\s*$"), "director"),
        (re.compile(rf"\s+(?i:starring)\s+({_NAME})\s*$"), "actor"),
        (re.compile(rf"\s+(?i:by)\s+({_NAME})\s*$"), "director"),
        (re.compile(rf"\s+(?i:with)\s+({_NAME})\s*$"), "actor"),
    ]

    TV_PATTERNS = [
        re.compile(r"\bseason\s+\d+\b", re.IGNORECASE),
        re.compile(r"\bS\d{1,2}(?:\s*E\d{1,3})?\b", re.IGNORECASE),
        re.compile(r"\bepisode\s+\d+\b", re.IGNORECASE),
        re.compile(r"\bE\d{1,3}\b", re.IGNORECASE),
        re.compile(r"\bseries\b", re.IGNORECASE),
        re.compile(r"\bTV\s+show\b", re.IGNORECASE),
        re.compile(r"\bpremier(?:e|es|ing)\b", re.IGNORECASE),
        *(re.compile(rf"\b{service}(?=\W|$)", re.IGNORECASE) for service in STREAMING_SERVICES),
    ]

    # Applied in order to reduce a TV query to the show's name
    TV_NOISE_PATTERNS = [
        re.compile(r"\s+[-–—:|]\s+.*$"),
        re.compile(r"\((?:[^)]*)\)|\[(?:[^\]]*)\]"),
        re.compile(r"\b(?:season|series)\s+\d+\b", re.IGNORECASE),
        re.compile(r"\bS\d{1,2}(?:\s*E\d{1,3})?\b", re.IGNORECASE),
        re.compile(r"\bepisode\s+\d+\b", re.IGNORECASE),
        re.compile(r"\bE\d{1,3}\b", re.IGNORECASE),
        *(re.compile(rf"\b{service}(?=\W|$)", re.IGNORECASE) for service in STREAMING_SERVICES),
        re.compile(r"\b(?:new\s+)?premier(?:e|es|ing)\b.*$", re.IGNORECASE),
        re.compile(r"\bTV\s+(?:show|series)\b", re.IGNORECASE),
        re.compile(r"\b(?:the\s+)?series\b", re.IGNORECASE),
        re.compile(r"\s+(?:on|at|in|from)\s*$", re.IGNORECASE),
    ]

    def normalize(
        self, raw: str, year_hint: int | None = None, literal: bool = False
    ) -> NormalizedQuery:
        """
        Parse a raw query.

        Args:
            raw: User-supplied text
            year_hint: Caller-supplied year, wins over a year found in the text
            literal: Keep creator phrases and framing other than "watch" in the
                title; only the year is extracted. Used to retry a search when
                stripping removed part of a real title ("Scary Movie").
        """
        text = _collapse(raw)

        text = self.strip_frames(text, watch_only=literal)

        text, year = self.extract_year(text)

        director = actor = None
        if not literal:
            text, director, actor = self.extract_creator(text)
            if year is None:
                text, year = self.extract_year(text)

        if year_hint is not None:
            year = year_hint

        looks_like_tv = self.looks_like_tv(raw)
        search_title = self.tv_core_name(text) if looks_like_tv else text

        return NormalizedQuery(
            raw=raw,
            clean_title=text,
            year=year,
            director=director,
            actor=actor,
            looks_like_tv=looks_like_tv,
            search_title=search_title or text,
        )

    def strip_frames(self, text: str, watch_only: bool = False) -> str:
        patterns = self.FRAME_PATTERNS[:WATCH_FRAME_COUNT] if watch_only else self.FRAME_PATTERNS
        for pattern in patterns:
            if match := pattern.match(text):
                inner = match.group(1).strip()
                if inner:
                    return inner
        return text

    def extract_year(self, text: str) -> tuple[str, int | None]:
        """Remove the highest-priority valid year from text.

        A match is skipped if it is out of range or would leave nothing of
        the title ("2012").
        """
        for pattern in self.YEAR_PATTERNS:
            for match in pattern.finditer(text):
                year = int(match.group(1))
                if not MIN_YEAR <= year <= MAX_YEAR:
                    continue
                remainder = _tidy(text[: match.start()] + " " + text[match.end() :])
                if remainder:
                    return remainder, year
        return text, None

    def extract_creator(self, text: str) -> tuple[str, str | None, str | None]:
        for pattern, role in self.CREATOR_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            remainder = _tidy(text[: match.start()])
            if not remainder:
                continue
            name = match.group(1).strip()
            if role == "director":
                return remainder, name, None
            return remainder, None, name
        return text, None, None

    def looks_like_tv(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.TV_PATTERNS)

    def tv_core_name(self, text: str) -> str:
        core = text
        for pattern in self.TV_NOISE_PATTERNS:
            core = _collapse(pattern.sub(" ", core))
        return _tidy(core)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _tidy(text: str) -> str:
    """Collapse whitespace and drop separators left dangling at either end."""
    return _collapse(text).strip(" -–—:,;|")


## Tests


def test_year_in_parentheses():
    q = QueryNormalizer().normalize("Movie Title (2024)")
    assert q.clean_title == "Movie Title"
    assert q.year == 2024


def test_clean_title_has_no_year():
    q = QueryNormalizer().normalize("Movie Title")
    assert q.clean_title == "Movie Title"
    assert q.year is None


def test_year_patterns():
    n = QueryNormalizer()
    assert n.extract_year("Dune [2021]") == ("Dune", 2021)
    assert n.extract_year("Dune - 2021") == ("Dune", 2021)
    assert n.extract_year("Inception 2010") == ("Inception", 2010)
    assert n.extract_year("The Matrix 1999 remaster") == ("The Matrix remaster", 1999)


def test_year_out_of_range_or_title_only():
    n = QueryNormalizer()
    assert n.extract_year("Blade Runner 2049") == ("Blade Runner 2049", None)
    assert n.extract_year("2012") == ("2012", None)
    assert n.extract_year("1917") == ("1917", None)
    assert n.extract_year("2001: A Space Odyssey") == ("2001: A Space Odyssey", None)


def test_year_hint_wins():
    q = QueryNormalizer().normalize("Dune (2021)", year_hint=1984)
    assert q.year == 1984
    assert q.clean_title == "Dune"


def test_frames_stripped():
    n = QueryNormalizer()
    assert n.normalize("watch Inception").clean_title == "Inception"
    assert n.normalize("find and watch 'Arrival'").clean_title == "Arrival"
    assert n.normalize('"Heat" movie').clean_title == "Heat"
    assert n.normalize("Oppenheimer film").clean_title == "Oppenheimer"
    assert n.normalize("See How They Run").clean_title == "See How They Run"


def test_literal_keeps_frames_and_creator():
    q = QueryNormalizer().normalize("Scary Movie", literal=True)
    assert q.clean_title == "Scary Movie"
    q = QueryNormalizer().normalize("Sleeping with Other People 2015", literal=True)
    assert q.clean_title == "Sleeping with Other People"
    assert q.year == 2015
    assert q.actor is None
    q = QueryNormalizer().normalize("watch Scary Movie", literal=True)
    assert q.clean_title == "Scary Movie"


def test_creator_extraction():
    n = QueryNormalizer()
    q = n.normalize("Inception directed by Christopher Nolan")
    assert q.clean_title == "Inception"
    assert q.director == "Christopher Nolan"
    assert q.actor is None

    q = n.normalize("Heat with Al Pacino")
    assert q.clean_title == "Heat"
    assert q.actor == "Al Pacino"

    q = n.normalize("Inception (2010) by Christopher Nolan")
    assert q.clean_title == "Inception"
    assert q.year == 2010
    assert q.director == "Christopher Nolan"


def test_creator_needs_capitalized_multiword_name():
    n = QueryNormalizer()
    assert n.normalize("Stand by Me").director is None
    assert n.normalize("Interview with the Vampire").actor is None
    assert n.normalize("Interview with the Vampire").clean_title == "Interview with the Vampire"


def test_tv_detection():
    n = QueryNormalizer()
    assert n.looks_like_tv("The Bear Season 3")
    assert n.looks_like_tv("Severance S02E01")
    assert n.looks_like_tv("Shogun on Hulu")
    assert n.looks_like_tv("The Last of Us - HBO Max")
    assert n.looks_like_tv("Chernobyl miniseries") is False
    assert n.looks_like_tv("Mad Max: Fury Road") is False
    assert n.looks_like_tv("The Truman Show") is False


def test_tv_core_name():
    n = QueryNormalizer()
    q = n.normalize("The Bear Season 3 on Hulu")
    assert q.looks_like_tv
    assert q.search_title == "The Bear"
    assert q.clean_title == "The Bear Season 3 on Hulu"

    assert n.normalize("Severance S02 (Apple TV+)").search_title == "Severance"
    assert n.normalize("Squid Game - Netflix series premiere").search_title == "Squid Game"
