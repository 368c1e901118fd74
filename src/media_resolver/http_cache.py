from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Iterator, Mapping
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

# Query parameters that must never end up in a cache key or on disk
SECRET_PARAMS = frozenset({"api_key", "apikey", "access_token", "token"})


def cache_key_for(url: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a stable cache key from URL and query params, minus credentials."""
    if not params:
        return url
    public = sorted(
        (k, str(v)) for k, v in params.items() if v is not None and k.lower() not in SECRET_PARAMS
    )
    return f"{url}?{urlencode(public)}" if public else url


class HttpCache:
    """
    Short-lived cache of decoded JSON API responses.

    Bodies are stored as files named by the SHA-256 of their key; a SQLite
    index tracks when each entry expires. Entries are only an optimisation
    for repeated lookups (the same batch resolved twice, a ranker call after
    a resolve) and expire after ``ttl_seconds``.
    """

    def __init__(self, cache_dir: Path, ttl_seconds: int = 3600):
        self.cache_dir = cache_dir
        self.ttl_seconds = ttl_seconds
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.cache_dir / "index.sqlite"
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # One connection per operation keeps the cache usable from worker threads
        with closing(sqlite3.connect(self.db_path)) as conn:
            with conn:
                yield conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS responses (
                    key TEXT PRIMARY KEY,
                    digest TEXT NOT NULL,
                    stored_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_responses_expiry ON responses(expires_at)")

    @staticmethod
    def _digest(key: str) -> str:
        return hashlib.sha256(key.encode()).hexdigest()

    def _body_path(self, digest: str) -> Path:
        return self.cache_dir / f"{digest}.json"

    def get(self, key: str) -> Any | None:
        """Return the cached payload for key, or None if missing or expired."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT digest FROM responses WHERE key = ? AND expires_at > ?",
                (key, time.time()),
            ).fetchone()

        if row is None:
            return None

        body = self._body_path(row[0])
        try:
            return json.loads(body.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            # Index and body out of sync; treat as a miss
            return None

    def put(self, key: str, payload: Any) -> None:
        """Store a JSON-serialisable payload under key."""
        digest = self._digest(key)
        self._body_path(digest).write_text(json.dumps(payload), encoding="utf-8")

        now = time.time()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO responses (key, digest, stored_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, digest, now, now + self.ttl_seconds),
            )

    def invalidate(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM responses WHERE key = ?", (key,))
        self._body_path(self._digest(key)).unlink(missing_ok=True)

    def purge_expired(self) -> int:
        """Remove expired entries and return how many were removed."""
        now = time.time()
        with self._connect() as conn:
            digests = [
                row[0]
                for row in conn.execute(
                    "SELECT digest FROM responses WHERE expires_at <= ?", (now,)
                )
            ]
            conn.execute("DELETE FROM responses WHERE expires_at <= ?", (now,))

        for digest in digests:
            self._body_path(digest).unlink(missing_ok=True)
        return len(digests)

    def clear(self) -> int:
        """Remove every entry and return how many were removed."""
        with self._connect() as conn:
            digests = [row[0] for row in conn.execute("SELECT digest FROM responses")]
            conn.execute("DELETE FROM responses")

        for digest in digests:
            self._body_path(digest).unlink(missing_ok=True)
        return len(digests)


## Tests


def test_cache_key_strips_secrets():
    key = cache_key_for(
        "https://api.themoviedb.org/3/search/movie",
        {"query": "Up", "api_key": "secret", "year": None, "page": 1},
    )
    assert "secret" not in key
    assert key == "https://api.themoviedb.org/3/search/movie?page=1&query=Up"


def test_cache_key_param_order_irrelevant():
    url = "https://example.com/x"
    assert cache_key_for(url, {"a": 1, "b": 2}) == cache_key_for(url, {"b": 2, "a": 1})
    assert cache_key_for(url, {"api_key": "k"}) == url


def test_http_cache_roundtrip(tmp_path):
    cache = HttpCache(tmp_path / "cache", ttl_seconds=3600)
    cache.put("k1", {"results": [{"id": 27205, "title": "Inception"}]})

    cached = cache.get("k1")
    assert cached == {"results": [{"id": 27205, "title": "Inception"}]}
    assert cache.get("missing") is None


def test_http_cache_ttl_zero_never_hits(tmp_path):
    cache = HttpCache(tmp_path / "cache", ttl_seconds=0)
    cache.put("k", {"a": 1})
    assert cache.get("k") is None
    assert cache.purge_expired() == 1


def test_http_cache_invalidate_and_clear(tmp_path):
    cache = HttpCache(tmp_path / "cache")
    for i in range(3):
        cache.put(f"k{i}", {"i": i})

    cache.invalidate("k0")
    assert cache.get("k0") is None
    assert cache.get("k1") == {"i": 1}

    assert cache.clear() == 2
    assert cache.get("k1") is None
