"""Error taxonomy for media-resolver.

None of these escape the public resolver API: they are raised by the
upstream clients and caught where a fallback exists. A query that simply
has no acceptable match is not an error and is reported as ``None``.
"""

from __future__ import annotations


class MediaResolverError(Exception):
    """Base class for all media-resolver errors."""


class NotConfiguredError(MediaResolverError):
    """Raised when an upstream service has no credentials configured."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"[{service}] {message}")


class UpstreamUnavailableError(MediaResolverError):
    """Network failure, timeout, rate limit or non-2xx from an upstream call."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"[{service}] {message}")


class MalformedResponseError(UpstreamUnavailableError):
    """Upstream answered, but not with the structure we expect."""


## Tests


def test_error_messages_carry_service():
    err = UpstreamUnavailableError("tmdb", "HTTP 503", status_code=503)
    assert str(err) == "[tmdb] HTTP 503"
    assert err.status_code == 503


def test_malformed_is_upstream_unavailable():
    err = MalformedResponseError("tmdb", "results is not a list")
    assert isinstance(err, UpstreamUnavailableError)
    assert isinstance(err, MediaResolverError)
    assert err.status_code is None


def test_not_configured():
    err = NotConfiguredError("classifier", "OPENAI_API_KEY not set")
    assert err.service == "classifier"
    assert "OPENAI_API_KEY" in str(err)
