from __future__ import annotations

import logging
from dataclasses import dataclass

from media_resolver.catalog import Catalog, CatalogCandidate, CatalogImage, ImageSet
from media_resolver.exceptions import MediaResolverError

log = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
BACKDROP_SIZE = "w780"
POSTER_SIZE = "w500"


@dataclass(frozen=True)
class SelectedAssets:
    backdrop_path: str | None = None
    poster_path: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.backdrop_path and not self.poster_path


def pick_image(images: list[CatalogImage], language: str) -> CatalogImage | None:
    """
    Pick the best image for a language.

    Preference: tagged with the language, then language-neutral, then
    anything. Within each group the highest catalog vote average wins
    (ties keep catalog order).
    """
    if not images:
        return None

    ranked = sorted(images, key=lambda img: img.vote_average, reverse=True)
    for img in ranked:
        if img.iso_639_1 == language:
            return img
    for img in ranked:
        if img.iso_639_1 is None:
            return img
    return ranked[0]


class AssetSelector:
    """Chooses a backdrop and a poster for a resolved entity."""

    def __init__(
        self,
        catalog: Catalog,
        language: str = "en",
        image_base_url: str = IMAGE_BASE_URL,
    ):
        self.catalog = catalog
        self.language = language
        self.image_base_url = image_base_url.rstrip("/")

    def select(self, candidate: CatalogCandidate) -> SelectedAssets:
        """
        Select language-preferred assets for a candidate.

        The images endpoint is consulted first; the paths embedded in the
        search hit are used for whatever it could not supply.
        """
        try:
            images = self.catalog.get_images(
                candidate.media_type, candidate.catalog_id, self.language
            )
        except MediaResolverError as e:
            log.debug("Image lookup failed for %s: %s", candidate.label, e)
            images = ImageSet()

        backdrop = pick_image(images.backdrops, self.language)
        poster = pick_image(images.posters, self.language)

        return SelectedAssets(
            backdrop_path=backdrop.file_path if backdrop else candidate.backdrop_path,
            poster_path=poster.file_path if poster else candidate.poster_path,
        )

    def url(self, path: str | None, size: str) -> str | None:
        if not path:
            return None
        return f"{self.image_base_url}/{size}{path}"

    def backdrop_url(self, assets: SelectedAssets) -> str | None:
        return self.url(assets.backdrop_path, BACKDROP_SIZE)

    def poster_url(self, assets: SelectedAssets) -> str | None:
        return self.url(assets.poster_path, POSTER_SIZE)


## Tests


def test_pick_image_language_preference():
    images = [
        CatalogImage("/fr.jpg", "fr", vote_average=9.0),
        CatalogImage("/none.jpg", None, vote_average=6.0),
        CatalogImage("/en-low.jpg", "en", vote_average=4.0),
        CatalogImage("/en-high.jpg", "en", vote_average=5.5),
    ]
    assert pick_image(images, "en").file_path == "/en-high.jpg"
    assert pick_image(images, "de").file_path == "/none.jpg"
    assert pick_image([images[0]], "en").file_path == "/fr.jpg"
    assert pick_image([], "en") is None


def test_url_building():
    class _NoCatalog:
        pass

    selector = AssetSelector(_NoCatalog(), image_base_url="https://img.example/t/p/")  # type: ignore[arg-type]
    assets = SelectedAssets(backdrop_path="/b.jpg", poster_path=None)
    assert selector.backdrop_url(assets) == "https://img.example/t/p/w780/b.jpg"
    assert selector.poster_url(assets) is None
    assert SelectedAssets().is_empty
    assert not assets.is_empty
