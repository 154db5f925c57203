from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum

from instafetch.utils.link_detector import PostTarget


class MediaKind(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    CAROUSEL = "carousel"


class AssetKind(StrEnum):
    IMAGE = "image"
    VIDEO = "video"


class SourceStrategy(StrEnum):
    STRUCTURED_EXTRACTOR = "structured-extractor"
    THIRD_PARTY_API = "third-party-api"
    BROWSER_RENDER = "browser-render"


@dataclass(frozen=True)
class Candidate:
    """One rendition of an asset. Dimensions are optional metadata."""

    url: str
    width: int | None = None
    height: int | None = None
    source: str | None = None  # where the candidate was found, for diagnostics

    @property
    def has_dimensions(self) -> bool:
        return bool(self.width) and bool(self.height)


@dataclass
class ChildDescriptor:
    """One item of a carousel, in display order."""

    kind: AssetKind
    primary_image: Candidate | None = None
    primary_video: Candidate | None = None

    @property
    def best_asset(self) -> Candidate | None:
        return self.primary_video or self.primary_image


@dataclass
class ResolvedAsset:
    """A single deliverable asset."""

    url: str
    kind: AssetKind
    original_page_url: str | None = None
    # 1-based position inside a carousel; selects the entry when yt-dlp reads the page
    playlist_item: int | None = None


@dataclass
class MediaDescriptor:
    """Canonical result of resolving one post, whatever strategy produced it."""

    shortcode: str | None
    kind: MediaKind
    source_strategy: SourceStrategy
    page_url: str
    primary_image: Candidate | None = None
    primary_video: Candidate | None = None
    children: list[ChildDescriptor] = field(default_factory=list)
    requires_direct_fetch: bool = False
    diagnostic: str | None = None
    # Preview frame of a video post; never delivered
    poster: Candidate | None = None

    def __post_init__(self) -> None:
        if self.kind == MediaKind.IMAGE:
            if self.primary_image is None or self.primary_video is not None or self.children:
                raise ValueError("image descriptor needs exactly a primary image")
        elif self.kind == MediaKind.VIDEO:
            if self.primary_video is None or self.primary_image is not None or self.children:
                raise ValueError("video descriptor needs exactly a primary video")
        elif self.kind == MediaKind.CAROUSEL:
            if not self.children or self.primary_image or self.primary_video:
                raise ValueError("carousel descriptor needs children and no primaries")

        candidates = [self.primary_image, self.primary_video, self.poster]
        for child in self.children:
            candidates += [child.primary_image, child.primary_video]
        if any(c is not None and not c.url for c in candidates):
            raise ValueError("candidate with empty url")

    def to_assets(self) -> list[ResolvedAsset]:
        """Flatten into deliverable assets; one per carousel child."""
        if self.kind == MediaKind.CAROUSEL:
            assets: list[ResolvedAsset] = []
            for position, child in enumerate(self.children, start=1):
                best = child.best_asset
                if best is not None:
                    assets.append(
                        ResolvedAsset(best.url, child.kind, self.page_url, playlist_item=position)
                    )
            return assets
        if self.kind == MediaKind.VIDEO:
            return [ResolvedAsset(self.primary_video.url, AssetKind.VIDEO, self.page_url)]
        return [ResolvedAsset(self.primary_image.url, AssetKind.IMAGE, self.page_url)]


class ResolutionStrategy(ABC):
    """One way of turning a post link into a MediaDescriptor.

    Strategies never call each other; the orchestrator runs them in order and
    moves on whenever one raises.
    """

    @property
    @abstractmethod
    def name(self) -> SourceStrategy: ...

    @property
    def available(self) -> bool:
        """Whether the strategy is configured to run at all."""
        return True

    @abstractmethod
    async def resolve(self, target: PostTarget) -> MediaDescriptor:
        """Fetch and normalize; raise ResolutionError on failure."""
        ...
