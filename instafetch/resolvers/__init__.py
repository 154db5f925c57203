from instafetch.resolvers.base import (
    AssetKind,
    Candidate,
    ChildDescriptor,
    MediaDescriptor,
    MediaKind,
    ResolutionStrategy,
    ResolvedAsset,
    SourceStrategy,
)
from instafetch.resolvers.extractor import StructuredExtractorStrategy
from instafetch.resolvers.api import ThirdPartyApiStrategy
from instafetch.resolvers.browser import BrowserRenderStrategy

STRATEGIES: list[type[ResolutionStrategy]] = [
    StructuredExtractorStrategy,
    ThirdPartyApiStrategy,
    BrowserRenderStrategy,
]

__all__ = [
    "AssetKind",
    "Candidate",
    "ChildDescriptor",
    "MediaDescriptor",
    "MediaKind",
    "ResolutionStrategy",
    "ResolvedAsset",
    "SourceStrategy",
    "STRATEGIES",
    "StructuredExtractorStrategy",
    "ThirdPartyApiStrategy",
    "BrowserRenderStrategy",
]
