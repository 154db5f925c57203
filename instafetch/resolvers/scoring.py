"""Pick the best rendition among competing candidate URLs.

Instagram exposes the same image at several sizes, and some of them are
square crops of a portrait/landscape original. The score is the pixel area,
scaled by aspect-ratio factors, with CDN crop signatures ruled out entirely.
Pure functions only: no I/O, no clock, no randomness.
"""

from __future__ import annotations

import re

from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import Candidate

DEFAULT_DIMENSION = 1080

RATIO_TOLERANCE = 0.1
SQUARE_TOLERANCE = 0.03

RATIO_MISMATCH_FACTOR = 0.0001
RATIO_MATCH_FACTOR = 10.0
SQUARE_FACTOR = 0.1

# Square-crop thumbnail tokens: /s150x150/, stp=dst-jpg_e35_s320x320,
# and explicit crop boxes like /c0.135.1080.1080/. The p1080x1080 token is a
# proportional fit, not a crop, so it is left alone.
_CROP_SIGNATURES = [
    re.compile(r"[/_=]s\d{2,4}x\d{2,4}(?=[/_&.?]|$)"),
    re.compile(r"/c\d+\.\d+\.\d+\.\d+[a-z]?/"),
]


def is_cropped(url: str) -> bool:
    return any(pattern.search(url) for pattern in _CROP_SIGNATURES)


def _dimensions(candidate: Candidate) -> tuple[int, int]:
    return (
        candidate.width or DEFAULT_DIMENSION,
        candidate.height or DEFAULT_DIMENSION,
    )


def score(candidate: Candidate, reference_ratio: float | None = None) -> float:
    """Quality score for one candidate; 0 means disqualified."""
    if is_cropped(candidate.url):
        return 0.0

    width, height = _dimensions(candidate)
    value = float(width * height)

    # Ratio heuristics only make sense for declared dimensions
    if not candidate.has_dimensions:
        return value

    ratio = width / height
    if reference_ratio:
        if abs(ratio - reference_ratio) > RATIO_TOLERANCE:
            value *= RATIO_MISMATCH_FACTOR
        else:
            value *= RATIO_MATCH_FACTOR
    elif abs(ratio - 1.0) <= SQUARE_TOLERANCE:
        value *= SQUARE_FACTOR
    return value


def _require(candidates: list[Candidate]) -> None:
    if not candidates:
        raise ResolutionError(ErrorKind.NO_CANDIDATES, "no candidates to choose from")


def select_best(
    candidates: list[Candidate],
    reference_ratio: float | None = None,
) -> Candidate:
    """Return the highest-quality, non-cropped candidate.

    Ties go to candidates with explicit dimensions, then to the one declared
    first.
    """
    _require(candidates)
    ranked = sorted(
        enumerate(candidates),
        key=lambda pair: (
            -score(pair[1], reference_ratio),
            not pair[1].has_dimensions,
            pair[0],
        ),
    )
    return ranked[0][1]


def select_largest(candidates: list[Candidate]) -> Candidate:
    """Resolution-only ranking, used for video variants."""
    _require(candidates)
    ranked = sorted(
        enumerate(candidates),
        key=lambda pair: (
            -(_dimensions(pair[1])[0] * _dimensions(pair[1])[1]),
            not pair[1].has_dimensions,
            pair[0],
        ),
    )
    return ranked[0][1]
