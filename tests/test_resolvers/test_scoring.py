import pytest

from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import Candidate
from instafetch.resolvers.scoring import is_cropped, score, select_best, select_largest


def test_crop_signature_is_disqualified_regardless_of_dimensions():
    thumb = Candidate(url="https://cdn.example/v/s150x150/abc.jpg", width=150, height=150)
    original = Candidate(url="https://cdn.example/v/abc_orig.jpg", width=1440, height=1800)
    assert select_best([thumb, original]) is original


def test_crop_signature_beats_inflated_metadata():
    """Declared dimensions on a cropped URL are not trusted."""
    thumb = Candidate(url="https://cdn.example/v/s640x640/abc.jpg", width=4000, height=5000)
    original = Candidate(url="https://cdn.example/v/abc.jpg", width=1080, height=1350)
    assert select_best([thumb, original]) is original


def test_square_is_penalised_without_reference_ratio():
    square = Candidate(url="https://cdn.example/a.jpg", width=1080, height=1080)
    portrait = Candidate(url="https://cdn.example/b.jpg", width=1080, height=1350)
    assert select_best([square, portrait]) is portrait
    assert select_best([portrait, square]) is portrait


def test_square_penalty_outweighs_larger_area():
    square = Candidate(url="https://cdn.example/a.jpg", width=1440, height=1440)
    landscape = Candidate(url="https://cdn.example/b.jpg", width=1080, height=566)
    assert select_best([square, landscape]) is landscape


def test_reference_ratio_prefers_matching_framing():
    square = Candidate(url="https://cdn.example/a.jpg", width=1440, height=1440)
    portrait = Candidate(url="https://cdn.example/b.jpg", width=640, height=800)
    assert select_best([square, portrait], reference_ratio=0.8) is portrait


def test_reference_ratio_keeps_genuine_squares():
    square = Candidate(url="https://cdn.example/a.jpg", width=1080, height=1080)
    smaller = Candidate(url="https://cdn.example/b.jpg", width=640, height=640)
    assert select_best([smaller, square], reference_ratio=1.0) is square


def test_missing_dimensions_do_not_crash():
    bare = Candidate(url="https://cdn.example/display.jpg")
    assert select_best([bare]) is bare
    assert score(bare) == 1080 * 1080


def test_tie_prefers_explicit_metadata():
    bare = Candidate(url="https://cdn.example/a.jpg")
    # Same area as the 1080x1080 default, and not square
    explicit = Candidate(url="https://cdn.example/b.jpg", width=1200, height=972)
    assert score(bare) == score(explicit)
    assert select_best([bare, explicit]) is explicit


def test_exact_tie_goes_to_first_declared():
    first = Candidate(url="https://cdn.example/a.jpg", width=1080, height=1350)
    second = Candidate(url="https://cdn.example/b.jpg", width=1080, height=1350)
    assert select_best([first, second]) is first


def test_all_cropped_still_returns_a_candidate():
    a = Candidate(url="https://cdn.example/s150x150/a.jpg", width=150, height=150)
    b = Candidate(url="https://cdn.example/s320x320/b.jpg", width=320, height=320)
    assert select_best([a, b]) is a


def test_select_best_is_deterministic():
    candidates = [
        Candidate(url=f"https://cdn.example/{i}.jpg", width=1080, height=1080 + i * 10)
        for i in range(6)
    ]
    picks = {select_best(candidates, reference_ratio=0.8).url for _ in range(20)}
    assert len(picks) == 1


def test_empty_list_raises_no_candidates():
    with pytest.raises(ResolutionError) as exc_info:
        select_best([])
    assert exc_info.value.kind == ErrorKind.NO_CANDIDATES

    with pytest.raises(ResolutionError):
        select_largest([])


@pytest.mark.parametrize(
    "url, cropped",
    [
        ("https://scontent.cdninstagram.com/v/t51/s150x150/1.jpg", True),
        ("https://scontent.cdninstagram.com/v/t51/1.jpg?stp=dst-jpg_e35_s320x320&x=1", True),
        ("https://scontent.cdninstagram.com/v/t51/c0.135.1080.1080a/1.jpg", True),
        ("https://scontent.cdninstagram.com/v/t51/1.jpg?stp=dst-jpg_e35_p1080x1080", False),
        ("https://scontent.cdninstagram.com/v/t51/1440x1800/abc.jpg", False),
    ],
)
def test_crop_signatures(url, cropped):
    assert is_cropped(url) is cropped


def test_select_largest_prefers_resolution_then_declaration_order():
    low = Candidate(url="https://cdn.example/low.mp4", width=480, height=854)
    high = Candidate(url="https://cdn.example/high.mp4", width=720, height=1280)
    assert select_largest([low, high]) is high

    a = Candidate(url="https://cdn.example/a.mp4")
    b = Candidate(url="https://cdn.example/b.mp4")
    assert select_largest([a, b]) is a
