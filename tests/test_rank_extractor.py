import pytest

from geogrid.etl import rank_extractor
from geogrid.models import GeoSerpResponse, LocalPackResult, OrganicResult, RankExtractionResult


def _organic(*urls):
    return [
        OrganicResult(
            position=i,
            title=f"Title {i}",
            url=url,
            domain=rank_extractor.extract_domain_from_url(url),
            snippet=f"Snippet {i}",
        )
        for i, url in enumerate(urls, start=1)
    ]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://www.Example.com/", "example.com"),
        ("http://example.com:8080", "example.com"),
        ("  WWW.example.com  ", "example.com"),
        ("example.com", "example.com"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_domain(raw, expected):
    assert rank_extractor.normalize_domain(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["https://www.example.com/", "HTTP://WWW.WWW.x.com:443/", "x.com/:80/", "http:// www.y.com", "shop.z.io"],
)
def test_normalize_domain_is_idempotent(raw):
    once = rank_extractor.normalize_domain(raw)
    assert rank_extractor.normalize_domain(once) == once


def test_extract_domain_from_url():
    assert rank_extractor.extract_domain_from_url("https://www.mybiz.com/contact?x=1") == "mybiz.com"
    assert rank_extractor.extract_domain_from_url("https://Blog.MyBiz.com:8443/a") == "blog.mybiz.com"
    assert rank_extractor.extract_domain_from_url("mybiz.com/path") == "mybiz.com"
    # urlparse rejects the unbalanced bracket; the regex fallback still finds a host.
    assert rank_extractor.extract_domain_from_url("http://[broken.com/path") == "[broken.com"
    assert rank_extractor.extract_domain_from_url("") == ""


def test_domain_matches_exact_and_subdomains():
    assert rank_extractor.domain_matches("https://example.com/page", "example.com")
    assert rank_extractor.domain_matches("https://www.example.com", "https://example.com/")
    assert rank_extractor.domain_matches("https://blog.example.com/x", "example.com")


def test_domain_matches_rejects_lookalikes_and_parents():
    assert not rank_extractor.domain_matches("https://example.com.evil.com", "example.com")
    assert not rank_extractor.domain_matches("https://notexample.com", "example.com")
    assert not rank_extractor.domain_matches("https://example.com", "blog.example.com")
    assert not rank_extractor.domain_matches("https://example.com", "")


def test_extract_rank_scenario_with_competitor_ahead():
    response = GeoSerpResponse(organic=_organic("https://competitor.com", "https://mybiz.com"))

    result = rank_extractor.extract_rank(response, "mybiz.com")

    assert result.organic_rank == 2
    assert result.organic_url == "https://mybiz.com"
    assert result.organic_title == "Title 2"
    assert result.organic_snippet == "Snippet 2"
    assert [(c.domain, c.position) for c in result.top_competitors] == [("competitor.com", 1)]


def test_extract_rank_takes_best_position_only():
    response = GeoSerpResponse(
        organic=_organic("https://a.com", "https://shop.mybiz.com/x", "https://mybiz.com", "https://b.com")
    )

    result = rank_extractor.extract_rank(response, "www.mybiz.com")

    assert result.organic_rank == 2
    assert result.organic_url == "https://shop.mybiz.com/x"


def test_extract_rank_not_found_in_full_page():
    response = GeoSerpResponse(
        organic=_organic(*[f"https://site{i}.com" for i in range(20)]),
        serp_features=["video"],
    )

    result = rank_extractor.extract_rank(response, "mybiz.com")

    assert result.organic_rank is None
    assert result.organic_url is None
    assert result.is_in_local_pack is False
    assert [c.position for c in result.top_competitors] == [1, 2, 3]
    assert result.serp_features == ["video"]


def test_extract_rank_competitors_skip_target_and_keep_order():
    response = GeoSerpResponse(
        organic=_organic("https://mybiz.com", "https://a.com", "https://blog.mybiz.com", "https://b.com", "https://c.com", "https://d.com")
    )

    result = rank_extractor.extract_rank(response, "mybiz.com")

    assert [c.domain for c in result.top_competitors] == ["a.com", "b.com", "c.com"]
    assert [c.position for c in result.top_competitors] == [2, 4, 5]


def test_extract_rank_local_pack_by_website_then_title():
    by_website = GeoSerpResponse(
        local_pack=[
            LocalPackResult(position=1, title="Other Plumbing", website="https://other.com"),
            LocalPackResult(position=2, title="My Biz Plumbing", website="https://www.mybiz.com/"),
        ]
    )
    by_title = GeoSerpResponse(
        local_pack=[
            LocalPackResult(position=1, title="Other Plumbing"),
            LocalPackResult(position=2, title="Other 2"),
            LocalPackResult(position=3, title="MyBiz.com Plumbing & Heating"),
        ]
    )

    website_result = rank_extractor.extract_rank(by_website, "mybiz.com")
    title_result = rank_extractor.extract_rank(by_title, "mybiz.com")

    assert (website_result.local_pack_rank, website_result.is_in_local_pack) == (2, True)
    assert (title_result.local_pack_rank, title_result.is_in_local_pack) == (3, True)


def test_extract_rank_local_pack_absent():
    response = GeoSerpResponse(local_pack=[LocalPackResult(position=1, title="Somebody Else")])

    result = rank_extractor.extract_rank(response, "mybiz.com")

    assert result.local_pack_rank is None
    assert result.is_in_local_pack is False


@pytest.mark.parametrize(
    "rank, expected",
    [(1, 100), (10, 91), (100, 1), (101, 0), (0, 0), (-3, 0), (None, 0)],
)
def test_calculate_point_visibility_score(rank, expected):
    assert rank_extractor.calculate_point_visibility_score(rank) == expected


@pytest.mark.parametrize(
    "rank, tier",
    [
        (None, "not_found"),
        (1, "excellent"),
        (3, "excellent"),
        (4, "good"),
        (10, "good"),
        (15, "moderate"),
        (20, "moderate"),
        (21, "poor"),
        (50, "poor"),
        (51, "bad"),
    ],
)
def test_get_rank_tier(rank, tier):
    assert rank_extractor.get_rank_tier(rank) == tier


def test_get_rank_color():
    assert rank_extractor.get_rank_color(2) == "#22c55e"
    assert rank_extractor.get_rank_color(None) == "#6b7280"


def test_aggregate_all_points_rank_first():
    results = [RankExtractionResult(organic_rank=1) for _ in range(9)]

    stats = rank_extractor.calculate_aggregate_stats(results, 9)

    assert stats.visibility_score == 100
    assert stats.points_top3 == 9
    assert stats.points_not_found == 0
    assert (stats.avg_rank, stats.best_rank, stats.worst_rank) == (1, 1, 1)


def test_aggregate_nothing_ranks():
    results = [RankExtractionResult.not_found() for _ in range(25)]

    stats = rank_extractor.calculate_aggregate_stats(results, 25)

    assert stats.avg_rank is None
    assert stats.best_rank is None
    assert stats.worst_rank is None
    assert stats.visibility_score == 0
    assert stats.points_not_found == 25
    assert stats.avg_local_pack_position is None


def test_aggregate_mixed_results():
    results = [
        RankExtractionResult(organic_rank=2, local_pack_rank=1, is_in_local_pack=True),
        RankExtractionResult(organic_rank=7),
        RankExtractionResult(organic_rank=15, local_pack_rank=3, is_in_local_pack=True),
        RankExtractionResult(organic_rank=40),
        RankExtractionResult.not_found(),
    ]

    stats = rank_extractor.calculate_aggregate_stats(results, 9)

    assert stats.avg_rank == 16.0
    assert (stats.best_rank, stats.worst_rank) == (2, 40)
    assert (stats.points_ranking, stats.points_top3, stats.points_top10, stats.points_top20) == (4, 1, 2, 3)
    # Points missing from the result set count as not found.
    assert stats.points_not_found == 5
    assert stats.total_points == 9
    assert stats.points_in_local_pack == 2
    assert stats.avg_local_pack_position == 2.0
    # (99 + 94 + 86 + 61) / 900 * 100
    assert stats.visibility_score == pytest.approx(37.78)


def test_aggregate_is_order_independent():
    results = [RankExtractionResult(organic_rank=rank) for rank in (3, 12, 1, 55)]

    forward = rank_extractor.calculate_aggregate_stats(results, 4)
    backward = rank_extractor.calculate_aggregate_stats(list(reversed(results)), 4)

    assert forward == backward


def test_aggregate_zero_points():
    stats = rank_extractor.calculate_aggregate_stats([], 0)
    assert stats.visibility_score == 0
    assert stats.points_not_found == 0
