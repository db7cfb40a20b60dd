from geogrid.etl import serp_parser

SERP_HTML = """
<html><body>
<div id="search">
  <div class="g">
    <a href="https://www.acme-plumbing.com/services"><h3 class="LC20lb">Acme Plumbing &amp; Heating</h3></a>
    <div class="VwiC3b yXK7lf">24/7&nbsp;emergency plumbers &quot;near you&quot;</div>
  </div>
  <div class="g">
    <a href="https://webcache.googleusercontent.com/search?q=cache:abc"><h3 class="LC20lb">Cached copy</h3></a>
  </div>
  <div class="g">
    <a href="https://www.google.com/aclk?sa=l&amp;ai=xyz"><h3 class="LC20lb">Sponsored</h3></a>
  </div>
  <div class="g">
    <a href="https://maps.google.com/maps?q=plumber"><h3 class="LC20lb">Map results</h3></a>
  </div>
  <div class="g">
    <a href="/url?q=https://blog.mybiz.com/tips&amp;sa=U"><h3 class="LC20lb">Tips &lt;2024&gt;</h3></a>
  </div>
  <div class="g">
    <a href="https://competitor.com/"><h3 class="LC20lb">Competitor</h3></a>
  </div>
  <div class="g">
    <a href="https://empty-title.com/"><h3 class="LC20lb">   </h3></a>
  </div>
  <div class="g">
    <a href="https://no-snippet.com/"><h3 class="LC20lb">No Snippet</h3></a>
  </div>
  <div class="g">
    <a href="https://late.com/"><h3 class="LC20lb">Late</h3></a>
    <span class="aCOpRe">Late snippet</span>
  </div>
</div>
<div data-local-pack="true">
  <div class="VkpGBb">
    <span class="OSrXXb">Joe&#39;s Plumbing</span>
    <span class="yi40Hd">4.8</span><span class="RDApEe">(1,204)</span>
    <a href="https://joesplumbing.com/">Website</a>
  </div>
  <div class="VkpGBb"><div class="rllt__details">no name here</div></div>
  <div class="VkpGBb"><div class="dbg0pd">Second Co</div></div>
  <div class="VkpGBb"><span class="OSrXXb">Third Co</span></div>
  <div class="VkpGBb"><span class="OSrXXb">Fourth Co</span></div>
</div>
<div class="related-question-pair">People also ask</div>
<div class="kp-wholepage"></div>
</body></html>
"""


def test_parse_organic_results_skip_google_and_cache_links():
    response = serp_parser.parse_geo_serp_html(SERP_HTML)

    urls = [result.url for result in response.organic]
    assert urls == [
        "https://www.acme-plumbing.com/services",
        "https://blog.mybiz.com/tips",
        "https://competitor.com/",
        "https://no-snippet.com/",
        "https://late.com/",
    ]
    assert [result.position for result in response.organic] == [1, 2, 3, 4, 5]
    assert response.total_results == 5


def test_parse_organic_decodes_entities_and_finds_snippets():
    response = serp_parser.parse_geo_serp_html(SERP_HTML)
    first, second = response.organic[0], response.organic[1]

    assert first.title == "Acme Plumbing & Heating"
    assert first.domain == "acme-plumbing.com"
    assert first.snippet == '24/7 emergency plumbers "near you"'
    assert second.title == "Tips <2024>"
    assert second.domain == "blog.mybiz.com"
    assert second.snippet == ""
    assert response.organic[4].snippet == "Late snippet"


def test_parse_snippet_does_not_borrow_from_next_result():
    response = serp_parser.parse_geo_serp_html(SERP_HTML)
    no_snippet = next(result for result in response.organic if result.domain == "no-snippet.com")

    assert no_snippet.snippet == ""


def test_parse_local_pack_keeps_good_entries_and_caps_at_three():
    response = serp_parser.parse_geo_serp_html(SERP_HTML)

    assert [entry.title for entry in response.local_pack] == ["Joe's Plumbing", "Second Co", "Third Co"]
    assert [entry.position for entry in response.local_pack] == [1, 2, 3]
    joes = response.local_pack[0]
    assert joes.rating == 4.8
    assert joes.review_count == 1204
    assert joes.website == "https://joesplumbing.com/"
    assert response.local_pack[1].website is None


def test_parse_detects_serp_features():
    response = serp_parser.parse_geo_serp_html(SERP_HTML)

    assert response.serp_features == ["local_pack", "people_also_ask", "knowledge_panel"]


def test_parse_caps_organic_results_at_twenty():
    blocks = "".join(
        f'<div class="g"><a href="https://site{i}.com/"><h3>Result {i}</h3></a></div>' for i in range(30)
    )
    response = serp_parser.parse_geo_serp_html(f"<html><body>{blocks}</body></html>")

    assert len(response.organic) == 20
    assert response.organic[-1].url == "https://site19.com/"
    assert response.local_pack == []
    assert response.serp_features == []


def test_parse_empty_or_garbage_markup():
    assert serp_parser.parse_geo_serp_html("").organic == []
    response = serp_parser.parse_geo_serp_html("<div><a href='https://x.com'><h3>Unclosed")
    assert [result.url for result in response.organic] == ["https://x.com"]


def test_bad_match_is_logged_and_rest_of_page_survives(monkeypatch, caplog):
    original = serp_parser.extract_domain_from_url

    def flaky_extract(url):
        if "acme" in url:
            raise ValueError("unparseable host")
        return original(url)

    monkeypatch.setattr(serp_parser, "extract_domain_from_url", flaky_extract)

    with caplog.at_level("WARNING"):
        response = serp_parser.parse_geo_serp_html(SERP_HTML)

    assert "acme-plumbing.com" not in [result.domain for result in response.organic]
    assert response.organic[0].url == "https://blog.mybiz.com/tips"
    assert response.organic[0].position == 1
    assert any("Skipping organic result" in message for message in caplog.messages)


def test_parse_structured_serp_with_places_dict():
    payload = {
        "search_metadata": {"total_time_taken": 1.42},
        "search_information": {"total_results": 1250000},
        "organic_results": [
            {"position": 1, "title": "Competitor", "link": "https://competitor.com/", "snippet": "Best in town"},
            {"position": 2, "title": "No link"},
            {"position": 3, "title": "My Biz", "link": "https://www.mybiz.com/", "snippet": "We fix pipes"},
        ],
        "local_results": {
            "places": [
                {
                    "position": 1,
                    "title": "My Biz",
                    "address": "1 Main St",
                    "rating": "4.6",
                    "reviews": "87 reviews",
                    "place_id": "abc",
                    "links": {"website": "https://mybiz.com"},
                },
                {"position": 2, "title": ""},
                {"position": 3, "title": "Other", "phone": "(555) 010-0000"},
            ]
        },
        "related_questions": [{"question": "How much does a plumber cost?"}],
    }

    response = serp_parser.parse_structured_serp(payload)

    assert [(r.position, r.domain) for r in response.organic] == [(1, "competitor.com"), (2, "mybiz.com")]
    assert response.organic[1].snippet == "We fix pipes"
    assert [entry.title for entry in response.local_pack] == ["My Biz", "Other"]
    my_biz = response.local_pack[0]
    assert my_biz.website == "https://mybiz.com"
    assert my_biz.rating == 4.6
    assert my_biz.review_count == 87
    assert my_biz.place_id == "abc"
    assert response.local_pack[1].phone == "(555) 010-0000"
    assert response.serp_features == ["local_pack", "people_also_ask"]
    assert response.total_results == 1250000
    assert response.search_time == 1.42


def test_parse_structured_serp_with_list_and_explicit_features():
    payload = {
        "organic_results": [{"title": f"R{i}", "url": f"https://r{i}.com"} for i in range(25)],
        "local_results": [{"name": "A"}, {"name": "B"}, {"name": "C"}, {"name": "D"}],
        "serp_features": ["video"],
    }

    response = serp_parser.parse_structured_serp(payload)

    assert len(response.organic) == 20
    assert [entry.title for entry in response.local_pack] == ["A", "B", "C"]
    assert response.serp_features == ["video", "local_pack"]


def test_parse_structured_serp_empty():
    response = serp_parser.parse_structured_serp(None)
    assert response.organic == [] and response.local_pack == [] and response.serp_features == []
