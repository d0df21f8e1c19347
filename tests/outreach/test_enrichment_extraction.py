"""Unit tests for website enrichment extraction and the HTTP fetcher."""

import httpx
import pytest

from outreach.providers.enrichment import (
    NO_HTML_ERROR,
    PageResult,
    SimulatedEnrichmentFetcher,
    WebsiteEnrichmentFetcher,
    best_guess_email,
    best_guess_phone,
    crawl_urls,
    extract_brand_colors,
    extract_claims,
    extract_service_keywords,
    extract_summary,
    html_to_text,
    is_mock_website,
    is_usable_brand_color,
    normalize_hex_color,
    summarize_pages,
)


pytestmark = pytest.mark.unit


ROOFER_HOME = """
<html>
  <head><style>.btn { background: #B91C1C; color: #fff; } .nav { color: #b91c1c; }</style></head>
  <body>
    <nav><a href="/">Home</a><a href="/services">Services</a><a href="/roof-repair">Roof Repair</a></nav>
    <h1>Acme Roofing</h1>
    <h2>Storm Damage Restoration</h2>
    <h2>Why choose the best roofing company in all of Denver</h2>
    <p>Acme Roofing has protected Denver homes for over twenty years. We are licensed
    and insured, and every job starts with a free estimate. Call (303) 555-0142 or
    write to Office@Acme-Roofing.com today.</p>
  </body>
</html>
"""


# ============================================================================
# Extraction helpers
# ============================================================================

class TestCrawlTargets:
    def test_crawl_urls(self):
        assert crawl_urls("acme-roofing.com/home") == [
            "https://acme-roofing.com/home",
            "https://acme-roofing.com/services",
            "https://acme-roofing.com/contact",
        ]

    def test_keeps_http_scheme(self):
        assert crawl_urls("http://acme.test")[0] == "http://acme.test"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://roofers-denver-1.example.com", True),
            ("example.com", True),
            ("https://acme-roofing.com", False),
            ("https://example.com.evil.test", False),
        ],
    )
    def test_is_mock_website(self, url, expected):
        assert is_mock_website(url) is expected


class TestContactExtraction:
    def test_phone(self):
        assert best_guess_phone("Call (303) 555-0142 now") == "(303) 555-0142"
        assert best_guess_phone("no digits here") is None

    def test_email_is_lowercased(self):
        assert best_guess_email("Write Office@Acme-Roofing.com") == "office@acme-roofing.com"
        assert best_guess_email("nothing") is None

    def test_html_to_text_collapses_whitespace(self):
        assert html_to_text("<p>Hello\n   <b>there</b></p>") == "Hello there"


class TestServiceKeywords:
    """Tests for heading and navigation keyword extraction."""

    def test_filters_generic_and_long_labels(self):
        keywords = extract_service_keywords([ROOFER_HOME])

        assert "roof repair" in keywords
        assert "storm damage restoration" in keywords
        assert "acme roofing" in keywords
        assert "home" not in keywords
        assert "services" not in keywords
        assert all(len(k.split()) <= 5 for k in keywords)

    def test_deduplicates_and_caps(self):
        pages = ["".join(f"<h2>Service Item {i}</h2>" for i in range(12)) + "<h2>Service Item 0</h2>"]

        keywords = extract_service_keywords(pages)

        assert len(keywords) == 8
        assert keywords[0] == "service item 0"
        assert len(set(keywords)) == 8


class TestClaimsAndSummary:
    def test_claims(self):
        text = "Fully LICENSED and insured. Free estimates on request."

        assert extract_claims(text) == ["licensed", "insured", "free estimates"]
        assert extract_claims("family owned") == []

    def test_summary_picks_medium_sentences(self):
        text = (
            "Hi. Acme Roofing has protected Denver homes for over twenty years. "
            "Every job starts with a careful roof inspection and a written quote. "
            "A third sentence that should not be included in the summary."
        )

        summary = extract_summary(text)

        assert summary.startswith("Acme Roofing has protected")
        assert "written quote." in summary
        assert "third sentence" not in summary

    def test_empty_summary(self):
        assert extract_summary("   ") == ""


class TestBrandColors:
    """Tests for colour normalization and ranking."""

    def test_normalize(self):
        assert normalize_hex_color("#ABC") == "#aabbcc"
        assert normalize_hex_color("#0F766E") == "#0f766e"

    @pytest.mark.parametrize(
        "color,usable",
        [
            ("#0f766e", True),
            ("#b91c1c", True),
            ("#ffffff", False),
            ("#000000", False),
            ("#777777", False),
            ("#zzzzzz", False),
        ],
    )
    def test_usable(self, color, usable):
        assert is_usable_brand_color(color) is usable

    def test_prefers_usable_colors_by_frequency(self):
        colors = extract_brand_colors([ROOFER_HOME])

        assert colors[0] == "#b91c1c"
        assert "#ffffff" not in colors

    def test_falls_back_to_unusable_colors(self):
        assert extract_brand_colors(["<p style='color:#fff'>x</p>"]) == ["#ffffff"]


class TestSummarizePages:
    def test_combines_pages(self):
        page = PageResult(url="https://acme-roofing.com", html=ROOFER_HOME, text=html_to_text(ROOFER_HOME))

        result = summarize_pages([page], crawled_from_url="https://acme-roofing.com")

        assert result.phone == "(303) 555-0142"
        assert result.email == "office@acme-roofing.com"
        assert result.claims == ["licensed", "insured", "free estimates"]
        assert result.pages_visited == ["https://acme-roofing.com"]
        assert result.error is None

    def test_no_pages(self):
        result = summarize_pages([], crawled_from_url="https://down.test")

        assert result.error == NO_HTML_ERROR
        assert result.service_keywords == []
        assert result.phone is None


# ============================================================================
# Fetchers
# ============================================================================

class TestWebsiteEnrichmentFetcher:
    """Tests for the HTTP crawler against a mock transport."""

    @pytest.mark.asyncio
    async def test_skips_non_html_and_errors(self):
        """Test only successful HTML pages are used."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/services":
                return httpx.Response(200, headers={"content-type": "application/pdf"}, content=b"%PDF")
            if request.url.path == "/contact":
                return httpx.Response(500, text="oops")
            return httpx.Response(200, headers={"content-type": "text/html; charset=utf-8"}, text=ROOFER_HOME)

        fetcher = WebsiteEnrichmentFetcher(transport=httpx.MockTransport(handler))

        result = await fetcher.fetch_and_extract("https://acme-roofing.com")

        assert result.pages_visited == ["https://acme-roofing.com"]
        assert result.email == "office@acme-roofing.com"
        assert "roof repair" in result.service_keywords
        assert result.crawled_from_url == "https://acme-roofing.com"

    @pytest.mark.asyncio
    async def test_network_failure_returns_empty_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        fetcher = WebsiteEnrichmentFetcher(transport=httpx.MockTransport(handler))

        result = await fetcher.fetch_and_extract("https://down.test")

        assert result.pages_visited == []
        assert result.error == NO_HTML_ERROR

    @pytest.mark.asyncio
    async def test_sends_user_agent(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["user-agent"])
            return httpx.Response(404)

        fetcher = WebsiteEnrichmentFetcher(
            user_agent="OutreachTest/1.0", transport=httpx.MockTransport(handler)
        )
        await fetcher.fetch_and_extract("https://acme-roofing.com")

        assert seen == ["OutreachTest/1.0"] * 3


class TestSimulatedEnrichmentFetcher:
    @pytest.mark.asyncio
    async def test_derives_data_from_host(self):
        result = await SimulatedEnrichmentFetcher().fetch_and_extract("https://www.kirnconstruction.com/")

        assert result.service_keywords[0] == "kirnconstruction repair"
        assert result.claims == ["licensed", "insured"]
        assert result.brand_colors == ["#0f766e"]
        assert result.pages_visited == ["https://www.kirnconstruction.com/"]
        assert result.error is None

    @pytest.mark.asyncio
    async def test_trade_from_hyphenated_host(self):
        result = await SimulatedEnrichmentFetcher().fetch_and_extract("plumbers-austin-2.example.com")

        assert result.service_keywords == [
            "plumbers repair",
            "plumbers installation",
            "plumbers inspection",
        ]
