"""
Unit tests for candidate extraction, ranking and text helpers.
"""
from lxml import etree

from mobile_pilot.utils.element_finder import CandidateExtractor, RankService, UICandidate
from mobile_pilot.utils.text_match import hint_tokens, mask_value, normalize, significant_tokens, soft_score
from mobile_pilot.utils.ui_tree import indexed_path, parse_bounds, parse_page_source, xpath_literal

NAV_XML = """
<hierarchy rotation="0">
  <android.widget.FrameLayout class="android.widget.FrameLayout" bounds="[0,0][1080,2400]">
    <android.widget.Button class="android.widget.Button" text="Open settings" clickable="true" bounds="[40,300][1040,400]"/>
    <android.widget.LinearLayout class="com.google.android.material.bottomnavigation.BottomNavigationView" resource-id="com.example.app:id/bottom_nav" bounds="[0,2200][1080,2400]">
      <android.widget.FrameLayout class="android.widget.FrameLayout" clickable="true" bounds="[0,2200][540,2400]">
        <android.widget.TextView class="android.widget.TextView" text="Home" bounds="[200,2260][340,2320]"/>
      </android.widget.FrameLayout>
      <android.widget.FrameLayout class="android.widget.FrameLayout" clickable="true" bounds="[540,2200][1080,2400]">
        <android.widget.TextView class="android.widget.TextView" text="Settings" bounds="[740,2260][880,2320]"/>
      </android.widget.FrameLayout>
    </android.widget.LinearLayout>
  </android.widget.FrameLayout>
</hierarchy>
"""


class TestCandidateExtractor:
    """Test candidate discovery from a page dump."""

    def test_extract_roles_and_xpaths(self):
        candidates = CandidateExtractor().extract(NAV_XML, "Settings")
        by_label = {c.label: c for c in candidates}

        assert set(by_label) == {"Open settings", "Settings"}
        assert by_label["Settings"].role == CandidateExtractor.ROLE_BOTTOM_NAV
        assert by_label["Open settings"].role == CandidateExtractor.ROLE_BUTTON
        assert by_label["Settings"].xpath.startswith("(//*[@resource-id='com.example.app:id/bottom_nav']//")
        assert by_label["Settings"].center == (810, 2300)

    def test_xpath_finds_clickable_ancestor(self):
        root = etree.fromstring(NAV_XML.strip().encode("utf-8"))
        candidate = next(c for c in CandidateExtractor().extract(NAV_XML, "Settings") if c.label == "Settings")
        found = root.xpath(candidate.xpath)
        assert len(found) == 1
        assert found[0].get("clickable") == "true"
        assert found[0].get("bounds") == "[540,2200][1080,2400]"

    def test_limit(self):
        assert len(CandidateExtractor(limit=1).extract(NAV_XML, "Settings")) == 1

    def test_empty_page(self):
        assert CandidateExtractor().extract("", "Settings") == []


class TestRankService:
    """Test label scoring."""

    def test_scores(self):
        ranker = RankService()
        assert ranker.score("Settings", "settings") == 100
        assert ranker.score("Wi-Fi settings", "settings") == 85
        assert ranker.score("Network & internet", "internet network") == 75
        assert ranker.score("Pay bills now", "pay rent") == 50
        assert ranker.score("Home", "settings") == 0

    def test_rank_drops_below_floor(self):
        candidates = [
            UICandidate(id="c0", label="Home", role="other", xpath="//a"),
            UICandidate(id="c1", label="Open settings", role="button", xpath="//b"),
            UICandidate(id="c2", label="Settings", role="tab", xpath="//c"),
        ]
        ranked = RankService(floor=40).rank(candidates, "Settings")
        assert [c.id for c in ranked] == ["c2", "c1"]

    def test_scope_xy(self):
        near = UICandidate(id="near", label="x", role="other", xpath="", bounds={"x": 0, "y": 1000, "width": 100, "height": 100})
        far = UICandidate(id="far", label="x", role="other", xpath="", bounds={"x": 0, "y": 200, "width": 100, "height": 100})
        ordered = RankService.scope_xy([far, near], (50, 1050))
        assert [c.id for c in ordered] == ["near", "far"]
        assert RankService.scope_xy([far, near], None) == [far, near]


class TestTextMatch:
    def test_normalize(self):
        assert normalize("Pay  &  Transfer!!!") == "pay and transfer"
        assert normalize("Sooooo cool") == "soo cool"

    def test_significant_tokens(self):
        assert significant_tokens("Go to the Settings page") == ["settings", "page"]

    def test_hint_tokens(self):
        assert hint_tokens("Login button") == ["login"]
        assert hint_tokens("'first_name' field") == ["first", "name"]

    def test_soft_score(self):
        assert soft_score("Wi-Fi", "wi fi") == 1.0
        assert soft_score("Dark mode", "Light mode") == 1 / 3
        assert soft_score("", "x") == 0.0

    def test_mask_value(self):
        assert mask_value("Password", "secret") == "s****t"
        assert mask_value("Password", "ab") == "***"
        assert mask_value("Username", "demo") == "demo"


class TestUiTree:
    def test_parse_bounds(self):
        assert parse_bounds("[10,20][110,220]") == {"x": 10, "y": 20, "width": 100, "height": 200}
        assert parse_bounds("garbage") is None

    def test_xpath_literal_quotes(self):
        root = etree.fromstring(b'<r><a text="it\'s &quot;fine&quot;"/></r>')
        literal = xpath_literal('it\'s "fine"')
        assert len(root.xpath(f"//a[@text={literal}]")) == 1

    def test_indexed_path(self):
        root = parse_page_source(NAV_XML.strip())
        settings = root.xpath("//*[@text='Settings']")[0]
        path = indexed_path(settings)
        assert root.xpath(path) == [settings]
