"""
Unit tests for hint resolution and lookups against a fake device.
"""
import pytest

from mobile_pilot.core.flows.flow_models import ActionPlan, Locator, Strategy
from mobile_pilot.core.flows.run_context import RunContext
from mobile_pilot.core.resolver.xpath_service import same_element
from mobile_pilot.utils.error_handler import ElementNotFoundError

from .fake_device import HOME_XML, LIST_BOTTOM_XML, LIST_TOP_XML, LOGIN_XML, SECTION_COLUMNS_XML, SECTIONS_XML

OTP_XML = """
<hierarchy rotation="0">
  <android.widget.FrameLayout class="android.widget.FrameLayout" bounds="[0,0][1080,2400]">
    <android.widget.TextView class="android.widget.TextView" text="Enter the code" bounds="[40,300][1040,360]"/>
    <android.widget.EditText class="android.widget.EditText" text="123456" bounds="[40,400][1040,500]"/>
  </android.widget.FrameLayout>
</hierarchy>
"""

BARE_FIELDS_XML = """
<hierarchy rotation="0">
  <android.widget.FrameLayout class="android.widget.FrameLayout" bounds="[0,0][1080,2400]">
    <android.widget.EditText class="android.widget.EditText" text="" bounds="[40,400][1040,500]"/>
    <android.widget.EditText class="android.widget.EditText" text="" bounds="[40,600][1040,700]"/>
  </android.widget.FrameLayout>
</hierarchy>
"""

# Two nodes share the desc "Continue"; only the button text "Next" is unique
VALIDATE_XML = """
<hierarchy rotation="0">
  <android.widget.FrameLayout class="android.widget.FrameLayout" bounds="[0,0][1080,2400]">
    <android.widget.Button class="android.widget.Button" text="Next" content-desc="Continue" clickable="true" bounds="[40,200][1040,300]"/>
    <android.widget.ImageView class="android.widget.ImageView" content-desc="Continue" bounds="[40,400][200,500]"/>
    <android.widget.TextView class="android.widget.TextView" text="Item" bounds="[40,600][1040,700]"/>
    <android.widget.TextView class="android.widget.TextView" text="Item" bounds="[40,800][1040,900]"/>
    <android.widget.Button class="android.widget.Button" resource-id="com.example.app:id/delete" text="Delete" clickable="true" bounds="[40,1000][1040,1100]"/>
  </android.widget.FrameLayout>
</hierarchy>
"""


def make_ctx(device, settings) -> RunContext:
    return RunContext(device, ActionPlan(title="test"), settings=settings)


@pytest.fixture
def login_ctx(device, fast_settings):
    device.add_screen("login", LOGIN_XML, activity=".LoginActivity")
    return make_ctx(device, fast_settings)


class TestResolve:
    """Test the query cascade."""

    def test_exact_text_first(self, login_ctx):
        queries = login_ctx.resolver.candidate_queries("LOGIN")
        assert queries[0].value == "//*[@text='LOGIN']"
        assert queries[1].value == "//*[@content-desc='LOGIN']"
        assert login_ctx.resolver.resolve("LOGIN").value == "//*[@text='LOGIN']"

    def test_resource_id_suffix(self, login_ctx):
        locator = login_ctx.resolver.resolve("login")
        assert locator.strategy == Strategy.XPATH
        assert "substring(@resource-id" in locator.value

    def test_full_resource_id(self, login_ctx):
        locator = login_ctx.resolver.resolve("com.example.app:id/password")
        assert locator.strategy == Strategy.ID

    def test_missing(self, login_ctx):
        assert login_ctx.resolver.resolve("Forgotten treasure") is None

    def test_rebuild_from_dump(self, login_ctx):
        locator = login_ctx.resolver.rebuild_xpath_from_dump("Password")
        found = login_ctx.driver.find_by_locator(locator)
        assert found[0].get_attribute("text") == "Password"

    def test_wait_for_element_present_times_out(self, login_ctx):
        with pytest.raises(ElementNotFoundError):
            login_ctx.resolver.wait_for_element_present("Forgotten treasure", 10)
        assert len(login_ctx.driver.swipes) == 1

    def test_is_present_quick(self, login_ctx):
        assert login_ctx.resolver.is_present_quick("Username", 0) is not None
        assert login_ctx.resolver.is_present_quick("Promo", 0) is None


class TestTextPresence:
    """Test text, regex and OTP queries."""

    def test_substring_case_insensitive(self, device, fast_settings):
        device.add_screen("home", HOME_XML)
        ctx = make_ctx(device, fast_settings)
        assert ctx.resolver.text_present("welcome")
        assert ctx.resolver.text_present(r"regex:Welcome,\s+demo")
        assert not ctx.resolver.text_present("goodbye")

    def test_otp_length(self, device, fast_settings):
        device.add_screen("otp", OTP_XML)
        ctx = make_ctx(device, fast_settings)
        assert ctx.resolver.text_present("length:6")
        assert not ctx.resolver.text_present("length:4")
        assert ctx.resolver.wait_for_text("length:6", 10)

    def test_regex_ignores_case(self, device, fast_settings):
        device.add_screen("home", HOME_XML)
        ctx = make_ctx(device, fast_settings)
        assert ctx.resolver.text_present(r"regex:WELCOME,\s+DEMO")
        assert not ctx.resolver.text_present(r"regex:goodbye,\s+demo")

    def test_malformed_queries_are_absent(self, device, fast_settings):
        device.add_screen("otp", OTP_XML)
        ctx = make_ctx(device, fast_settings)
        assert not ctx.resolver.text_present("regex:(")
        assert not ctx.resolver.text_present("length:abc")
        assert not ctx.resolver.text_present("length:")

    def test_scroll_until_text(self, device, fast_settings):
        device.add_screen("top", LIST_TOP_XML).add_screen("bottom", LIST_BOTTOM_XML)
        device.swipe_transitions["top"] = "bottom"
        ctx = make_ctx(device, fast_settings)
        assert ctx.resolver.scroll_text_into_view_monotonic("Terms of service")
        assert device.current == "bottom"

    def test_scroll_stalls(self, device, fast_settings):
        device.add_screen("top", LIST_TOP_XML)
        ctx = make_ctx(device, fast_settings)
        assert not ctx.resolver.scroll_text_into_view_monotonic("Terms of service")
        assert len(device.swipes) == fast_settings.SCROLL_STALL_LIMIT


class TestElementLookups:
    """Test input-field and toggle lookups."""

    def test_edit_text_by_label(self, login_ctx):
        username = login_ctx.resolver.find_edit_text_for_label("Username")
        password = login_ctx.resolver.find_edit_text_for_label("Password")
        assert username.get_attribute("resource-id") == "com.example.app:id/username"
        assert password.get_attribute("resource-id") == "com.example.app:id/password"

    def test_edit_text_ordinal_pick(self, device, fast_settings):
        device.add_screen("bare", BARE_FIELDS_XML)
        ctx = make_ctx(device, fast_settings)
        email = ctx.resolver.find_edit_text_for_label("Email")
        password = ctx.resolver.find_edit_text_for_label("Password")
        assert email.rect["y"] == 400
        assert password.rect["y"] == 600
        assert ctx.resolver.find_edit_text_for_label("Nickname") is None

    def test_toggle_in_row(self, settings_device, fast_settings):
        ctx = make_ctx(settings_device, fast_settings)
        toggle = ctx.resolver.find_switch_or_checkable_for_label("Bluetooth")
        assert toggle.get_attribute("resource-id") == "com.example.settings:id/bt_switch"
        assert ctx.resolver.find_switch_or_checkable_for_label("NFC") is None

    def test_first_clickable_by_tokens(self, device, fast_settings):
        device.add_screen("home", HOME_XML)
        ctx = make_ctx(device, fast_settings)
        element = ctx.resolver.first_clickable_by_tokens("Logout")
        assert element.get_attribute("resource-id") == "com.example.app:id/logout"


class TestSectionScope:
    """Test "from"/"to" section filtering."""

    def test_stacked_sections(self, device, fast_settings):
        device.add_screen("sections", SECTIONS_XML)
        ctx = make_ctx(device, fast_settings)
        from_ids = [e.get_attribute("resource-id") for e in ctx.ui.find_elements_by_text_scoped("Go", "from")]
        to_ids = [e.get_attribute("resource-id") for e in ctx.ui.find_elements_by_text_scoped("Go", "to")]
        assert from_ids == ["com.example.app:id/go_from"]
        assert to_ids == ["com.example.app:id/go_to"]

    def test_side_by_side_sections(self, device, fast_settings):
        device.add_screen("columns", SECTION_COLUMNS_XML)
        ctx = make_ctx(device, fast_settings)
        from_ids = [e.get_attribute("resource-id") for e in ctx.ui.find_elements_by_text_scoped("Go", "from")]
        to_ids = [e.get_attribute("resource-id") for e in ctx.ui.find_elements_by_text_scoped("Go", "to")]
        assert from_ids == ["com.example.app:id/go_from"]
        assert to_ids == ["com.example.app:id/go_to"]

    def test_no_section_keeps_every_match(self, device, fast_settings):
        device.add_screen("sections", SECTIONS_XML)
        ctx = make_ctx(device, fast_settings)
        assert len(ctx.ui.find_elements_by_text_scoped("Go", None)) == 2


class TestXPathValidation:
    """Test stable-expression selection for a working locator."""

    @pytest.fixture
    def ctx(self, device, fast_settings):
        device.add_screen("validate", VALIDATE_XML)
        return make_ctx(device, fast_settings)

    def test_prefers_resource_id(self, ctx):
        original = Locator(strategy=Strategy.XPATH, value="//*[@text='Delete']")
        locator = ctx.xpath.validate(original)
        assert locator.value == "//*[@resource-id='com.example.app:id/delete']"
        assert locator.alternatives == ["//*[@text='Delete']"]

    def test_unique_expression_beats_earlier_shared_one(self, ctx):
        locator = ctx.xpath.validate(Locator(strategy=Strategy.XPATH, value="(//*[@content-desc='Continue'])[1]"))
        assert locator.value == "//*[@text='Next']"

    def test_falls_back_to_expression_containing_element(self, ctx):
        locator = ctx.xpath.validate(Locator(strategy=Strategy.XPATH, value="(//*[@text='Item'])[2]"))
        assert locator.value == "//*[@text='Item']"
        assert locator.alternatives == ["(//*[@text='Item'])[2]"]

    def test_missing_element(self, ctx):
        assert ctx.xpath.validate(Locator(strategy=Strategy.XPATH, value="//*[@text='Nope']")) is None

    def test_same_element(self, ctx, device):
        first, second = device.find_elements(Strategy.XPATH, "//*[@text='Item']")
        again = device.find_elements(Strategy.XPATH, "(//*[@text='Item'])[2]")[0]
        assert not same_element(first, second)
        assert same_element(second, again)
