"""
Tests for login strategy selection and the login flows, driven against
an in-memory page.
"""

import asyncio

import pytest

from kbingest.auth import (
    AuthFactory,
    Credentials,
    GenericLoginStrategy,
    InViewSSOStrategy,
    authenticate,
)
from kbingest.auth.sso_auth import INVIEW_HOME, build_sso_url

from fakes import FakeElement, FakePage

CREDS = Credentials(username="jurist@example.nl", password="geheim")


# ====================================================================
# Strategy selection
# ====================================================================

class TestAuthFactory:

    def test_inview_host_uses_sso_strategy(self):
        assert isinstance(AuthFactory.resolve("https://www.inview.nl/zoeken"), InViewSSOStrategy)

    def test_subdomain_matches(self):
        assert isinstance(AuthFactory.resolve("https://app.inview.nl/doc/1"), InViewSSOStrategy)

    def test_other_host_falls_back_to_generic(self):
        strategy = AuthFactory.resolve("https://www.rechtspraak.nl/")
        assert isinstance(strategy, GenericLoginStrategy)

    def test_lookalike_host_not_claimed(self):
        assert AuthFactory.detect("https://notinview.nl.example.com/") is None

    def test_registry_lists_sso(self):
        assert "inview sso" in AuthFactory.list_strategies()


# ====================================================================
# Missing credentials
# ====================================================================

class TestMissingCredentials:

    @pytest.mark.parametrize("creds", [
        None,
        Credentials(),
        Credentials(username="a@b.nl"),
        Credentials(password="x"),
    ])
    def test_returns_false_without_touching_the_page(self, creds):
        page = FakePage(url="https://www.inview.nl/zoeken")
        ok = asyncio.run(authenticate(page, page.url, creds))
        assert ok is False
        assert page.goto_calls == []
        assert page.queries == []


# ====================================================================
# Generic form login
# ====================================================================

class TestGenericLogin:

    def _strategy(self):
        return GenericLoginStrategy(settle_s=0)

    def test_single_page_form(self):
        page = FakePage(url="https://kb.example.nl/login")
        email = FakeElement()
        password = FakeElement()

        def submit_clicked():
            page.url = "https://kb.example.nl/dashboard"
            del page.elements['input[type="password"]']

        page.elements.update({
            'input[type="email"]': email,
            'input[type="password"]': password,
            'button[type="submit"]': FakeElement(on_click=submit_clicked),
        })

        ok = asyncio.run(self._strategy().authenticate(page, page.url, CREDS))

        assert ok is True
        assert email.typed == ["jurist@example.nl"]
        assert password.typed == ["geheim"]

    def test_multi_step_form(self):
        page = FakePage(url="https://kb.example.nl/start")
        password = FakeElement()
        state = {"step": 1}

        def submit_clicked():
            if state["step"] == 1:
                page.elements['input[type="password"]'] = password
                state["step"] = 2
            else:
                page.url = "https://kb.example.nl/home"

        page.elements.update({
            'input[name="username"]': FakeElement(),
            'button[type="submit"]': FakeElement(on_click=submit_clicked),
        })

        ok = asyncio.run(self._strategy().authenticate(page, page.url, CREDS))

        assert ok is True
        assert password.typed == ["geheim"]

    def test_login_link_is_followed(self):
        page = FakePage(url="https://kb.example.nl/")
        link_clicks = []

        def open_form():
            link_clicks.append(True)
            page.url = "https://kb.example.nl/login"
            page.elements.update({
                'input[type="email"]': FakeElement(),
                'input[type="password"]': FakeElement(),
            })

        page.elements['a[href*="login"]'] = FakeElement(on_click=open_form)

        ok = asyncio.run(self._strategy().authenticate(page, page.url, CREDS))

        assert link_clicks == [True]
        # URL changed from where the flow started
        assert ok is True
        assert page.keyboard.pressed == ["Enter"]

    def test_no_username_field(self):
        page = FakePage(url="https://kb.example.nl/")
        ok = asyncio.run(self._strategy().authenticate(page, page.url, CREDS))
        assert ok is False

    def test_password_still_visible_on_same_url(self):
        page = FakePage(url="https://kb.example.nl/login")
        page.elements.update({
            'input[type="email"]': FakeElement(),
            'input[type="password"]': FakeElement(visible=True),
            'button[type="submit"]': FakeElement(),
        })
        ok = asyncio.run(self._strategy().authenticate(page, page.url, CREDS))
        assert ok is False


# ====================================================================
# InView SSO
# ====================================================================

class TestInViewSSO:

    def _build_page(self, final_url):
        page = FakePage(url="about:blank")
        cookie = FakeElement(text="  Accepteer alle cookies ")
        password = FakeElement(laid_out=False)

        def reveal():
            password.laid_out = True

        def submit():
            page.url = final_url

        page.elements.update({
            "button": [FakeElement(text="Menu"), cookie],
            'input[name="pf.username"]': FakeElement(),
            'button.wk-login-submit[type="button"]': FakeElement(on_click=reveal),
            'input[name="pf.pass"]': password,
            'button.wk-login-submit[type="submit"]': FakeElement(on_click=submit),
        })
        return page, cookie, password

    def test_full_flow(self):
        target = "https://www.inview.nl/zoeken"
        page, cookie, password = self._build_page(target)
        strategy = InViewSSOStrategy(settle_s=0, reveal_timeout_s=1)

        ok = asyncio.run(strategy.authenticate(page, target, CREDS))

        assert ok is True
        assert cookie.clicks == 1
        assert password.typed == ["geheim"]
        assert page.goto_calls == [INVIEW_HOME, build_sso_url(target)]

    def test_still_on_login_page_is_failure(self):
        page, _, _ = self._build_page("https://www.inview.nl/.sso/login?error=1")
        strategy = InViewSSOStrategy(settle_s=0, reveal_timeout_s=1)
        ok = asyncio.run(strategy.authenticate(page, "https://www.inview.nl/zoeken", CREDS))
        assert ok is False

    def test_password_never_revealed(self):
        page, _, password = self._build_page("https://www.inview.nl/zoeken")
        page.elements['button.wk-login-submit[type="button"]'] = FakeElement()
        strategy = InViewSSOStrategy(settle_s=0, reveal_timeout_s=0)
        ok = asyncio.run(strategy.authenticate(page, "https://www.inview.nl/zoeken", CREDS))
        assert ok is False
        assert password.typed == []

    def test_sso_url_embeds_destination(self):
        url = build_sso_url("https://www.inview.nl/zoeken?q=ontslag")
        assert url.startswith("https://www.inview.nl/.sso/login?redirect_uri=")
        assert "https%3A%2F%2Fwww.inview.nl%2Fzoeken%3Fq%3Dontslag" in url
