"""
Tests for main-content extraction.
"""

import asyncio

from kbingest.scraper import extract_content, extract_from_html

from fakes import FakePage

LONG = "Het hof oordeelt dat de opzegging rechtsgeldig is. " * 10


class TestExtractFromHtml:

    def test_article_container_wins(self):
        html = f"""
        <html><head><title> Uitspraak   123 </title></head><body>
          <header>Site header</header>
          <nav>Home | Zoeken</nav>
          <article><h1>Kop</h1><p>{LONG}</p></article>
          <footer>Copyright</footer>
        </body></html>"""
        title, text = extract_from_html(html)
        assert title == "Uitspraak 123"
        assert text.startswith("Kop Het hof oordeelt")
        assert "Site header" not in text
        assert "Copyright" not in text

    def test_boilerplate_removed_inside_container(self):
        html = f"""<html><body><main>
          <p>{LONG}</p>
          <aside>Gerelateerd</aside>
          <div class="cookie-notice">Wij gebruiken cookies</div>
          <div class="advertisement">Koop nu</div>
          <script>var x = 1;</script>
        </main></body></html>"""
        _, text = extract_from_html(html)
        assert "Gerelateerd" not in text
        assert "cookies" not in text
        assert "Koop nu" not in text
        assert "var x" not in text

    def test_short_container_skipped_for_next_selector(self):
        html = f"""<html><body>
          <article>Te kort</article>
          <div id="content">{LONG}</div>
        </body></html>"""
        _, text = extract_from_html(html)
        assert text.startswith("Het hof oordeelt")
        assert "Te kort" not in text

    def test_body_fallback(self):
        html = "<html><body><div>Losse tekst</div><p>nog wat</p></body></html>"
        _, text = extract_from_html(html)
        assert text == "Losse tekst nog wat"

    def test_whitespace_collapsed(self):
        html = f"<html><body><article>{LONG}\n\n\t  slot</article></body></html>"
        _, text = extract_from_html(html)
        assert "  " not in text
        assert "\n" not in text

    def test_empty_input(self):
        assert extract_from_html("") == ("", "")


def test_extract_content_reads_page():
    url = "https://kb.example.nl/artikel/1"
    page = FakePage(url=url, routes={url: f"<html><body><article>{LONG}</article></body></html>"})
    title, text = asyncio.run(extract_content(page))
    assert title == ""
    assert len(text) > 200
