"""Fetch the two portal pages and turn them into a DemandSnapshot.

Plain HTTP is tried first; the portal sits behind Cloudflare, so when that
returns an interstitial (or fails outright) the page is opened in a real
browser through Playwright and the rendered HTML is read back.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import httpx

import config
from extract import DemandSnapshot, extract_snapshot
from utils import get_http_client

log = logging.getLogger(__name__)


class FetchError(Exception):
    """A page could not be loaded (navigation, timeout, HTTP status)."""


class ChallengeError(FetchError):
    """The response was a Cloudflare challenge page instead of the content."""


_CHALLENGE_MARKERS = (
    "cf-browser-verification",
    "challenge-platform",
    "cf_chl_opt",
    "Just a moment...",
)


def is_challenge_page(status_code: int, text: str) -> bool:
    if status_code in (403, 503) and "cloudflare" in text.lower():
        return True
    return any(marker in text for marker in _CHALLENGE_MARKERS)


# ---------------------------------------------------------------------------
# Plain HTTP
# ---------------------------------------------------------------------------

def fetch_http(url: str, client: httpx.Client | None = None) -> str:
    """GET a page with httpx. Raises FetchError (or ChallengeError)."""
    own_client = client is None
    if own_client:
        client = get_http_client(timeout=config.HTTP_TIMEOUT_SECONDS)
    try:
        resp = client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(f"HTTP fetch failed for {url}: {e}") from e
    finally:
        if own_client:
            client.close()

    if is_challenge_page(resp.status_code, resp.text):
        raise ChallengeError(f"Cloudflare challenge served for {url} (HTTP {resp.status_code})")
    if resp.status_code != 200:
        raise FetchError(f"HTTP {resp.status_code} for {url}")
    return resp.text


# ---------------------------------------------------------------------------
# Browser (Playwright)
# ---------------------------------------------------------------------------

def fetch_rendered(url: str) -> str:
    """Open url in Chromium and return the rendered HTML.

    Attaches to config.BROWSER_CDP_URL when set, otherwise launches a
    headless browser for this one page. Raises FetchError on any failure.
    """
    try:
        from playwright.sync_api import sync_playwright
    except ImportError as e:
        raise FetchError(f"playwright not installed; cannot render {url}") from e

    pw = None
    browser = None
    page = None
    launched = False
    try:
        pw = sync_playwright().start()
        if config.BROWSER_CDP_URL:
            browser = pw.chromium.connect_over_cdp(config.BROWSER_CDP_URL)
            context = browser.contexts[0] if browser.contexts else browser.new_context()
        else:
            browser = pw.chromium.launch(headless=True)
            launched = True
            context = browser.new_context()
        page = context.new_page()

        log.info("Browser: navigating to %s", url)
        page.goto(url, wait_until="networkidle", timeout=config.NAV_TIMEOUT_MS)
        html = page.content()
    except Exception as e:
        raise FetchError(f"Browser fetch failed for {url}: {e}") from e
    finally:
        if page:
            try:
                page.close()
            except Exception:
                log.debug("Browser: page.close() failed", exc_info=True)
        # Only close a browser we launched; a CDP one is shared
        if browser and launched:
            try:
                browser.close()
            except Exception:
                log.debug("Browser: browser.close() failed", exc_info=True)
        if pw:
            try:
                pw.stop()
            except Exception:
                log.debug("Browser: playwright stop failed", exc_info=True)

    if is_challenge_page(200, html):
        raise ChallengeError(f"Browser was left on a challenge page for {url}")
    return html


def fetch_html(url: str, mode: str | None = None) -> str:
    """Fetch a page per mode: "http", "browser", or "auto" (http, then browser)."""
    mode = mode or config.FETCH_MODE
    if mode == "http":
        return fetch_http(url)
    if mode == "browser":
        return fetch_rendered(url)
    if mode != "auto":
        raise ValueError(f"unknown fetch mode: {mode!r}")

    try:
        return fetch_http(url)
    except FetchError as e:
        log.info("HTTP fetch unusable (%s), falling back to browser", e)
    return fetch_rendered(url)


def scrape_snapshot() -> DemandSnapshot:
    """Load both pages in parallel and extract one snapshot from them."""
    with ThreadPoolExecutor(max_workers=2) as pool:
        prevision = pool.submit(fetch_html, config.PREVISION_URL)
        chapero = pool.submit(fetch_html, config.CHAPERO_URL)
        prevision_html = prevision.result()
        chapero_html = chapero.result()

    snapshot = extract_snapshot(prevision_html, chapero_html)
    log.info(
        "Scraped snapshot: %s, fijos=%d",
        ", ".join(f"{s} {d.cranes}g/{d.vehicles}c" for s, d in snapshot.shifts.items()),
        snapshot.unstaffed,
    )
    return snapshot
