"""
Activity: UI Smoke Checks — drives the running application in a headless browser.

Checks (in order):
  1. Home page title mentions PetClinic
  2. Home page heading carries the welcome message
  3. The "find owners" link leads to the owner search page
  4. The "veterinarians" link leads to a page with the vets table
  5. Navigation bar carries at least three links
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, ContextManager, Iterator

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from models.errors import SmokeTestFailure

log = logging.getLogger(__name__)

WELCOME_HEADING = "h2"
FIND_OWNERS_LINK = "a[title='find owners']"
VETS_LINK = "a[title='veterinarians']"
VETS_TABLE = "table"
NAV_LINKS = "nav a"

PageFactory = Callable[[], ContextManager[Page]]


@dataclass(frozen=True)
class SmokeCheck:
    name: str
    passed: bool
    detail: str = ""


@contextmanager
def chromium_page(timeout: float = 10.0) -> Iterator[Page]:
    """Headless Chromium page; the browser is closed on exit."""
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=True, args=["--no-sandbox", "--disable-dev-shm-usage"])
        try:
            page = browser.new_page(viewport={"width": 1920, "height": 1080})
            page.set_default_timeout(timeout * 1000)
            yield page
        finally:
            browser.close()


def _open_home(page: Page, base: str) -> None:
    response = page.goto(f"{base}/")
    if response is not None and not response.ok:
        raise SmokeTestFailure(f"HTTP {response.status}")


def _home_title(page: Page, base: str) -> tuple[bool, str]:
    _open_home(page, base)
    title = page.title()
    return "PetClinic" in title, f"title={title!r}"


def _welcome_message(page: Page, base: str) -> tuple[bool, str]:
    _open_home(page, base)
    heading = page.locator(WELCOME_HEADING)
    if heading.count() == 0:
        return False, "no <h2> on home page"
    text = heading.first.inner_text()
    return "Welcome" in text, f"h2={text!r}"


def _follow_link(page: Page, base: str, selector: str, expected: str) -> tuple[bool, str]:
    _open_home(page, base)
    link = page.locator(selector)
    if link.count() == 0:
        return False, f"no {selector} on home page"
    link.first.click()
    page.wait_for_load_state()
    return expected in page.url, f"landed on {page.url}"


def _owner_search(page: Page, base: str) -> tuple[bool, str]:
    return _follow_link(page, base, FIND_OWNERS_LINK, "/owners/find")


def _vets_table(page: Page, base: str) -> tuple[bool, str]:
    passed, detail = _follow_link(page, base, VETS_LINK, "/vets")
    if not passed:
        return passed, detail
    if page.locator(VETS_TABLE).count() == 0:
        return False, f"no <table> at {page.url}"
    return True, ""


def _nav_links(page: Page, base: str) -> tuple[bool, str]:
    _open_home(page, base)
    count = page.locator(NAV_LINKS).count()
    return count >= 3, f"{count} links"


CHECKS: list[tuple[str, Callable[[Page, str], tuple[bool, str]]]] = [
    ("home page title", _home_title),
    ("welcome message", _welcome_message),
    ("owner search page", _owner_search),
    ("veterinarians table", _vets_table),
    ("navigation links", _nav_links),
]


def run_smoke_checks(base_url: str, page_factory: PageFactory = chromium_page) -> list[SmokeCheck]:
    base = base_url.rstrip("/")
    checks = []
    with page_factory() as page:
        for name, check in CHECKS:
            try:
                passed, detail = check(page, base)
            except (PlaywrightError, SmokeTestFailure) as e:
                passed, detail = False, str(e).splitlines()[0] if str(e) else type(e).__name__
            checks.append(SmokeCheck(name, passed, detail))

    for c in checks:
        log.info("Smoke %s: %s %s", "OK  " if c.passed else "FAIL", c.name, c.detail)
    return checks


def assert_smoke(base_url: str, page_factory: PageFactory = chromium_page) -> list[SmokeCheck]:
    """Run every check and raise SmokeTestFailure if any failed."""
    checks = run_smoke_checks(base_url, page_factory=page_factory)
    failed = [c for c in checks if not c.passed]
    if failed:
        raise SmokeTestFailure(
            f"{len(failed)}/{len(checks)} smoke checks failed: "
            + "; ".join(f"{c.name} ({c.detail})" if c.detail else c.name for c in failed)
        )
    return checks
