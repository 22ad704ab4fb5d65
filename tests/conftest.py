"""Shared fixtures: an in-memory site and a fake browser automation.

The fake implements the full automation capability over a dictionary of
pages so runner, discovery and testers can be exercised without launching a
real browser.
"""

import asyncio
import io
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pytest
from PIL import Image

from sitecheck.browser.base import BaseBrowserAutomation
from sitecheck.browser.form_tester import (
    FIELD_STATE_SCRIPT,
    FORM_RESET_SCRIPT,
    FORM_VISIBLE_SCRIPT,
    INVALID_FIELDS_SCRIPT,
)
from sitecheck.browser.page_discovery import DISCOVERY_SCRIPT
from sitecheck.config.environment import resolve
from sitecheck.models.browser_models import PageErrors
from sitecheck.utils.errors import EngineLaunchError, NetworkFailure
from sitecheck.utils.helpers import normalize_url

BASE_URL = "https://example.test"


@dataclass
class FakePage:
    """A page of the in-memory site."""

    title: str = ""
    links: List[str] = field(default_factory=list)
    elements: List[Dict[str, Any]] = field(default_factory=list)
    color: Tuple[int, int, int] = (255, 255, 255)
    # selector -> URL the click navigates to
    click_targets: Dict[str, str] = field(default_factory=dict)
    status: Optional[int] = 200
    # Raw form records as the discovery script returns them. Extra keys:
    # "hidden" on a form, "readonly" and "invalid" on a field.
    forms: List[Dict[str, Any]] = field(default_factory=list)
    console_errors: List[str] = field(default_factory=list)
    network_errors: List[str] = field(default_factory=list)


def link(selector: str, href: str, text: str = "") -> Dict[str, Any]:
    return {"selector": selector, "tag": "a", "href": href, "text": text or href}


def button(selector: str, text: str = "Go", **extra: Any) -> Dict[str, Any]:
    return {"selector": selector, "tag": "button", "type": "button", "text": text, **extra}


def form_field(selector: str, name: str = "", field_type: str = "text", **extra: Any) -> Dict[str, Any]:
    return {"selector": selector, "name": name, "type": field_type, **extra}


def form(selector: str, fields: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    return {"selector": selector, "id": selector.split("#")[-1], "fields": fields, **extra}


@dataclass
class Handle:
    kind: str
    name: str = ""
    url: str = "about:blank"
    closed: bool = False
    options: Dict[str, Any] = field(default_factory=dict)
    values: Dict[str, str] = field(default_factory=dict)
    checked: Dict[str, bool] = field(default_factory=dict)
    console: List[str] = field(default_factory=list)
    network: List[str] = field(default_factory=list)


class FakeAutomation(BaseBrowserAutomation):
    """In-memory implementation of the automation capability."""

    def __init__(
        self,
        pages: Dict[str, FakePage],
        failing_engines: Tuple[str, ...] = (),
        goto_delays: Optional[Dict[str, float]] = None,
        goto_errors: Optional[Dict[str, Exception]] = None,
        click_errors: Optional[Dict[str, Exception]] = None,
        click_delays: Optional[Dict[str, float]] = None,
        image_size: Tuple[int, int] = (64, 48),
    ):
        self.pages = {normalize_url(url): page for url, page in pages.items()}
        self.failing_engines = failing_engines
        self.goto_delays = {normalize_url(u): d for u, d in (goto_delays or {}).items()}
        self.goto_errors = {normalize_url(u): e for u, e in (goto_errors or {}).items()}
        self.click_errors = click_errors or {}
        self.click_delays = click_delays or {}
        self.image_size = image_size

        self.started = False
        self.stopped = False
        self.launched: List[str] = []
        self.visits: List[str] = []
        self.clicks: List[str] = []
        self.fills: List[Tuple[str, str]] = []
        self.contexts: List[Handle] = []
        self.open_contexts = 0
        self.max_open_contexts = 0

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def launch_engine(self, engine, headless=True, **options):
        name = getattr(engine, "value", engine)
        if name in self.failing_engines:
            raise EngineLaunchError(f"{name} executable not found", engine=name)
        self.launched.append(name)
        return Handle("engine", name)

    async def new_context(self, engine_handle, viewport=None, **options):
        context = Handle("context", engine_handle.name, options=options)
        self.contexts.append(context)
        self.open_contexts += 1
        self.max_open_contexts = max(self.max_open_contexts, self.open_contexts)
        return context

    async def new_page(self, context_handle):
        return Handle("page", context_handle.name)

    async def goto(self, page_handle, url, timeout_ms):
        url = normalize_url(url)
        await asyncio.sleep(self.goto_delays.get(url, 0))
        if url in self.goto_errors:
            raise self.goto_errors[url]
        if url not in self.pages:
            raise NetworkFailure(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.visits.append(url)
        page_handle.url = url
        page = self.pages[url]
        page_handle.console.extend(page.console_errors)
        page_handle.network.extend(page.network_errors)
        return page.status

    async def click(self, page_handle, selector, timeout_ms):
        await asyncio.sleep(self.click_delays.get(selector, 0))
        if selector in self.click_errors:
            raise self.click_errors[selector]
        self.clicks.append(selector)
        page = self.pages[page_handle.url]
        entry = self._field(page, selector)
        if entry is not None:
            if entry.get("type") == "checkbox":
                page_handle.checked[selector] = not page_handle.checked.get(selector, False)
            elif entry.get("type") == "radio":
                page_handle.checked[selector] = True
            return
        target = page.click_targets.get(selector)
        if target is None:
            for element in page.elements:
                if element["selector"] == selector and element.get("href"):
                    target = element["href"]
        if target is not None:
            page_handle.url = normalize_url(target)

    async def fill(self, page_handle, selector, value, timeout_ms):
        self.fills.append((selector, value))
        entry = self._field(self.pages.get(page_handle.url, FakePage()), selector)
        if entry is not None and not entry.get("readonly"):
            page_handle.values[selector] = value

    @staticmethod
    def _field(page, selector):
        for raw_form in page.forms:
            for entry in raw_form["fields"]:
                if entry["selector"] == selector:
                    return entry
        return None

    @staticmethod
    def _form(page, selector):
        for raw_form in page.forms:
            if raw_form["selector"] == selector:
                return raw_form
        return None

    @staticmethod
    def _invalid_fields(page_handle, raw_form):
        # "invalid" fields never validate, "barred" ones are exempt like disabled fields
        invalid = []
        for entry in raw_form["fields"]:
            selector = entry["selector"]
            if entry.get("barred"):
                continue
            if entry.get("invalid"):
                invalid.append(entry.get("name") or selector)
            elif entry.get("required"):
                if entry.get("type") in ("checkbox", "radio"):
                    filled = page_handle.checked.get(selector, False)
                else:
                    filled = bool(page_handle.values.get(selector))
                if not filled and entry.get("type") != "select":
                    invalid.append(entry.get("name") or selector)
        return invalid

    async def page_errors(self, page_handle):
        errors = PageErrors(
            console_errors=list(page_handle.console), network_errors=list(page_handle.network)
        )
        page_handle.console.clear()
        page_handle.network.clear()
        return errors

    async def screenshot(self, page_handle, full_page=False):
        page = self.pages.get(page_handle.url, FakePage())
        buffer = io.BytesIO()
        Image.new("RGB", self.image_size, color=page.color).save(buffer, format="PNG")
        return buffer.getvalue()

    async def evaluate(self, page_handle, script, arg=None):
        await asyncio.sleep(0)
        if script == DISCOVERY_SCRIPT:
            page = self.pages[page_handle.url]
            return {
                "title": page.title,
                "links": list(page.links),
                "elements": list(page.elements),
                "forms": list(page.forms),
            }
        page = self.pages.get(page_handle.url, FakePage())
        if script == FORM_VISIBLE_SCRIPT:
            raw_form = self._form(page, arg)
            return raw_form is not None and not raw_form.get("hidden")
        if script == FIELD_STATE_SCRIPT:
            if self._field(page, arg) is None:
                return None
            return {"value": page_handle.values.get(arg, ""), "checked": page_handle.checked.get(arg, False)}
        if script == INVALID_FIELDS_SCRIPT:
            raw_form = self._form(page, arg)
            return self._invalid_fields(page_handle, raw_form) if raw_form else []
        if script == FORM_RESET_SCRIPT:
            page_handle.values.clear()
            page_handle.checked.clear()
            return None
        if "readyState" in script:
            return "complete"
        if "location.href" in script:
            return page_handle.url
        return None

    async def close(self, handle):
        handle.closed = True
        if handle.kind == "context":
            self.open_contexts -= 1


def two_page_site() -> Dict[str, FakePage]:
    return {
        f"{BASE_URL}/": FakePage(
            title="Home",
            links=[f"{BASE_URL}/about", "https://elsewhere.test/"],
            elements=[link("a#about", f"{BASE_URL}/about", "About")],
        ),
        f"{BASE_URL}/about": FakePage(
            title="About",
            links=[f"{BASE_URL}/"],
            elements=[button("button#go")],
        ),
    }


def make_config(tmp_path, **overrides):
    source = {
        "base_url": BASE_URL,
        "engines": ["chromium"],
        "output_dir": str(tmp_path / "results"),
        "max_depth": 1,
    }
    source.update(overrides)
    return resolve([source])


@pytest.fixture
def site():
    return two_page_site()


@pytest.fixture
def automation(site):
    return FakeAutomation(site)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove SITECHECK_* variables inherited from the shell or a .env file."""
    for name in list(os.environ):
        if name.startswith("SITECHECK_"):
            monkeypatch.delenv(name)
