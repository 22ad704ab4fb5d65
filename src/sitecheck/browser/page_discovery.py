"""Page discovery.

Bounded breadth-first crawl from the base URL. Only internal links are
followed, and both depth and page count are capped so malformed or
infinitely linking sites still terminate.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from ..models.browser_models import (
    DiscoveredButton,
    DiscoveredElement,
    DiscoveredForm,
    DiscoveredPage,
    ElementKind,
    ElementRole,
    FormField,
    UrlOrigin,
)
from ..models.config_models import TestConfig
from ..utils.helpers import is_internal_url, normalize_url, sleep
from .base import BaseBrowserAutomation

logger = logging.getLogger(__name__)

# Interactive element selectors
INTERACTIVE_SELECTOR = ", ".join(
    [
        "a[href]",
        "button",
        "[role='button']",
        "[role='link']",
        "input[type='button']",
        "input[type='submit']",
        "input[type='reset']",
        "[onclick]",
    ]
)

# Returns {title, links, elements, forms}; selectors are built from ids or
# nth-of-type paths so they stay valid in a fresh context.
DISCOVERY_SCRIPT = """
(interactiveSelector) => {
    function cssPath(el) {
        const path = [];
        while (el && el.nodeType === Node.ELEMENT_NODE) {
            let selector = el.nodeName.toLowerCase();
            if (el.id) {
                path.unshift(selector + '#' + CSS.escape(el.id));
                break;
            }
            let sib = el, nth = 1;
            while ((sib = sib.previousElementSibling)) {
                if (sib.nodeName.toLowerCase() === selector) nth++;
            }
            if (nth !== 1) selector += ':nth-of-type(' + nth + ')';
            path.unshift(selector);
            el = el.parentElement;
        }
        return path.join(' > ');
    }
    function visible(el) {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return rect.width > 0 && rect.height > 0 &&
            style.visibility !== 'hidden' && style.display !== 'none';
    }
    const links = Array.from(document.querySelectorAll('a[href]')).map(a => a.href);
    const elements = Array.from(document.querySelectorAll(interactiveSelector))
        .filter(visible)
        .map(el => ({
            selector: cssPath(el),
            tag: el.tagName.toLowerCase(),
            type: (el.getAttribute('type') || '').toLowerCase(),
            role: (el.getAttribute('role') || '').toLowerCase(),
            text: (el.innerText || el.value || '').trim().slice(0, 100),
            href: el.tagName.toLowerCase() === 'a' ? el.href : null,
            ariaLabel: el.getAttribute('aria-label'),
            disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
            inForm: !!el.closest('form'),
        }));
    const forms = Array.from(document.querySelectorAll('form'))
        .filter(visible)
        .map((form, index) => ({
            selector: cssPath(form),
            id: form.id || form.getAttribute('name') || ('form-' + (index + 1)),
            action: form.getAttribute('action'),
            method: (form.getAttribute('method') || 'get').toLowerCase(),
            hasSubmit: !!form.querySelector(
                'button[type="submit"], input[type="submit"], button:not([type])'),
            fields: Array.from(form.querySelectorAll('input, select, textarea')).map(f => ({
                selector: cssPath(f),
                name: f.getAttribute('name') || f.id || '',
                type: f.tagName.toLowerCase() === 'input'
                    ? (f.getAttribute('type') || 'text').toLowerCase()
                    : f.tagName.toLowerCase(),
                required: !!f.required,
                pattern: f.getAttribute('pattern'),
            })),
        }));
    return {title: document.title, links: links, elements: elements, forms: forms};
}
"""


def build_element(raw: Dict[str, Any]) -> Optional[DiscoveredElement]:
    """Turn one raw element record from the discovery script into a model."""
    selector = raw.get("selector")
    if not selector:
        return None

    tag = (raw.get("tag") or "").lower()
    input_type = (raw.get("type") or "").lower()
    role = (raw.get("role") or "").lower()
    common = {
        "selector": selector,
        "tag_name": tag,
        "text": raw.get("text") or "",
        "aria_label": raw.get("ariaLabel"),
        "disabled": bool(raw.get("disabled")),
    }

    if tag == "a" or role == "link":
        return DiscoveredElement(
            kind=ElementKind.LINK,
            role=ElementRole.NAVIGATIONAL,
            href=raw.get("href"),
            **common,
        )

    if tag == "button" or role == "button" or (tag == "input" and input_type in ("button", "submit", "reset")):
        button_type = input_type or ("submit" if tag == "button" and raw.get("inForm") else "button")
        return DiscoveredButton(
            role=ElementRole.FORM_SUBMIT if button_type == "submit" else ElementRole.ACTION,
            button_type=button_type,
            **common,
        )

    return DiscoveredElement(kind=ElementKind.OTHER, role=ElementRole.ACTION, **common)


def build_form(raw: Dict[str, Any]) -> Optional[DiscoveredForm]:
    """Turn one raw form record from the discovery script into a model."""
    selector = raw.get("selector")
    if not selector:
        return None

    fields = [
        FormField(
            selector=item["selector"],
            name=item.get("name") or "",
            field_type=(item.get("type") or "text").lower(),
            required=bool(item.get("required")),
            pattern=item.get("pattern"),
        )
        for item in raw.get("fields") or []
        if item.get("selector")
    ]
    return DiscoveredForm(
        selector=selector,
        form_id=raw.get("id") or "",
        action=raw.get("action"),
        method=(raw.get("method") or "get").lower(),
        fields=fields,
        has_submit=bool(raw.get("hasSubmit")),
    )


class PageDiscoverer:
    """Crawl a site and collect discovered pages."""

    def __init__(self, config: TestConfig, automation: BaseBrowserAutomation):
        self.config = config
        self.automation = automation

    def _parse(self, url: str, depth: int, raw: Dict[str, Any]) -> DiscoveredPage:
        base_url = self.config.base_url
        links: List[str] = []
        for href in raw.get("links") or []:
            link = normalize_url(href, url)
            if link not in links:
                links.append(link)

        elements: List[DiscoveredElement] = []
        seen = set()
        for item in raw.get("elements") or []:
            element = build_element(item)
            if element is None or element.selector in seen:
                continue
            seen.add(element.selector)
            elements.append(element)

        forms = [form for form in map(build_form, raw.get("forms") or []) if form is not None]

        normalized = normalize_url(url)
        return DiscoveredPage(
            url=url,
            normalized_url=normalized,
            origin=UrlOrigin.INTERNAL if is_internal_url(normalized, base_url) else UrlOrigin.EXTERNAL,
            depth=depth,
            title=raw.get("title") or "",
            links=links,
            elements=elements,
            forms=forms,
        )

    async def discover(
        self,
        page_handle: Any,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[DiscoveredPage]:
        """Crawl from the base URL.

        Args:
            page_handle: Page used for the crawl
            cancel_event: Stops the crawl when set

        Returns:
            Discovered pages in crawl order
        """
        config = self.config
        start = normalize_url(config.base_url)
        queue: Deque[Tuple[str, int]] = deque([(start, 0)])
        seen = {start}
        pages: List[DiscoveredPage] = []

        while queue and len(pages) < config.max_pages:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Discovery cancelled")
                break

            url, depth = queue.popleft()
            if pages and config.navigation_delay_ms:
                await sleep(config.navigation_delay_ms)

            try:
                await self.automation.goto(page_handle, url, config.timeout_ms)
                raw = await self.automation.evaluate(
                    page_handle, DISCOVERY_SCRIPT, INTERACTIVE_SELECTOR
                )
            except Exception as e:
                logger.warning(f"Discovery failed for {url}: {e}")
                pages.append(
                    DiscoveredPage(
                        url=url,
                        normalized_url=url,
                        origin=UrlOrigin.INTERNAL,
                        depth=depth,
                        discovery_error=str(e),
                    )
                )
                continue

            page = self._parse(url, depth, raw or {})
            pages.append(page)
            logger.info(
                f"Discovered {url} (depth={depth}, elements={len(page.elements)}, forms={len(page.forms)}, "
                f"links={len(page.links)})"
            )

            if depth >= config.max_depth:
                continue
            for link in page.links:
                if link in seen or not is_internal_url(link, config.base_url):
                    continue
                seen.add(link)
                queue.append((link, depth + 1))

        logger.info(f"Discovery finished with {len(pages)} pages")
        return pages
