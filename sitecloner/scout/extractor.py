"""Page extraction with Playwright.

Loads the page at a desktop viewport, waits for network idle plus a settle
delay, scrolls the whole page in small steps to trigger lazy content, then
pulls the DOM tree, computed styles, layout boxes, transitions/animations,
metadata and image sources in a handful of ``page.evaluate`` calls.
"""

import logging
from typing import Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..errors import InfrastructureError
from .assets import AssetCache
from .models import (
    AnimationDescriptor,
    ComputedStyleRecord,
    DomNode,
    ExtractionSnapshot,
    LayoutBox,
    PageMeta,
)

logger = logging.getLogger(__name__)

# Selector helper shared by the element-level extractors
_SELECTOR_JS = """
const selectorFor = (el, index) => el.id
    ? `#${el.id}`
    : (el.classList.length
        ? `.${Array.from(el.classList).join('.')}`
        : `${el.tagName.toLowerCase()}:nth-child(${index})`);
"""

EXTRACT_DOM_JS = """
() => {
    const extractNode = (el) => {
        const own = Array.from(el.childNodes)
            .filter(n => n.nodeType === Node.TEXT_NODE)
            .map(n => n.textContent.trim())
            .filter(Boolean)
            .join(' ');
        return {
            tag: el.tagName.toLowerCase(),
            selector: el.id ? `#${el.id}` : (el.classList.length ? `.${Array.from(el.classList).join('.')}` : el.tagName.toLowerCase()),
            classes: Array.from(el.classList),
            text: (own || el.textContent || '').trim().slice(0, 100),
            html: el.outerHTML.slice(0, 500),
            children: Array.from(el.children)
                .filter(c => !['SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE'].includes(c.tagName))
                .map(extractNode),
        };
    };
    return extractNode(document.body);
}
"""

EXTRACT_STYLES_JS = """
() => {
    %s
    const props = ['display', 'position', 'width', 'height', 'padding', 'margin', 'color',
        'backgroundColor', 'fontFamily', 'fontSize', 'fontWeight', 'lineHeight', 'flexDirection',
        'justifyContent', 'alignItems', 'gridTemplateColumns', 'gap', 'borderRadius', 'boxShadow',
        'transition', 'animation', 'transform'];
    const out = [];
    document.querySelectorAll('body *').forEach((el, index) => {
        const cs = getComputedStyle(el);
        if (cs.display === 'none' || cs.visibility === 'hidden') return;
        const styles = {};
        for (const p of props) styles[p] = cs[p] || '';
        out.push({ selector: selectorFor(el, index), styles });
    });
    return out;
}
""" % _SELECTOR_JS

EXTRACT_LAYOUT_JS = """
() => {
    %s
    const out = [];
    document.querySelectorAll('body *').forEach((el, index) => {
        const rect = el.getBoundingClientRect();
        if (rect.width <= 0 || rect.height <= 0) return;
        out.push({
            selector: selectorFor(el, index),
            x: rect.x + window.scrollX,
            y: rect.y + window.scrollY,
            width: rect.width,
            height: rect.height,
            zIndex: parseInt(getComputedStyle(el).zIndex) || 0,
        });
    });
    return out;
}
""" % _SELECTOR_JS

EXTRACT_ANIMATIONS_JS = """
() => {
    %s
    const out = [];
    document.querySelectorAll('body *').forEach((el, index) => {
        const cs = getComputedStyle(el);
        const selector = selectorFor(el, index);
        if (cs.transitionDuration && cs.transitionDuration.split(',').some(d => parseFloat(d) > 0)) {
            out.push({ selector, type: 'transition', properties: {
                property: cs.transitionProperty, duration: cs.transitionDuration,
                easing: cs.transitionTimingFunction, delay: cs.transitionDelay } });
        }
        if (cs.animationName && cs.animationName !== 'none') {
            out.push({ selector, type: 'animation', properties: {
                name: cs.animationName, duration: cs.animationDuration,
                easing: cs.animationTimingFunction, delay: cs.animationDelay,
                iterations: cs.animationIterationCount } });
        }
    });
    return out;
}
""" % _SELECTOR_JS

EXTRACT_META_JS = """
() => {
    const content = (name) => {
        const m = document.querySelector(`meta[name="${name}"]`) || document.querySelector(`meta[property="${name}"]`);
        return (m && m.getAttribute('content')) || '';
    };
    const root = document.documentElement;
    let theme = 'unknown';
    if (root.classList.contains('dark') || root.dataset.theme === 'dark') theme = 'dark';
    else if (root.classList.contains('light') || root.dataset.theme === 'light') theme = 'light';
    else {
        const bg = getComputedStyle(document.body).backgroundColor.match(/\\d+/g);
        if (bg && bg.length >= 3) {
            const [r, g, b] = bg.map(Number);
            theme = (0.299 * r + 0.587 * g + 0.114 * b) < 128 ? 'dark' : 'light';
        }
    }
    return { title: document.title, description: content('description'), viewport: content('viewport'), theme };
}
"""

IMAGE_SOURCES_JS = """
() => Array.from(document.querySelectorAll('img'))
    .map(img => img.currentSrc || img.getAttribute('src') || '')
"""


class PageExtractor(Protocol):
    async def extract(self, url: str, job_id: str) -> ExtractionSnapshot: ...


class PlaywrightPageExtractor:
    """
    Captures an ExtractionSnapshot from a live page.

    Args:
        asset_cache: Shared cache that downloads and serves page images
        viewport_width: Browser viewport width
        viewport_height: Browser viewport height
        navigation_timeout_ms: Timeout for reaching network idle
        settle_delay_ms: Wait after load for client-side rendering
        scroll_step_px: Scroll increment used to trigger lazy loading
        scroll_pause_ms: Pause after each scroll step
    """

    def __init__(
        self,
        asset_cache: AssetCache,
        viewport_width: int = 1440,
        viewport_height: int = 900,
        navigation_timeout_ms: int = 30000,
        settle_delay_ms: int = 3000,
        scroll_step_px: int = 100,
        scroll_pause_ms: int = 500,
    ):
        self.asset_cache = asset_cache
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.scroll_step_px = max(scroll_step_px, 1)
        self.scroll_pause_ms = scroll_pause_ms

    async def extract(self, url: str, job_id: str) -> ExtractionSnapshot:
        logger.info("[SCOUT] Starting analysis of %s", url)
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    context = await browser.new_context(viewport=self.viewport)
                    page = await context.new_page()
                    await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
                    await page.wait_for_timeout(self.settle_delay_ms)

                    await self._ghost_scroll(page)

                    logger.info("[SCOUT] Extracting DOM, styles, layout and animations...")
                    dom = await page.evaluate(EXTRACT_DOM_JS)
                    styles = await page.evaluate(EXTRACT_STYLES_JS)
                    layout = await page.evaluate(EXTRACT_LAYOUT_JS)
                    animations = await page.evaluate(EXTRACT_ANIMATIONS_JS)
                    meta = await page.evaluate(EXTRACT_META_JS)
                    image_sources = await page.evaluate(IMAGE_SOURCES_JS)
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise InfrastructureError(f"Page extraction failed for {url}: {e}") from e

        assets = await self.asset_cache.materialize(job_id, image_sources, url)

        snapshot = ExtractionSnapshot(
            url=url,
            dom=DomNode.model_validate(dom),
            computed_styles=[ComputedStyleRecord.model_validate(s) for s in styles],
            layout=[LayoutBox.model_validate(b) for b in layout],
            assets=assets,
            animations=[AnimationDescriptor.model_validate(a) for a in animations],
            meta=PageMeta.model_validate(meta),
        )
        logger.info(
            "[SCOUT] Analysis complete: %d styled elements, %d assets, %d animations",
            len(snapshot.computed_styles),
            len(snapshot.assets),
            len(snapshot.animations),
        )
        return snapshot

    async def _ghost_scroll(self, page) -> None:
        """Scroll the full page height in small steps so lazy content loads."""
        logger.info("[SCOUT] Performing ghost scroll...")
        total_height = await page.evaluate("() => document.body.scrollHeight")
        for y in range(0, int(total_height or 0), self.scroll_step_px):
            await page.evaluate("(y) => window.scrollTo(0, y)", y)
            await page.wait_for_timeout(self.scroll_pause_ms)
        await page.evaluate("() => window.scrollTo(0, 0)")
        await page.wait_for_timeout(self.scroll_pause_ms)
