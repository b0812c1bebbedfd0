"""Preview rendering for generated React code.

Builds a standalone HTML page that compiles the generated files in the
browser (Babel standalone with the TypeScript and React presets) on top of
React 18 UMD builds and the Tailwind CDN, then screenshots it alongside the
original page.
"""

import base64
import io
import json
import logging
import re
from typing import Protocol

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..agents.models import ENTRY_FILE, GeneratedOutput
from ..errors import InfrastructureError

logger = logging.getLogger(__name__)

MAX_SCREENSHOT_DIM = 8000

_IMPORT_FROM_RE = re.compile(r"^[ \t]*import\s[\s\S]*?\sfrom\s*['\"][^'\"]+['\"][ \t]*;?[ \t]*$", re.M)
_IMPORT_BARE_RE = re.compile(r"^[ \t]*import\s*['\"][^'\"]+['\"][ \t]*;?[ \t]*$", re.M)
_EXPORT_DEFAULT_DECL_RE = re.compile(r"^([ \t]*)export\s+default\s+(?=(?:async\s+)?(?:function|class)\b)", re.M)
_EXPORT_DEFAULT_NAME_RE = re.compile(r"^[ \t]*export\s+default\s+[A-Za-z_$][\w$]*[ \t]*;?[ \t]*$", re.M)
_EXPORT_DECL_RE = re.compile(
    r"^([ \t]*)export\s+(?=(?:const|let|var|async|function|class|interface|type|enum)\b)", re.M
)
_EXPORT_LIST_RE = re.compile(r"^[ \t]*export\s*\{[^}]*\}(?:\s*from\s*['\"][^'\"]+['\"])?[ \t]*;?[ \t]*$", re.M)

_SCRIPT_EXTS = (".tsx", ".ts", ".jsx", ".js")

# Globals the stripped imports would otherwise have provided.
_PRELUDE = """\
const { useState, useEffect, useRef, useMemo, useCallback, useContext, createContext, Fragment } = React;
const motion = new Proxy({}, { get: (_, tag) => React.forwardRef((props, ref) => {
  const { initial, animate, exit, transition, variants, whileHover, whileTap, whileInView, viewport, layout, ...rest } = props;
  return React.createElement(tag, { ...rest, ref });
}) });
const AnimatePresence = ({ children }) => React.createElement(React.Fragment, null, children);
"""

_RUNTIME_JS = """\
    try {
      const compiled = Babel.transform(SOURCE, {
        filename: 'bundle.tsx',
        presets: [['typescript', { isTSX: true, allExtensions: true }], 'react'],
      }).code;
      const App = new Function('React', 'ReactDOM', compiled + '\\nreturn typeof App !== "undefined" ? App : null;')(React, ReactDOM);
      if (!App) {
        throw new Error('App component not found');
      }
      ReactDOM.createRoot(document.getElementById('root')).render(React.createElement(App));
    } catch (error) {
      document.getElementById('root').innerHTML =
        '<div class="min-h-screen bg-red-50 p-8">' +
        '<h1 class="text-2xl font-bold text-red-800 mb-4">Render Error</h1>' +
        '<pre class="bg-red-100 p-4 rounded"></pre></div>';
      document.querySelector('#root pre').textContent = error.toString();
      console.error('React render error:', error);
    }
"""


def strip_module_syntax(source: str) -> str:
    """Remove import statements and export keywords so files can share one scope."""
    source = _IMPORT_FROM_RE.sub("", source)
    source = _IMPORT_BARE_RE.sub("", source)
    source = _EXPORT_DEFAULT_NAME_RE.sub("", source)
    source = _EXPORT_LIST_RE.sub("", source)
    source = _EXPORT_DEFAULT_DECL_RE.sub(r"\1", source)
    source = _EXPORT_DECL_RE.sub(r"\1", source)
    return source


def bundle_sources(output: GeneratedOutput) -> str:
    """Concatenate script files into one source, dependencies first and the entry file last.

    A file whose source is identical to the entry file is the component the
    entry was copied from and is left out of the shared scope.
    """
    entry_source = output.entry_source
    scripts = sorted(
        path for path, source in output.files.items()
        if path != ENTRY_FILE and path.lower().endswith(_SCRIPT_EXTS) and source != entry_source
    )
    parts = [_PRELUDE]
    for path in scripts + [ENTRY_FILE]:
        source = output.files.get(path)
        if source is None:
            continue
        parts.append(f"// {path.lstrip('/')}\n{strip_module_syntax(source)}")
    return "\n\n".join(parts)


def build_preview_html(output: GeneratedOutput) -> str:
    """Standalone HTML document that renders the generated App component."""
    source = json.dumps(bundle_sources(output)).replace("</", "<\\/")
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Generated Clone Preview</title>
  <script src="https://cdn.tailwindcss.com"></script>
  <script crossorigin src="https://unpkg.com/react@18/umd/react.production.min.js"></script>
  <script crossorigin src="https://unpkg.com/react-dom@18/umd/react-dom.production.min.js"></script>
  <script src="https://unpkg.com/@babel/standalone/babel.min.js"></script>
</head>
<body>
  <div id="root"></div>
  <script>
    const SOURCE = {source};
{_RUNTIME_JS}  </script>
</body>
</html>"""


def encode_screenshot(png_bytes: bytes, max_dim: int = MAX_SCREENSHOT_DIM) -> str:
    """Downscale oversized screenshots and return base64 PNG."""
    img = Image.open(io.BytesIO(png_bytes))
    w, h = img.size
    if w > max_dim or h > max_dim:
        scale = min(max_dim / w, max_dim / h)
        img = img.resize((max(int(w * scale), 1), max(int(h * scale), 1)), Image.LANCZOS)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("utf-8")


class Screenshotter(Protocol):
    async def capture_html(self, html: str) -> str: ...

    async def capture_url(self, url: str) -> str: ...


class PlaywrightScreenshotter:
    """Full-page screenshots at a fixed viewport, returned as base64 PNG."""

    def __init__(
        self,
        viewport_width: int = 1440,
        viewport_height: int = 900,
        navigation_timeout_ms: int = 30000,
        settle_delay_ms: int = 3000,
        render_delay_ms: int = 2000,
    ):
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.render_delay_ms = render_delay_ms

    async def capture_html(self, html: str) -> str:
        return await self._capture(html=html)

    async def capture_url(self, url: str) -> str:
        return await self._capture(url=url)

    async def _capture(self, url: str = None, html: str = None) -> str:
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(viewport=self.viewport)
                    if html is not None:
                        await page.set_content(html, wait_until="load", timeout=self.navigation_timeout_ms)
                        await page.wait_for_timeout(self.render_delay_ms)
                    else:
                        await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
                        await page.wait_for_timeout(self.settle_delay_ms)
                    png = await page.screenshot(full_page=True)
                finally:
                    await browser.close()
        except PlaywrightError as e:
            target = url or "generated preview"
            raise InfrastructureError(f"Screenshot of {target} failed: {e}") from e
        return encode_screenshot(png)
