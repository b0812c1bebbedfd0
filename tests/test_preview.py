import base64
import io
import json
import re

from PIL import Image

from sitecloner.agents.models import GeneratedOutput
from sitecloner.preview.renderer import (
    build_preview_html,
    bundle_sources,
    encode_screenshot,
    strip_module_syntax,
)

APP = """import React, { useState } from 'react';
import { motion } from 'framer-motion';
import Header from './components/Header';
import './index.css';

export default function App() {
  const [open, setOpen] = useState(false);
  return <motion.div animate={{ opacity: 1 }}><Header /></motion.div>;
}
"""

HEADER = """import React from 'react';

export const NAV = ['Home', 'About'];

const Header = () => <header>{NAV.join(' ')}</header>;

export default Header;
"""


def test_strip_module_syntax():
    stripped = strip_module_syntax(APP)
    assert "import" not in stripped
    assert "export" not in stripped
    assert "function App()" in stripped

    header = strip_module_syntax(HEADER)
    assert "const NAV" in header
    assert "export default Header" not in header


def test_bundle_puts_entry_last():
    output = GeneratedOutput(files={"App.tsx": APP, "components/Header.tsx": HEADER, "index.css": "body{}"})
    bundle = bundle_sources(output)
    assert bundle.index("// components/Header.tsx") < bundle.index("// App.tsx")
    assert "body{}" not in bundle
    assert "const motion = new Proxy" in bundle


def test_bundle_leaves_out_the_copied_entry_source():
    output = GeneratedOutput(files={"App.tsx": APP, "Home.tsx": APP, "components/Header.tsx": HEADER})
    bundle = bundle_sources(output)
    assert "// Home.tsx" not in bundle
    assert bundle.count("function App()") == 1


def test_preview_html_escapes_script_close():
    output = GeneratedOutput(files={"App.tsx": "const App = () => <div>{'</script><b>'}</div>;"})
    html = build_preview_html(output)

    assert html.count("</script>") == 5
    assert "https://cdn.tailwindcss.com" in html
    assert "Babel.transform" in html

    source = re.search(r"const SOURCE = (.*);\n", html).group(1)
    assert "const App = () =>" in json.loads(source)


def test_encode_screenshot_downscales():
    buf = io.BytesIO()
    Image.new("RGB", (200, 50), "white").save(buf, format="PNG")

    encoded = encode_screenshot(buf.getvalue(), max_dim=100)

    img = Image.open(io.BytesIO(base64.b64decode(encoded)))
    assert img.size == (100, 25)
