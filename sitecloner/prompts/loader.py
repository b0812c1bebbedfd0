"""Prompt templates for the clone agents.

Templates live in ``templates/<name>.txt`` and use ``string.Template``
placeholders (``$name``), so the JSON examples embedded in prompts need no
brace escaping. A literal dollar sign is written ``$$``.
"""

from functools import lru_cache
from pathlib import Path
from string import Template

TEMPLATES_DIR = Path(__file__).parent / "templates"


@lru_cache(maxsize=None)
def load_template(name: str) -> Template:
    path = TEMPLATES_DIR / f"{name}.txt"
    if not path.is_file():
        raise FileNotFoundError(f"Unknown prompt template {name!r} (looked in {TEMPLATES_DIR})")
    return Template(path.read_text(encoding="utf-8"))


def placeholders(template: Template) -> set[str]:
    names = set()
    for match in template.pattern.finditer(template.template):
        name = match.group("named") or match.group("braced")
        if name:
            names.add(name)
    return names


def render(name: str, **values: object) -> str:
    """Fill prompt ``name`` with ``values``.

    Raises:
        FileNotFoundError: No such template.
        KeyError: A placeholder in the template has no value.
    """
    template = load_template(name)
    missing = placeholders(template) - values.keys()
    if missing:
        raise KeyError(f"Prompt {name!r} is missing values for: {', '.join(sorted(missing))}")
    return template.substitute(values)
