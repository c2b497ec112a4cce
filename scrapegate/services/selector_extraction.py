"""CSS selector-based field extraction.

Each named field maps to a CSS selector. Zero matches yield None and a
miss; one match yields a scalar or a small dict depending on which
extraction flags are set; several matches yield a list in document order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

logger = logging.getLogger(__name__)


@dataclass
class SelectorOutcome:
    url: str
    field_name: str
    selector: str
    success: bool
    match_type: str = "css"
    match_count: int = 0
    context: dict[str, Any] = field(default_factory=dict)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _inner_html(el: Tag) -> str:
    return el.decode_contents()


def _attr_value(el: Tag, name: str) -> str | None:
    val = el.get(name)
    if val is None:
        return None
    # bs4 returns multi-valued attributes (class, rel) as lists
    return val if isinstance(val, str) else " ".join(val)


def extract_element(
    el: Tag,
    extract_text: bool = True,
    extract_html: bool = False,
    attributes: list[str] | None = None,
) -> Any:
    """Extract one element according to the flags.

    Text only -> str, HTML only -> str, a single attribute only -> its value
    (or None), anything else -> dict with "text" and "html" as requested plus
    each requested attribute that is present on the element.
    """
    attributes = attributes or []

    if extract_text and not extract_html and not attributes:
        return el.get_text().strip()
    if extract_html and not extract_text and not attributes:
        return _inner_html(el)
    if len(attributes) == 1 and not extract_text and not extract_html:
        return _attr_value(el, attributes[0])

    result: dict[str, Any] = {}
    if extract_text:
        result["text"] = el.get_text().strip()
    if extract_html:
        result["html"] = _inner_html(el)
    for name in attributes:
        value = _attr_value(el, name)
        if value is not None:
            result[name] = value
    return result


def extract_fields(
    soup: BeautifulSoup,
    url: str,
    selectors: dict[str, str],
    extract_text: bool = True,
    extract_html: bool = False,
    attributes: list[str] | None = None,
) -> tuple[dict[str, Any], list[SelectorOutcome]]:
    """Extract every named field and report a hit/miss outcome per field."""
    data: dict[str, Any] = {}
    outcomes: list[SelectorOutcome] = []

    for name, selector in selectors.items():
        error = None
        try:
            elements = soup.select(selector)
        except (SelectorSyntaxError, ValueError) as e:
            logger.warning(f"Invalid selector for field {name!r}: {selector!r}: {e}")
            elements = []
            error = str(e)

        if not elements:
            data[name] = None
        elif len(elements) == 1:
            data[name] = extract_element(elements[0], extract_text, extract_html, attributes)
        else:
            data[name] = [
                extract_element(el, extract_text, extract_html, attributes)
                for el in elements
            ]

        context = {"error": error} if error else {}
        outcomes.append(
            SelectorOutcome(
                url=url,
                field_name=name,
                selector=selector,
                success=data[name] is not None,
                match_count=len(elements),
                context=context,
            )
        )

    return data, outcomes


def extract_page(
    soup: BeautifulSoup,
    html: str,
    extract_text: bool = True,
    extract_html: bool = False,
) -> dict[str, Any]:
    """Whole-page extraction used when no selectors are given."""
    data: dict[str, Any] = {}
    if extract_text:
        data["text"] = soup.get_text().strip()
    if extract_html:
        data["html"] = html
    return data
