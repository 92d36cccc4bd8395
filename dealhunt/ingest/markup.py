"""Thin markup access layer over selectolax.

The extraction pipeline only ever asks three things of markup: find the
sub-elements matching a selector inside a scope, read an element's text, and
read one of its attributes. Everything else stays behind this module.
"""

from typing import Optional

from selectolax.parser import HTMLParser, Node


def parse(html: str) -> HTMLParser:
    """Parse a full page body."""
    return HTMLParser(html)


def find(scope: HTMLParser | Node, selector: str) -> list[Node]:
    """Return every element under ``scope`` matching ``selector``."""
    return scope.css(selector)


def find_first(scope: HTMLParser | Node, selector: str) -> Optional[Node]:
    """Return the first element under ``scope`` matching ``selector``, if any."""
    return scope.css_first(selector)


def text(node: Optional[Node]) -> str:
    """Return the stripped text content of ``node`` ('' for None)."""
    if node is None:
        return ""
    return node.text(separator=" ", strip=True)


def attr(node: Optional[Node], name: str) -> Optional[str]:
    """Return attribute ``name`` of ``node`` or None."""
    if node is None:
        return None
    return node.attributes.get(name)


def outer_html(node: Optional[Node]) -> str:
    """Return the serialized markup of ``node`` ('' for None)."""
    if node is None:
        return ""
    return node.html or ""
