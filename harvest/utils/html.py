"""Small HTML helpers for reading identity hints out of host pages."""

from html.parser import HTMLParser
from typing import List, Optional


class AttributeFinder(HTMLParser):
    """Collects one attribute from elements matching a class or id."""

    def __init__(self, attribute: str, class_name: Optional[str] = None, element_id: Optional[str] = None):
        super().__init__()
        self.attribute = attribute
        self.class_name = class_name
        self.element_id = element_id
        self.found: List[str] = []

    def handle_starttag(self, tag, attrs):
        attributes = dict(attrs)
        if self.class_name and self.class_name not in (attributes.get("class") or "").split():
            return
        if self.element_id and attributes.get("id") != self.element_id:
            return
        value = attributes.get(self.attribute)
        if value is not None:
            self.found.append(value)


def find_attribute(
    html: Optional[str],
    attribute: str,
    *,
    class_name: Optional[str] = None,
    element_id: Optional[str] = None,
) -> Optional[str]:
    """First value of ``attribute`` on an element with the given class or id."""
    if not html:
        return None
    finder = AttributeFinder(attribute, class_name=class_name, element_id=element_id)
    finder.feed(html)
    finder.close()
    return finder.found[0] if finder.found else None
