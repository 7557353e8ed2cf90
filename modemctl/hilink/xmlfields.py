"""Field extraction from raw HiLink XML responses.

HiLink firmwares are not consistent about XML declarations, encodings or
even well-formedness, so fields are pulled out with a tolerant regex rather
than a parser. A missing field is reported as "" and never raises.
"""

import re

_PATTERN_CACHE: dict[str, re.Pattern] = {}


def _pattern(tag: str) -> re.Pattern:
    pat = _PATTERN_CACHE.get(tag)
    if pat is None:
        t = re.escape(tag)
        pat = re.compile(rf"<{t}(?:\s[^>]*)?>([^<]*)</{t}\s*>")
        _PATTERN_CACHE[tag] = pat
    return pat


def extract_field(xml, tag: str) -> str:
    """Return the text of the first ``<tag>`` element, stripped, or ""."""
    if not xml or not isinstance(xml, str):
        return ""
    m = _pattern(tag).search(xml)
    return m.group(1).strip() if m else ""


def extract_all(xml, tag: str) -> list[str]:
    """Return the non-empty texts of every ``<tag>`` element, in order."""
    if not xml or not isinstance(xml, str):
        return []
    return [v.strip() for v in _pattern(tag).findall(xml) if v.strip()]


def has_error(xml) -> bool:
    """True if the body is a HiLink ``<error>`` envelope."""
    return isinstance(xml, str) and re.search(r"<error(?:\s[^>]*)?>", xml) is not None


def error_code(xml) -> str:
    """Return the ``<code>`` of an error envelope, or ""."""
    if not has_error(xml):
        return ""
    return extract_field(xml, "code")


def is_ok(xml) -> bool:
    """True if the body carries the literal ``<response>OK</response>`` marker."""
    return isinstance(xml, str) and "<response>OK</response>" in xml
