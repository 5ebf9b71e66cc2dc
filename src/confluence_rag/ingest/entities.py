"""Character reference normalisation for storage-format markup.

Storage-format pages are XHTML fragments that freely use HTML named entities
(``&nbsp;``, ``&rsquo;`` ...). An XML parser only knows the five predefined
entities, so everything else is rewritten to plain Unicode before parsing.
"""
from __future__ import annotations

import re
from typing import Dict

_ENTITY_RE = re.compile(r"&(#[xX][0-9a-fA-F]+|#[0-9]+|[a-zA-Z][a-zA-Z0-9]*);")

XML_RESERVED_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})

# Numeric references that resolve to markup-significant characters are written
# back as their reserved entity so the document stays well-formed.
_RESERVED_BY_CHAR: Dict[str, str] = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}

NAMED_ENTITIES: Dict[str, str] = {
    # Quotation marks, dashes and spacing
    "rsquo": "'",
    "lsquo": "'",
    "ldquo": '"',
    "rdquo": '"',
    "sbquo": "‚",
    "bdquo": "„",
    "laquo": "«",
    "raquo": "»",
    "lsaquo": "‹",
    "rsaquo": "›",
    "prime": "′",
    "Prime": "″",
    "mdash": "—",
    "ndash": "–",
    "minus": "−",
    "hellip": "…",
    "nbsp": " ",
    "ensp": " ",
    "emsp": " ",
    "thinsp": " ",
    "shy": "",
    "zwj": "",
    "zwnj": "",
    "bull": "•",
    "middot": "·",
    "dagger": "†",
    "Dagger": "‡",
    "sect": "§",
    "para": "¶",
    "iexcl": "¡",
    "iquest": "¿",
    # Currency and legal marks
    "cent": "¢",
    "pound": "£",
    "yen": "¥",
    "euro": "€",
    "curren": "¤",
    "copy": "©",
    "reg": "®",
    "trade": "™",
    # Accented Latin letters
    "eacute": "é",
    "egrave": "è",
    "ecirc": "ê",
    "euml": "ë",
    "aacute": "á",
    "agrave": "à",
    "acirc": "â",
    "atilde": "ã",
    "auml": "ä",
    "iacute": "í",
    "igrave": "ì",
    "icirc": "î",
    "iuml": "ï",
    "oacute": "ó",
    "ograve": "ò",
    "ocirc": "ô",
    "otilde": "õ",
    "ouml": "ö",
    "uacute": "ú",
    "ugrave": "ù",
    "ucirc": "û",
    "uuml": "ü",
    "ccedil": "ç",
    "ntilde": "ñ",
    "yacute": "ý",
    "yuml": "ÿ",
    "oelig": "œ",
    "aelig": "æ",
    "szlig": "ß",
    "aring": "å",
    "oslash": "ø",
    "eth": "ð",
    "thorn": "þ",
    "Eacute": "É",
    "Egrave": "È",
    "Ecirc": "Ê",
    "Euml": "Ë",
    "Aacute": "Á",
    "Agrave": "À",
    "Acirc": "Â",
    "Atilde": "Ã",
    "Auml": "Ä",
    "Aring": "Å",
    "AElig": "Æ",
    "Iacute": "Í",
    "Oacute": "Ó",
    "Ocirc": "Ô",
    "Ouml": "Ö",
    "Oslash": "Ø",
    "OElig": "Œ",
    "Uacute": "Ú",
    "Uuml": "Ü",
    "Ccedil": "Ç",
    "Ntilde": "Ñ",
    # Superscripts and fractions
    "sup1": "¹",
    "sup2": "²",
    "sup3": "³",
    "frac12": "½",
    "frac14": "¼",
    "frac34": "¾",
    # Math and symbols
    "deg": "°",
    "micro": "µ",
    "times": "×",
    "divide": "÷",
    "plusmn": "±",
    "le": "≤",
    "ge": "≥",
    "ne": "≠",
    "asymp": "≈",
    "infin": "∞",
    "sum": "∑",
    "radic": "√",
    "permil": "‰",
    "larr": "←",
    "rarr": "→",
    "uarr": "↑",
    "darr": "↓",
    "harr": "↔",
    "rArr": "⇒",
    "lArr": "⇐",
    "hArr": "⇔",
    # Greek letters (common ones)
    "alpha": "α",
    "beta": "β",
    "gamma": "γ",
    "Gamma": "Γ",
    "delta": "δ",
    "Delta": "Δ",
    "epsilon": "ε",
    "theta": "θ",
    "lambda": "λ",
    "mu": "μ",
    "pi": "π",
    "Pi": "Π",
    "sigma": "σ",
    "Sigma": "Σ",
    "tau": "τ",
    "phi": "φ",
    "omega": "ω",
    "Omega": "Ω",
}


def _is_xml_char(code_point: int) -> bool:
    return (
        code_point in (0x9, 0xA, 0xD)
        or 0x20 <= code_point <= 0xD7FF
        or 0xE000 <= code_point <= 0xFFFD
        or 0x10000 <= code_point <= 0x10FFFF
    )


def _resolve_numeric(reference: str) -> str:
    if reference[1:2] in ("x", "X"):
        code_point = int(reference[2:], 16)
    else:
        code_point = int(reference[1:])
    if not _is_xml_char(code_point):
        return ""
    char = chr(code_point)
    if char == "\u00a0":
        return " "
    return _RESERVED_BY_CHAR.get(char, char)


def _replace(match: re.Match[str]) -> str:
    reference = match.group(1)
    if reference in XML_RESERVED_ENTITIES:
        return match.group(0)
    if reference in NAMED_ENTITIES:
        return NAMED_ENTITIES[reference]
    if reference.startswith("#"):
        return _resolve_numeric(reference)
    # Unknown named reference.
    return ""


def normalize_entities(text: str) -> str:
    """Rewrite character references to Unicode, keeping the five XML ones.

    Named references from :data:`NAMED_ENTITIES` become their literal
    character, numeric references become the referenced code point and any
    other named reference is removed. ``&amp;``, ``&lt;``, ``&gt;``,
    ``&quot;`` and ``&apos;`` are left untouched. A literal non-breaking space
    is folded to a regular space.
    """

    if not text:
        return text
    normalized = _ENTITY_RE.sub(_replace, text)
    return normalized.replace("\u00a0", " ")
