"""Pull crane/vehicle demand and unstaffed counts out of the portal's HTML.

The upstream pages are hand-authored and drift over time, so every field is
read through an ordered list of named strategies. The first strategy whose
pattern is present wins; a field nobody matches defaults to 0. Nothing in
here raises on malformed markup.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Mapping, NamedTuple

from bs4 import BeautifulSoup

log = logging.getLogger(__name__)

SHIFT_WINDOWS = ("08-14", "14-20", "20-02")

# Colour-coded cell classes that open each shift's block, in document order.
SHIFT_MARKERS = {
    "08-14": "TDazul",
    "14-20": "TDverde",
    "20-02": "TDrojo",
}


class ShiftDemand(NamedTuple):
    cranes: int = 0
    vehicles: int = 0


@dataclass(frozen=True)
class DemandSnapshot:
    """One complete scrape: demand per shift plus the unstaffed count."""

    shifts: Mapping[str, ShiftDemand]
    unstaffed: int = 0
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        shifts = {shift: ShiftDemand(*self.shifts.get(shift, ShiftDemand())) for shift in SHIFT_WINDOWS}
        object.__setattr__(self, "shifts", MappingProxyType(shifts))

    # mappingproxy is unhashable, so hash its items instead.
    def __hash__(self):
        return hash((tuple(self.shifts.items()), self.unstaffed, self.captured_at))

    def to_dict(self) -> dict:
        return {
            "timestamp": self.captured_at.isoformat(),
            "demandas": {
                shift: {"cranes": demand.cranes, "vehicles": demand.vehicles}
                for shift, demand in self.shifts.items()
            },
            "fijos": self.unstaffed,
        }


class Strategy(NamedTuple):
    name: str
    func: Callable


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

# Whitespace as the portal writes it: real spaces, U+00A0, and &nbsp; with or
# without its semicolon.
_WS = r"(?:\s|\xa0|&nbsp;?|&#160;)"

_TAG_RE = re.compile(r"<[^>]+>")
# Only the entities the portal uses; a bare "&nbsp" must not eat the word after it.
_ENTITY_RE = re.compile(r"&(?:#\d+|#x[0-9a-f]+|nbsp|amp|lt|gt|quot);?", re.IGNORECASE | re.ASCII)
_INT_RE = re.compile(r"\d+", re.ASCII)
_NEXT_CELL_RE = re.compile(
    r"<t[dh]\b[^>]*>(.*?)(?=<t[dhr]\b|</t[dr]\s*>|</table|$)",
    re.IGNORECASE | re.DOTALL,
)
_ROW_END_RE = re.compile(r"</?tr\b|</table", re.IGNORECASE)
_TABLE_END_RE = re.compile(r"</table", re.IGNORECASE)


def _text(fragment: str) -> str:
    """Markup fragment reduced to its visible text (tags and entities blanked)."""
    return _ENTITY_RE.sub(" ", _TAG_RE.sub(" ", fragment))


def _first_int(fragment: str) -> int:
    """First base-10 integer in a fragment of markup, 0 when there is none."""
    m = _INT_RE.search(_text(fragment))
    return int(m.group()) if m else 0


def _label_re(label: str) -> re.Pattern:
    return re.compile(rf">{_WS}*{label}{_WS}*(?=<)", re.IGNORECASE)


def _cell_after_label(label_re: re.Pattern, text: str) -> int | None:
    """Value of the cell right after a text label, in the same row.

    None when the label is absent. A present label with an empty or
    non-numeric neighbour, or with no neighbour before the row ends,
    reads as 0.
    """
    m = label_re.search(text)
    if not m:
        return None
    cell = _NEXT_CELL_RE.search(text, m.end())
    if not cell or _ROW_END_RE.search(text, m.end(), cell.start()):
        return 0
    return _first_int(cell.group(1))


def _run_strategies(strategies: list[Strategy], source, what: str) -> tuple[int, str | None]:
    for strategy in strategies:
        value = strategy.func(source)
        if value is not None:
            log.debug("%s: matched by %s -> %d", what, strategy.name, value)
            return value, strategy.name
    log.debug("%s: no strategy matched, defaulting to 0", what)
    return 0, None


# ---------------------------------------------------------------------------
# Prevision page: cranes and vehicles per shift
# ---------------------------------------------------------------------------

class _ShiftSource(NamedTuple):
    section: str   # markup between this shift's marker and the next one
    marker: str
    document: str  # the whole page, for strategies that look outside the section


def _class_attr(marker: str) -> str:
    """Pattern for a class attribute carrying marker, quoted or not.

    Stylesheet rules naming the class and other attributes holding the same
    word do not count.
    """
    return (
        rf"""\bclass\s*=\s*(?:"[^"]*\b{marker}\b|'[^']*\b{marker}\b|[^\s'">]*\b{marker}\b)"""
    )


def _marker_re(marker: str) -> re.Pattern:
    return re.compile(_class_attr(marker), re.IGNORECASE)


_GRUAS_RE = _label_re("GRUAS")
_COCHES_RE = _label_re("COCHES")
_C2_RE = re.compile(rf"(?<!\d)(\d+){_WS}*C2", re.IGNORECASE | re.ASCII)


def _gruas_label(src: _ShiftSource) -> int | None:
    return _cell_after_label(_GRUAS_RE, src.section)


def _coches_label(src: _ShiftSource) -> int | None:
    return _cell_after_label(_COCHES_RE, src.section)


def _c2_suffix(src: _ShiftSource) -> int | None:
    m = _C2_RE.search(_text(src.section))
    return int(m.group(1)) if m else None


def _summary_row(src: _ShiftSource) -> int | None:
    # A marker cell immediately followed by an "N C2" cell, anywhere on the page.
    pattern = re.compile(
        _class_attr(src.marker) + r"""[^>]*>"""
        rf"""(?:[^<]|<(?!/?t[dhr]\b))*</t[dh]\s*>\s*"""
        rf"""<t[dh]\b[^>]*>(?:{_WS}|<(?!/?t[dhr]\b)[^>]*>)*(\d+){_WS}*C2""",
        re.IGNORECASE | re.ASCII,
    )
    m = pattern.search(src.document)
    return int(m.group(1)) if m else None


CRANE_STRATEGIES = [
    Strategy("gruas_label", _gruas_label),
]

VEHICLE_STRATEGIES = [
    Strategy("coches_label", _coches_label),
    Strategy("c2_suffix", _c2_suffix),
    Strategy("summary_row", _summary_row),
]


def split_shift_sections(html: str) -> dict[str, str]:
    """Slice the page into one section per shift, keyed by shift window.

    Markers are looked up in chronological order, each after the previous
    one found. A section runs to the next found marker; the last one runs to
    the end of its table (or of the document). Missing markers give "".
    """
    starts: dict[str, int] = {}
    pos = 0
    for shift in SHIFT_WINDOWS:
        m = _marker_re(SHIFT_MARKERS[shift]).search(html, pos)
        if m:
            starts[shift] = m.start()
            pos = m.end()

    sections = {shift: "" for shift in SHIFT_WINDOWS}
    found = list(starts.items())
    for i, (shift, start) in enumerate(found):
        if i + 1 < len(found):
            end = found[i + 1][1]
        else:
            table_end = _TABLE_END_RE.search(html, start)
            end = table_end.start() if table_end else len(html)
        sections[shift] = html[start:end]
    return sections


def _extract_demand(html: str) -> tuple[dict[str, ShiftDemand], dict[str, str | None]]:
    if not isinstance(html, str):
        html = ""
    sections = split_shift_sections(html)
    if not any(sections.values()):
        log.warning("Prevision page: no shift markers found (%d chars), all demand defaults to 0", len(html))

    shifts: dict[str, ShiftDemand] = {}
    matched: dict[str, str | None] = {}
    for shift in SHIFT_WINDOWS:
        src = _ShiftSource(sections[shift], SHIFT_MARKERS[shift], html)
        cranes, matched[f"{shift}.cranes"] = _run_strategies(CRANE_STRATEGIES, src, f"{shift} cranes")
        vehicles, matched[f"{shift}.vehicles"] = _run_strategies(VEHICLE_STRATEGIES, src, f"{shift} vehicles")
        shifts[shift] = ShiftDemand(cranes, vehicles)
    return shifts, matched


def extract_demand(html: str) -> dict[str, ShiftDemand]:
    """Cranes and vehicles for every shift window; unmatched figures are 0."""
    return _extract_demand(html)[0]


# ---------------------------------------------------------------------------
# Chapero page: unstaffed ("no contratado") positions
# ---------------------------------------------------------------------------

_NO_CONTRATADO_RE = re.compile(rf"\bNo{_WS}+contratado{_WS}*\((\d+)\)", re.IGNORECASE | re.ASCII)
_LEGEND_RE = re.compile(r"nocontratado[^>]*>[^<]*</span>[^>]*>[\s\S]{0,100}?No[^(]*\((\d+)\)", re.IGNORECASE | re.ASCII)
_CHAPAB_RE = re.compile(r"""background\s*=\s*['"]?imagenes/chapab\.jpg['"]?""", re.IGNORECASE)


def _label_phrase(html: str) -> int | None:
    m = _NO_CONTRATADO_RE.search(html)
    return int(m.group(1)) if m else None


def _legend_context(html: str) -> int | None:
    m = _LEGEND_RE.search(html)
    return int(m.group(1)) if m else None


def _background_marker(html: str) -> int | None:
    return len(_CHAPAB_RE.findall(html)) or None


def _marker_class(html: str) -> int | None:
    soup = BeautifulSoup(html, "lxml")
    return len(soup.select(".nocontratado")) or None


UNSTAFFED_STRATEGIES = [
    Strategy("label_phrase", _label_phrase),
    Strategy("legend_context", _legend_context),
    Strategy("background_marker", _background_marker),
    Strategy("marker_class", _marker_class),
]


def extract_unstaffed(html: str) -> int:
    """Number of unstaffed roster positions on the chapero page (0 if unknown)."""
    if not isinstance(html, str) or not html:
        return 0
    return _run_strategies(UNSTAFFED_STRATEGIES, html, "unstaffed")[0]


# ---------------------------------------------------------------------------
# Both pages together
# ---------------------------------------------------------------------------

def extract_snapshot(
    prevision_html: str,
    chapero_html: str,
    captured_at: datetime | None = None,
) -> DemandSnapshot:
    return DemandSnapshot(
        shifts=extract_demand(prevision_html),
        unstaffed=extract_unstaffed(chapero_html),
        captured_at=captured_at or datetime.now(timezone.utc),
    )


def diagnose(prevision_html: str, chapero_html: str) -> dict[str, str | None]:
    """Which strategy produced each field, None where the default was used.

    Lets a reader tell "upstream changed its markup" apart from a real zero.
    """
    matched = _extract_demand(prevision_html)[1]
    if isinstance(chapero_html, str) and chapero_html:
        matched["unstaffed"] = _run_strategies(UNSTAFFED_STRATEGIES, chapero_html, "unstaffed")[1]
    else:
        matched["unstaffed"] = None
    return matched
