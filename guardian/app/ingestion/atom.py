"""
atom.py — Structured parser for tsunami.gov Atom bulletin feeds.

Elements are matched by local name, so namespace prefixes do not matter:

    <feed xmlns="http://www.w3.org/2005/Atom" xmlns:georss="...">
      <entry>
        <id>https://www.tsunami.gov/events/PAAQ/...</id>
        <title>Tsunami Information Statement Number 1</title>
        <updated>2024-04-02T23:58:14Z</updated>
        <summary type="html">&lt;p&gt;...&lt;/p&gt;</summary>
        <georss:point>23.8 121.6</georss:point>
      </entry>
    </feed>

Entries without an id or a title are dropped. A point that is not a
valid lat/lon pair is treated as absent. A missing or unreadable
`updated` falls back to the parse time.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from guardian.app.core.errors import FeedParseError
from guardian.app.spatial.radius_utils import Coordinate

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class BulletinEntry:
    id: str
    title: str
    updated: datetime
    summary: str
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_point(self) -> bool:
        return self.lat is not None and self.lon is not None


def _localname(tag: str) -> str:
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _child(el: ET.Element, name: str) -> Optional[ET.Element]:
    for child in el:
        if _localname(child.tag) == name:
            return child
    return None


def _child_text(el: ET.Element, name: str) -> Optional[str]:
    child = _child(el, name)
    if child is None:
        return None
    txt = "".join(child.itertext()).strip()
    return txt or None


def strip_tags(text: str) -> str:
    return _TAG_RE.sub("", text).strip()


def parse_point(text: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    """georss:point is 'lat lon'; NaN or out-of-range points count as missing."""
    if not text:
        return None, None
    parts = text.split()
    if len(parts) < 2:
        return None, None
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        return None, None
    if not Coordinate.is_valid(lat, lon):
        logger.warning("Discarding georss point %r", text)
        return None, None
    return lat, lon


def parse_timestamp(text: Optional[str], default: datetime) -> datetime:
    if not text:
        return default
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unreadable Atom timestamp %r", text)
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_atom_bulletins(
    xml_text: str,
    *,
    source: str = "atom",
    now: Optional[datetime] = None,
) -> List[BulletinEntry]:
    """
    Parse an Atom document into bulletin entries.

    Raises
    ------
    FeedParseError
        When the document is not well-formed XML.
    """
    now = now or datetime.now(timezone.utc)
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise FeedParseError(source, f"malformed XML: {exc}") from exc

    entries: List[BulletinEntry] = []
    for entry in root.iter():
        if _localname(entry.tag) != "entry":
            continue
        entry_id = _child_text(entry, "id")
        title = _child_text(entry, "title")
        if not entry_id or not title:
            continue

        lat, lon = parse_point(_child_text(entry, "point"))
        entries.append(BulletinEntry(
            id=entry_id,
            title=title,
            updated=parse_timestamp(_child_text(entry, "updated"), now),
            summary=strip_tags(_child_text(entry, "summary") or ""),
            lat=lat,
            lon=lon,
        ))
    return entries
