"""
XML parsing module for the JMA Warning Checker.

Two streaming parsers for the two document formats consumed:
- Feed documents (Atom, extra.xml): one entry per published bulletin
- Warning bulletins (VPWW54): per-municipality warning state

Both parsers are single pass over an XMLPullParser, track their position
with a typed context stack and drop finished elements as they go.
"""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

# Wire constants
BULLETIN_TITLE_MARKER = "気象警報・注意報"
CITY_WARNING_TYPE = "気象警報・注意報（市町村等）"
NO_WARNINGS_STATUS = "発表警報・注意報はなし"

UNKNOWN_DOCUMENT_NAME = "unknown.xml"
CHUNK_SIZE = 64 * 1024

_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


class ParseError(Exception):
    """Raised when a document is not well-formed XML."""
    pass


class TimestampParseError(Exception):
    """Raised when a timestamp field cannot be parsed."""
    pass


# =============================================================================
# Data Model
# =============================================================================

@dataclass
class FeedBulletinPointer:
    """One bulletin publication announced by the feed."""
    publisher_name: str
    document_url: str
    document_name: str
    published_at: datetime


@dataclass
class ControlBlock:
    title: str
    issued_at: datetime
    status: str
    publishing_office: str


@dataclass
class HeadBlock:
    title: str
    report_time: datetime
    info_type: str
    info_kind: str


@dataclass
class WarningKindStatus:
    kind_name: Optional[str]
    status: str


@dataclass
class AreaObservation:
    area_name: str
    change_status: Optional[str]
    kinds: List[WarningKindStatus] = field(default_factory=list)


@dataclass
class WarningObservation:
    """Normalized warning state of one city. Empty warning_kind marks the sentinel."""
    city: str
    warning_kind: str
    status: str


@dataclass
class BulletinDocument:
    control: ControlBlock
    head: HeadBlock
    observations: List[AreaObservation] = field(default_factory=list)

    def warnings(self) -> List[WarningObservation]:
        """Flatten area observations in document order."""
        result = []
        for area in self.observations:
            result.extend(flatten_observation(area))
        return result


# =============================================================================
# Helpers
# =============================================================================

def _local_name(tag: str) -> str:
    """Strip the namespace from an ElementTree tag."""
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[1]
    return tag


def _text(elem: ET.Element) -> str:
    return (elem.text or "").strip()


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC3339 timestamp, tolerating 'Z' and '+0900' style offsets."""
    value = value.strip()
    if not value:
        raise TimestampParseError("empty timestamp")

    candidate = value
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    candidate = _COMPACT_OFFSET.sub(r"\1:\2", candidate)

    for text in (candidate, value):
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    raise TimestampParseError(f"unparsable timestamp: {value!r}")


def _timestamp_or(value: str, fallback: datetime, field_name: str) -> datetime:
    try:
        return parse_timestamp(value)
    except TimestampParseError as e:
        logger.warning(f"{field_name}: {e}, using parse start time")
        return fallback


def document_name_from_url(url: str) -> str:
    """Final '/'-delimited segment of a URL."""
    name = url.rstrip().rsplit("/", 1)[-1] if url else ""
    if name in ("", ".", ".."):
        return UNKNOWN_DOCUMENT_NAME
    return name


def _pull_events(parser: ET.XMLPullParser, data: Union[bytes, str]):
    """Feed data in chunks and yield (event, element) pairs."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        for offset in range(0, len(data), CHUNK_SIZE):
            parser.feed(data[offset:offset + CHUNK_SIZE])
            yield from parser.read_events()
        parser.close()
        yield from parser.read_events()
    except ET.ParseError as e:
        raise ParseError(f"XML parsing failed: {e}") from e


def latest_pointer(pointers: List[FeedBulletinPointer], publisher: str) -> Optional[FeedBulletinPointer]:
    """Newest pointer for a publisher; pointers are expected newest first."""
    for pointer in pointers:
        if pointer.publisher_name == publisher:
            return pointer
    return None


# =============================================================================
# Feed Entry Parser (extra.xml)
# =============================================================================

class FeedEntryParser:
    """
    Streaming parser for the Atom feed listing published bulletins.

    Only entries whose title contains the warning bulletin marker are
    returned, sorted newest first.
    """

    def parse(self, data: Union[bytes, str]) -> List[FeedBulletinPointer]:
        started_at = datetime.now(timezone.utc)
        parser = ET.XMLPullParser(events=("start", "end"))

        path: List[str] = []
        in_author = False
        entry: Optional[Dict[str, str]] = None
        pointers: List[FeedBulletinPointer] = []
        dropped = 0

        for event, elem in _pull_events(parser, data):
            tag = _local_name(elem.tag)

            if event == "start":
                path.append(tag)
                if tag == "entry" and len(path) == 2:
                    entry = {"title": "", "id": "", "updated": "", "name": "", "href": ""}
                elif entry is not None:
                    if tag == "author":
                        in_author = True
                    elif tag == "link" and not entry["href"]:
                        entry["href"] = elem.get("href", "").strip()
                continue

            # end event
            path.pop()
            if entry is None:
                continue

            if tag == "entry" and len(path) == 1:
                pointer = self._build_pointer(entry, started_at)
                if pointer is not None:
                    pointers.append(pointer)
                else:
                    dropped += 1
                entry = None
                elem.clear()
            elif tag == "author":
                in_author = False
            elif tag == "name" and in_author:
                entry["name"] = _text(elem)
            elif tag in ("title", "id", "updated") and path[-1] == "entry":
                entry[tag] = _text(elem)

        pointers.sort(key=lambda p: p.published_at, reverse=True)
        logger.debug(f"Feed parsed: {len(pointers)} bulletin entries, {dropped} skipped")
        return pointers

    def _build_pointer(self, entry: Dict[str, str], started_at: datetime) -> Optional[FeedBulletinPointer]:
        if BULLETIN_TITLE_MARKER not in entry["title"]:
            return None
        if not entry["name"]:
            logger.debug(f"Skipping feed entry without author: {entry['id']}")
            return None

        if entry["updated"]:
            published_at = _timestamp_or(entry["updated"], started_at, f"entry {entry['id']} updated")
        else:
            published_at = started_at

        return FeedBulletinPointer(
            publisher_name=entry["name"],
            document_url=entry["href"],
            document_name=document_name_from_url(entry["href"]),
            published_at=published_at,
        )


# =============================================================================
# Bulletin Parser (VPWW54)
# =============================================================================

class _Context(Enum):
    """Where the cursor sits in a bulletin document."""
    DOCUMENT = "document"
    CONTROL = "control"
    HEAD = "head"
    CITY_SECTION = "city_section"
    ITEM = "item"
    AREA = "area"
    KIND = "kind"
    IGNORED = "ignored"
    OTHER = "other"


def _enter(parent: _Context, tag: str, attrib: Dict[str, str]) -> _Context:
    """Context of an element opened inside `parent`."""
    if parent is _Context.IGNORED:
        return _Context.IGNORED

    if tag in ("Warning", "Information"):
        if attrib.get("type") == CITY_WARNING_TYPE:
            return _Context.CITY_SECTION
        return _Context.IGNORED

    if parent is _Context.DOCUMENT:
        if tag == "Control":
            return _Context.CONTROL
        if tag == "Head":
            return _Context.HEAD
        return _Context.OTHER

    if parent is _Context.CITY_SECTION:
        return _Context.ITEM if tag == "Item" else _Context.OTHER

    if parent is _Context.ITEM:
        if tag == "Kind":
            return _Context.KIND
        if tag == "Area":
            return _Context.AREA
        if tag == "Areas":
            return _Context.ITEM
        return _Context.OTHER

    if parent is _Context.AREA:
        return _Context.AREA

    return _Context.OTHER


class _ItemBuilder:
    """Collects one Item; owns the kind currently being filled."""

    def __init__(self):
        self.area_name = ""
        self.change_status: Optional[str] = None
        self._kinds: List[WarningKindStatus] = []
        self._open: Optional[WarningKindStatus] = None

    def kind_name(self, name: str) -> None:
        self.close_kind()
        self._open = WarningKindStatus(kind_name=name, status="")

    def kind_status(self, status: str) -> None:
        if self._open is not None:
            self._open.status = status
        else:
            self._open = WarningKindStatus(kind_name=None, status=status)

    def close_kind(self) -> None:
        if self._open is not None:
            self._kinds.append(self._open)
            self._open = None

    def build(self) -> AreaObservation:
        self.close_kind()
        return AreaObservation(
            area_name=self.area_name,
            change_status=self.change_status,
            kinds=self._kinds,
        )


class BulletinParser:
    """
    Streaming parser for a single warning bulletin.

    Returns None when the Control or Head block is missing. Only items in
    the municipal warning section are collected.
    """

    def parse(self, data: Union[bytes, str]) -> Optional[BulletinDocument]:
        started_at = datetime.now(timezone.utc)
        parser = ET.XMLPullParser(events=("start", "end"))

        stack: List[_Context] = []
        control: Optional[Dict[str, str]] = None
        head: Optional[Dict[str, str]] = None
        fields: Dict[str, str] = {}
        item: Optional[_ItemBuilder] = None
        observations: List[AreaObservation] = []

        for event, elem in _pull_events(parser, data):
            tag = _local_name(elem.tag)

            if event == "start":
                parent = stack[-1] if stack else None
                if parent is None:
                    context = _Context.DOCUMENT
                else:
                    context = _enter(parent, tag, elem.attrib)
                stack.append(context)
                if context in (_Context.CONTROL, _Context.HEAD):
                    fields = {}
                elif context is _Context.ITEM and tag == "Item":
                    item = _ItemBuilder()
                continue

            context = stack.pop()
            parent = stack[-1] if stack else None

            if context is _Context.CONTROL:
                control = fields
            elif context is _Context.HEAD:
                head = fields
            elif context is _Context.ITEM and tag == "Item" and item is not None:
                observations.append(item.build())
                item = None
                elem.clear()
            elif context is _Context.KIND and item is not None:
                item.close_kind()
            elif parent is _Context.CONTROL or parent is _Context.HEAD:
                fields[tag] = _text(elem)
            elif parent is _Context.AREA and tag == "Name" and item is not None:
                item.area_name = _text(elem)
            elif parent is _Context.ITEM and tag == "ChangeStatus" and item is not None:
                item.change_status = _text(elem)
            elif parent is _Context.KIND and item is not None:
                if tag == "Name":
                    item.kind_name(_text(elem))
                elif tag == "Status":
                    item.kind_status(_text(elem))

        if control is None or head is None:
            logger.warning("Bulletin missing Control or Head block, ignoring document")
            return None

        return BulletinDocument(
            control=ControlBlock(
                title=control.get("Title", ""),
                issued_at=_timestamp_or(control.get("DateTime", ""), started_at, "Control/DateTime"),
                status=control.get("Status", ""),
                publishing_office=control.get("PublishingOffice", ""),
            ),
            head=HeadBlock(
                title=head.get("Title", ""),
                report_time=_timestamp_or(head.get("ReportDateTime", ""), started_at, "Head/ReportDateTime"),
                info_type=head.get("InfoType", ""),
                info_kind=head.get("InfoKind", ""),
            ),
            observations=observations,
        )


def flatten_observation(area: AreaObservation) -> List[WarningObservation]:
    """
    Turn one area's kinds into warning observations.

    An area without kinds means no warnings are in effect. A kind without a
    name is kept only when it carries the no-warnings status.
    """
    if not area.kinds:
        return [WarningObservation(city=area.area_name, warning_kind="", status=NO_WARNINGS_STATUS)]

    result = []
    for kind in area.kinds:
        if kind.kind_name is not None:
            result.append(WarningObservation(city=area.area_name, warning_kind=kind.kind_name, status=kind.status))
        elif kind.status == NO_WARNINGS_STATUS:
            result.append(WarningObservation(city=area.area_name, warning_kind="", status=NO_WARNINGS_STATUS))
        else:
            logger.debug(f"Dropping unnamed kind with status {kind.status!r} for {area.area_name}")
    return result
