"""
Parsers that turn raw upstream subtitle payloads into canonical segments.

Three encodings are supported:
- Segment-JSON (YouTube "json3"): {"events": [{"tStartMs", "dDurationMs", "segs": [{"utf8"}]}]}
- Cue-XML (YouTube timedtext "srv1"): <transcript><text start="s" dur="s">...</text></transcript>
- VTT-like cue text: "00:01.000 --> 00:03.500" followed by text lines

Every parser is a pure function with no network or retry awareness. Output is
stably sorted by offset, so already ordered input keeps its original order;
out-of-order input is sorted and reported with a subtitle_out_of_order event.
"""

import html
import json
import re
from typing import Callable, Dict, List, Optional, Union

from error_handler import SubtitleParseError
from log_events import evt
from logging_setup import get_logger
from models import InvalidSegment, RawSubtitlePayload, SubtitleFormat, TranscriptSegment

logger = get_logger(__name__)

Body = Union[str, bytes]


def _as_text(body: Body) -> str:
    if isinstance(body, bytes):
        return body.decode('utf-8', errors='replace').lstrip('\ufeff')
    if isinstance(body, str):
        return body.lstrip('\ufeff')
    raise SubtitleParseError(f"Unsupported payload type {type(body).__name__}")


def _make_segment(text: str, offset: float, duration: float) -> Optional[TranscriptSegment]:
    """Build a segment, or None when the trimmed text is empty."""
    text = text.strip()
    if not text:
        return None
    return TranscriptSegment(text=text, offset_seconds=offset, duration_seconds=duration)


def _ordered(segments: List[TranscriptSegment], format_name: str) -> List[TranscriptSegment]:
    """Stable sort by offset, reporting upstream payloads that arrive out of order."""
    ordered = sorted(segments, key=lambda s: s.offset_seconds)
    moved = sum(1 for before, after in zip(segments, ordered) if before is not after)
    if moved:
        evt("subtitle_out_of_order", format=format_name, moved=moved, segment_count=len(segments))
        logger.warning(f"{format_name} payload had {moved} segments out of order; sorted by offset")
    return ordered


# --- Segment-JSON ---

def _number(value, field_name: str, default: Optional[float] = None) -> float:
    if value is None:
        if default is None:
            raise SubtitleParseError(f"Segment event is missing {field_name}")
        return default
    if isinstance(value, bool):
        raise SubtitleParseError(f"Segment event has a non-numeric {field_name}: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SubtitleParseError(f"Segment event has a non-numeric {field_name}: {value!r}")


def parse_segment_json(body: Body) -> List[TranscriptSegment]:
    """
    Parse a segment-event JSON document.

    Events without text fragments carry non-caption metadata (window
    styling, line breaks) and are skipped. Fragments of one event are
    concatenated with no separator. Times are milliseconds.
    """
    text = _as_text(body)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise SubtitleParseError("Segment JSON is not valid JSON", signal=str(e)[:100])

    if not isinstance(document, dict):
        raise SubtitleParseError(f"Segment JSON root is {type(document).__name__}, expected object")

    events = document.get('events', [])
    if not isinstance(events, list):
        raise SubtitleParseError("Segment JSON 'events' is not a list")

    segments = []
    for event in events:
        if not isinstance(event, dict):
            raise SubtitleParseError(f"Segment JSON event is {type(event).__name__}, expected object")

        fragments = event.get('segs')
        if not fragments:
            continue
        if not isinstance(fragments, list):
            raise SubtitleParseError("Segment JSON 'segs' is not a list")

        joined = "".join(
            fragment.get('utf8', '') for fragment in fragments
            if isinstance(fragment, dict) and isinstance(fragment.get('utf8'), str)
        )
        if not joined.strip():
            continue

        start_ms = _number(event.get('tStartMs'), 'tStartMs')
        duration_ms = _number(event.get('dDurationMs'), 'dDurationMs', default=0.0)

        try:
            segment = _make_segment(joined, start_ms / 1000, duration_ms / 1000)
        except InvalidSegment as e:
            evt("subtitle_segment_dropped", format="segment_json", reason=str(e))
            continue
        if segment:
            segments.append(segment)

    return _ordered(segments, "segment_json")


# --- Cue-XML ---

_XML_INLINE_PATTERN = re.compile(r'<text\s+start="([^"]+)"\s+dur="([^"]+)"[^>]*>([^<]*)</text>')
_XML_CDATA_PATTERN = re.compile(r'<text\s+start="([^"]+)"\s+dur="([^"]+)"[^>]*>\s*<!\[CDATA\[([\s\S]*?)\]\]>\s*</text>')
_XML_LOOSE_PATTERN = re.compile(r'<text\b([^>]*)>([\s\S]*?)</text>')
# srv3 paragraphs carry milliseconds: <p t="1200" d="2160">...</p>
_XML_PARAGRAPH_PATTERN = re.compile(r'<p\b([^>]*)>([\s\S]*?)</p>')
_XML_ATTR_PATTERN = re.compile(r'([A-Za-z_][-\w]*)\s*=\s*"([^"]*)"')

_CDATA_PATTERN = re.compile(r'<!\[CDATA\[([\s\S]*?)\]\]>')
_TAG_PATTERN = re.compile(r'</?[A-Za-z][^<>]*>')
_STYLE_TAG_PATTERN = re.compile(r'</?(?:font|b|i|u)\b[^<>]*>', re.IGNORECASE)
_ENTITY_PATTERN = re.compile(r'&(amp|lt|gt|quot|apos|nbsp|#39|#\d+|#[xX][0-9a-fA-F]+);')
_TIMEDTEXT_ROOT_PATTERN = re.compile(r'<(?:\?xml|transcript|timedtext)\b', re.IGNORECASE)

_NAMED_ENTITIES = {
    'amp': '&',
    'lt': '<',
    'gt': '>',
    'quot': '"',
    'apos': "'",
    '#39': "'",
    'nbsp': ' ',
}


def _replace_entity(match: re.Match) -> str:
    name = match.group(1)
    if name in _NAMED_ENTITIES:
        return _NAMED_ENTITIES[name]
    try:
        if name[1] in 'xX':
            return chr(int(name[2:], 16))
        return chr(int(name[1:]))
    except (ValueError, OverflowError):
        return match.group(0)


def decode_entities(text: str, max_passes: int = 3) -> str:
    """
    Decode markup entities, &nbsp; and numeric character references.

    srv1 payloads are frequently double-escaped (&amp;#39;), so decoding
    repeats until the text stops changing.
    """
    for _ in range(max_passes):
        decoded = _ENTITY_PATTERN.sub(_replace_entity, text)
        if decoded == text:
            break
        text = decoded
    return text


def _clean_cue_text(raw: str) -> str:
    text = _CDATA_PATTERN.sub(r'\1', raw)
    text = _TAG_PATTERN.sub('', text)
    text = decode_entities(text)
    # srv1 escapes its styling tags; any other decoded markup is caption text
    text = _STYLE_TAG_PATTERN.sub('', text)
    return " ".join(text.split())


def _attribute_cues(pattern: re.Pattern, text: str, start_attr: str, dur_attr: str):
    cues = []
    for raw_attrs, body in pattern.findall(text):
        attrs = dict(_XML_ATTR_PATTERN.findall(raw_attrs))
        if start_attr in attrs:
            cues.append((attrs[start_attr], attrs.get(dur_attr, ''), body))
    return cues


# Tried in order; the first variant that yields at least one cue wins
_XML_VARIANTS = [
    ("inline", lambda text: _XML_INLINE_PATTERN.findall(text), 1.0),
    ("cdata", lambda text: _XML_CDATA_PATTERN.findall(text), 1.0),
    ("loose", lambda text: _attribute_cues(_XML_LOOSE_PATTERN, text, 'start', 'dur'), 1.0),
    ("srv3", lambda text: _attribute_cues(_XML_PARAGRAPH_PATTERN, text, 't', 'd'), 1000.0),
]


def _xml_segments(matches, divisor: float, variant: str) -> List[TranscriptSegment]:
    segments = []
    for start_raw, dur_raw, raw_text in matches:
        try:
            start = float(start_raw) / divisor
            duration = float(dur_raw) / divisor if dur_raw else 0.0
            segment = _make_segment(_clean_cue_text(raw_text), start, duration)
        except (ValueError, InvalidSegment) as e:
            evt("subtitle_segment_dropped", format="cue_xml", variant=variant, reason=str(e)[:100])
            continue
        if segment:
            segments.append(segment)
    return segments


def parse_cue_xml(body: Body) -> List[TranscriptSegment]:
    """
    Parse XML cue markup.

    Tolerates inline text, CDATA-wrapped text and loose attribute order,
    applied in that precedence; srv3 <p t d> paragraphs are the last resort.
    """
    text = _as_text(body)

    for variant, find_cues, divisor in _XML_VARIANTS:
        cues = find_cues(text)
        if cues:
            logger.debug(f"Cue XML matched {len(cues)} cues with '{variant}' pattern")
            return _ordered(_xml_segments(cues, divisor, variant), "cue_xml")

    if not text.strip() or not _TIMEDTEXT_ROOT_PATTERN.search(text[:500]):
        raise SubtitleParseError(
            "Payload is not a timedtext XML document",
            signal=" ".join(text[:80].split()) or "empty body",
        )

    # Well-formed timedtext document with no cues
    return []


# --- VTT-like cue text ---

_VTT_TAG_PATTERN = re.compile(r'<[^>]+>')


def parse_vtt_timestamp(value: str) -> float:
    """
    Parse [HH:]MM:SS[.mmm] into seconds.

    Raises ValueError for anything else.
    """
    token = value.strip().split()[0] if value.strip() else ''
    token = token.replace(',', '.')
    parts = token.split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Malformed timestamp: {value!r}")

    seconds_part = parts[-1]
    whole, _, fraction = seconds_part.partition('.')
    fields = parts[:-1] + [whole]
    if not all(f.isdigit() for f in fields) or (fraction and not fraction.isdigit()):
        raise ValueError(f"Malformed timestamp: {value!r}")

    if len(parts) == 3:
        hours, minutes = int(parts[0]), int(parts[1])
    else:
        hours, minutes = 0, int(parts[0])

    seconds = float(f"{whole}.{fraction}" if fraction else whole)
    return hours * 3600 + minutes * 60 + seconds


def parse_vtt(body: Body) -> List[TranscriptSegment]:
    """
    Parse WebVTT-like cue text.

    A line containing '-->' opens a cue; following non-empty lines form its
    text, joined by a single space, until a blank line or the next cue.
    A cue with a malformed timestamp is dropped without aborting the parse.
    """
    text = _as_text(body)
    lines = text.splitlines()

    if text.strip() and '-->' not in text and not text.lstrip().startswith('WEBVTT'):
        raise SubtitleParseError(
            "Payload is not VTT cue text",
            signal=" ".join(text[:80].split()),
        )

    segments = []
    active: Optional[Dict] = None
    in_note = False

    def close_active():
        if active is None or active.get('dropped'):
            return
        segment = _make_segment(" ".join(active['lines']), active['offset'], active['duration'])
        if segment:
            segments.append(segment)

    for raw_line in lines:
        line = raw_line.strip()

        if not line:
            close_active()
            active = None
            in_note = False
            continue

        if '-->' in line:
            close_active()
            in_note = False
            left, _, right = line.partition('-->')
            try:
                start = parse_vtt_timestamp(left)
                end = parse_vtt_timestamp(right)
            except ValueError as e:
                evt("subtitle_segment_dropped", format="vtt_cue", reason=str(e)[:100])
                active = {'dropped': True}
                continue

            duration = end - start
            if duration < 0:
                evt("subtitle_negative_duration", format="vtt_cue", offset=start, end=end)
                logger.warning(f"VTT cue at {start:.3f}s ends before it starts; clamping duration to 0")
                duration = 0.0

            active = {'offset': start, 'duration': duration, 'lines': []}
            continue

        if line.startswith('NOTE'):
            in_note = True
            continue

        # Header lines (WEBVTT, Kind:, Language:) precede the first cue, where active is None
        if in_note or active is None or active.get('dropped'):
            continue

        cleaned = " ".join(html.unescape(_VTT_TAG_PATTERN.sub('', line)).split())
        if cleaned:
            active['lines'].append(cleaned)

    close_active()
    return _ordered(segments, "vtt_cue")


# --- Dispatch ---

PARSERS: Dict[SubtitleFormat, Callable[[Body], List[TranscriptSegment]]] = {
    SubtitleFormat.SEGMENT_JSON: parse_segment_json,
    SubtitleFormat.CUE_XML: parse_cue_xml,
    SubtitleFormat.VTT_CUE: parse_vtt,
}


def parse_payload(payload: RawSubtitlePayload) -> List[TranscriptSegment]:
    """Parse a payload with the parser selected by its format tag."""
    parser = PARSERS.get(payload.format)
    if parser is None:
        raise SubtitleParseError(f"No parser for format {payload.format!r}")
    return parser(payload.body)
