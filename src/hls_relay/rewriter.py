"""Absolutize the references inside a single-variant HLS playlist.

Only media URI lines and the ``URI="..."`` attribute of ``#EXT-X-KEY`` and
``#EXT-X-MAP`` are touched. Every other line, including anything that cannot be
classified, is passed through as-is.
"""
import enum
import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin

logger = logging.getLogger(__name__)

EXTM3U = "#EXTM3U"
EXT_X_KEY = "#EXT-X-KEY"
EXT_X_MAP = "#EXT-X-MAP"
EXT_X_STREAM_INF = "#EXT-X-STREAM-INF"
EXT_X_MEDIA = "#EXT-X-MEDIA:"

MISSING_HEADER_WARNING = "Upstream response does not start with #EXTM3U"
MULTI_VARIANT_NOTICE = "Master playlist detected; this proxy is single-variant only."

BOM = "\ufeff"
LINE_BREAK = re.compile(r"\r\n|\r|\n")
URI_ATTRIBUTE = re.compile(r'\bURI="([^"]+)"', re.IGNORECASE)
ABSOLUTE_URL = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


class LineKind(enum.Enum):
    BLANK = "blank"
    COMMENT = "comment"
    KEY_OR_MAP = "key-or-map"
    MEDIA_URI = "media-uri"


@dataclass(frozen=True)
class RewrittenManifest:
    text: str
    warning: str = None
    notice: str = None


def is_absolute_url(uri):
    return bool(ABSOLUTE_URL.match(uri))


def classify_line(line):
    if not line.strip():
        return LineKind.BLANK
    if line.startswith(EXT_X_KEY) or line.startswith(EXT_X_MAP):
        return LineKind.KEY_OR_MAP
    if line.startswith("#"):
        return LineKind.COMMENT
    return LineKind.MEDIA_URI


def absolutize(uri, base_url):
    if is_absolute_url(uri):
        return uri
    return urljoin(base_url, uri)


def rewrite_line(line, base_url):
    kind = classify_line(line)

    if kind is LineKind.KEY_OR_MAP:
        m = URI_ATTRIBUTE.search(line)
        if not m:
            return line
        uri = m.group(1)
        if is_absolute_url(uri):
            return line
        return f'{line[:m.start()]}URI="{urljoin(base_url, uri)}"{line[m.end():]}'

    if kind is LineKind.MEDIA_URI:
        uri = line.strip()
        if is_absolute_url(uri):
            return line
        return urljoin(base_url, uri)

    return line


def is_multi_variant(lines):
    return any(ln.startswith(EXT_X_STREAM_INF) or ln.startswith(EXT_X_MEDIA) for ln in lines)


def rewrite_manifest(text, base_url) -> RewrittenManifest:
    text = text.removeprefix(BOM)
    lines = LINE_BREAK.split(text)

    warning = None
    notice = None
    if not text.lstrip().startswith(EXTM3U):
        logger.warning(f"playlist from {base_url} does not start with {EXTM3U}")
        warning = MISSING_HEADER_WARNING
    if is_multi_variant(lines):
        logger.info(f"playlist from {base_url} is multi-variant, relaying without variant rewriting")
        notice = MULTI_VARIANT_NOTICE

    rewritten = [rewrite_line(line, base_url) for line in lines]
    return RewrittenManifest("\n".join(rewritten), warning, notice)
