import logging

from multidict import CIMultiDict

logger = logging.getLogger(__name__)

# query parameter -> outbound header, applied after the process defaults
CONVENIENCE_PARAMS = (
    ("ua", "User-Agent"),
    ("referer", "Referer"),
    ("origin", "Origin"),
    ("cookie", "Cookie"),
    ("accept", "Accept"),
    ("accept_language", "Accept-Language"),
    ("accept_encoding", "Accept-Encoding"),
    ("authorization", "Authorization"),
)

CONDITIONAL_PARAMS = (
    ("if_none_match", "If-None-Match"),
    ("if_modified_since", "If-Modified-Since"),
)

HOP_BY_HOP = frozenset((
    "connection",
    "keep-alive",
    "proxy-connection",
    "upgrade",
    "transfer-encoding",
    "host",
))


def canonical_header_name(name):
    """'user-agent' -> 'User-Agent'"""
    return "-".join(part[:1].upper() + part[1:] for part in name.split("-"))


def param_to_header_name(param, prefix):
    """Turn a prefixed query parameter into a header name.

    The prefix is matched case-insensitively and removed, the rest is split on
    underscores, each piece gets an upper-cased first character and the pieces
    are joined with hyphens: ``h_x_foo`` -> ``X-Foo``. Returns None when the
    parameter does not carry the prefix or nothing is left after it.
    """
    if not param.lower().startswith(prefix):
        return None
    raw = param[len(prefix):]
    if not raw:
        return None
    return "-".join(part[:1].upper() + part[1:] for part in raw.split("_"))


def merge_headers(*layers):
    """Ordered merge of header layers, later layers win.

    Names compare case-insensitively; the surviving entry takes the casing of
    the layer that wrote it last.
    """
    merged = CIMultiDict()
    for layer in layers:
        for name, value in layer.items():
            merged.popall(name, None)
            merged.add(canonical_header_name(name), value)
    return merged


def strip_hop_by_hop(headers):
    stripped = CIMultiDict()
    for name, value in headers.items():
        if name.lower() in HOP_BY_HOP:
            logger.debug(f"dropping hop-by-hop header {name}")
            continue
        stripped.add(name, value)
    return stripped


def convenience_overrides(params):
    layer = CIMultiDict()
    for param, header in CONVENIENCE_PARAMS:
        value = params.get(param)
        if value:
            layer[header] = value
    return layer


def prefixed_overrides(params, prefix):
    layer = CIMultiDict()
    for param, value in params.items():
        name = param_to_header_name(param, prefix)
        if name and value:
            layer.popall(name, None)
            layer.add(name, str(value))
    return layer


def conditional_overrides(params):
    layer = CIMultiDict()
    for param, header in CONDITIONAL_PARAMS:
        value = params.get(param)
        if value:
            layer[header] = value
    return layer


def resolve_headers(defaults, params, prefix="h_"):
    """Build the header set for one upstream request.

    Precedence, lowest first: process defaults, named convenience parameters,
    prefixed arbitrary parameters, conditional validators. Hop-by-hop names are
    removed from the result whatever layer supplied them.
    """
    headers = merge_headers(
        defaults,
        convenience_overrides(params),
        prefixed_overrides(params, prefix),
        conditional_overrides(params),
    )
    headers = strip_hop_by_hop(headers)
    logger.debug(f"resolved upstream headers: {dict(headers)}")
    return headers
