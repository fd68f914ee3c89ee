"""URL, host:port and duration parsing with the same rules and messages as the signer's config format."""

from __future__ import annotations

import re
from dataclasses import dataclass

_HOST_ALLOWED = set("-._~!$&'()*+,;=:[]<>\"")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _quote(text: str) -> str:
    """Quote a string with double quotes and backslash escapes."""
    out = []
    for ch in text:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


class URLError(ValueError):
    """A URL that could not be parsed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"parse {_quote(url)}: {reason}")


class DurationError(ValueError):
    """A duration string that could not be parsed."""


@dataclass(frozen=True)
class ParsedURL:
    scheme: str = ""
    opaque: str = ""
    userinfo: str = ""
    host: str = ""
    path: str = ""
    raw_query: str = ""
    fragment: str = ""


def _valid_optional_port(port: str) -> bool:
    if port == "":
        return True
    if not port.startswith(":"):
        return False
    return all(c.isdigit() and c.isascii() for c in port[1:])


def _parse_host(raw: str, host: str) -> str:
    if host.startswith("["):
        end = host.rfind("]")
        if end < 0:
            raise URLError(raw, "missing ']' in host")
        colon_port = host[end + 1:]
        if not _valid_optional_port(colon_port):
            raise URLError(raw, f"invalid port {_quote(colon_port)} after host")
    else:
        i = host.rfind(":")
        if i != -1:
            colon_port = host[i:]
            if not _valid_optional_port(colon_port):
                raise URLError(raw, f"invalid port {_quote(colon_port)} after host")
    for ch in host:
        if ch == "%" or ord(ch) >= 0x80:
            continue
        if ch.isalnum() or ch in _HOST_ALLOWED:
            continue
        raise URLError(raw, f"invalid character {_quote(ch)} in host name")
    return host


def parse_url(raw: str) -> ParsedURL:
    """Parse a URL, raising URLError where it is malformed."""
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in raw):
        raise URLError(raw, "net/url: invalid control character in URL")
    rest, _, fragment = raw.partition("#")

    scheme = ""
    for i, ch in enumerate(rest):
        if ch.isascii() and ch.isalpha():
            continue
        if (ch.isascii() and ch.isdigit()) or ch in "+-.":
            if i == 0:
                break
            continue
        if ch == ":":
            if i == 0:
                raise URLError(raw, "missing protocol scheme")
            scheme, rest = rest[:i].lower(), rest[i + 1:]
        break

    raw_query = ""
    if "?" in rest:
        rest, _, raw_query = rest.partition("?")

    if not rest.startswith("/"):
        if scheme:
            return ParsedURL(scheme=scheme, opaque=rest, raw_query=raw_query, fragment=fragment)
        segment = rest.split("/", 1)[0]
        if ":" in segment:
            raise URLError(raw, "first path segment in URL cannot contain colon")

    userinfo = ""
    host = ""
    if (scheme or not rest.startswith("///")) and rest.startswith("//"):
        authority = rest[2:]
        slash = authority.find("/")
        if slash >= 0:
            authority, rest = authority[:slash], authority[slash:]
        else:
            rest = ""
        at = authority.rfind("@")
        if at >= 0:
            userinfo, authority = authority[:at], authority[at + 1:]
        host = _parse_host(raw, authority)

    return ParsedURL(
        scheme=scheme,
        userinfo=userinfo,
        host=host,
        path=rest,
        raw_query=raw_query,
        fragment=fragment,
    )


def split_host_port(hostport: str) -> tuple[str, str]:
    """Split "host:port" or "[host]:port" into host and port."""

    def fail(msg: str) -> ValueError:
        return ValueError(f"address {hostport}: {msg}")

    i = hostport.rfind(":")
    if i < 0:
        raise fail("missing port in address")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise fail("missing ']' in address")
        if end + 1 == len(hostport):
            raise fail("missing port in address")
        if end + 1 != i:
            if hostport[end + 1] == ":":
                raise fail("too many colons in address")
            raise fail("missing port in address")
        host = hostport[1:end]
        j, k = 1, end + 1
    else:
        host = hostport[:i]
        if ":" in host:
            raise fail("too many colons in address")
        j, k = 0, 0
    if "[" in hostport[j:]:
        raise fail("unexpected '[' in address")
    if "]" in hostport[k:]:
        raise fail("unexpected ']' in address")
    return host, hostport[i + 1:]


_NUMBER = re.compile(r"(\d*)(?:\.(\d*))?")


def parse_duration(text: str) -> float:
    """Parse a duration such as "1.5m" or "500ms" into seconds."""
    invalid = DurationError(f"time: invalid duration {_quote(text)}")
    s = text
    sign = 1.0
    if s[:1] in ("-", "+"):
        if s[0] == "-":
            sign = -1.0
        s = s[1:]
    if s == "0":
        return 0.0
    if s == "":
        raise invalid
    total = 0.0
    while s:
        match = _NUMBER.match(s)
        whole, frac = match.group(1), match.group(2)
        if not whole and not frac:
            raise invalid
        value = float(f"{whole or '0'}.{frac or '0'}")
        s = s[match.end():]
        unit_match = re.match(r"[^0-9.]*", s)
        unit = unit_match.group(0)
        if not unit:
            raise DurationError(f"time: missing unit in duration {_quote(text)}")
        if unit not in _DURATION_UNITS:
            raise DurationError(f"time: unknown unit {_quote(unit)} in duration {_quote(text)}")
        total += value * _DURATION_UNITS[unit]
        s = s[len(unit):]
    return sign * total