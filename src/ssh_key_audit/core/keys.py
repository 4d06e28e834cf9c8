"""authorized_keys line parsing."""

from __future__ import annotations

from collections.abc import Iterator

from ssh_key_audit.core.base import KeyRecord

# Plain public-key algorithms (RFC 4253, RFC 5656, RFC 8709)
_BASE_TYPES = (
    "ssh-rsa",
    "ssh-dss",
    "ssh-ed25519",
    "ssh-ed448",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
)

# FIDO/U2F security-key algorithms (OpenSSH extensions)
_SK_TYPES = (
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
)

_CERT_SUFFIX = "-cert-v01@openssh.com"

KEY_TYPES: frozenset[str] = frozenset(
    _BASE_TYPES
    + _SK_TYPES
    + ("sk-ssh-ed25519", "sk-ecdsa-sha2-nistp256")
    + tuple(t + _CERT_SUFFIX for t in _BASE_TYPES + _SK_TYPES)
)


def is_key_line(line: str) -> bool:
    """Return True for lines that should be parsed (not blank, not a comment)."""
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def _fields(line: str) -> Iterator[tuple[int, str]]:
    """Yield (offset, token) for whitespace-separated fields.

    Double-quoted runs are kept inside one field, so an option value such as
    command="echo ssh-rsa" is never split into a bare key-type token.
    """
    i = 0
    n = len(line)
    while i < n:
        while i < n and line[i].isspace():
            i += 1
        if i >= n:
            return
        start = i
        in_quotes = False
        while i < n and (in_quotes or not line[i].isspace()):
            if line[i] == "\\" and in_quotes and i + 1 < n:
                i += 2
                continue
            if line[i] == '"':
                in_quotes = not in_quotes
            i += 1
        yield start, line[start:i]


def parse_key_line(line: str, key_types: frozenset[str] = KEY_TYPES) -> KeyRecord | None:
    """Parse one authorized_keys entry.

    Returns None when no field matches the key-type vocabulary, or when the
    matching field is not followed by a key blob.
    """
    for offset, token in _fields(line):
        if token in key_types:
            options = line[:offset].strip()
            break
    else:
        return None

    rest = line[offset:].split()
    if len(rest) < 2:
        return None

    return KeyRecord(
        type=rest[0],
        blob=rest[1],
        comment=" ".join(rest[2:]),
        options=options,
    )
