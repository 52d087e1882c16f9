"""Line format for the text a wallet signs at login.

    Nonce: 5f0c...
    Address: 9xQe...
    ExpiresAt: 2026-10-19T12:00:00.000Z

Keys are title-cased on the way out and lower-camel-cased on the way
back. There is no escaping: values must not contain newlines, and a
value ends at the next ": " on its line, so such values do not survive
the round trip.
"""
from typing import Dict, Mapping

SEPARATOR = ": "


def build_message(fields: Mapping[str, str]) -> str:
    """Render fields as ``Key: value`` lines in mapping order."""
    lines = []
    for key, value in fields.items():
        lines.append(f"{key[:1].upper()}{key[1:]}{SEPARATOR}{value}")
    return "\n".join(lines)


def parse_message(message: str) -> Dict[str, str]:
    """
    Parse ``Key: value`` lines back into a dict keyed by lowerCamelCase.

    Lines without a key or without a separator are skipped. A value is
    the text between the first and second separator.
    """
    data: Dict[str, str] = {}

    for line in message.split("\n"):
        parts = line.split(SEPARATOR)
        key = parts[0]
        if not key or len(parts) < 2:
            continue
        data[key[:1].lower() + key[1:]] = parts[1]

    return data
