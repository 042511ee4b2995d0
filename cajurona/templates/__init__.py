"""
Canned WhatsApp replies kept as text files beside this module.

Placeholders use str.format fields ({name}, {group_name}, ...). Texts are
read once per process; WhatsApp *bold* markup is kept as written.
"""

from functools import lru_cache
from pathlib import Path

_DIR = Path(__file__).parent

REPLIES = ("greeting", "help", "unknown", "welcome")


@lru_cache(maxsize=None)
def _text(name: str) -> str:
    if name not in REPLIES:
        raise ValueError(f"Unknown reply template: {name!r}")
    return (_DIR / f"{name}.txt").read_text(encoding="utf-8").strip()


def render_reply(name: str, /, **fields: object) -> str:
    """Fill a reply template. A missing placeholder raises KeyError."""
    text = _text(name)
    return text.format(**fields) if fields else text
