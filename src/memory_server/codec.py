"""Line codec for stored messages.

A message is stored as ``"{role}: {content}"``. Decoding splits on the first
delimiter only, so content may itself contain ``": "``. Lines without the
delimiter are dropped: corrupt or legacy entries must not break a read.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .models import DELIMITER, MemoryMessage

logger = logging.getLogger(__name__)


def encode(message: MemoryMessage) -> str:
    return f"{message.role}{DELIMITER}{message.content}"


def decode(line: str) -> Optional[MemoryMessage]:
    """Return the message stored in ``line`` or ``None`` if it is malformed."""
    if not isinstance(line, str):
        return None
    role, sep, content = line.partition(DELIMITER)
    if not sep:
        return None
    return MemoryMessage(role=role, content=content)


def decode_many(lines: Iterable[str]) -> List[MemoryMessage]:
    out: List[MemoryMessage] = []
    for line in lines:
        msg = decode(line)
        if msg is None:
            logger.debug("Dropping undecodable memory line: %r", line)
            continue
        out.append(msg)
    return out
