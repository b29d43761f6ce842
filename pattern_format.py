"""Turn free-text pattern output into display blocks.

Model output is loosely structured: numbered section titles, ``- Label: value``
rows, plain bullets and prose, often sprinkled with markdown emphasis. Each
line is cleaned and matched against an ordered list of rules; the first rule
that accepts it decides the block type.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional, Tuple, Union

MARKUP_RE = re.compile(r"[*_#`]")
HEADER_RE = re.compile(r"^\d+\.")
HEADER_PREFIX_RE = re.compile(r"^\d+\.\s*")


@dataclass(frozen=True)
class SectionHeader:
    title: str
    kind: str = field(default="header", init=False)


@dataclass(frozen=True)
class LabeledRow:
    label: str
    value: str
    kind: str = field(default="labeled", init=False)


@dataclass(frozen=True)
class BulletRow:
    text: str
    kind: str = field(default="bullet", init=False)


@dataclass(frozen=True)
class Paragraph:
    text: str
    kind: str = field(default="paragraph", init=False)


DisplayBlock = Union[SectionHeader, LabeledRow, BulletRow, Paragraph]


def clean_line(line: str) -> str:
    return MARKUP_RE.sub("", line).strip()


def _header(line: str) -> SectionHeader:
    return SectionHeader(HEADER_PREFIX_RE.sub("", line, count=1))


def _labeled(line: str) -> LabeledRow:
    label, value = line[1:].split(":", 1)
    return LabeledRow(label.strip(), value.strip())


def _bullet(line: str) -> BulletRow:
    return BulletRow(line[1:].strip())


RULES: List[Tuple[Callable[[str], bool], Callable[[str], DisplayBlock]]] = [
    (lambda s: HEADER_RE.match(s) is not None, _header),
    (lambda s: s.startswith("-") and ":" in s, _labeled),
    (lambda s: s.startswith("-"), _bullet),
]


def format_line(line: str) -> Optional[DisplayBlock]:
    """Return the block for one raw line, or None for a blank one."""
    cleaned = clean_line(line)
    if not cleaned:
        return None
    for accepts, build in RULES:
        if accepts(cleaned):
            return build(cleaned)
    return Paragraph(cleaned)


def format_pattern(text: str) -> List[DisplayBlock]:
    blocks: List[DisplayBlock] = []
    for line in (text or "").split("\n"):
        block = format_line(line)
        if block is not None:
            blocks.append(block)
    return blocks


def blocks_to_json(blocks: List[DisplayBlock]) -> List[dict]:
    return [asdict(b) for b in blocks]
