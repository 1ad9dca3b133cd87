"""shell_agent.proposals

Best-effort extraction of command proposals from assistant text.

Syntax: `<Terminal>command</Terminal>`, tag names case-insensitive. The parser
never raises: anything it cannot read with confidence (unbalanced or nested
tags, an empty block) makes the whole reply a `NoProposal`, and the prose is
still delivered.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from .conversation import render_terminal_block


_TERM_BLOCK_RE = re.compile(r"(?is)<terminal>(.*?)</terminal>")
_TAG_RE = re.compile(r"(?i)<(/?)terminal>")


@dataclass(frozen=True)
class NoProposal:
    reason: str = "none"


@dataclass(frozen=True)
class Proposals:
    commands: tuple[str, ...]


ParseResult = Union[NoProposal, Proposals]


def extract_terminal_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    for m in _TERM_BLOCK_RE.finditer(text or ""):
        inner = (m.group(1) or "").strip()
        if inner:
            blocks.append(inner)
    return blocks


def strip_terminal_blocks(text: str) -> str:
    # Remove the blocks entirely; the explanation around them remains.
    t = _TERM_BLOCK_RE.sub("", text or "")
    t = re.sub(r"\n{3,}", "\n\n", t).strip()
    return t


def parse_proposals(text: str) -> ParseResult:
    depth = 0
    for m in _TAG_RE.finditer(text or ""):
        closing = bool(m.group(1))
        if closing:
            if depth == 0:
                return NoProposal("unbalanced")
            depth -= 1
        else:
            if depth:
                return NoProposal("nested")
            depth += 1
    if depth:
        return NoProposal("unbalanced")

    raw = [(m.group(1) or "").strip() for m in _TERM_BLOCK_RE.finditer(text or "")]
    if not raw:
        return NoProposal()
    if not all(raw):
        return NoProposal("empty block")
    return Proposals(tuple(raw))


def extract_code_blocks(text: str) -> list[str]:
    """Contents of fenced code blocks (``` ... ```), in order, non-empty only."""

    blocks: list[str] = []
    current: list[str] = []
    in_block = False
    for line in (text or "").splitlines():
        if line.lstrip().startswith("```"):
            if in_block:
                body = "\n".join(current).strip()
                if body:
                    blocks.append(body)
                current = []
            in_block = not in_block
        elif in_block:
            current.append(line)
    return blocks


__all__ = [
    "NoProposal",
    "ParseResult",
    "Proposals",
    "extract_code_blocks",
    "extract_terminal_blocks",
    "parse_proposals",
    "render_terminal_block",
    "strip_terminal_blocks",
]
