"""
Reply reconciliation — pull code out of a completion reply and splice it
back into the document it was generated for.
"""
import re
import logging
from typing import Optional

from rhombus.models.document import Position, Range, TextDocument

logger = logging.getLogger(__name__)

FENCED_BLOCK_RE = re.compile(r"```(?:\w+)?\s*\n(.*?)\n```", re.DOTALL)

CODE_LINE_PATTERNS = [
    re.compile(r"^\s*(?:function|const|let|var|class|interface|type|import|export)"),
    re.compile(r"^\s*(?:def|class|import|from|if|for|while|try|except)"),
    re.compile(r"^\s*(?:public|private|protected|static|async|await)"),
    re.compile(r"^\s*[{}()\[\];,]"),
    re.compile(r"^\s*(?://|/\*|#)"),
]

INDENTED_RE = re.compile(r"^\s{2,}")
BRACKETS_RE = re.compile(r"[{}()\[\];]")


def _looks_like_code(line: str) -> bool:
    if not line.strip() or re.match(r"^\s+", line):
        return True
    return any(p.match(line) for p in CODE_LINE_PATTERNS)


def extract_code_from_response(reply: str) -> tuple[Optional[str], str]:
    """
    Find the code in a completion reply.

    Tried in order: the largest fenced block; the whole reply when more
    than 70% of its lines look like code; the largest indented block of
    more than two lines; a short reply containing brackets.

    Returns:
        (code or None, explanation). The explanation is empty when the
        whole reply was taken as code.
    """
    blocks = [m.group(1).strip() for m in FENCED_BLOCK_RE.finditer(reply)]
    if blocks:
        return max(blocks, key=len), reply

    lines = reply.strip().split("\n")
    code_lines = sum(1 for line in lines if _looks_like_code(line))
    if lines and code_lines / len(lines) > 0.7:
        return reply.strip(), ""

    indented: list[str] = []
    current: list[str] = []
    for line in lines:
        if INDENTED_RE.match(line) or not line.strip():
            current.append(line)
            continue
        if len(current) > 2:
            indented.append("\n".join(current).strip())
        current = []
    if len(current) > 2:
        indented.append("\n".join(current).strip())

    if indented:
        return max(indented, key=len), reply

    if len(reply) < 1000 and BRACKETS_RE.search(reply):
        return reply.strip(), ""

    logger.debug("reconcile: no code found in reply")
    return None, reply


def apply_edit(document: TextDocument, start_line: int, end_line: int, code: str) -> str:
    """
    Replace lines [start_line, end_line) of the document with `code`.

    Returns the new document text; the document itself is not changed.
    """
    rng = document.validate_range(Range(Position(start_line, 0), Position(end_line, 0)))
    head = document.text[:document.offset_at(rng.start)]
    tail = document.text[document.offset_at(rng.end):]
    if tail and code and not code.endswith("\n"):
        code += "\n"
    return head + code + tail
