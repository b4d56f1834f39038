"""Printable string extraction from binary content.

Compiled sections (DEX, ARSC, ELF) interleave identifiers and URLs with
opcode bytes. Pattern matchers run over the printable ASCII runs only, joined
into a single space-separated corpus.
"""

import re
from collections.abc import Iterator

MIN_RUN_LENGTH = 4

# Printable ASCII: 0x20 (space) through 0x7e (~).
_PRINTABLE_RUN = re.compile(rb"[\x20-\x7e]+")


def iter_printable_runs(content: bytes, min_length: int = MIN_RUN_LENGTH) -> Iterator[str]:
    """Yield maximal printable ASCII runs of at least ``min_length`` bytes."""
    for match in _PRINTABLE_RUN.finditer(content):
        run = match.group(0)
        if len(run) >= min_length:
            yield run.decode("ascii")


def extract_search_corpus(content: bytes, min_length: int = MIN_RUN_LENGTH) -> str:
    """Join the printable runs of ``content`` with single spaces."""
    return " ".join(iter_printable_runs(content, min_length))
