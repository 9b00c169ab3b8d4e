"""Suffix blocklist: rule-file loading and domain matching."""
from __future__ import annotations

import json
from pathlib import Path
from typing import FrozenSet, Iterable, Iterator, Optional, Union

from dohGuard.logging_config import get_logger

logger = get_logger("filtering")

RULE_PREFIX = "||"
RULE_SUFFIX = "^"


class BlocklistLoadError(RuntimeError):
    """Raised when a blocklist source cannot be read or decoded."""


class Blocklist:
    """Immutable set of blocked names matched by domain suffix.

    Listing ``ads.example.com`` blocks the name itself and every name below
    it, while ``example.com`` stays allowed. Safe to share between requests
    without locking since nothing writes to it after construction.
    """

    __slots__ = ("_domains",)

    def __init__(self, domains: Iterable[str] = ()) -> None:
        self._domains: FrozenSet[str] = frozenset(d.lower() for d in domains if d)

    @property
    def domains(self) -> FrozenSet[str]:
        return self._domains

    def __len__(self) -> int:
        return len(self._domains)

    def __contains__(self, domain: object) -> bool:
        return domain in self._domains

    def __iter__(self) -> Iterator[str]:
        return iter(self._domains)

    def __repr__(self) -> str:
        return f"Blocklist(size={len(self._domains)})"

    def is_blocked(self, domain: Optional[str]) -> bool:
        """Check ``domain`` and each of its parents, most specific first."""
        if not domain:
            return False
        labels = domain.lower().split(".")
        while labels:
            if ".".join(labels) in self._domains:
                return True
            labels = labels[1:]
        return False


def parse_rules(lines: Iterable[str]) -> FrozenSet[str]:
    """Collect ``<domain>`` from every ``||<domain>^`` line; skip the rest."""
    domains = set()
    for line in lines:
        if line.startswith(RULE_PREFIX) and line.endswith(RULE_SUFFIX):
            domain = line[len(RULE_PREFIX):-len(RULE_SUFFIX)].lower()
            if domain:
                domains.add(domain)
    return frozenset(domains)


def read_rules(text: str) -> FrozenSet[str]:
    """Parse rule-file text; lines end at LF, with an optional CR before it."""
    return parse_rules(line[:-1] if line.endswith("\r") else line for line in text.split("\n"))


def _read_compiled(path: Path, text: str) -> FrozenSet[str]:
    try:
        payload = json.loads(text)
        entries = payload["domains"]
        if not isinstance(entries, list):
            raise TypeError("'domains' must be a list")
        return frozenset(str(d).lower() for d in entries if d)
    except (ValueError, KeyError, TypeError) as exc:
        raise BlocklistLoadError(f"Invalid compiled blocklist {path}: {exc}") from exc


def load_blocklist(path: Union[str, Path]) -> Blocklist:
    """Load a blocklist from a rule file or a compiled ``.json`` document."""
    bl_path = Path(path)
    try:
        with bl_path.open(encoding="utf-8", newline="") as fh:
            text = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        logger.error(
            f"Cannot read blocklist {bl_path}: {exc}",
            extra={"source": str(bl_path), "outcome": "error", "error_type": type(exc).__name__},
        )
        raise BlocklistLoadError(f"Cannot read blocklist {bl_path}: {exc}") from exc

    if bl_path.suffix.lower() == ".json":
        domains = _read_compiled(bl_path, text)
    else:
        domains = read_rules(text)

    blocklist = Blocklist(domains)
    logger.info(
        f"Loaded {len(blocklist)} blocked domains",
        extra={"source": str(bl_path), "blocklist_size": len(blocklist), "outcome": "success"},
    )
    return blocklist
