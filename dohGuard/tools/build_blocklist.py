"""Compile an ad-block style rule file into a JSON blocklist."""
from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.traceback import install as install_rich_traceback

from dohGuard.filtering.blocklist import read_rules
from dohGuard.logging_config import get_logger

install_rich_traceback()
console = Console()
logger = get_logger("tools")


def compile_rules(rules_path: Path, output_path: Path) -> int:
    """Write the compiled blocklist for ``rules_path``; return the domain count.

    ``output_path`` must be a ``.json`` file other than the rule file, since
    the server parses every non-JSON path as rules.
    """
    if output_path.suffix.lower() != ".json":
        raise ValueError(f"Output {output_path} must end in .json")
    if output_path.resolve() == rules_path.resolve():
        raise ValueError(f"Output {output_path} would overwrite the rule file")

    with rules_path.open(encoding="utf-8", newline="") as fh:
        text = fh.read()
    domains: List[str] = sorted(read_rules(text))

    document = {
        "generated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "source": str(rules_path),
        "count": len(domains),
        "domains": domains,
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")

    logger.info(
        f"Compiled {len(domains)} domains into {output_path}",
        extra={"source": str(rules_path), "blocklist_size": len(domains), "outcome": "success"}
    )
    return len(domains)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compile a ||domain^ rule file into a dohGuard blocklist")
    parser.add_argument(
        "--rules",
        default=os.getenv("DOHGUARD_RULES", "filter.txt"),
        help="Path to the filter rule file",
    )
    parser.add_argument(
        "--output",
        default=os.getenv("DOHGUARD_COMPILED_BLOCKLIST", "blocklist.json"),
        help="Where to write the compiled blocklist",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    rules_path = Path(args.rules)
    output_path = Path(args.output)

    try:
        count = compile_rules(rules_path, output_path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.error(
            f"Cannot compile {rules_path}: {exc}",
            extra={"source": str(rules_path), "outcome": "error", "error_type": type(exc).__name__}
        )
        console.print(f"[red]Cannot read rule file {rules_path}:[/red] {exc}")
        return 1
    except ValueError as exc:
        logger.error(str(exc), extra={"source": str(rules_path), "outcome": "error", "error_type": "ValueError"})
        console.print(f"[red]{exc}")
        return 1

    console.print(f"[green]Generated {output_path} with {count} domains.", highlight=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
