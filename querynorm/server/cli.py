"""Command-line interface for the query normalization service.

Three modes:

- ``--normalize FILE``: normalize a JSON batch of raw queries and print the
  resulting plan (normalized queries plus per-query errors) as JSON
- ``--http``: serve the HTTP API with uvicorn
- default: load ``--config``, register its sources and run the service
  lifecycle in the foreground

Usage
-----
    querynorm --normalize queries.json --from now-7d --to now
    querynorm --http --port 8080
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..adapters import log_adapter_status
from ..config.models import AppConfig, EnvSettings, dumps_json, load_json_file
from ..domain.utils.timestamps import resolve_time_range, utc_now
from ..observability import setup_logging
from .app import QueryService
from .http import create_app, register_sources


def _read_batch(path: Path) -> Dict[str, Any]:
    """Read a batch file: a list of queries or ``{"queries": [...], ...}``."""
    data = load_json_file(path)
    if isinstance(data, list):
        return {"queries": data}
    if isinstance(data, dict) and isinstance(data.get("queries"), list):
        return data
    raise ValueError(f"{path}: expected a JSON list of queries or a 'queries' list")


def normalize_file(
    path: Path,
    start: Optional[str] = None,
    end: Optional[str] = None,
    config: Optional[AppConfig] = None,
) -> Dict[str, Any]:
    """Normalize the batch in ``path`` and return a JSON-ready plan.

    ``start``/``end`` override the batch file's ``from``/``to``; the
    defaults are the last six hours.
    """
    batch = _read_batch(path)
    now = utc_now()
    range_start, range_end = resolve_time_range(
        start or batch.get("from") or "now-6h",
        end or batch.get("to") or "now",
        now=now,
    )
    service = QueryService(
        EnvSettings(),
        dynamic_labels_enabled=bool(config and config.features.dynamic_labels),
    )
    result = service.normalize(batch["queries"], range_start, range_end, now=now)
    queries: List[Dict[str, Any]] = [
        query.model_dump(mode="json", by_alias=True)
        for query in result.successes.values()
    ]
    return {
        "queries": queries,
        "errors": [failure.to_dict() for failure in result.failures],
    }


async def _run(config_path: Path) -> None:
    """Register configured sources and keep the service alive until interrupted."""
    cfg = AppConfig.load(config_path)
    register_sources(cfg)
    log_adapter_status()
    service = QueryService(
        EnvSettings(), dynamic_labels_enabled=cfg.features.dynamic_labels
    )
    await service.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await service.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query normalization service CLI")
    parser.add_argument("--config", help="Path to JSON app config")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
        ],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run HTTP server (requires fastapi/uvicorn)",
    )
    parser.add_argument(
        "--host", default="127.0.0.1", help="HTTP bind host (default 127.0.0.1)"
    )
    parser.add_argument("--port", type=int, default=8080, help="HTTP port")
    parser.add_argument(
        "--normalize",
        metavar="FILE",
        help="Normalize a JSON batch of queries and print the plan",
    )
    parser.add_argument(
        "--from", dest="start", help="Range start for --normalize (e.g. now-6h)"
    )
    parser.add_argument("--to", dest="end", help="Range end for --normalize")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Determine effective log level
    env_level = os.environ.get("QUERYNORM_LOG_LEVEL", "INFO").upper()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env_level)
    # Apply early so subsequent imports use configured level
    setup_logging(effective_level)

    if args.normalize:
        config = AppConfig.load(Path(args.config)) if args.config else None
        try:
            plan = normalize_file(Path(args.normalize), args.start, args.end, config)
        except (OSError, ValueError) as exc:
            parser.exit(2, f"error: {exc}\n")
        sys.stdout.write(dumps_json(plan) + "\n")
        return

    if args.http:
        # Lazy import uvicorn only for HTTP mode
        import importlib

        uvicorn = importlib.import_module("uvicorn")
        if args.config:
            os.environ.setdefault("QUERYNORM_CONFIG", args.config)
        app = create_app()
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,  # type: ignore[attr-defined]
            log_level=effective_level.lower(),
        )
        return

    if not args.config:
        parser.error("--config is required unless --http or --normalize is used")
    asyncio.run(_run(Path(args.config)))


if __name__ == "__main__":
    main()
