import argparse
import json
import os
import sys
from pathlib import Path

from popradius.settings import load_settings


def _common_options(*, suppress_defaults: bool) -> argparse.ArgumentParser:
    # Subcommand copies must not reset an option that was given before the subcommand name,
    # so their defaults are suppressed and only the top-level parser supplies real ones.
    def default(value: object) -> object:
        return argparse.SUPPRESS if suppress_defaults else value

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=default(os.getenv("POPRADIUS_CONFIG", "config/default.yaml")),
        help="Path to config YAML",
    )
    common.add_argument("--profile", default=default("default"), help="Profile name (config/profiles/<name>.yaml)")
    common.add_argument(
        "--dataset", default=default(None), help="Region GeoJSON path or URL (overrides dataset.location)"
    )
    return common


def _build_parser() -> argparse.ArgumentParser:
    top_level = _common_options(suppress_defaults=False)
    common = _common_options(suppress_defaults=True)

    parser = argparse.ArgumentParser(prog="popradius", description="PopRadius CLI", parents=[top_level])

    sub = parser.add_subparsers(dest="command", required=True)
    query = sub.add_parser("query", parents=[common], help="Find the minimal radius around one point")
    query.add_argument("--lng", type=float, required=True, help="Center longitude (degrees)")
    query.add_argument("--lat", type=float, required=True, help="Center latitude (degrees)")
    query.add_argument("--year", default="2019", help="Population year (label, key, or field name)")
    query.add_argument("--target", type=float, default=None, help="Target population (default: year reference)")
    query.add_argument("--circle", action="store_true", help="Include the disc polygon as GeoJSON")
    sub.add_parser("inspect", parents=[common], help="Summarize the region dataset")
    sub.add_parser("serve", parents=[common], help="JSON-lines session over stdin/stdout")
    return parser


def _print_json(data: object) -> None:
    print(json.dumps(data, ensure_ascii=False), flush=True)


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(Path(args.config), profile=args.profile)
    if args.dataset:
        settings["dataset"]["location"] = args.dataset

    if args.command == "inspect":
        from popradius.regions.load import load_region_store

        store = load_region_store(settings)
        stats = store.stats
        _print_json(
            {
                "regions": len(store),
                "extent": store.extent(),
                "years": [
                    {"label": y.label, "field": y.field, "total": store.total_population(y), "reference": y.reference}
                    for y in store.years
                ],
                "stats": stats.__dict__ if stats else None,
            }
        )
        return

    if args.command == "query":
        from popradius.service.engine import QueryEngine

        engine = QueryEngine(settings)
        ready = engine.handle({"type": "init"})
        if ready.get("type") != "ready":
            _print_json(ready)
            raise SystemExit(1)
        msg = {
            "type": "compute",
            "jobId": 1,
            "center": {"lng": args.lng, "lat": args.lat},
            "attributeSelector": args.year,
            "includeCircle": bool(args.circle),
        }
        if args.target is not None:
            msg["targetValue"] = args.target
        response = engine.handle(msg)
        _print_json(response)
        if response.get("type") == "error":
            raise SystemExit(1)
        return

    if args.command == "serve":
        from popradius.service.engine import QueryEngine

        engine = QueryEngine(settings)
        if settings["dataset"].get("location"):
            _print_json(engine.handle({"type": "init"}))
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except ValueError as exc:
                _print_json({"type": "error", "jobId": None, "message": f"Invalid JSON: {exc}", "errorType": "InvalidQueryError"})
                continue
            _print_json(engine.handle(message))
        return

    raise SystemExit(f"Unknown command: {args.command}")
