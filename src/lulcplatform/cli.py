# src/lulcplatform/cli.py
from __future__ import annotations

"""
CLI for the per-region LULC platform (Sentinel-2 + reference labels + random forest).

Commands:
  - run: classifies every region (Earth Engine) and prints the per-region status table.
  - show-config: prints the effective settings (defaults < .env/LULC_* < settings.yaml).

Examples:
  lulcplatform run --regions-asset projects/my-project/assets/cities --tiles
  lulcplatform run --regions-geojson ./data/cities.geojson --workers 2 --timeout 900
  LULC_DATE_START=2025-06-01 lulcplatform show-config
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import yaml

from .config import Settings, get_settings
from .composition.di import build_engine, build_orchestrator, build_region_source, build_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

# ----------------------
# Local helpers
# ----------------------

def _settings(args: argparse.Namespace) -> Settings:
    s = build_settings(Path(args.root)) if args.root else get_settings()
    upd: Dict[str, object] = {}
    if getattr(args, "regions_asset", None):
        upd["regions_asset"] = args.regions_asset
    if getattr(args, "workers", None) is not None:
        upd["max_workers"] = args.workers
    if getattr(args, "timeout", None) is not None:
        upd["region_timeout_s"] = args.timeout
    if getattr(args, "project", None):
        upd["ee_project"] = args.project
    if getattr(args, "no_cloud_mask", False):
        upd["apply_cloud_mask"] = False
    if upd:
        # full re-validation, model_copy would skip the validators
        s = Settings(**{**s.model_dump(), **upd})
    return s


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


# ----------------------
# Commands
# ----------------------

def cmd_run(args: argparse.Namespace) -> int:
    s = _settings(args)
    sink = None
    if args.tiles:
        from .adapters.earthengine import EarthEngineMapSink
        sink = EarthEngineMapSink()

    engine = build_engine(s)
    source = build_region_source(s, Path(args.regions_geojson) if args.regions_geojson else None)
    regions = source.list_regions()
    if args.only:
        wanted = set(args.only)
        regions = [r for r in regions if r.region_id in wanted]
        if not regions:
            raise ValueError(f"no region matches --only {sorted(wanted)}")

    result = build_orchestrator(s, engine, sink).run(regions)

    print(result.to_frame().to_string(index=False))
    if sink is not None:
        for rid, urls in sink.tiles.items():
            for layer, url in urls.items():
                print(f"{rid}\t{layer}\t{url}")
    return 2 if result.failed() else 0


def cmd_show_config(args: argparse.Namespace) -> int:
    s = _settings(args)
    print(yaml.safe_dump(json.loads(s.model_dump_json()), sort_keys=False, allow_unicode=True))
    return 0


# ----------------------
# Parser
# ----------------------

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lulcplatform", description="Per-region LULC classification (Sentinel-2, random forest)")
    p.add_argument("--root", help="project root holding 00-Config/settings.yaml (optional)")
    p.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING, ...")
    sub = p.add_subparsers(dest="cmd", required=True)

    # run
    pr = sub.add_parser("run", help="classifies every region")
    src = pr.add_mutually_exclusive_group()
    src.add_argument("--regions-asset", help="Earth Engine FeatureCollection asset id")
    src.add_argument("--regions-geojson", help="GeoJSON file with one feature per region")
    pr.add_argument("--only", nargs="*", default=None, help="region ids to keep")
    pr.add_argument("--workers", type=int, help="regions processed in parallel")
    pr.add_argument("--timeout", type=float, help="per-region timeout in seconds")
    pr.add_argument("--project", help="Earth Engine cloud project")
    pr.add_argument("--no-cloud-mask", action="store_true", help="skip the SCL cloud mask")
    pr.add_argument("--tiles", action="store_true", help="publish and print map tile URLs")
    pr.set_defaults(func=cmd_run)

    # show-config
    pc = sub.add_parser("show-config", help="prints the effective settings as YAML")
    pc.set_defaults(func=cmd_show_config)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except Exception as ex:
        print(f"[ERROR] {ex}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
