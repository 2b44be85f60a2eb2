#!/usr/bin/env python3
"""Main entry point for the presence dashboard.

Runs the complete pipeline over a directory of JSON exports:
snapshots -> normalization -> liveness / encounters / activity / stats -> report + charts.
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from presence_engine.engine import PresenceEngine, load_config
from presence_engine.geocoding import NominatimPlaceLookup, PlaceCache, ReverseGeocoder
from presence_engine.models import ActivityRange
from presence_engine.report import DashboardReportGenerator
from presence_engine.snapshot import JsonSnapshotProvider
from presence_engine.timeutils import epoch_ms_from_dt, tzinfo_from_name
from presence_engine.visualizer import ActivityVisualizer


def _parse_now(text: Optional[str], tz_name: str) -> int:
    if not text:
        return epoch_ms_from_dt(datetime.now(timezone.utc))
    s = text.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    return epoch_ms_from_dt(datetime.fromisoformat(s), tzinfo_from_name(tz_name))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Derive presence dashboard views from JSON exports")
    parser.add_argument("--config", default=str(Path(__file__).parent / "config.yaml"),
                        help="YAML configuration file")
    parser.add_argument("--data", default=str(Path(__file__).parent / "data"),
                        help="Directory containing <dataset>.json exports")
    parser.add_argument("--now", default=None,
                        help="Reference time (ISO-8601); defaults to the current time")
    parser.add_argument("--range", dest="activity_range", default=None,
                        choices=[r.value for r in ActivityRange],
                        help="Activity chart range")
    parser.add_argument("--output", default=None, help="Output directory")
    parser.add_argument("--geocode", action="store_true",
                        help="Resolve place names for encounter locations (Nominatim, 1 req/s)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None):
    """Run complete derivation pipeline."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    print("Presence Dashboard")
    print("=" * 60)
    print()

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Note: Config file not found at {config_path}, using defaults")
        config = load_config()
    else:
        config = load_config(str(config_path))

    data_path = Path(args.data)
    if not data_path.exists():
        print(f"Error: Data directory not found at {data_path}")
        print("Please create data/ and add <dataset>.json exports.")
        return 1

    try:
        now = _parse_now(args.now, config['timezone'])
        engine = PresenceEngine(JsonSnapshotProvider(data_path, tzinfo_from_name(config['timezone'])), config)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    print("Deriving dashboard views...")
    result = engine.derive(now, args.activity_range)

    geo_cfg = config['geocoding']
    geocoder = ReverseGeocoder(
        NominatimPlaceLookup(
            user_agent=geo_cfg['user_agent'],
            language=geo_cfg['language'],
            timeout_seconds=geo_cfg['timeout_seconds'],
            min_interval_seconds=geo_cfg['min_interval_seconds'],
        ),
        PlaceCache(ttl_seconds=geo_cfg['ttl_hours'] * 3600.0),
        precision=geo_cfg['precision'],
    )
    if args.geocode and result.encounters.available:
        midpoints = [e.midpoint for e in result.encounters.value if e.midpoint is not None]
        print(f"Resolving {len(midpoints)} encounter locations...")
        geocoder.lookup_many(midpoints)

    output_path = Path(args.output or config['output']['directory'])
    output_path.mkdir(parents=True, exist_ok=True)

    report_gen = DashboardReportGenerator(config, geocoder)
    report_gen.generate_report(result, output_path / "dashboard_report.txt")

    visualizer = ActivityVisualizer(config)
    if result.activity.available:
        visualizer.create_activity_chart(
            result.activity.value,
            output_path / f"activity_{result.activity_range.value}.png",
            title=f"Activity ({result.activity_range.value})",
        )
    if result.stats.available:
        online = result.liveness.value.online_count if result.liveness.available else None
        visualizer.create_stats_bar_chart(result.stats.value, output_path / "stats.png", online_count=online)

    # Summary
    print("\n" + "=" * 60)
    print("DERIVATION COMPLETE")
    print("=" * 60)
    print()
    for name in ("liveness", "encounters", "users", "activity", "stats", "emotions", "recent"):
        derived = getattr(result, name)
        status = "ok" if derived.available else f"UNAVAILABLE ({derived.unavailable_reason})"
        print(f"  {name:<11} {status}")
    if result.liveness.available:
        print(f"\n  Online now: {result.liveness.value.online_count}")
    if result.encounters.available:
        print(f"  Encounters today: {len(result.encounters.value)}")
    for dataset, count in result.dropped.items():
        if count:
            print(f"  Dropped {count} unparseable records from {dataset}")
    print()
    print(f"All outputs saved to: {output_path}")
    print()

    return 0


if __name__ == "__main__":
    sys.exit(main())
