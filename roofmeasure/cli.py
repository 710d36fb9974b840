"""
Command line front end.

  roofmeasure --address "1600 Grant St, Denver, CO" --api-key AIzaSy...
  roofmeasure --lat 39.7392 --lng -104.9903 --lidar-key ir_... --reports reports.json
  roofmeasure --manual-area 1500 --manual-pitch 30
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Optional, Sequence

from roofmeasure.config import Credentials, extract_api_key_from_image
from roofmeasure.engine import MeasurementEngine
from roofmeasure.errors import RoofMeasureError
from roofmeasure.geocoding import geocode_address
from roofmeasure.models import MeasurementReport
from roofmeasure.pitch import pitch_to_ratio
from roofmeasure.resolver import tier_accuracy, tier_name


# ==============================================================================
# OUTPUT
# ==============================================================================

def print_summary(report: MeasurementReport, address: Optional[str] = None,
                  lat: Optional[float] = None, lng: Optional[float] = None):
    """Print a formatted console summary of the report."""
    m = report.measurement
    W = 60
    print("\n" + "=" * W)
    print("  ROOF MEASUREMENT REPORT")
    print("=" * W)
    if address:
        print(f"  Property:   {address}")
    if lat is not None and lng is not None:
        print(f"  Coords:     ({lat}, {lng})")
    print(f"  Tier:       {report.tier_used} - {tier_name(report.tier_used)} ({tier_accuracy(report.tier_used)})")
    print(f"  Source:     {m.source.value}")
    quality = m.imagery_quality.value if m.imagery_quality else "n/a"
    print(f"  Quality:    {quality} | Confidence: {report.confidence.score}% ({report.confidence.level.value})")
    print("-" * W)

    if report.manual_tracing_required:
        print("\n  MANUAL TRACING REQUIRED")
        print("    No automated source could measure this roof.")
    else:
        print("\n  AREA MEASUREMENTS")
        print(f"    Footprint (2D):  {m.total_area_sq_ft:>10,.0f} sq ft  ({m.total_area_sq_m:,.1f} sq m)")
        print(f"    True Area (3D):  {m.adjusted_area_sq_ft:>10,.0f} sq ft")
        print(f"    Multiplier:      {m.pitch_multiplier:>10.3f}x")
        print(f"    Squares:         {m.squares:>10.1f}")

        print("\n  PITCH & STRUCTURE")
        print(f"    Pitch:           {m.pitch_degrees:.1f} deg ({pitch_to_ratio(m.pitch_degrees)})")
        print(f"    Segments:        {m.segment_count} ({m.complexity.value})")

    if report.calibration:
        c = report.calibration
        kind = "exact match" if c.exact_match else f"{c.based_on_reports} reports nearby"
        print(f"\n  CALIBRATION")
        print(f"    Factor:          {c.calibration_factor:.3f} ({kind})")

    if report.tiered and report.tiered.higher_tier_failures:
        print(f"\n  HIGHER TIERS UNAVAILABLE")
        for failure in report.tiered.higher_tier_failures:
            print(f"    [{failure.tier}] {failure.tier_name}: {failure.reason}")

    if report.confidence.factors:
        print(f"\n  CONFIDENCE FACTORS")
        for factor in report.confidence.factors:
            print(f"    {factor.impact:>+4d}  {factor.name}: {factor.description}")

    if report.accuracy and report.accuracy.issues:
        a = report.accuracy
        print(f"\n  ACCURACY CHECK ({a.overall_score:.0f}/100, action: {a.recommended_action.value})")
        for issue in a.issues:
            print(f"    [{issue.severity.value}] {issue.description}")

    if m.warning:
        print(f"\n  WARNING: {m.warning}")

    if report.recommendations:
        print(f"\n  RECOMMENDATIONS")
        for rec in report.recommendations:
            print(f"    - {rec}")

    print("\n" + "=" * W)


def to_json(report: MeasurementReport) -> str:
    """Serialize the report to JSON."""
    return json.dumps(asdict(report), indent=2, default=str)


def save_json(report: MeasurementReport, output_path: str):
    """Save the report as JSON."""
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(to_json(report))
    print(f"\n[JSON] Report saved to: {output_path}")


# ==============================================================================
# CLI ENTRY POINT
# ==============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roofmeasure",
        description="Roof area and pitch measurement with tiered sources, calibration and confidence scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Measure by address:
  roofmeasure --address "1600 Grant St, Denver, CO" --api-key AIzaSy...

  # Measure by coordinates, with LiDAR and historical reports for calibration:
  roofmeasure --lat 39.7392 --lng -104.9903 --lidar-key ir_... --reports reports.json

  # Extract API key from screenshot:
  roofmeasure --address "1600 Grant St, Denver, CO" --ocr-image keys.png

  # Query every source and cross-validate them:
  roofmeasure --lat 39.7392 --lng -104.9903 --api-key AIzaSy... --all-sources

  # Manually traced footprint (no API calls):
  roofmeasure --manual-area 1500 --manual-pitch 30
        """
    )

    parser.add_argument("--address", type=str, help="Property street address to measure")
    parser.add_argument("--lat", type=float, help="Latitude coordinate")
    parser.add_argument("--lng", type=float, help="Longitude coordinate")
    parser.add_argument("--api-key", type=str, help="Google API key (Solar + Maps)")
    parser.add_argument("--maps-key", type=str, help="Separate Google Maps API key for geocoding (optional)")
    parser.add_argument("--lidar-key", type=str, help="Instant Roofer API key (LiDAR tier)")
    parser.add_argument("--ocr-image", type=str, help="Extract Google API key from image file via OCR")
    parser.add_argument("--reports", type=str, help="JSON file of historical reports used for calibration")
    parser.add_argument("--manual-area", type=float, help="Manually traced footprint area in sq ft")
    parser.add_argument("--manual-pitch", type=float, help="Pitch in degrees for --manual-area (default: 20)")
    parser.add_argument("--all-sources", action="store_true",
                        help="Query every source in parallel and cross-validate them")
    parser.add_argument("--json", type=str, help="Save full JSON report to file")
    parser.add_argument("--quiet", action="store_true", help="Suppress progress output")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _configure_logging(quiet: bool, verbose: bool):
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[Sequence[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.quiet, args.verbose)

    def progress(message: str):
        if not args.quiet:
            print(message)

    # Determine credentials
    env = Credentials.from_env()
    api_key = args.api_key

    if not api_key and args.ocr_image:
        api_key = extract_api_key_from_image(args.ocr_image)
        if not api_key:
            print("ERROR: Could not extract API key from image.")
            sys.exit(1)

    credentials = Credentials(
        google_api_key=api_key or env.google_api_key,
        instant_roofer_api_key=args.lidar_key or env.instant_roofer_api_key,
        maps_api_key=args.maps_key or env.maps_api_key,
    )

    try:
        engine = MeasurementEngine(credentials=credentials)

        if args.reports:
            progress(f"\n[0/3] Loading historical reports: {args.reports}")
            count = engine.calibration_store.load_reports_json(args.reports)
            progress(f"  -> {count} reports loaded")

        lat, lng = args.lat, args.lng

        # Manual path
        if args.manual_area is not None:
            progress(f"\n[1/1] Manual measurement: {args.manual_area:,.0f} sq ft footprint")
            report = engine.submit_manual(args.manual_area, args.manual_pitch, lat, lng, args.address)
        else:
            if lat is None or lng is None:
                if not args.address:
                    print("ERROR: Provide --address or --lat/--lng coordinates.")
                    parser.print_help()
                    sys.exit(1)
                if not credentials.geocoding_key:
                    print("ERROR: Geocoding an address needs a Google API key.")
                    print("  Use --api-key, --maps-key, --ocr-image, or set GOOGLE_API_KEY env var.")
                    sys.exit(1)
                progress(f"\n[1/3] Geocoding address: {args.address}")
                coords = geocode_address(args.address, credentials.geocoding_key)
                if not coords:
                    print(f"ERROR: Failed to geocode address: {args.address}")
                    sys.exit(1)
                lat, lng = coords
                progress(f"  -> ({lat}, {lng})")
            else:
                progress(f"\n[1/3] Using coordinates: ({lat}, {lng})")

            if args.all_sources:
                progress("[2/3] Querying all sources in parallel...")
                report = engine.measure_all_sources(lat, lng, args.address)
            else:
                progress("[2/3] Resolving best available tier...")
                report = engine.measure(lat, lng, args.address)
            progress(f"[3/3] Tier {report.tier_used} ({tier_name(report.tier_used)}), "
                     f"confidence {report.confidence.score}%")

    except (RoofMeasureError, OSError, json.JSONDecodeError) as e:
        print(f"\nERROR: {e}")
        sys.exit(1)

    print_summary(report, args.address, lat, lng)

    if args.json:
        save_json(report, args.json)


if __name__ == "__main__":
    main()
