"""CLI for weather model circuit lifecycle and proving."""
import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from zkweather.core.exceptions import ZKWeatherError  # noqa: E402
from zkweather.core.logging_config import LoggingConfig  # noqa: E402
from zkweather.services.weather_features import generate_test_features  # noqa: E402
from zkweather.services.weather_model_service import WeatherModelService  # noqa: E402
from zkweather.utils.proof_format import serialize_proof  # noqa: E402


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _load_features(path):
    """Feature map from a JSON file, either flat or under a "features" key"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("features"), dict):
        return data["features"]
    return data


async def cmd_status(service, args):
    status = await service.get_status()
    _print_json(status.to_dict())
    return 0


async def cmd_init(service, args):
    result = await service.initialize()
    _print_json(result.model_dump())
    return 0 if result.success else 1


async def cmd_prove(service, args):
    if args.features:
        features = _load_features(args.features)
    else:
        features = generate_test_features(seed=args.seed)

    artifact = await service.generate_proof(features, timeout_ms=args.timeout_ms)
    payload = serialize_proof({
        "proof": artifact.proof,
        "inputs": artifact.inputs,
        "metadata": artifact.metadata,
        "verifier": service.format_for_verifier(artifact),
    })
    if args.out:
        Path(args.out).write_text(payload, encoding="utf-8")
        print(f"Proof written to {args.out} (prediction: {artifact.metadata.prediction})")
    else:
        print(payload)
    return 0


async def cmd_export_verifier(service, args):
    source = await service.export_verifier(args.out)
    if args.out:
        print(f"Verifier contract written to {args.out}")
    else:
        print(source)
    return 0


async def cmd_report(service, args):
    print(await service.get_report())
    return 0


async def cmd_info(service, args):
    _print_json(service.get_model_info().model_dump())
    return 0


def build_parser():
    p = argparse.ArgumentParser(prog="circuits")
    sub = p.add_subparsers(dest="cmd")
    s = sub.add_parser("status", help="Show weather model circuit status")
    s.set_defaults(func=cmd_status)
    s = sub.add_parser("init", help="Compile and set up the weather model if needed")
    s.set_defaults(func=cmd_init)
    s = sub.add_parser("prove", help="Generate a weather proof")
    source = s.add_mutually_exclusive_group(required=True)
    source.add_argument("--features", "-f", help="JSON file with the radar feature map")
    source.add_argument("--sample", action="store_true", help="Use random development features")
    s.add_argument("--seed", type=int, default=None, help="Seed for --sample")
    s.add_argument("--out", "-o", help="Write the proof JSON to this file")
    s.add_argument("--timeout-ms", type=int, default=None, help="Proof generation timeout (ms)")
    s.set_defaults(func=cmd_prove)
    s = sub.add_parser("export-verifier", help="Export the verifier contract")
    s.add_argument("--out", "-o", help="Write the contract to this file")
    s.set_defaults(func=cmd_export_verifier)
    s = sub.add_parser("report", help="Show status, performance and error reports")
    s.set_defaults(func=cmd_report)
    s = sub.add_parser("info", help="Show weather model information")
    s.set_defaults(func=cmd_info)
    return p


def main(argv=None, service=None):
    p = build_parser()
    args = p.parse_args(argv)
    if not hasattr(args, "func"):
        p.print_help()
        return 2

    LoggingConfig.configure()
    service = service or WeatherModelService()
    try:
        return asyncio.run(args.func(service, args))
    except ZKWeatherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
