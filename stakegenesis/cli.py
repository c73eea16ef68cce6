import argparse
import json
import logging
import os
from typing import List, Optional

from . import protocol
from .config import CHAINS, load_settings
from .errors import CollaboratorFailure, ConfigError, OutputWriteFailure, PayloadError
from .genesis import PROFILES, fragment_digest
from .pipeline import build_reader, generate, write_json_atomic
from .reader import RecordedReader, record
from .tx import ChainKind
from .utils import parse_genesis_time

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _load_fragment(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SystemExit("Expected a JSON object")
    return data


def cmd_generate(args: argparse.Namespace) -> None:
    settings = load_settings(args.chain)
    genesis_time = None
    if args.genesis_time:
        try:
            genesis_time = parse_genesis_time(args.genesis_time)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    reader = RecordedReader.load(args.recording) if args.recording else None
    if reader is not None and reader.kind is not settings.profile.kind:
        raise ConfigError(f"{args.recording} holds {reader.kind.value} transactions, not {args.chain}")
    output = args.output or settings.output
    report = generate(settings, reader=reader, output=output, genesis_time=genesis_time)
    if args.report:
        write_json_atomic(report.to_dict(), args.report)
    print("Stakes:", len(report.stakes))
    print("Rejected:", len(report.rejections))
    print("Total staked:", report.total_staked)
    print("Output:", output)
    print("Digest:", report.digest)


def cmd_fetch(args: argparse.Namespace) -> None:
    settings = load_settings(args.chain)
    data = record(build_reader(settings))
    write_json_atomic(data, args.output)
    print("Transactions:", len(data["transactions"]))
    print("Height:", data["height"])


def cmd_decode_payload(args: argparse.Namespace) -> None:
    kind = PROFILES[args.chain].kind
    try:
        payload = protocol.decode_payload(kind, args.payload)
    except PayloadError as exc:
        print(json.dumps({"reason": exc.reason.value, "detail": exc.detail}, indent=2))
        raise SystemExit(1)
    print(json.dumps({"destination": payload.destination, "validator": payload.validator}, indent=2))


def cmd_encode_payload(args: argparse.Namespace) -> None:
    kind = PROFILES[args.chain].kind
    try:
        if kind is ChainKind.UTXO:
            raw = protocol.encode_utxo_script(args.destination, args.validator)
        else:
            raw = protocol.encode_ledger_payload(args.destination, args.validator)
        protocol.decode_payload(kind, raw.hex())
    except (ValueError, PayloadError) as exc:
        raise SystemExit(f"Invalid payload: {exc}") from exc
    print(raw.hex())


def cmd_digest(args: argparse.Namespace) -> None:
    print(fragment_digest(_load_fragment(args.path)))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stakegenesis")
    p.add_argument("--log-level", default=os.getenv("STAKEGENESIS_LOG_LEVEL", "INFO"))
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("generate", help="build the genesis fragment for one chain")
    s.add_argument("--chain", choices=CHAINS, required=True)
    s.add_argument("--output")
    s.add_argument("--report", help="write a JSON run report to this path")
    s.add_argument("--genesis-time", help="ISO timestamp, defaults to now")
    s.add_argument("--recording", help="replay transactions saved by 'fetch'")
    s.set_defaults(func=cmd_generate)

    s = sub.add_parser("fetch", help="save the vault history for offline runs")
    s.add_argument("--chain", choices=CHAINS, required=True)
    s.add_argument("--output", required=True)
    s.set_defaults(func=cmd_fetch)

    s = sub.add_parser("decode-payload")
    s.add_argument("--chain", choices=CHAINS, required=True)
    s.add_argument("payload", help="OP_RETURN script or memo data, hex")
    s.set_defaults(func=cmd_decode_payload)

    s = sub.add_parser("encode-payload")
    s.add_argument("--chain", choices=CHAINS, required=True)
    s.add_argument("--destination", required=True)
    s.add_argument("--validator", required=True)
    s.set_defaults(func=cmd_encode_payload)

    s = sub.add_parser("digest", help="digest of a fragment, ignoring genesis_time")
    s.add_argument("path")
    s.set_defaults(func=cmd_digest)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=str(args.log_level).upper(), format=LOG_FORMAT)
    try:
        args.func(args)
    except (ConfigError, CollaboratorFailure, OutputWriteFailure) as exc:
        raise SystemExit(f"{type(exc).__name__}: {exc}") from exc


if __name__ == "__main__":
    main()
