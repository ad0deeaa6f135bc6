from __future__ import annotations

import argparse
import sys
from datetime import datetime
from typing import List, Optional

from vellum.constants import CODEC_NAMES, DEFAULT_CODEC, DEFAULT_STRENGTH, LAYER_COMPRESSED, LAYER_PROTECTED
from vellum.errors import TimeLocked, VellumError
from vellum.fileio import read_file
from vellum.pipeline import Pipeline, producer_of
from vellum.settings import OperationMode, ProtectionCustomSetting, RunSettings, TimeLockSettings
from vellum.timelock import TimeLock


def _parse_instant(text: str) -> datetime:
    """Parse an ISO 8601 instant; a trailing 'Z' means UTC, no offset means local time."""
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 date/time: {text!r}")


def _describe_content(content: int) -> str:
    parts = []
    if content & LAYER_COMPRESSED:
        parts.append("compressed")
    if content & LAYER_PROTECTED:
        parts.append("protected")
    return "+".join(parts) if parts else "plain"


def cmd_run(
    mode: OperationMode,
    source: str,
    output: str,
    *,
    strength: int = DEFAULT_STRENGTH,
    custom_setting: ProtectionCustomSetting = ProtectionCustomSetting.NONE,
    lock_until: Optional[datetime] = None,
    codec: str = DEFAULT_CODEC,
    level: Optional[int] = None,
    seed: Optional[int] = None,
    quiet: bool = False,
    pipeline: Optional[Pipeline] = None,
) -> bool:
    """Run one pipeline mode over a single file.

    Args:
        mode: Operation to apply.
        source: Path of the file to read.
        output: Output base path; the mode's extension is appended.
        strength: Protection strength (1..6, higher = more redundancy).
        custom_setting: Fault injection (protect) or error correction (unlock).
        lock_until: When given on a forward mode, time-lock the output until then.
        codec: Compression codec name for compressing modes.
        level: Optional compression level.
        seed: Seed for fault injection so damage is reproducible.
        quiet: Only print the summary line.

    Prints:
        A "Done: ..." summary on stdout, warnings and errors on stderr.
    """
    settings = RunSettings(
        source_path=source,
        output_path=output,
        mode=mode,
        strength=strength,
        custom_setting=custom_setting,
        time_lock=TimeLockSettings(enabled=lock_until is not None, unlock_at=lock_until),
        codec=codec,
        level=level,
        seed=seed,
    )
    outcome = (pipeline or Pipeline()).attempt(settings)
    if not outcome.ok:
        exc = outcome.error
        if isinstance(exc, TimeLocked):
            print(f"Error: file is {exc}", file=sys.stderr)
        else:
            print(f"Error: {exc}", file=sys.stderr)
        return False

    report = outcome.report
    if not quiet:
        print(f"    steps: {' -> '.join(step.value for step in report.steps)}")
        if report.unlock_at is not None:
            print(f"   locked: until {report.unlock_at.isoformat()}")
        if report.injected_bits:
            print(f" injected: {report.injected_bits} bit error(s)")
        if report.detected_blocks:
            print(
                f"codewords: {report.detected_blocks} damaged, {report.corrected_blocks} corrected, "
                f"{report.uncorrectable_blocks} uncorrectable"
            )
    for warning in report.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    print(
        f"Done: {mode.value} {report.source_path} -> {report.output_path} "
        f"({report.input_size} -> {report.output_size} bytes) in {report.elapsed_ms:.1f} ms"
    )
    return True


def cmd_info(path: str, *, time_lock: Optional[TimeLock] = None) -> bool:
    """Show the envelope header of a file written by a forward mode.

    Args:
        path: Path to the file to inspect.
    """
    lock = time_lock or TimeLock()
    info = lock.inspect(read_file(path))
    producer = producer_of(info.content)
    print(f"File: {path}")
    print(f"  Version: {info.version_major}.{info.version_minor}")
    print(f"  Content: {_describe_content(info.content)}")
    print(f"  Payload: {info.payload_len} bytes")
    if info.time_restricted:
        state = "unlocked" if lock.now() >= info.unlock_at else "locked"
        print(f"  Time lock: until {info.unlock_at.isoformat()} ({state})")
    else:
        print("  Time lock: none")
    if producer is not None:
        print(f"  Restore with: vellum {producer.inverse.value}")
    return True


def _add_common(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("source", help="File to read")
    ap.add_argument("output", help="Output base path (the extension is appended)")
    ap.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")


def _add_strength(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "--strength",
        type=int,
        default=DEFAULT_STRENGTH,
        help=f"Protection strength 1..6; higher adds more redundancy (default {DEFAULT_STRENGTH})",
    )


def _add_forward(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "--lock-until",
        type=_parse_instant,
        help="Time-lock the output until this ISO 8601 instant (e.g. 2030-01-01T00:00:00Z)",
    )


def _add_codec(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--codec", choices=sorted(CODEC_NAMES), default=DEFAULT_CODEC, help="Compression codec")
    ap.add_argument("--level", type=int, help="Compression level (codec specific)")


def _add_inject(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "--inject-errors",
        action="store_true",
        help="Flip one random bit in every codeword after encoding (resilience testing)",
    )
    ap.add_argument("--seed", type=int, help="Seed for --inject-errors")


def _add_correct(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "--correct",
        action="store_true",
        help="Repair single-bit errors per codeword instead of only detecting them",
    )


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="vellum",
        description="Protect, compress and time-lock files",
        epilog="Inverse modes read the time lock envelope first and refuse files made by a different mode.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_protect = sub.add_parser("protect", help="Add error-correction redundancy")
    _add_common(ap_protect)
    _add_strength(ap_protect)
    _add_inject(ap_protect)
    _add_forward(ap_protect)

    ap_unlock = sub.add_parser("unlock", help="Strip error-correction redundancy")
    _add_common(ap_unlock)
    _add_strength(ap_unlock)
    _add_correct(ap_unlock)

    ap_compress = sub.add_parser("compress", help="Compress")
    _add_common(ap_compress)
    _add_codec(ap_compress)
    _add_forward(ap_compress)

    ap_decompress = sub.add_parser("decompress", help="Decompress")
    _add_common(ap_decompress)

    ap_pc = sub.add_parser("protect-compress", help="Compress, then add error-correction redundancy")
    _add_common(ap_pc)
    _add_strength(ap_pc)
    _add_codec(ap_pc)
    _add_inject(ap_pc)
    _add_forward(ap_pc)

    ap_ud = sub.add_parser("unlock-decompress", help="Strip error-correction redundancy, then decompress")
    _add_common(ap_ud)
    _add_strength(ap_ud)
    _add_correct(ap_ud)

    ap_info = sub.add_parser("info", help="Show the envelope header of a file")
    ap_info.add_argument("path", help="File path")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "info":
            cmd_info(args.path)
            return
        mode = OperationMode(args.cmd)
        custom = ProtectionCustomSetting.NONE
        if getattr(args, "inject_errors", False):
            custom = ProtectionCustomSetting.ADD_RANDOM_ERROR
        elif getattr(args, "correct", False):
            custom = ProtectionCustomSetting.CORRECT_ERRORS
        ok = cmd_run(
            mode,
            args.source,
            args.output,
            strength=getattr(args, "strength", DEFAULT_STRENGTH),
            custom_setting=custom,
            lock_until=getattr(args, "lock_until", None),
            codec=getattr(args, "codec", DEFAULT_CODEC),
            level=getattr(args, "level", None),
            seed=getattr(args, "seed", None),
            quiet=args.quiet,
        )
        if not ok:
            sys.exit(2)
    except (VellumError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
