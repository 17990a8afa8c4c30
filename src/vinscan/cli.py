"""Replay recorded recognizer output through a scanning session.

Input is JSON lines, one observation per line:

    {"text": "1HGCM82633A004352", "source": "barcode", "hint": "code39",
     "box": [10, 10, 260, 80], "observed_at": 0.15, "frame": 1}

Only ``text`` and ``source`` are required.  ``confidence`` is kept on the
observation as ``raw_confidence`` and does not affect scoring.  When lines
carry ``frame``, consecutive lines of the same frame are submitted together
(barcode first, OCR as fallback).

Usage:
    vinscan-replay observations.jsonl
    vinscan-replay observations.jsonl --preset first
    vinscan-replay observations.jsonl --capacity 5 --policy lenient --log decisions.csv
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from itertools import groupby
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .decision_log import DecisionLog
from .exceptions import InvalidConfigurationError, SessionTerminatedError
from .observation import BoundingBox, RawObservation, ScanSource, Symbology
from .session import PRESETS, ScanSession, SessionConfig


def parse_observation(line: str) -> Tuple[Optional[int], RawObservation]:
    """Parse one JSON line into (frame, observation).

    Raises:
        ValueError: malformed line
    """
    data = json.loads(line)
    if not isinstance(data, dict) or "text" not in data or "source" not in data:
        raise ValueError("observation needs 'text' and 'source'")

    kwargs = {}
    if "hint" in data:
        kwargs["recognizer_hint"] = Symbology(data["hint"])
    if "box" in data:
        kwargs["bounding_box"] = BoundingBox(*data["box"])
    if "observed_at" in data:
        kwargs["observed_at"] = float(data["observed_at"])
    if "confidence" in data:
        kwargs["raw_confidence"] = float(data["confidence"])

    obs = RawObservation(text=str(data["text"]), source=ScanSource(data["source"]), **kwargs)
    return data.get("frame"), obs


def read_observations(path: Path) -> Iterator[Tuple[Optional[int], RawObservation]]:
    with open(path, "r") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield parse_observation(line)
            except (ValueError, TypeError) as e:
                raise ValueError(f"{path}:{lineno}: {e}") from e


def build_config(args: argparse.Namespace) -> SessionConfig:
    if args.config:
        config = SessionConfig.from_file(args.config)
    else:
        config = SessionConfig.from_preset(args.preset)

    overrides = {}
    if args.capacity is not None:
        overrides["capacity"] = args.capacity
    if args.policy is not None:
        overrides["policy"] = args.policy
    if args.min_confidence is not None:
        overrides["min_confidence"] = args.min_confidence
    # replace() re-runs validation
    return replace(config, **overrides)


def replay(
    session: ScanSession,
    observations: List[Tuple[Optional[int], RawObservation]],
) -> int:
    """Feed observations until the session decides; returns how many were used."""
    used = 0
    for frame, group in groupby(observations, key=lambda item: item[0]):
        batch = [obs for _, obs in group]
        try:
            if frame is None:
                for obs in batch:
                    used += 1
                    if session.submit(obs) is not None:
                        return used
            else:
                used += len(batch)
                if session.submit_frame(batch) is not None:
                    return used
        except SessionTerminatedError:
            break
    return used


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Replay recognizer output and print the voted VIN"
    )
    parser.add_argument("input", type=Path, help="JSON-lines observation file")
    parser.add_argument(
        "--preset", choices=sorted(PRESETS), default="vote", help="Session preset"
    )
    parser.add_argument("--config", type=Path, help="JSON session config (overrides --preset)")
    parser.add_argument("--capacity", type=int, help="Samples to collect before deciding")
    parser.add_argument("--policy", choices=["strict", "lenient"], help="Acceptance policy")
    parser.add_argument("--min-confidence", type=float, help="Confidence threshold")
    parser.add_argument("--log", type=Path, help="Append the decision to this CSV file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except InvalidConfigurationError as e:
        parser.error(str(e))

    try:
        observations = list(read_observations(args.input))
    except OSError as e:
        print(f"Error: cannot read {args.input}: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    session = ScanSession(config).start()
    used = replay(session, observations)

    if session.decision is None:
        session.cancel()
        print(
            f"No decision: {len(session.aggregator)}/{config.capacity} samples "
            f"after {used} observations"
        )
        return 1

    decision = session.decision
    print(
        f"VIN: {decision.vin} (evidence {decision.evidence_count}/{config.capacity}, "
        f"mean confidence {decision.mean_confidence:.3f})"
    )

    if args.log:
        log_file = DecisionLog(args.log)
        try:
            log_file.write(session)
        finally:
            log_file.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
