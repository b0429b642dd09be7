"""Scripted stand-in for the agent CLI used by executor integration tests.

Launched as ``python -m devbot.executor.fake_agent [--scenario FILE] [--record-args FILE]``
followed by the flags the executor appends. A scenario is a JSON object:

``lines``
    stdout lines to emit; objects are serialized, strings are written verbatim.
``stderr``, ``exit_code``
    written to stderr / returned after the lines.
``sleep_seconds``, ``line_delay_seconds``
    delay before the first line / between lines.
``hang``
    block forever after the lines (timeout tests).
``on_resume``
    alternate scenario used when ``--resume`` is passed.

Without a scenario the agent echoes the prompt in a single result event.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Any

FAKE_SESSION_ID = "fake-session"


def main(argv: list[str] | None = None) -> int:
    """Replay a scenario and return its exit code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--scenario")
    parser.add_argument("--record-args")
    parser.add_argument("-p", "--print", dest="prompt", default="")
    parser.add_argument("--output-format", default="text")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--resume", default="")
    parser.add_argument("--model", default="")
    parser.add_argument("--dangerously-skip-permissions", action="store_true")
    args, _unknown = parser.parse_known_args(argv)

    raw_argv = list(sys.argv[1:] if argv is None else argv)
    if args.record_args:
        _record(Path(args.record_args), raw_argv)

    scenario = _load_scenario(args.scenario, prompt=args.prompt)
    if args.resume and isinstance(scenario.get("on_resume"), dict):
        scenario = scenario["on_resume"]

    time.sleep(float(scenario.get("sleep_seconds", 0.0)))
    line_delay = float(scenario.get("line_delay_seconds", 0.0))
    for line in scenario.get("lines", []):
        text = line if isinstance(line, str) else json.dumps(line, ensure_ascii=False)
        sys.stdout.write(text + "\n")
        sys.stdout.flush()
        if line_delay:
            time.sleep(line_delay)

    stderr_text = str(scenario.get("stderr", ""))
    if stderr_text:
        sys.stderr.write(stderr_text)
        sys.stderr.flush()

    while scenario.get("hang"):
        time.sleep(1)

    return int(scenario.get("exit_code", 0))


def _load_scenario(path: str | None, *, prompt: str) -> dict[str, Any]:
    if not path:
        return {
            "lines": [
                {"type": "result", "result": f"echo: {prompt}", "session_id": FAKE_SESSION_ID},
            ],
        }
    payload = json.loads(Path(path).read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def _record(path: Path, argv: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps({"argv": argv, "cwd": os.getcwd()}) + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
