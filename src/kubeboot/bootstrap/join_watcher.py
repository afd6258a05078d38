#!/usr/bin/env python3
# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""
Worker-side join watcher for the push transport.

Uploaded to each worker and started in the background. It announces
itself with a ``ready`` marker, waits for the join artifact to appear at
its local path, runs it with sudo, deletes it, and records its progress in
``<state-dir>/state`` (waiting, joining, joined, failed) so the
orchestrator can follow along.

Standard library only: the worker has nothing but python3 installed.
"""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
import time
from typing import Callable, Optional

WAITING = "waiting"
JOINING = "joining"
JOINED = "joined"
FAILED = "failed"

EXIT_JOIN_FAILED = 1
EXIT_TIMED_OUT = 2


def _log(msg: str) -> None:
    ts = time.strftime("%Y-%m-%dT%H:%M:%S")
    print(f"[{ts}] {msg}", flush=True)


class JoinWatcher:
    def __init__(
        self,
        artifact: str,
        state_dir: str,
        *,
        interval: float = 5.0,
        timeout: Optional[float] = None,
        verbosity: int = 5,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.artifact = artifact
        self.state_dir = state_dir
        self.interval = interval
        self.timeout = timeout
        self.verbosity = verbosity
        self._run = run
        self._sleep = sleep
        self._clock = clock
        self.state = WAITING

    @property
    def ready_path(self) -> str:
        return os.path.join(self.state_dir, "ready")

    @property
    def state_path(self) -> str:
        return os.path.join(self.state_dir, "state")

    def _set_state(self, state: str, detail: str = "") -> None:
        self.state = state
        tmp = self.state_path + ".tmp"
        with open(tmp, "w") as f:
            f.write(state + ("\n" + detail if detail else "") + "\n")
        os.replace(tmp, self.state_path)
        _log(f"state={state}{' ' + detail if detail else ''}")

    def mark_ready(self) -> None:
        os.makedirs(self.state_dir, exist_ok=True)
        self._set_state(WAITING)
        with open(self.ready_path, "w") as f:
            f.write(f"{os.getpid()}\n")

    def wait_for_artifact(self) -> bool:
        """Block until the artifact exists. False when the timeout (if any) passes first."""
        deadline = None if self.timeout is None else self._clock() + self.timeout
        while not os.path.isfile(self.artifact):
            if deadline is not None and self._clock() >= deadline:
                return False
            self._sleep(self.interval)
        return True

    def join(self) -> int:
        self._set_state(JOINING)
        try:
            with open(self.artifact) as f:
                command = f.read().strip()
            if not command.startswith("kubeadm join"):
                self._set_state(FAILED, "artifact is not a kubeadm join command")
                return EXIT_JOIN_FAILED
            cp = self._run(["sudo", "-n", "bash", "-c", f"{command} --v={self.verbosity}"])
        finally:
            # Single use: the token is never run twice from the same copy.
            if os.path.exists(self.artifact):
                os.remove(self.artifact)

        if cp.returncode != 0:
            self._set_state(FAILED, f"kubeadm join exited {cp.returncode}")
            return EXIT_JOIN_FAILED
        self._set_state(JOINED)
        return 0

    def run(self) -> int:
        self.mark_ready()
        _log(f"waiting for {self.artifact}")
        if not self.wait_for_artifact():
            self._set_state(FAILED, f"no artifact after {self.timeout}s")
            return EXIT_TIMED_OUT
        _log("found join command, joining cluster")
        return self.join()


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Wait for a kubeadm join command and run it once.")
    p.add_argument("--artifact", required=True, help="path the join command will be written to")
    p.add_argument("--state-dir", required=True, help="directory for the ready/state markers")
    p.add_argument("--interval", type=float, default=5.0)
    p.add_argument("--timeout", type=float, default=None, help="give up after this many seconds (default: never)")
    args = p.parse_args(argv)
    return JoinWatcher(
        args.artifact,
        args.state_dir,
        interval=args.interval,
        timeout=args.timeout,
    ).run()


if __name__ == "__main__":
    sys.exit(main())
