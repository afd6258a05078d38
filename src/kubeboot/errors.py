# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/errors.py
from __future__ import annotations

from typing import Optional


class KubebootError(RuntimeError):
    """Base class for bootstrap failures."""


class ConfigurationMissing(KubebootError):
    """Raised when the settings file or a required setting is absent or invalid."""


class TransportUnavailable(KubebootError, ConnectionError):
    """Raised when an SSH session to a node cannot be established."""

    def __init__(self, node: str, reason: str):
        self.node = node
        self.reason = reason
        super().__init__(f"[{node}] cannot open SSH session: {reason}")


class RemoteCommandError(KubebootError):
    """A remote command ran but exited non-zero."""

    def __init__(self, node: str, command: str, exit_code: int, stderr: str = ""):
        self.node = node
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr"
        super().__init__(f"[{node}] command exited {exit_code}: {detail}")


class RemoteStepFailed(KubebootError):
    """A named bootstrap step failed on a node."""

    def __init__(self, node: str, step: str, cause: Optional[BaseException] = None):
        self.node = node
        self.step = step
        self.cause = cause
        msg = f"[{node}] step '{step}' failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class JoinArtifactUnavailable(KubebootError):
    """The join artifact never became available on a worker."""

    def __init__(self, node: str, attempts: int, reason: Optional[str] = None):
        self.node = node
        self.attempts = attempts
        super().__init__(
            f"[{node}] join artifact unavailable: {reason}" if reason
            else f"[{node}] join artifact unavailable after {attempts} attempts"
        )


class UntrustedJoinArtifact(KubebootError):
    """The join artifact does not point at the registered control plane."""
