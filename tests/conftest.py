import itertools
import json
import shlex
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from kubeboot.bootstrap.node.models import DetachedHandle, Node, Role, SessionResult
from kubeboot.config.models import BootstrapConfig, ClusterSettings, NodeSpec
from kubeboot.errors import RemoteCommandError, TransportUnavailable

CP_ADDRESS = "10.0.0.10"
TOKEN = "abcdef.0123456789abcdef"
CA_HASH = "sha256:" + "a" * 64
JOIN_LINE = (
    f"kubeadm join {CP_ADDRESS}:6443 --token {TOKEN} "
    f"--discovery-token-ca-cert-hash {CA_HASH}"
)

_seq = itertools.count()

# Response = (exit_code, stdout, stderr); a handler may also be
# callable(session, command) -> Response.
Response = Tuple[int, str, str]


class FakeSession:
    """
    Records every command and keeps a per-host dict of files. Responses are
    matched by substring, first match wins; anything unmatched succeeds.
    """

    def __init__(
        self,
        node: Node,
        *,
        files: Optional[Dict[str, str]] = None,
        responses: Optional[List[Tuple[str, object]]] = None,
        log: Optional[list] = None,
        on_detach: Optional[Callable[["FakeSession", str], None]] = None,
    ):
        self.node = node
        self.files = files if files is not None else {}
        self.responses = responses if responses is not None else []
        self.log = log if log is not None else []
        self.on_detach = on_detach
        self.commands: List[str] = []
        self.sudo_commands: List[str] = []
        self.writes: List[Tuple[str, int, bool]] = []
        self.detached: List[Tuple[str, str]] = []
        self.running = True
        self.stopped: List[int] = []
        self.closed = False

    def _record(self, what: str) -> None:
        self.log.append((next(_seq), self.node.hostname, what))

    def _builtin(self, command: str) -> Response:
        if not command.startswith(("test -e ", "rm -f ", "mv -f ", "cat ")):
            return (0, "", "")
        argv = shlex.split(command)
        if command.startswith("test -e "):
            return (0 if argv[-1] in self.files else 1, "", "")
        if command.startswith("rm -f ") and len(argv) == 3:
            self.files.pop(argv[-1], None)
            return (0, "", "")
        if command.startswith("mv -f "):
            src, dst = argv[2], argv[3]
            if src not in self.files:
                return (1, "", f"mv: cannot stat '{src}'")
            self.files[dst] = self.files.pop(src)
            return (0, "", "")
        if command.startswith("cat ") and len(argv) == 2:
            if argv[1] in self.files:
                return (0, self.files[argv[1]], "")
            return (1, "", f"cat: {argv[1]}: No such file or directory")
        return (0, "", "")

    def execute(self, command, *, sudo=False, timeout=None, check=True, redact=None):
        self.commands.append(command)
        if sudo:
            self.sudo_commands.append(command)
        self._record(command)
        for pattern, resp in self.responses:
            if pattern in command:
                rc, out, err = resp(self, command) if callable(resp) else resp
                break
        else:
            rc, out, err = self._builtin(command)
        shown = command.replace(redact, "****") if redact else command
        if check and rc != 0:
            raise RemoteCommandError(self.node.hostname, shown, rc, err)
        return SessionResult(command=shown, exit_code=rc, stdout=out, stderr=err)

    def detach(self, command, log_path):
        self.detached.append((command, log_path))
        self._record(f"detach {command}")
        if self.on_detach:
            self.on_detach(self, command)
        return DetachedHandle(node=self.node.hostname, pid=4242, log_path=log_path)

    def is_running(self, handle):
        return self.running

    def stop(self, handle):
        self._record(f"stop {handle.pid}")
        self.stopped.append(handle.pid)
        self.running = False

    def put_text(self, content, remote_path, *, mode=0o644, sudo=False):
        self._record(f"put {remote_path}")
        self.writes.append((remote_path, mode, sudo))
        self.files[remote_path] = content

    def read_text(self, remote_path):
        self._record(f"read {remote_path}")
        if remote_path not in self.files:
            raise FileNotFoundError(remote_path)
        return self.files[remote_path]

    def exists(self, remote_path):
        return remote_path in self.files

    def remove(self, remote_path, *, sudo=False):
        self._record(f"remove {remote_path}")
        self.files.pop(remote_path, None)

    def close(self):
        self.closed = True


class FakeCluster:
    """
    Session factory for the orchestrator. Files persist per host across
    sessions, every command lands in one ordered log.
    """

    def __init__(self, responses: Optional[Dict[str, list]] = None, unreachable=()):
        self.files: Dict[str, Dict[str, str]] = {}
        self.responses = responses or {}
        self.unreachable = set(unreachable)
        self.log: list = []
        self.sessions: List[FakeSession] = []
        self.on_detach: Optional[Callable] = None

    def __call__(self, node: Node, settings: ClusterSettings) -> FakeSession:
        if node.hostname in self.unreachable:
            raise TransportUnavailable(node.hostname, "Connection refused")
        s = FakeSession(
            node,
            files=self.files.setdefault(node.hostname, {}),
            responses=self.responses.setdefault(node.hostname, []),
            log=self.log,
            on_detach=self.on_detach,
        )
        self.sessions.append(s)
        return s

    def commands(self, hostname: str) -> List[Tuple[int, str]]:
        return [(i, c) for i, h, c in self.log if h == hostname]

    def first(self, hostname: str, needle: str) -> int:
        return next(i for i, c in self.commands(hostname) if needle in c)

    def count(self, needle: str) -> int:
        return sum(1 for _, _, c in self.log if needle in c)


def nodes_json(names, ready=True) -> str:
    status = "True" if ready else "False"
    return json.dumps({
        "items": [
            {"metadata": {"name": n}, "status": {"conditions": [{"type": "Ready", "status": status}]}}
            for n in names
        ]
    })


def make_settings(**overrides) -> ClusterSettings:
    values = dict(
        pod_cidr="10.244.0.0/16",
        kubernetes_minor_version="1.30",
        fetch_interval=0,
        ntp_interval=0,
        poll_interval=0.01,
        membership_timeout=0,
        ntp_attempts=2,
    )
    values.update(overrides)
    return ClusterSettings(**values)


def make_config(**overrides) -> BootstrapConfig:
    return BootstrapConfig(
        nodes=[
            NodeSpec(hostname="cp-0", address=CP_ADDRESS, username="ubuntu", password="s3cret"),
            NodeSpec(hostname="worker-1", address="10.0.0.11", username="ubuntu", password="s3cret"),
            NodeSpec(hostname="worker-2", address="10.0.0.12", username="ubuntu", password="s3cret"),
        ],
        cluster=make_settings(**overrides),
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def control_plane():
    return Node(Role.CONTROL_PLANE, "cp-0", CP_ADDRESS, "ubuntu", "s3cret", index=0)


@pytest.fixture
def worker():
    return Node(Role.WORKER, "worker-1", "10.0.0.11", "ubuntu", "s3cret", index=1)


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_cluster():
    return FakeCluster


@pytest.fixture
def join_line():
    return JOIN_LINE


@pytest.fixture
def node_list_json():
    return nodes_json
