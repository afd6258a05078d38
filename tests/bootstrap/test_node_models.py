from datetime import datetime, timezone

import pytest

from kubeboot.bootstrap.node.models import JoinArtifact, Node, Role
from kubeboot.bootstrap.node.registry import NodeRegistry
from kubeboot.errors import UntrustedJoinArtifact


def test_parse_print_join_command_output(join_line):
    text = f"W0101 warning from kubeadm\n{join_line}\n"
    a = JoinArtifact.parse(text, generated_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert a.command == join_line
    assert a.token == "abcdef.0123456789abcdef"
    assert a.ca_cert_hash.startswith("sha256:")
    assert a.endpoint == "10.0.0.10:6443"
    assert a.endpoint_host == "10.0.0.10"
    assert a.generated_at.year == 2026


def test_parse_accepts_equals_form():
    a = JoinArtifact.parse("kubeadm join cp.local:6443 --token=t.x --discovery-token-ca-cert-hash=sha256:ff")
    assert a.token == "t.x"
    assert a.endpoint_host == "cp.local"


def test_parse_ipv6_endpoint():
    a = JoinArtifact.parse("kubeadm join [fd00::10]:6443 --token t --discovery-token-ca-cert-hash sha256:ff")
    assert a.endpoint_host == "fd00::10"


@pytest.mark.parametrize("text", [
    "",
    "echo hello",
    "kubeadm join --token t --discovery-token-ca-cert-hash sha256:ff",
    "kubeadm join 10.0.0.10:6443 --discovery-token-ca-cert-hash sha256:ff",
    "kubeadm join 10.0.0.10:6443 --token t",
])
def test_parse_rejects_malformed(text):
    with pytest.raises(ValueError):
        JoinArtifact.parse(text)


def test_verify_issuer(join_line, control_plane, worker):
    a = JoinArtifact.parse(join_line)
    a.verify_issuer(control_plane)
    with pytest.raises(UntrustedJoinArtifact):
        a.verify_issuer(worker)


def test_node_repr_hides_password(control_plane):
    assert "s3cret" not in repr(control_plane)
    assert control_plane.is_control_plane


def test_registry_from_config(config_factory):
    reg = NodeRegistry.from_config(config_factory())
    assert len(reg) == 3
    assert reg.control_plane.hostname == "cp-0"
    assert reg.control_plane.role is Role.CONTROL_PLANE
    assert [w.hostname for w in reg.workers] == ["worker-1", "worker-2"]
    assert all(w.role is Role.WORKER for w in reg.workers)
    assert [n.index for n in reg] == [0, 1, 2]
    assert reg.get("worker-2").address == "10.0.0.12"
    with pytest.raises(KeyError):
        reg.get("worker-9")


def test_registry_requires_control_plane_first(control_plane, worker):
    with pytest.raises(ValueError):
        NodeRegistry((worker, control_plane))
    with pytest.raises(ValueError):
        NodeRegistry((control_plane, control_plane))
    with pytest.raises(ValueError):
        NodeRegistry(())


def test_registry_single_node(control_plane):
    reg = NodeRegistry((control_plane,))
    assert reg.workers == ()


def test_node_is_immutable(worker):
    with pytest.raises(Exception):
        worker.hostname = "other"  # type: ignore[misc]
    assert Node(Role.WORKER, "w", "1.2.3.4", "u", "p") != worker
