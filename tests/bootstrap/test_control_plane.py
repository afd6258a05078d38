import pytest

from kubeboot.bootstrap.control_plane import ADMIN_CONF, ControlPlaneInitializer
from kubeboot.errors import RemoteStepFailed


def _cp_session(fake_session, control_plane, join_line, **kw):
    responses = kw.pop("responses", [])
    responses.append(("kubeadm token create", (0, join_line + "\n", "")))
    return fake_session(control_plane, responses=responses, **kw)


def test_initialize_happy_path(settings, control_plane, fake_session, join_line):
    s = _cp_session(fake_session, control_plane, join_line)
    artifact = ControlPlaneInitializer(settings).initialize(s, control_plane)

    init = next(c for c in s.commands if c.startswith("kubeadm init"))
    assert "--pod-network-cidr=10.244.0.0/16" in init
    assert "--apiserver-advertise-address=10.0.0.10" in init
    assert "--cri-socket=unix:///var/run/containerd/containerd.sock" in init
    assert init in s.sudo_commands
    assert any(c.startswith("kubectl apply -f") and "calico" in c for c in s.commands)

    assert artifact.endpoint_host == "10.0.0.10"
    assert s.files[settings.join_artifact_path].strip() == join_line
    assert (settings.join_artifact_path, 0o600, False) in s.writes


def test_initialize_skips_init_when_admin_conf_exists(settings, control_plane, fake_session, join_line):
    s = _cp_session(fake_session, control_plane, join_line, files={ADMIN_CONF: "apiVersion: v1"})
    ControlPlaneInitializer(settings).initialize(s, control_plane)
    assert not any(c.startswith("kubeadm init") for c in s.commands)
    # a fresh artifact is still issued
    assert any("kubeadm token create" in c for c in s.commands)


def test_initialize_rejects_worker(settings, worker, fake_session):
    with pytest.raises(ValueError):
        ControlPlaneInitializer(settings).initialize(fake_session(worker), worker)


def test_init_failure_is_fatal_step(settings, control_plane, fake_session, join_line):
    s = _cp_session(
        fake_session, control_plane, join_line,
        responses=[("kubeadm init", (1, "", "[ERROR Port-6443]: Port 6443 is in use"))],
    )
    with pytest.raises(RemoteStepFailed) as ei:
        ControlPlaneInitializer(settings).initialize(s, control_plane)
    assert ei.value.step == "kubeadm_init"
    assert "6443" in str(ei.value)
    assert not any("kubectl apply" in c for c in s.commands)


def test_artifact_for_other_host_is_rejected(settings, control_plane, fake_session):
    other = "kubeadm join 10.9.9.9:6443 --token t.x --discovery-token-ca-cert-hash sha256:ff"
    s = fake_session(control_plane, responses=[("kubeadm token create", (0, other, ""))])
    with pytest.raises(RemoteStepFailed) as ei:
        ControlPlaneInitializer(settings).initialize(s, control_plane)
    assert ei.value.step == "join_artifact"
    assert settings.join_artifact_path not in s.files
