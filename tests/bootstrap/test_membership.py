from kubeboot.bootstrap.membership import MembershipCheck


def test_all_ready(settings, control_plane, fake_session, node_list_json):
    s = fake_session(control_plane, responses=[
        ("get nodes -o json", (0, node_list_json(["cp-0", "worker-1", "worker-2"]), "")),
        ("get nodes -o wide", (0, "NAME STATUS\ncp-0 Ready\n", "")),
    ])
    result = MembershipCheck(settings).observe(s, ["cp-0", "worker-1", "worker-2"])
    assert result == {"cp-0": True, "worker-1": True, "worker-2": True}
    assert any("get nodes -o wide" in c for c in s.commands)


def test_missing_worker_is_reported_not_raised(monkeypatch, settings_factory, control_plane, fake_session, node_list_json):
    settings = settings_factory(membership_timeout=2, poll_interval=1)
    sleeps = []
    monkeypatch.setattr("kubeboot.utils.retry.time.sleep", lambda sec: sleeps.append(sec))
    s = fake_session(control_plane, responses=[("get nodes -o json", (0, node_list_json(["cp-0"]), ""))])

    result = MembershipCheck(settings).observe(s, ["cp-0", "worker-1"])

    assert result == {"cp-0": True, "worker-1": False}
    assert sleeps == [1, 1]
    # polled until membership_timeout, then gave up without raising
    assert sum("get nodes -o json" in c for c in s.commands) == 3


def test_kubectl_failure_never_raises(settings, control_plane, fake_session):
    s = fake_session(control_plane, responses=[("kubectl", (1, "", "connection refused"))])
    assert MembershipCheck(settings).observe(s, ["cp-0"]) == {"cp-0": False}


def test_nodes_parses_ready_condition(settings, control_plane, fake_session, node_list_json):
    s = fake_session(control_plane, responses=[("get nodes -o json", (0, node_list_json(["w"], ready=False), ""))])
    assert MembershipCheck(settings).nodes(s) == {"w": False}
