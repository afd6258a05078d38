import json
import logging
from concurrent.futures import ThreadPoolExecutor

from kubeboot.observers.dispatcher import EventBus
from kubeboot.observers.events import NodePrepared, RunStarted, new_ctx
from kubeboot.observers.jsonfile import JsonFileObserver
from kubeboot.observers.logger import LoggerObserver


def _prepared(i):
    return NodePrepared(node=f"worker-{i}", duration_ms=i, **new_ctx("pull", run_id="run-1"))


def test_jsonfile_writes_one_line_per_event(tmp_path):
    path = tmp_path / "logs" / "run-1.jsonl"
    obs = JsonFileObserver(path)
    obs.notify(RunStarted(nodes=["cp-0", "worker-1"], failure_policy="fail-fast", **new_ctx("push", run_id="run-1")))
    obs.notify(_prepared(1))

    first, second = [json.loads(line) for line in path.read_text().splitlines()]
    assert first["event"] == "RunStarted"
    assert first["nodes"] == ["cp-0", "worker-1"] and first["strategy"] == "push"
    assert second == {**_prepared(1).dict(), "event": "NodePrepared", "ts": second["ts"]}


def test_jsonfile_lines_stay_whole_under_concurrency(tmp_path):
    path = tmp_path / "run.jsonl"
    obs = JsonFileObserver(path)
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: obs.notify(_prepared(i)), range(200)))

    lines = path.read_text().splitlines()
    assert len(lines) == 200
    assert sorted(json.loads(line)["duration_ms"] for line in lines) == list(range(200))


def test_broken_observer_does_not_stop_the_others(caplog):
    seen = []

    class Broken:
        def notify(self, event):
            raise OSError("disk full")

    class Recording:
        def notify(self, event):
            seen.append(event)

    bus = EventBus([Broken(), Recording()])
    with caplog.at_level(logging.DEBUG, logger="kubeboot"):
        bus.emit(_prepared(1))
    assert [e.node for e in seen] == ["worker-1"]
    assert "Broken failed on NodePrepared" in caplog.text


def test_logger_observer_skips_context_fields(caplog):
    logger = logging.getLogger("observer-test")
    with caplog.at_level(logging.DEBUG, logger="observer-test"):
        LoggerObserver(logger).notify(_prepared(2))
    assert "[EVENT] NodePrepared: strategy=pull, node=worker-2, duration_ms=2" in caplog.text
    assert "run-1" not in caplog.text
