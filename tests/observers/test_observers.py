import json
import logging

from tpm.observers.console import ConsoleObserver, describe
from tpm.observers.dispatcher import EventBus
from tpm.observers.events import GroupScheduled, HostStepFailed, RunSummary, StageFinished, new_ctx
from tpm.observers.jsonfile import JsonFileObserver
from tpm.observers.logger import LoggerObserver, event_level


class Capture:
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)


class Broken:
    def notify(self, event):
        raise RuntimeError("observer bug")


def _failure():
    return HostStepFailed(**new_ctx("install", "db2", "run-1"), kind="commitment", group_id=2, step="start", error="boom")


def test_bus_survives_broken_observers():
    cap = Capture()
    bus = EventBus([Broken()])
    bus.subscribe(cap)
    bus.emit(_failure())
    assert len(cap.events) == 1


def test_event_levels():
    ok = StageFinished(**new_ctx("install", None, "run-1"), stage="deploy", ok=True)
    failed = StageFinished(**new_ctx("install", None, "run-1"), stage="deploy", ok=False)
    assert event_level(_failure()) == logging.ERROR
    assert event_level(failed) == logging.WARNING
    assert event_level(ok) == logging.DEBUG


def test_logger_observer_prefixes_the_host(caplog):
    logger = logging.getLogger("observer-test")
    with caplog.at_level(logging.DEBUG, logger="observer-test"):
        LoggerObserver(logger).notify(_failure())
    assert "db2 >> [EVENT] HostStepFailed" in caplog.text
    assert "error=boom" in caplog.text


def test_console_descriptions(capsys):
    scheduled = GroupScheduled(
        **new_ctx("install", None, "run-1"), kind="commitment", group_id=4, parallelization="NONE", hosts=["db1", "db2"]
    )
    summary = RunSummary(**new_ctx("install", None, "run-1"), ok=False, errors=2, warnings=1)
    assert describe(scheduled) == "commitment group 4 (NONE) on 2 hosts"
    assert describe(summary) == "install failed with 2 errors and 1 warnings"

    ConsoleObserver().notify(_failure())
    assert "db2 >> start in group 2 failed: boom" in capsys.readouterr().err


def test_json_file_observer_appends_lines(tmp_path):
    path = tmp_path / "events" / "run.jsonl"
    observer = JsonFileObserver(path)
    observer.notify(_failure())
    observer.notify(RunSummary(**new_ctx("install", None, "run-1"), ok=True, errors=0, warnings=0))

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["type"] for line in lines] == ["HostStepFailed", "RunSummary"]
    assert lines[0]["host"] == "db2"
    assert lines[0]["run_id"] == "run-1"
