import threading

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_DATASERVICE, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.deploy.handler import DeploymentHandler
from tpm.deploy.scheduler import DeploymentScheduler, group_ids, group_parallelization
from tpm.deploy.steps import (
    DeploymentStep,
    Parallelization,
    StepKind,
    StepProvider,
    commitment_step,
    deployment_step,
)
from tpm.messages.collector import MessageCollector
from tpm.observers.dispatcher import EventBus
from tpm.observers.events import GroupFinished, GroupScheduled, HostStepFailed

calls = []
_calls_lock = threading.Lock()
failing_hosts = set()


def _record(host, step):
    with _calls_lock:
        calls.append((host, step))


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


class PlanSteps(StepProvider):
    name = "plan-test"

    @deployment_step(0, 5)
    def write_files(self):
        _record(self.host, "write_files")

    @deployment_step(0, -5)
    def make_dirs(self):
        _record(self.host, "make_dirs")

    @commitment_step(1, 0)
    def stop(self):
        if self.host in failing_hosts:
            raise RuntimeError("stop failed")
        _record(self.host, "stop")

    @commitment_step(2, 0, Parallelization.BY_SERVICE)
    def start(self):
        _record(self.host, "start")

    @commitment_step(3, 0, Parallelization.NONE)
    def start_connector(self):
        _record(self.host, "start_connector")


def setup_function():
    calls.clear()
    failing_hosts.clear()


def _configs(*hosts):
    out = []
    for alias, ds in hosts:
        out.append(Properties({
            DEPLOYMENT_HOST: alias,
            DEPLOYMENT_CONFIGURATION_KEY: f"{alias}_key",
            DEPLOYMENT_DATASERVICE: ds,
        }))
    return out


def _scheduler(bus=None):
    return DeploymentScheduler(MessageCollector(), command_name="install", bus=bus)


def _factory(bus=None):
    return lambda: DeploymentHandler("install", [PlanSteps], bus=bus)


def test_group_parallelization_takes_the_strictest():
    lists = [
        [DeploymentStep("a", 1, 0, Parallelization.BY_HOST)],
        [DeploymentStep("a", 1, 0, Parallelization.BY_SERVICE), DeploymentStep("b", 2, 0)],
    ]
    assert group_ids(lists) == [1, 2]
    assert group_parallelization(lists, 1) is Parallelization.BY_SERVICE
    assert group_parallelization(lists, 2) is Parallelization.BY_HOST
    assert group_parallelization(lists, 9) is Parallelization.BY_HOST


def test_deployment_steps_run_by_weight_on_every_host():
    configs = _configs(("db1", "alpha"), ("db2", "alpha"))
    scheduler = _scheduler()
    assert scheduler.parallel_deploy(configs, _factory(), StepKind.DEPLOYMENT)

    for host in ("db1", "db2"):
        assert [step for h, step in calls if h == host] == ["make_dirs", "write_files"]


def test_commitment_groups_run_in_order_and_emit_events():
    cap = Capture()
    bus = EventBus([cap])
    configs = _configs(("db1", "alpha"), ("db2", "alpha"), ("db3", "beta"))
    scheduler = _scheduler(bus)

    assert scheduler.parallel_deploy(configs, _factory(bus), StepKind.COMMITMENT, {})

    scheduled = [e for e in cap.events if isinstance(e, GroupScheduled)]
    assert [(e.group_id, e.parallelization) for e in scheduled] == [
        (1, "BY_HOST"),
        (2, "BY_SERVICE"),
        (3, "NONE"),
    ]
    assert all(e.ok for e in cap.events if isinstance(e, GroupFinished))

    steps = [step for _, step in calls]
    assert steps.index("start") > max(i for i, s in enumerate(steps) if s == "stop")
    assert [h for h, s in calls if s == "start_connector"] == ["db1", "db2", "db3"]
    alpha_starts = [h for h, s in calls if s == "start" and h in ("db1", "db2")]
    assert alpha_starts == ["db1", "db2"]


def test_failed_group_stops_the_plan():
    failing_hosts.add("db2")
    cap = Capture()
    bus = EventBus([cap])
    configs = _configs(("db1", "alpha"), ("db2", "alpha"))
    scheduler = _scheduler(bus)

    assert not scheduler.parallel_deploy(configs, _factory(bus), StepKind.COMMITMENT, {})

    assert ("db1", "stop") in calls
    assert not any(step in ("start", "start_connector") for _, step in calls)

    failed = [e for e in cap.events if isinstance(e, HostStepFailed)]
    assert len(failed) == 1
    assert failed[0].host == "db2"
    assert failed[0].step == "stop"
    assert failed[0].group_id == 1

    finished = [e for e in cap.events if isinstance(e, GroupFinished)]
    assert [(e.group_id, e.ok) for e in finished] == [(1, False)]
    assert [e.host for e in scheduler.messages.fatal_errors()] == ["db2"]


def test_parallel_handle_merges_every_host():
    class Phase:
        def __init__(self):
            self.messages = MessageCollector()

        def check(self, configs):
            host = configs[0].get_nested([DEPLOYMENT_HOST])
            key = configs[0].get_nested([DEPLOYMENT_CONFIGURATION_KEY])
            self.messages.output_property(key, "seen", True)
            if host == "db2":
                raise ValueError("db2 is unhappy")

        def get_remote_result(self):
            return self.messages.get_remote_result()

    scheduler = _scheduler()
    configs = _configs(("db1", "alpha"), ("db2", "alpha"))
    assert not scheduler.parallel_handle(configs, Phase, "check")
    assert scheduler.messages.get_output_property("db1_key", "seen") is True
    assert scheduler.messages.get_output_property("db2_key", "seen") is True
    assert [e.message for e in scheduler.messages.errors] == ["db2 is unhappy"]
