import threading
import time

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_DATASERVICE, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.deploy.handler import DeploymentHandler
from tpm.deploy.scheduler import DeploymentScheduler
from tpm.deploy.steps import Parallelization, StepKind, StepProvider, commitment_step
from tpm.messages.collector import MessageCollector
from tpm.observers.dispatcher import EventBus
from tpm.observers.events import GroupScheduled


class Tracker:
    """Counts the steps running at once, overall and per data service."""

    def __init__(self, barrier_hosts=(), parties=0):
        self.lock = threading.Lock()
        self.active = {}
        self.max_total = 0
        self.max_per_service = {}
        self.order = []
        self.barrier_hosts = set(barrier_hosts)
        self.barrier = threading.Barrier(parties, timeout=5) if parties else None

    def enter(self, host, ds):
        with self.lock:
            self.order.append(host)
            self.active[ds] = self.active.get(ds, 0) + 1
            self.max_total = max(self.max_total, sum(self.active.values()))
            self.max_per_service[ds] = max(self.max_per_service.get(ds, 0), self.active[ds])

    def leave(self, ds):
        with self.lock:
            self.active[ds] -= 1

    def run(self, host, ds):
        self.enter(host, ds)
        try:
            if host in self.barrier_hosts:
                self.barrier.wait()
            time.sleep(0.02)
        finally:
            self.leave(ds)


tracker = Tracker()


def _provider(weight, parallelization):
    class TrackedSteps(StepProvider):
        name = f"tracked-{parallelization.name}-{weight}"

        @commitment_step(1, weight, parallelization)
        def start(self):
            tracker.run(self.host, self.config.get_nested([DEPLOYMENT_DATASERVICE]))

    return TrackedSteps


class PerHostHandler(DeploymentHandler):
    """Gives every host its own step-providers."""

    providers_by_host = {}

    def get_deployment_object(self, config):
        self.providers = self.providers_by_host[config.get_nested([DEPLOYMENT_HOST])]
        return super().get_deployment_object(config)


def _configs(*hosts):
    return [
        Properties({
            DEPLOYMENT_HOST: alias,
            DEPLOYMENT_CONFIGURATION_KEY: f"{alias}_key",
            DEPLOYMENT_DATASERVICE: ds,
        })
        for alias, ds in hosts
    ]


def _deploy(configs, providers_by_host, bus=None):
    PerHostHandler.providers_by_host = providers_by_host
    scheduler = DeploymentScheduler(MessageCollector(), command_name="start", bus=bus)
    ok = scheduler.parallel_deploy(
        configs, lambda: PerHostHandler("start", [], bus=bus), StepKind.COMMITMENT, {}
    )
    return ok, scheduler


def _use(new):
    global tracker
    tracker = new
    return new


def test_sequential_group_runs_one_step_at_a_time():
    t = _use(Tracker())
    steps = _provider(0, Parallelization.NONE)
    configs = _configs(("db1", "alpha"), ("db2", "alpha"), ("db3", "beta"), ("db4", "beta"))

    ok, scheduler = _deploy(configs, {h: [steps] for h in ("db1", "db2", "db3", "db4")})

    assert ok, [e.message for e in scheduler.messages.errors]
    assert t.max_total == 1
    assert t.order == ["db1", "db2", "db3", "db4"]


def test_services_overlap_but_their_hosts_take_turns_by_weight():
    # the first host of each service waits for the other service to start
    t = _use(Tracker(barrier_hosts=("db2", "db4"), parties=2))
    configs = _configs(("db1", "alpha"), ("db2", "alpha"), ("db3", "beta"), ("db4", "beta"))
    by_host = {
        "db1": [_provider(5, Parallelization.BY_SERVICE)],
        "db2": [_provider(-10, Parallelization.BY_SERVICE)],
        "db3": [_provider(7, Parallelization.BY_SERVICE)],
        "db4": [_provider(-3, Parallelization.BY_SERVICE)],
    }

    ok, scheduler = _deploy(configs, by_host)

    assert ok, [e.message for e in scheduler.messages.errors]
    assert t.max_total == 2
    assert t.max_per_service == {"alpha": 1, "beta": 1}
    assert [h for h in t.order if h in ("db1", "db2")] == ["db2", "db1"]
    assert [h for h in t.order if h in ("db3", "db4")] == ["db4", "db3"]


def test_hosts_overlap_when_every_step_allows_it():
    t = _use(Tracker(barrier_hosts=("db1", "db2", "db3"), parties=3))
    steps = _provider(0, Parallelization.BY_HOST)
    configs = _configs(("db1", "alpha"), ("db2", "alpha"), ("db3", "alpha"))

    ok, scheduler = _deploy(configs, {h: [steps] for h in ("db1", "db2", "db3")})

    assert ok, [e.message for e in scheduler.messages.errors]
    assert t.max_total == 3


def test_one_sequential_step_makes_the_whole_group_sequential():
    t = _use(Tracker())
    events = []

    class Capture:
        def notify(self, ev):
            events.append(ev)

    bus = EventBus([Capture()])
    configs = _configs(("db1", "alpha"), ("db2", "alpha"), ("db3", "beta"))
    by_host = {
        "db1": [_provider(0, Parallelization.BY_HOST)],
        "db2": [_provider(0, Parallelization.BY_HOST)],
        "db3": [_provider(0, Parallelization.NONE)],
    }

    ok, scheduler = _deploy(configs, by_host, bus)

    assert ok, [e.message for e in scheduler.messages.errors]
    assert [e.parallelization for e in events if isinstance(e, GroupScheduled)] == ["NONE"]
    assert t.max_total == 1
    assert t.order == ["db1", "db2", "db3"]
