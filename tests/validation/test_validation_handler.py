import copy

from tpm.config.keys import DEPLOYMENT_CONFIGURATION_KEY, DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.messages.errors import RemoteError, ValidationError, ValidationWarning
from tpm.messages.result import RemoteResult, encode_result
from tpm.validation.checks import CheckPhase, SkipPolicy, ValidationCheck
from tpm.validation.handler import ValidationHandler
from tpm.validation.host_checks import CommandCoordinatorCheck

ran = []


class FatalCheck(ValidationCheck):
    fatal_on_error = True

    def validate(self):
        ran.append("FatalCheck")
        if self.config.get("broken"):
            self.error("this host is broken")


class LaterCheck(ValidationCheck):
    def validate(self):
        ran.append("LaterCheck")
        self.output_property("checked", True)


class WarningCheck(ValidationCheck):
    def validate(self):
        ran.append("WarningCheck")
        self.warning("looks odd")


class CrashingCheck(ValidationCheck):
    title = "Crashing"

    def validate(self):
        raise RuntimeError("kaboom")


class CommitCheck(ValidationCheck):
    phase = CheckPhase.COMMIT

    def validate(self):
        self.output_property("committed", True)


CHECKS = [FatalCheck, LaterCheck, WarningCheck, CommitCheck]


def _config(alias, address=None, **host_props):
    props = {"host": address or f"{alias}.example.test", **host_props}
    return Properties({
        DEPLOYMENT_HOST: alias,
        DEPLOYMENT_CONFIGURATION_KEY: f"{alias}_opt_continuent",
        "hosts": {alias: props},
        "dataservices": {"alpha": {"dataservice_hosts": [alias], "dataservice_master_host": [alias]}},
        "repl_services": {f"alpha_{alias}": {"deployment_host": alias, "deployment_dataservice": "alpha"}},
    })


class FakeTransport:
    def __init__(self, reply):
        self.reply = reply
        self.commands = []

    def run(self, host, user, command, *, timeout=None):
        self.commands.append((host, command))
        return self.reply(command) if callable(self.reply) else self.reply

    def copy(self, local_path, host, user, remote_path):
        pass

    def close(self):
        pass


def setup_function():
    ran.clear()


def test_local_validation_runs_deployment_checks():
    h = ValidationHandler("install", CHECKS)
    h.validate([_config("db1")])
    assert ran == ["FatalCheck", "LaterCheck", "WarningCheck"]
    result = h.get_remote_result()
    assert result.properties == {"db1_opt_continuent": {"checked": True}}
    assert [type(e) for e in result.errors] == [ValidationWarning]
    assert h.messages.is_valid()


def test_fatal_check_stops_the_phase_for_that_host():
    h = ValidationHandler("install", CHECKS)
    h.validate([_config("db1", broken=True)])
    assert ran == ["FatalCheck"]
    assert h.messages.errors == [ValidationError("this host is broken", "db1", "FatalCheck")]
    assert not h.messages.is_valid()


def test_skipped_checks_and_skipped_warnings():
    policy = SkipPolicy.build(skipped=["LaterCheck"], skipped_warnings=["WarningCheck"])
    h = ValidationHandler("install", CHECKS, skip_policy=policy)
    h.validate([_config("db1")])
    assert ran == ["FatalCheck", "WarningCheck"]
    assert h.messages.errors == []


def test_per_host_skip_list():
    h = ValidationHandler("install", CHECKS)
    h.validate([_config("db1", skip_validation_check=["WarningCheck"]), _config("db2")])
    assert ran.count("WarningCheck") == 1


def test_crashing_check_becomes_validation_error():
    h = ValidationHandler("install", [CrashingCheck])
    h.validate([_config("db1")])
    assert len(h.messages.errors) == 1
    err = h.messages.errors[0]
    assert err.check == "CrashingCheck"
    assert "kaboom" in err.message
    assert err.host == "db1"


def test_topology_errors_are_reported_as_validation_errors():
    cfg = _config("db1")
    cfg.set(["dataservices", "alpha", "dataservice_topology"], "all-masters")
    h = ValidationHandler("install", CHECKS)
    h.validate([cfg])
    assert ran == []
    assert h.messages.errors[0].check == "TopologyResolver"
    assert h.messages.errors[0].host == "db1"


def test_remote_validation_merges_the_decoded_result():
    remote = RemoteResult([ValidationWarning("remote warning", "db1", "HostnameCheck")], {"db1_opt_continuent": {"x": 1}})
    transport = FakeTransport(encode_result(remote).decode())
    policy = SkipPolicy.build(skipped=["HostnameCheck"], skipped_warnings=["ConnectorRestartCheck"])
    h = ValidationHandler("install", CHECKS, transport=transport, skip_policy=policy)
    h.validate([_config("db1")])

    assert ran == []
    assert h.messages.errors == remote.errors
    assert h.messages.get_output_property("db1_opt_continuent", "x") == 1
    assert transport.commands[0][1].startswith("mkdir -p ")
    host, command = transport.commands[-1]
    assert host == "db1.example.test"
    assert "validate-single-config" in command
    assert "--skip-validation-check=HostnameCheck" in command
    assert "--skip-validation-warnings=ConnectorRestartCheck" in command
    assert "--command=install" in command


def test_undecodable_remote_result_only_fails_that_host():
    def reply(command):
        return "Last login: yesterday\n" if "db2" in command else encode_result(RemoteResult()).decode()

    h = ValidationHandler("install", CHECKS, transport=FakeTransport(reply))
    h.validate([_config("db1"), _config("db2")])
    assert h.messages.errors == [RemoteError("Unable to read the validation result", "db2")]


def test_validate_commit_clears_previous_host_output():
    h = ValidationHandler("install", CHECKS)
    h.messages.output_property("db1_opt_continuent", "stale", True)
    h.validate_commit([_config("db1")])
    assert h.get_remote_result().properties == {"db1_opt_continuent": {"committed": True}}


def test_post_validate_commit_picks_one_coordinator():
    def cfg(alias):
        c = _config(alias)
        c.set(["managers", f"alpha_{alias}"], {"deployment_host": alias, "deployment_dataservice": "alpha"})
        return c

    configs = [cfg("db1"), cfg("db2"), cfg("db3")]
    results = {"db2_opt_continuent": {"manager_is_running": True}}
    h = ValidationHandler("install", [CommandCoordinatorCheck])
    h.post_validate_commit(configs, results)
    props = h.get_remote_result().properties
    assert props == {
        "db1_opt_continuent": {"is_command_coordinator": False},
        "db2_opt_continuent": {"is_command_coordinator": True},
        "db3_opt_continuent": {"is_command_coordinator": False},
    }


def test_coordinator_falls_back_to_first_host_with_a_manager():
    configs = []
    for alias in ("db2", "db1"):
        c = _config(alias)
        c.set(["managers", f"alpha_{alias}"], {"deployment_host": alias})
        configs.append(c)
    h = ValidationHandler("install", [CommandCoordinatorCheck])
    h.post_validate_commit(configs, {})
    assert h.messages.get_output_property("db1_opt_continuent", "is_command_coordinator") is True
    assert h.messages.get_output_property("db2_opt_continuent", "is_command_coordinator") is False


class ExpandedCheck(ValidationCheck):
    phase = CheckPhase.COMMIT

    def validate(self):
        self.output_property("dataservice_name", self.config.get_nested(["dataservices", "alpha", "dataservice_name"]))


def test_checks_see_the_expanded_services_but_the_config_is_untouched():
    config = _config("db1")
    before = copy.deepcopy(config.props)
    h = ValidationHandler("install", [ExpandedCheck])

    h.validate_commit_config(config)

    assert h.messages.get_output_property("db1_opt_continuent", "dataservice_name") == "alpha"
    assert config.props == before
