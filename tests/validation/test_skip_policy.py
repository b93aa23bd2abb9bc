from tpm.config.keys import DEPLOYMENT_HOST
from tpm.config.properties import Properties
from tpm.validation.checks import SkipPolicy


def _host(alias, **host_props):
    return Properties({DEPLOYMENT_HOST: alias, "hosts": {alias: host_props}})


def test_global_skip_applies_everywhere():
    policy = SkipPolicy.build(skipped=["HostnameCheck"])
    assert policy.is_skipped("HostnameCheck")
    assert policy.is_skipped("HostnameCheck", _host("db1"))
    assert not policy.is_skipped("SSHLoginCheck", _host("db1"))


def test_per_host_skip_only_affects_that_host():
    policy = SkipPolicy.build()
    db1 = _host("db1", skip_validation_check=["HostnameCheck"])
    db2 = _host("db2")
    assert policy.is_skipped("HostnameCheck", db1)
    assert not policy.is_skipped("HostnameCheck", db2)


def test_enable_wins_over_skip():
    policy = SkipPolicy.build(skipped=["HostnameCheck"], enabled=["HostnameCheck"])
    assert not policy.is_skipped("HostnameCheck", _host("db1"))

    db2 = _host("db2", skip_validation_check="HostnameCheck", enable_validation_check="HostnameCheck")
    assert not SkipPolicy.build().is_skipped("HostnameCheck", db2)


def test_skipped_warnings_global_and_per_host():
    policy = SkipPolicy.build(skipped_warnings=["HostnameCheck"])
    assert policy.is_warning_skipped("HostnameCheck")
    assert not policy.is_warning_skipped(None)
    db1 = _host("db1", skip_validation_warnings=["ConnectorRestartCheck"])
    assert policy.is_warning_skipped("ConnectorRestartCheck", db1)
    assert not policy.is_warning_skipped("ConnectorRestartCheck", _host("db2"))
