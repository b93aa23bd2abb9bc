import pytest

from tpm.config.keys import (
    COMMAND_DATASERVICES,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    REPL_MASTER_URI,
    REPL_MASTERHOST,
    REPL_ROLE,
    REPL_SVC_APPLIER_FILTERS,
    REPL_SVC_ENABLE_SLAVE_THL_LISTENER,
)
from tpm.config.models import DeploymentSpec
from tpm.topology.base import TopologyError, get_master_thl_uri
from tpm.topology.strategies import build_topologies, resolve, topology_names


def _config(dataservices, host, hosts=None):
    spec = DeploymentSpec.model_validate({
        "hosts": hosts or {},
        "dataservices": dataservices,
    })
    cfg = spec.to_properties()
    cfg.set([DEPLOYMENT_HOST], host)
    return cfg


def _rs(cfg):
    return {alias: cfg.get_nested(["repl_services", alias]) for alias in cfg.members("repl_services")}


STAR = {
    "star1": {
        "topology": "star",
        "members": ["h1", "h2", "h3"],
        "master": ["h1", "h2"],
        "master_services": ["svcA", "svcB"],
        "hub": "h3",
        "hub_service": "svcHub",
    }
}


def test_registry_knows_every_topology():
    assert set(topology_names()) >= {
        "master-slave", "clustered", "direct", "cluster-slave", "star", "fan-in", "all-masters",
    }


def test_master_thl_uri():
    assert get_master_thl_uri(["db1", "db2"], 2112) == "thl://db1:2112/,thl://db2:2112/"
    assert get_master_thl_uri(["db1:3112"], 2112) == "thl://db1:3112"


def test_master_slave_identity():
    cfg = _config({"alpha": {"members": ["db1", "db2"], "master": ["db1"]}}, "db2")
    build_topologies(cfg)
    rs = cfg.get_nested(["repl_services", "alpha_db2"])
    assert rs[REPL_ROLE] == "slave"
    assert rs[REPL_MASTERHOST] == "db1"
    assert rs[REPL_MASTER_URI] == "thl://db1:2112/"


def test_identity_uses_host_addresses_and_thl_port():
    cfg = _config(
        {"alpha": {"members": ["db1", "db2"], "master": ["db1"], "thl_port": 2114}},
        "db2",
        hosts={"db1": {"host": "db1.example.test"}},
    )
    build_topologies(cfg)
    assert cfg.get_nested(["repl_services", "alpha_db2", REPL_MASTER_URI]) == "thl://db1.example.test:2114/"


def test_clustered_flags_and_manager():
    cfg = _config({"alpha": {"topology": "clustered", "members": ["db1", "db2"], "master": ["db1"]}}, "db1")
    build_topologies(cfg)
    assert cfg.get_nested(["dataservices", "alpha", "dataservice_use_management"]) is True
    assert cfg.get_nested(["managers", "alpha_db1", DEPLOYMENT_HOST]) == "db1"
    assert cfg.get_nested(["repl_services", "alpha_db1", REPL_ROLE]) == "master"


def test_star_on_hub_host():
    cfg = _config(STAR, "h3")
    cfg.set([COMMAND_DATASERVICES], ["star1"])
    build_topologies(cfg)

    rs = _rs(cfg)
    assert set(rs) == {"svcA_h3", "svcB_h3", "svcHub_h3"}
    assert rs["svcHub_h3"][REPL_ROLE] == "master"
    assert rs["svcHub_h3"][REPL_SVC_ENABLE_SLAVE_THL_LISTENER] is False
    assert rs["svcHub_h3"][REPL_SVC_APPLIER_FILTERS] == ["bidiSlave"]
    assert rs["svcA_h3"][REPL_ROLE] == "slave"
    assert rs["svcA_h3"][REPL_MASTERHOST] == "h1"
    assert rs["svcB_h3"][REPL_MASTERHOST] == "h2"

    assert cfg.get_nested(["dataservices", "star1"]) is None
    assert cfg.get_nested(["dataservices", "svcA", "dataservice_topology"]) == "master-slave"
    assert cfg.get_nested([COMMAND_DATASERVICES]) == ["svcA", "svcB", "svcHub"]


def test_star_on_master_host():
    cfg = _config(STAR, "h1")
    build_topologies(cfg)
    rs = _rs(cfg)
    assert set(rs) == {"svcA_h1", "svcHub_h1"}
    assert rs["svcA_h1"][REPL_ROLE] == "master"
    assert rs["svcHub_h1"][REPL_ROLE] == "slave"
    assert rs["svcHub_h1"][REPL_MASTERHOST] == "h3"
    assert rs["svcA_h1"][DEPLOYMENT_DATASERVICE] == "svcA"


def test_star_master_services_come_from_master_roles():
    masters = set()
    for host in ("h1", "h2", "h3"):
        cfg = _config(STAR, host)
        build_topologies(cfg)
        for alias, rs in _rs(cfg).items():
            if rs[REPL_ROLE] == "master":
                masters.add(alias)
    assert masters == {"svcA_h1", "svcB_h2", "svcHub_h3"}


def test_fan_in():
    ds = {
        "fan": {
            "topology": "fan-in",
            "members": ["m1", "m2", "s1"],
            "master": ["m1", "m2"],
            "master_services": ["fromM1", "fromM2"],
        }
    }
    cfg = _config(ds, "s1")
    build_topologies(cfg)
    rs = _rs(cfg)
    assert set(rs) == {"fromM1_s1", "fromM2_s1"}
    assert rs["fromM1_s1"][REPL_MASTERHOST] == "m1"
    assert rs["fromM2_s1"][REPL_MASTERHOST] == "m2"

    cfg = _config(ds, "m1")
    build_topologies(cfg)
    assert set(_rs(cfg)) == {"fromM1_m1"}


def test_all_masters():
    ds = {
        "mm": {
            "topology": "all-masters",
            "members": ["a", "b", "c"],
            "master": ["a", "b", "c"],
            "master_services": ["sa", "sb", "sc"],
        }
    }
    cfg = _config(ds, "b")
    build_topologies(cfg)
    rs = _rs(cfg)
    assert set(rs) == {"sa_b", "sb_b", "sc_b"}
    assert rs["sb_b"][REPL_ROLE] == "master"
    assert rs["sa_b"][REPL_MASTERHOST] == "a"
    assert rs["sc_b"][REPL_MASTERHOST] == "c"


def test_too_few_master_services():
    ds = {
        "mm": {
            "topology": "all-masters",
            "members": ["a", "b"],
            "master": ["a", "b"],
            "master_services": ["sa"],
        }
    }
    cfg = _config(ds, "a")
    with pytest.raises(TopologyError):
        build_topologies(cfg)


def test_cluster_slave_expands_composite_relay_sources():
    ds = {
        "east": {"topology": "clustered", "members": ["e1", "e2"], "master": ["e1"]},
        "north": {"topology": "clustered", "members": ["n1"], "master": ["n1"]},
        "global": {"composite": True, "composite_datasources": ["east", "north"]},
        "dr": {"topology": "cluster-slave", "members": ["d1"], "relay_source": ["global"]},
    }
    cfg = _config(ds, "d1")
    build_topologies(cfg)
    rs = cfg.get_nested(["repl_services", "dr_d1"])
    assert rs[REPL_ROLE] == "slave"
    assert rs[REPL_MASTERHOST] == "e1,n1"
    assert resolve("dr", cfg).resolve_relay_chain() == ["east", "north"]


def test_disabled_and_composite_services_are_skipped():
    ds = {
        "east": {"members": ["e1"], "master": ["e1"], "enabled": False},
        "global": {"composite": True, "composite_datasources": ["east"]},
    }
    cfg = _config(ds, "e1")
    build_topologies(cfg)
    assert REPL_ROLE not in cfg.get_nested(["repl_services", "east_e1"])
