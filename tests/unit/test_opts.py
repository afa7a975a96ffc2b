from pathlib import Path

import pytest
from oslo_config import cfg

from podnet.model import GroupVersionKind
from podnet_controller import opts


def build_conf(**overrides):
    conf = cfg.ConfigOpts()
    opts.register_opts(conf)
    conf([])
    for name, value in overrides.items():
        conf.set_override(name, value, group=opts.GROUP)
    return conf


def test_defaults_watch_the_api_server():
    config = opts.config_from_conf(build_conf())

    assert config.controller.attribute_domain == "networking.k8s.io"
    assert [w.type for w in config.watchers] == ["kubernetes"]
    assert config.kinds == []


def test_overrides_and_kinds():
    conf = build_conf(
        drivers=["dra.example.com"],
        workers=3,
        namespaced_kinds=["k8s.ovn.org/v1/UserDefinedNetwork"],
        cluster_kinds=["k8s.ovn.org/v1/ClusterUserDefinedNetwork"],
        state_file="/tmp/state.yaml",
    )

    config = opts.config_from_conf(conf)

    assert config.controller.drivers == ("dra.example.com",)
    assert config.controller.workers == 3
    assert config.watchers[0].type == "file"
    assert config.watchers[0].path == Path("/tmp/state.yaml")
    assert [(k.gvk.kind, k.namespaced) for k in config.kinds] == [
        ("UserDefinedNetwork", True),
        ("ClusterUserDefinedNetwork", False),
    ]


def test_parse_kind():
    assert opts.parse_kind("v1/Namespace") == GroupVersionKind("", "v1", "Namespace")
    with pytest.raises(ValueError):
        opts.parse_kind("UserDefinedNetwork")


def test_resync_interval_must_be_at_least_a_second():
    with pytest.raises(ValueError):
        build_conf(resync_interval=0)


def test_backoff_bounds_are_checked():
    with pytest.raises(ValueError):
        opts.config_from_conf(build_conf(backoff_base=5.0, backoff_max=1.0))
