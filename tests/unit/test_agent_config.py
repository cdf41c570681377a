from pathlib import Path

import pytest
from oslo_config import cfg

from cl_agent.config import load_config
from cl_agent.config_opts import register_opts
from cl_policy.acl import Action


def build_conf():
    return register_opts(cfg.ConfigOpts())


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "controlplane.yaml"
    config_path.write_text(
        """
controlplane:
  system_namespace: cl-system
  workers: 4
  port_range_min: 31000
  port_range_max: 32000
  max_retries: 3
  default_acl_action: allow
policy:
  rules_path: /etc/clusterlink/rules.yaml
watchers:
  - type: imports
    path: /etc/clusterlink/imports.yaml
    interval: 2
  - type: dataplanes
    path: /etc/clusterlink/dataplanes.yaml
"""
    )

    config = load_config(config_path, build_conf())

    cp = config.controlplane
    assert cp.settings.system_namespace == "cl-system"
    assert cp.settings.max_retries == 3
    assert cp.settings.backoff_base == pytest.approx(0.05)
    assert cp.workers == 4
    assert (cp.port_range_min, cp.port_range_max) == (31000, 32000)
    assert cp.default_acl_action is Action.ALLOW
    assert config.rules_path == Path("/etc/clusterlink/rules.yaml")

    assert len(config.watchers) == 2
    watcher = config.watchers[0]
    assert watcher.type == "imports"
    assert watcher.path == Path("/etc/clusterlink/imports.yaml")
    assert watcher.interval == pytest.approx(2.0)
    assert watcher.options == {}
    assert config.watchers[1].interval == pytest.approx(5.0)


def test_defaults_for_empty_file(tmp_path: Path):
    config_path = tmp_path / "controlplane.yaml"
    config_path.write_text("")

    config = load_config(config_path, build_conf())

    assert config.controlplane.settings.system_namespace == "clusterlink-system"
    assert config.controlplane.default_acl_action is Action.DENY
    assert config.rules_path is None
    assert list(config.watchers) == []


@pytest.mark.parametrize(
    "body",
    [
        "controlplane:\n  workers: 0\n",
        "controlplane:\n  default_acl_action: maybe\n",
        "controlplane:\n  port_range_max: 70000\n",
        "controlplane:\n  unknown_option: 1\n",
        "controlplane:\n  port_range_min: 30000\n  port_range_max: 20000\n",
        "watchers:\n  - type: ovn\n    path: /tmp/x\n",
        "watchers: {}\n",
        "- not a mapping\n",
    ],
)
def test_invalid_config_rejected(tmp_path: Path, body):
    config_path = tmp_path / "controlplane.yaml"
    config_path.write_text(body)

    with pytest.raises(ValueError):
        load_config(config_path, build_conf())
