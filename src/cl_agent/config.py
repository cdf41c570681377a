"""YAML configuration loader for the control-plane agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import yaml
from oslo_config import cfg

from cl_controlplane.reconciler import ReconcilerSettings
from cl_policy.acl import Action

from .config_opts import GROUP, controlplane_opts, reconciler_settings, register_opts

WATCHER_TYPES = ("imports", "dataplanes", "policies")


@dataclass
class ControlplaneConfig:
    settings: ReconcilerSettings
    workers: int = 2
    port_range_min: int = 20000
    port_range_max: int = 30000
    default_acl_action: Action = Action.DENY


@dataclass
class WatcherConfig:
    type: str
    path: Path
    interval: float = 5.0
    options: dict = field(default_factory=dict)


@dataclass
class AgentConfig:
    controlplane: ControlplaneConfig
    rules_path: Optional[Path] = None
    watchers: Sequence[WatcherConfig] = field(default_factory=list)


def _apply_controlplane(section: dict, conf: cfg.ConfigOpts) -> ControlplaneConfig:
    known = {opt.dest for opt in controlplane_opts}
    for name, value in section.items():
        if name not in known:
            raise ValueError(f"Unknown controlplane option '{name}'")
        conf.set_override(name, value, group=GROUP)

    group = getattr(conf, GROUP)
    if group.port_range_min >= group.port_range_max:
        raise ValueError("'port_range_min' must be lower than 'port_range_max'")

    return ControlplaneConfig(
        settings=reconciler_settings(conf),
        workers=group.workers,
        port_range_min=group.port_range_min,
        port_range_max=group.port_range_max,
        default_acl_action=Action.parse(group.default_acl_action),
    )


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError("watcher entries must be mappings")
        watcher_type = str(entry["type"])
        if watcher_type not in WATCHER_TYPES:
            raise ValueError(f"unsupported watcher type '{watcher_type}'")
        options = entry.get("options", {})
        if not isinstance(options, dict):
            raise ValueError("watcher 'options' must be a mapping if provided")
        watchers.append(
            WatcherConfig(
                type=watcher_type,
                path=Path(entry["path"]),
                interval=float(entry.get("interval", 5.0)),
                options=options,
            )
        )
    return watchers


def load_config(path: Path, conf: Optional[cfg.ConfigOpts] = None) -> AgentConfig:
    """Load the agent file at ``path``.

    Options of the ``controlplane`` section are validated by oslo.config
    through ``conf``; a private :class:`cfg.ConfigOpts` is used when none is
    given.
    """

    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    if conf is None:
        conf = register_opts(cfg.ConfigOpts())

    section = data.get("controlplane") or {}
    if not isinstance(section, dict):
        raise ValueError("'controlplane' section must be a mapping")
    controlplane = _apply_controlplane(section, conf)

    policy = data.get("policy") or {}
    if not isinstance(policy, dict):
        raise ValueError("'policy' section must be a mapping")
    rules_path = policy.get("rules_path")

    watchers_section = data.get("watchers", [])
    if not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")

    return AgentConfig(
        controlplane=controlplane,
        rules_path=Path(rules_path) if rules_path else None,
        watchers=_parse_watchers(watchers_section),
    )
