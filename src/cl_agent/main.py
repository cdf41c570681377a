"""Entry point for the standalone control-plane agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from oslo_config import cfg

from cl_controlplane.allocator import PortAllocator
from cl_controlplane.controller import ImportController
from cl_controlplane.endpoints import EndpointSynchronizer
from cl_controlplane.reconciler import ImportReconciler
from cl_controlplane.store import MemoryStore
from cl_policy.acl import ACLEvaluator
from cl_policy.engine import PolicyEngine
from cl_policy.snapshot import apply_snapshot, load_snapshot

from .config import load_config
from .config_opts import register_opts
from .watchers import FileDataplaneWatcher, FileImportWatcher, FilePolicyWatcher

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the control-plane agent")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/clusterlink/controlplane.yaml"),
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    conf = register_opts(cfg.ConfigOpts())
    config = load_config(args.config, conf)
    cp = config.controlplane

    store = MemoryStore()
    synchronizer = EndpointSynchronizer()
    reconciler = ImportReconciler(
        store,
        PortAllocator(cp.port_range_min, cp.port_range_max),
        synchronizer,
        cp.settings,
    )
    engine = PolicyEngine(acl=ACLEvaluator(default_action=cp.default_acl_action))
    if config.rules_path is not None and config.rules_path.exists():
        apply_snapshot(engine, *load_snapshot(config.rules_path))

    stop_event = Event()
    controller = ImportController(
        store, reconciler, workers=cp.workers, stop_event=stop_event
    )

    watchers = []
    for watcher_cfg in config.watchers:
        if watcher_cfg.type == "imports":
            watcher = FileImportWatcher(
                store, watcher_cfg.path, watcher_cfg.interval, stop_event
            )
        elif watcher_cfg.type == "dataplanes":
            watcher = FileDataplaneWatcher(
                store,
                watcher_cfg.path,
                watcher_cfg.interval,
                stop_event,
                namespace=cp.settings.system_namespace,
            )
        elif watcher_cfg.type == "policies":
            watcher = FilePolicyWatcher(
                engine, watcher_cfg.path, watcher_cfg.interval, stop_event
            )
        else:
            raise ValueError(f"unsupported watcher type '{watcher_cfg.type}'")
        # Perform an initial poll so the controller starts from a full view
        try:
            watcher.poll()
        except Exception:  # pragma: no cover - logged inside watcher
            LOG.exception("initial poll failed for watcher %s", watcher_cfg.path)
        watchers.append(watcher)

    if not watchers:
        LOG.warning("no watchers configured; agent will idle")

    controller.start()
    for watcher in watchers:
        watcher.start()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    for watcher in watchers:
        watcher.join()
    controller.stop()

    LOG.info("control-plane agent stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
