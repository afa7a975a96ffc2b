#!/usr/bin/env python3
"""Check pod network conformance of a recorded state or a live cluster."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict

from podnet.conformance import ConformanceChecker
from podnet.model import GroupVersionKind
from podnet.resolver import DeviceResolver
from podnet.store import snapshot_from_objects
from podnet_controller.config import PodNetConfig, load_config
from podnet_controller.kube import KubernetesObjectClient, list_cluster_state, load_kube_config
from podnet_controller.watchers.file import load_objects


class ValidationError(RuntimeError):
    pass


def kind_scopes(config: PodNetConfig) -> Dict[GroupVersionKind, bool]:
    return {scope.gvk: scope.namespaced for scope in config.kinds}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--state", type=Path, help="Recorded cluster state (file or directory)")
    source.add_argument(
        "--kubeconfig",
        nargs="?",
        const="",
        help="Check the live cluster (in-cluster credentials when no path is given)",
    )
    parser.add_argument("--config", type=Path, help="Controller configuration for domain, drivers and kinds")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    config = load_config(args.config) if args.config else PodNetConfig()
    if args.state is not None:
        if not args.state.exists():
            raise SystemExit(f"cluster state not found: {args.state}")
        try:
            objects = load_objects(args.state)
        except ValueError as exc:
            raise ValidationError(f"cannot load {args.state}: {exc}") from exc
    else:
        load_kube_config(args.kubeconfig or None)
        objects = list_cluster_state(KubernetesObjectClient())

    snapshot = snapshot_from_objects(objects, kind_scopes(config))
    checker = ConformanceChecker(
        DeviceResolver(config.controller.attribute_domain), drivers=config.controller.drivers
    )
    report = checker.check(snapshot)
    for finding in report.findings:
        print(finding)
    if not report.passed:
        raise ValidationError(report.summary())
    print(report.summary())


if __name__ == "__main__":
    try:
        main()
    except ValidationError as exc:
        print(f"[check_cluster] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
