#!/usr/bin/env python3
"""
runctop - main entrypoint
Shows the containers running under runc together with their open files,
network counters, mounts, ports and resource usage.

Usage:
    sudo python main.py                 # print the container table once
    sudo python main.py --pid 4242      # details of one container
    sudo python main.py --watch         # reprint the table every interval
"""

import sys
import os
import time
import argparse

# Add project root directory to the import path
project_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, project_root)

from runctop.core.assembler import ContainerAssembler
from runctop.core.config import RuntimeConfig
from runctop.core.container_manager import ContainerCache, PeriodicRefresher
from runctop.core.discovery import RuncDiscovery
from runctop.core.errors import RuncTopError
from runctop.core.render import format_details, format_table


def build_cache(config: RuntimeConfig) -> ContainerCache:
    assembler = ContainerAssembler(config=config)
    discovery = RuncDiscovery(config=config, assembler=assembler)
    return ContainerCache(discovery, list_ttl=config.list_ttl, get_ttl=config.get_ttl)


def run(args) -> int:
    config = RuntimeConfig.from_env()
    cache = build_cache(config)
    refresher = PeriodicRefresher(cache, interval=config.refresh_interval, verbose=config.verbose)
    refresher.start()
    try:
        if args.pid is not None:
            print(format_details(cache.get_container(str(args.pid))))
            return 0
        if not args.watch:
            print(format_table(cache.list_containers()))
            return 0
        print("[Watch] Press Ctrl+C to exit.")
        while True:
            containers = cache.list_containers()
            print(f"\n[{time.strftime('%H:%M:%S')}] {len(containers)} containers")
            print(format_table(containers))
            time.sleep(config.refresh_interval)
    except RuncTopError as e:
        print(f"no data available: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
    finally:
        refresher.stop()


def main_cli():
    parser = argparse.ArgumentParser(description="runctop - runc container viewer")
    parser.add_argument("--root", default=None, help="runc state directory (default: /run/containerd/runc/k8s.io)")
    parser.add_argument("--no-sudo", dest="sudo", action="store_false", help="Run runc/lsof/nsenter without sudo")
    parser.add_argument("--interval", type=float, default=None, help="Background refresh interval in seconds (default: 5)")
    parser.add_argument("--list-ttl", type=float, default=None, help="Freshness of the container list in seconds (default: 10)")
    parser.add_argument("--get-ttl", type=float, default=None, help="Freshness of a single container in seconds (default: 20)")
    parser.add_argument("--interfaces", action="store_true", help="Also collect interface addresses via nsenter/ifconfig")
    parser.add_argument("--pid", type=int, default=None, help="Show details for the container with this PID")
    parser.add_argument("--watch", action="store_true", help="Reprint the table every interval until Ctrl+C")
    parser.add_argument("--verbose", action="store_true", help="Print background refresh diagnostics")
    parser.set_defaults(sudo=None)
    args = parser.parse_args()

    if args.root:
        os.environ["RUNCTOP_RUNC_ROOT"] = args.root
    if args.sudo is not None:
        os.environ["RUNCTOP_USE_SUDO"] = "1" if args.sudo else "0"
    if args.interval is not None:
        os.environ["RUNCTOP_REFRESH_INTERVAL"] = str(args.interval)
    if args.list_ttl is not None:
        os.environ["RUNCTOP_LIST_TTL"] = str(args.list_ttl)
    if args.get_ttl is not None:
        os.environ["RUNCTOP_GET_TTL"] = str(args.get_ttl)
    if args.interfaces:
        os.environ["RUNCTOP_INTERFACES"] = "1"
    if args.verbose:
        os.environ["RUNCTOP_VERBOSE"] = "1"
    return run(args)


if __name__ == "__main__":
    sys.exit(main_cli())
