#!/usr/bin/env python3
"""
Test script for container population and runc discovery.
"""

import json
from collections import OrderedDict

from runctop.core.assembler import ContainerAssembler
from runctop.core.config import RuntimeConfig
from runctop.core.discovery import RuncDiscovery
from runctop.core.errors import (
    AssemblyError,
    DecodeError,
    DiscoveryError,
    EmptyOutputError,
    ExecutionError,
    FetchError,
)
from runctop.core.sources import IPidSource
from runctop.core.types import Container, NetworkUsage, ResourceUsage


class FakeSource(IPidSource):
    def __init__(self, value, failing_pids=()):
        self.value = value
        self.failing_pids = set(failing_pids)
        self.calls = []

    def fetch(self, pid):
        self.calls.append(pid)
        if pid in self.failing_pids:
            raise FetchError(f"process {pid} vanished")
        return self.value


def fake_sources(failing_step=None, failing_pids=()):
    values = OrderedDict([
        ("open files", []),
        ("network usage", NetworkUsage(10, 20)),
        ("mounted volumes", ["/"]),
        ("exposed ports", [8080]),
        ("start command", "/pause"),
        ("security profiles", ["unconfined"]),
        ("environment variables", ["PATH=/bin"]),
        ("resource usage", ResourceUsage(cpu_usage=12.0, memory_usage={"RSS": 1, "VMS": 2})),
    ])
    return OrderedDict(
        (step, FakeSource(value, failing_pids if step == failing_step else ()))
        for step, value in values.items()
    )


def runc_json(*pids):
    return json.dumps([
        {
            "ociVersion": "1.0.2-dev",
            "id": f"c{pid}",
            "pid": pid,
            "status": "running",
            "bundle": f"/run/containerd/io.containerd.runtime.v2.task/k8s.io/c{pid}",
            "rootfs": f"/run/containerd/io.containerd.runtime.v2.task/k8s.io/c{pid}/rootfs",
            "created": "2024-03-01T10:15:30.123456789Z",
            "annotations": {"io.kubernetes.cri.image-name": "registry.k8s.io/pause:3.9"},
            "owner": "root",
        }
        for pid in pids
    ])


def test_assembler_populates_all_fields():
    print("=== Test 1: Assembler success ===")
    container = Container(id="c100", pid=100)
    assert not container.is_populated

    result = ContainerAssembler(fake_sources()).populate(container)
    assert result is container
    assert container.is_populated
    assert container.exposed_ports == [8080]
    assert container.start_command == "/pause"
    assert container.resource_usage.cpu_usage == 12.0
    assert container.network_interfaces is None
    print("✓ every enrichment field is set\n")


def test_assembler_fails_fast():
    print("=== Test 2: Assembler abort on first failure ===")
    sources = fake_sources(failing_step="mounted volumes", failing_pids=[100])
    container = Container(id="c100", pid=100)
    try:
        ContainerAssembler(sources).populate(container)
    except AssemblyError as e:
        assert e.step == "mounted volumes"
        assert e.pid == 100
        assert str(e).startswith("failed to get mounted volumes:")
        assert isinstance(e.__cause__, FetchError)
    else:
        raise AssertionError("populate should raise")

    # steps after the failure never ran, earlier results were not written
    assert sources["exposed ports"].calls == []
    assert sources["open files"].calls == [100]
    assert container.open_files is None and container.network_usage is None
    assert not container.is_populated
    print("✓ partial population is never kept\n")


def test_assembler_rejects_unknown_step():
    print("=== Test 3: Assembler step validation ===")
    try:
        ContainerAssembler({"gpu usage": FakeSource(0)})
    except ValueError as e:
        assert "gpu usage" in str(e)
    else:
        raise AssertionError("unknown steps should be rejected")
    print("✓ unknown steps rejected\n")


def test_decode():
    print("=== Test 4: runc listing decode ===")
    containers = RuncDiscovery.decode(runc_json(100, 200))
    assert [c.pid for c in containers] == [100, 200]
    first = containers[0]
    assert first.id == "c100" and first.status == "running" and first.owner == "root"
    assert first.oci_version == "1.0.2-dev"
    assert first.image_name == "registry.k8s.io/pause:3.9"
    assert first.cache_key == "100"
    assert first.created_at().year == 2024
    assert not first.is_populated

    assert RuncDiscovery.decode("null\n") == []
    assert RuncDiscovery.decode('[{"id": "x", "pid": 5, "annotations": null}]')[0].annotations == {}

    for bad, expected in (("", EmptyOutputError), ("  \n", EmptyOutputError),
                          ("not json", DecodeError), ('{"id": "x"}', DecodeError),
                          ("[1, 2]", DecodeError), ('[{"pid": "abc"}]', DecodeError)):
        try:
            RuncDiscovery.decode(bad)
        except expected:
            pass
        else:
            raise AssertionError(f"{bad!r} should raise {expected.__name__}")
    print("✓ empty and malformed output are distinct errors\n")


def test_list_command():
    print("=== Test 5: runc command line ===")
    config = RuntimeConfig(runc_root="/run/runc", use_sudo=True)
    assert RuncDiscovery(config, ContainerAssembler(fake_sources())).list_command() == \
        ["sudo", "runc", "--root", "/run/runc", "list", "--format", "json"]
    config = RuntimeConfig(runc_root="/run/runc", runc_bin="/usr/bin/runc", use_sudo=False)
    assert RuncDiscovery(config, ContainerAssembler(fake_sources())).list_command()[:2] == \
        ["/usr/bin/runc", "--root"]
    print("✓ command line honours config\n")


def test_discover_with_and_without_population():
    print("=== Test 6: discover ===")
    sources = fake_sources()
    discovery = RuncDiscovery(RuntimeConfig(), ContainerAssembler(sources),
                              runner=lambda argv: runc_json(100, 200))

    bare = discovery.discover()
    assert [c.is_populated for c in bare] == [False, False]
    assert sources["open files"].calls == []

    populated = discovery.discover(populate=True)
    assert all(c.is_populated for c in populated)
    assert sources["open files"].calls == [100, 200]
    print("✓ population is optional\n")


def test_discover_aborts_when_one_container_fails():
    print("=== Test 7: discover all-or-nothing ===")
    sources = fake_sources(failing_step="exposed ports", failing_pids=[200])
    discovery = RuncDiscovery(RuntimeConfig(), ContainerAssembler(sources),
                              runner=lambda argv: runc_json(100, 200, 300))
    try:
        discovery.discover(populate=True)
    except DiscoveryError as e:
        assert "failed to populate container 200" in str(e)
        assert isinstance(e.__cause__, AssemblyError)
    else:
        raise AssertionError("one failing container should fail discovery")
    assert 300 not in sources["open files"].calls
    print("✓ first failing container aborts the pass\n")


def test_discover_propagates_execution_error():
    print("=== Test 8: runc failure ===")

    def runner(argv):
        raise ExecutionError(argv, 1, "permission denied")

    discovery = RuncDiscovery(RuntimeConfig(), ContainerAssembler(fake_sources()), runner=runner)
    try:
        discovery.discover()
    except ExecutionError as e:
        assert "permission denied" in str(e)
    else:
        raise AssertionError("runc failure should propagate")
    print("✓ runc failures surface as ExecutionError\n")


def main():
    """Run all tests"""
    print("=" * 60)
    print("Testing Assembler and Discovery")
    print("=" * 60 + "\n")

    try:
        test_assembler_populates_all_fields()
        test_assembler_fails_fast()
        test_assembler_rejects_unknown_step()
        test_decode()
        test_list_command()
        test_discover_with_and_without_population()
        test_discover_aborts_when_one_container_fails()
        test_discover_propagates_execution_error()

        print("=" * 60)
        print("✅ All tests passed!")
        print("=" * 60)

    except AssertionError as e:
        print(f"\n❌ Test failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    exit(main())
