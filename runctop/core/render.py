"""Plain text rendering of cached containers for the command line."""

from __future__ import annotations

from typing import List

from .types import Container


TABLE_HEADERS = ("PID", "Owner", "Created", "Status")
KUBERNETES_PREFIX = "io.kubernetes."


def format_created(container: Container) -> str:
    created = container.created_at()
    if created is None:
        return container.created
    return created.strftime("%d-%b-%Y-%I:%M %p")


def format_table(containers: List[Container]) -> str:
    rows = [TABLE_HEADERS]
    for c in sorted(containers, key=lambda c: c.pid):
        rows.append((str(c.pid), c.owner, format_created(c), c.status))
    widths = [max(len(row[i]) for row in rows) for i in range(len(TABLE_HEADERS))]
    lines = ["  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip()
             for row in rows]
    return "\n".join(lines)


def _section(title: str) -> str:
    return f"\n=== {title} ===\n"


def format_details(container: Container) -> str:
    """Detail view of one container; identity only when not populated."""
    out = [f"=== Container Info ===\nContainer PID: {container.pid}\n"]
    if container.image_name:
        out.append(f"Image Name: {container.image_name}\n")
    out.append(f"ID: {container.id}\nStatus: {container.status}\n"
               f"Created: {container.created}\nRootFS: {container.rootfs}\n")
    if not container.is_populated:
        out.append("\n(details not collected yet)\n")
        return "".join(out)
    out.append(f"CMD: {container.start_command}\n")

    usage = container.resource_usage
    out.append(_section("Resource Usage"))
    out.append(f"CPU Usage: {usage.cpu_usage:.2f}%\n")
    out.append(f"RSS Memory: {usage.memory_usage.get('RSS', 0)} kB\n"
               f"VMS Memory: {usage.memory_usage.get('VMS', 0)} kB\n")
    out.append(f"Swap Usage: {usage.swap_usage} kB\n")

    net = container.network_usage
    out.append(_section("Network Usage"))
    out.append(f"Received: {net.received_bytes} bytes\nTransmitted: {net.transmitted_bytes} bytes\n")
    if container.network_interfaces:
        for name, addr in sorted(container.network_interfaces.items()):
            out.append(f"{name} {addr}\n")

    out.append(_section("Exposed Ports"))
    out.extend(f"{port}\n" for port in container.exposed_ports)

    out.append(_section("Mounted Volumes"))
    out.extend(f"{volume}\n" for volume in container.mounted_volumes)

    out.append(_section("Kubernetes Metadata"))
    for key in sorted(container.annotations):
        if key.startswith(KUBERNETES_PREFIX):
            out.append(f"{key}: {container.annotations[key]}\n")

    out.append(_section("Open Files"))
    for f in container.open_files:
        out.append(f"{f.fd:>6} {f.type:<6} {f.name}\n")

    out.append(_section("Environment Variables"))
    out.extend(f"{env}\n" for env in container.env_variables)

    out.append(_section("Security Profiles"))
    out.extend(f"{profile}\n" for profile in container.security_profiles)
    return "".join(out)
