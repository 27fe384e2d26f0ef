"""Inventory builder: provisioning outputs -> configuration-manager inventory."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import InventoryError, MissingAddressError
from ..models import SERVICE_ROLES, Inventory, InventoryHost, ProvisioningOutputs
from ..utils.logging import get_logger

logger = get_logger(__name__)

_HEADER = "# Generated by stack-deployer from provisioner outputs. Do not edit."
_FINGERPRINT = re.compile(r"^#\s*fingerprint:\s*(?P<value>\S+)")


def build_inventory(
    outputs: ProvisioningOutputs,
    *,
    user: Optional[str] = None,
    key_file: Optional[str] = None,
    roles: Sequence[str] = SERVICE_ROLES,
) -> Inventory:
    """Pure transformation of outputs into one inventory entry per role.

    Every role needs both its public and its private address. Fails with
    MissingAddressError instead of emitting a host with a hole in it: the
    configuration manager would retry such a host forever.
    """
    required = [f"{role}_{kind}_ip" for role in roles for kind in ("public", "private")]
    missing = [name for name in required if not (outputs.get(name) or "").strip()]
    if missing:
        raise MissingAddressError(missing)

    hosts = []
    for role in roles:
        private = outputs[f"{role}_private_ip"].strip()
        hosts.append(
            InventoryHost(
                role=role,
                name=role,
                address=outputs[f"{role}_public_ip"].strip(),
                private_address=private,
                user=user,
                key_file=key_file,
            )
        )
    return Inventory(hosts=tuple(hosts), fingerprint=outputs.fingerprint())


def render_inventory(inventory: Inventory) -> str:
    """Serialize as an Ansible INI inventory grouped by role."""
    lines = [_HEADER]
    if inventory.fingerprint:
        lines.append(f"# fingerprint: {inventory.fingerprint}")
    lines.append("")

    shared: Dict[str, str] = {}
    for role in inventory.roles():
        lines.append(f"[{role}]")
        for host in inventory.by_role(role):
            fields = [host.name, f"ansible_host={host.address}"]
            if host.private_address:
                fields.append(f"private_ip={host.private_address}")
            lines.append(" ".join(fields))
            if host.user:
                shared["ansible_user"] = host.user
            if host.key_file:
                shared["ansible_ssh_private_key_file"] = host.key_file
        lines.append("")

    if shared:
        lines.append("[all:vars]")
        for key, value in shared.items():
            lines.append(f"{key}={value}")
        lines.append("")
    return "\n".join(lines)


def parse_inventory(text: str) -> Inventory:
    """Read back an inventory written by render_inventory."""
    fingerprint = None
    section: Optional[str] = None
    entries: List[Dict[str, str]] = []
    shared: Dict[str, str] = {}

    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#") or line.startswith(";"):
            match = _FINGERPRINT.match(line)
            if match:
                fingerprint = match.group("value")
            continue
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            continue
        if section is None:
            raise InventoryError(f"line {lineno}: host entry outside any group")
        if section == "all:vars":
            key, _, value = line.partition("=")
            shared[key.strip()] = value.strip()
            continue

        name, *pairs = line.split()
        entry = {"role": section, "name": name}
        for pair in pairs:
            key, sep, value = pair.partition("=")
            if not sep:
                raise InventoryError(f"line {lineno}: malformed host variable {pair!r}")
            entry[key] = value
        entries.append(entry)

    hosts = []
    for entry in entries:
        address = entry.get("ansible_host") or entry["name"]
        hosts.append(
            InventoryHost(
                role=entry["role"],
                name=entry["name"],
                address=address,
                private_address=entry.get("private_ip"),
                user=entry.get("ansible_user", shared.get("ansible_user")),
                key_file=entry.get(
                    "ansible_ssh_private_key_file", shared.get("ansible_ssh_private_key_file")
                ),
            )
        )
    return Inventory(hosts=tuple(hosts), fingerprint=fingerprint)


class InventoryStore:
    """Local cache of the last inventory built. Never the source of truth."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def write(self, inventory: Inventory) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(render_inventory(inventory), encoding="utf-8")
        logger.info("📝 Inventory written to %s (%d host(s))", self.path, len(inventory))
        return self.path

    def load(self) -> Optional[Inventory]:
        if not self.exists():
            return None
        return parse_inventory(self.path.read_text(encoding="utf-8"))

    def is_current(self, outputs: ProvisioningOutputs) -> bool:
        try:
            cached = self.load()
        except InventoryError:
            return False
        return cached is not None and cached.fingerprint == outputs.fingerprint()

    def remove(self) -> bool:
        if not self.exists():
            return False
        self.path.unlink()
        logger.info("🗑️  Removed inventory cache %s", self.path)
        return True
