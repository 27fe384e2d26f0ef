import tempfile
import unittest
from pathlib import Path

from stack_deployer.errors import InventoryError, MissingAddressError
from stack_deployer.models import REQUIRED_OUTPUTS, ProvisioningOutputs
from stack_deployer.stages.inventory import (
    InventoryStore,
    build_inventory,
    parse_inventory,
    render_inventory,
)

from tests.doubles import OUTPUTS


class BuildInventoryTests(unittest.TestCase):
    def test_one_host_per_role(self) -> None:
        inventory = build_inventory(ProvisioningOutputs(OUTPUTS), user="ubuntu", key_file="~/.ssh/k.pem")
        self.assertEqual(inventory.roles(), ["gitlab", "vault", "opa"])
        vault = inventory.host("vault")
        self.assertEqual(vault.address, "54.2.2.2")
        self.assertEqual(vault.private_address, "10.0.1.20")
        self.assertEqual(vault.key_file, "~/.ssh/k.pem")

    def test_any_missing_output_fails_without_inventory(self) -> None:
        for name in REQUIRED_OUTPUTS:
            outputs = {k: v for k, v in OUTPUTS.items() if k != name}
            with self.subTest(output=name):
                with self.assertRaises(MissingAddressError) as ctx:
                    build_inventory(ProvisioningOutputs(outputs))
                self.assertEqual(ctx.exception.missing, [name])

    def test_blank_private_address_is_missing(self) -> None:
        outputs = dict(OUTPUTS, vault_private_ip="")
        with self.assertRaises(MissingAddressError) as ctx:
            build_inventory(ProvisioningOutputs(outputs))
        self.assertEqual(ctx.exception.missing, ["vault_private_ip"])

    def test_blank_address_is_missing(self) -> None:
        outputs = dict(OUTPUTS, opa_public_ip="  ")
        with self.assertRaises(MissingAddressError):
            build_inventory(ProvisioningOutputs(outputs))

    def test_missing_address_is_an_inventory_error(self) -> None:
        self.assertTrue(issubclass(MissingAddressError, InventoryError))

    def test_same_outputs_give_same_inventory(self) -> None:
        first = build_inventory(ProvisioningOutputs(OUTPUTS))
        second = build_inventory(ProvisioningOutputs(dict(OUTPUTS)))
        self.assertEqual(first, second)

    def test_changed_outputs_change_fingerprint(self) -> None:
        first = build_inventory(ProvisioningOutputs(OUTPUTS))
        second = build_inventory(ProvisioningOutputs(dict(OUTPUTS, vault_public_ip="54.9.9.9")))
        self.assertNotEqual(first.fingerprint, second.fingerprint)


class InventoryFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "ansible" / "inventory.ini"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_render_groups_hosts_by_role(self) -> None:
        text = render_inventory(build_inventory(ProvisioningOutputs(OUTPUTS), user="ubuntu"))
        self.assertIn("[gitlab]\ngitlab ansible_host=54.1.1.1 private_ip=10.0.1.10", text)
        self.assertIn("[all:vars]\nansible_user=ubuntu", text)

    def test_store_reads_back_what_it_wrote(self) -> None:
        inventory = build_inventory(ProvisioningOutputs(OUTPUTS), user="ubuntu", key_file="k.pem")
        store = InventoryStore(self.path)
        store.write(inventory)
        self.assertEqual(store.load(), inventory)

    def test_stale_cache_is_detected(self) -> None:
        store = InventoryStore(self.path)
        store.write(build_inventory(ProvisioningOutputs(OUTPUTS)))
        self.assertTrue(store.is_current(ProvisioningOutputs(OUTPUTS)))
        self.assertFalse(store.is_current(ProvisioningOutputs(dict(OUTPUTS, opa_public_ip="1.2.3.4"))))

    def test_missing_cache_loads_as_none(self) -> None:
        store = InventoryStore(self.path)
        self.assertIsNone(store.load())
        self.assertFalse(store.remove())

    def test_parse_rejects_hosts_outside_groups(self) -> None:
        with self.assertRaises(InventoryError):
            parse_inventory("orphan ansible_host=1.2.3.4\n")

    def test_parse_hand_written_file(self) -> None:
        inventory = parse_inventory(
            "[vault]\nvault ansible_host=1.1.1.1 ansible_user=root\n\n[opa]\nopa ansible_host=2.2.2.2\n"
        )
        self.assertEqual(inventory.host("vault").user, "root")
        self.assertIsNone(inventory.host("opa").user)
        self.assertIsNone(inventory.fingerprint)


if __name__ == "__main__":
    unittest.main()
