import tempfile
import unittest
from pathlib import Path

from stack_deployer.errors import IncompleteOutputsError, ProvisioningError
from stack_deployer.models import DeploymentDescriptor
from stack_deployer.stages.provisioning import ProvisioningStage

from tests.doubles import OUTPUTS, StubProvisioner


class ProvisioningStageTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.descriptor = DeploymentDescriptor(working_dir=Path(self._tmp.name))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_init_plan_apply_in_order(self) -> None:
        provisioner = StubProvisioner()
        result = ProvisioningStage(provisioner).provision(self.descriptor)
        self.assertEqual(provisioner.calls, ["init", "plan", "apply", "output"])
        self.assertTrue(result.applied_changes)
        self.assertEqual(result.outputs["vault_public_ip"], "54.2.2.2")

    def test_second_provision_is_a_no_op(self) -> None:
        provisioner = StubProvisioner()
        stage = ProvisioningStage(provisioner)
        stage.provision(self.descriptor)
        second = stage.provision(self.descriptor)

        self.assertFalse(second.applied_changes)
        self.assertFalse(provisioner.plans[-1].has_changes)
        self.assertEqual(provisioner.calls.count("apply"), 1)

    def test_missing_output_is_incomplete_outputs(self) -> None:
        outputs = {k: v for k, v in OUTPUTS.items() if k != "opa_private_ip"}
        with self.assertRaises(IncompleteOutputsError) as ctx:
            ProvisioningStage(StubProvisioner(outputs=outputs)).provision(self.descriptor)
        self.assertEqual(ctx.exception.missing, ["opa_private_ip"])

    def test_apply_failure_is_not_rolled_back(self) -> None:
        provisioner = StubProvisioner(fail=["apply"])
        with self.assertRaises(ProvisioningError) as ctx:
            ProvisioningStage(provisioner).provision(self.descriptor)
        self.assertNotIn("destroy", provisioner.calls)
        self.assertIn("left in place", ctx.exception.remediation)

    def test_plan_failure_stops_before_apply(self) -> None:
        provisioner = StubProvisioner(fail=["plan"])
        with self.assertRaises(ProvisioningError):
            ProvisioningStage(provisioner).provision(self.descriptor)
        self.assertEqual(provisioner.calls, ["init", "plan"])

    def test_missing_descriptor_directory(self) -> None:
        provisioner = StubProvisioner()
        descriptor = DeploymentDescriptor(working_dir=Path(self._tmp.name) / "absent")
        with self.assertRaises(ProvisioningError):
            ProvisioningStage(provisioner).provision(descriptor)
        self.assertEqual(provisioner.calls, [])


if __name__ == "__main__":
    unittest.main()
