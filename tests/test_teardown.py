import os
import signal
import tempfile
import unittest
from pathlib import Path
from typing import List

from stack_deployer.config import AnsibleConfig
from stack_deployer.control import RunControl
from stack_deployer.interaction.confirmation import ScriptedConfirmationSource
from stack_deployer.models import (
    ExecutionPhase,
    PhaseStatus,
    ProvisioningOutputs,
    TeardownStatus,
)
from stack_deployer.pipeline.runlog import RunLog, latest_run
from stack_deployer.pipeline.teardown import TeardownOrchestrator
from stack_deployer.stages.inventory import InventoryStore, build_inventory

from tests.doubles import OUTPUTS, StubCloudAccount, StubConfigManager, StubProvisioner


class TeardownOrchestratorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.ansible_dir = self.root / "ansible"
        self.terraform_dir = self.root / "terraform"
        self.ansible_dir.mkdir()
        self.terraform_dir.mkdir()
        self.store = InventoryStore(self.ansible_dir / "inventory.ini")
        self.settings = AnsibleConfig(working_dir=str(self.ansible_dir))
        self.state_file = self.terraform_dir / "terraform.tfstate"
        self.state_file.write_text("{}")
        self.presented: List = []

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write_inventory(self) -> None:
        self.store.write(build_inventory(ProvisioningOutputs(OUTPUTS), user="ubuntu"))

    def _orchestrator(
        self,
        answers=("yes", "yes"),
        provisioner=None,
        manager=None,
        cloud=None,
        control=None,
        run_log=None,
    ) -> TeardownOrchestrator:
        self.confirmation = ScriptedConfirmationSource(answers)
        self.provisioner = provisioner or StubProvisioner(state_paths=[self.state_file])
        self.manager = manager or StubConfigManager()
        self.cloud = cloud or StubCloudAccount()
        return TeardownOrchestrator(
            provisioner=self.provisioner,
            manager=self.manager,
            cloud=self.cloud,
            confirmation=self.confirmation,
            inventory_store=self.store,
            settings=self.settings,
            scratch_dirs=[self.ansible_dir, self.terraform_dir],
            control=control,
            run_log=run_log,
            presenter=self.presented.append,
        )

    def test_decline_destroys_nothing(self) -> None:
        self._write_inventory()
        report = self._orchestrator(answers=["no"]).run()

        self.assertEqual(report.status, TeardownStatus.ABORTED)
        self.assertEqual(report.exit_code, 0)
        self.assertEqual(report.phases(), [ExecutionPhase.CONFIRM_TEARDOWN])
        self.assertEqual(report.results[0].status, PhaseStatus.SKIPPED)
        self.assertEqual(self.provisioner.calls, [])
        self.assertEqual(self.manager.runs, [])
        self.assertEqual(self.cloud.sweeps, [])
        self.assertTrue(self.store.exists())
        self.assertTrue(self.state_file.exists())
        self.assertEqual(self.presented, [])

    def test_empty_answer_declines(self) -> None:
        report = self._orchestrator(answers=[""]).run()
        self.assertEqual(report.status, TeardownStatus.ABORTED)
        self.assertEqual(self.provisioner.calls, [])

    def test_full_teardown(self) -> None:
        self._write_inventory()
        (self.ansible_dir / "site.retry").write_text("vault\n")
        report = self._orchestrator().run()

        self.assertEqual(report.status, TeardownStatus.COMPLETED)
        self.assertEqual(report.exit_code, 0)
        self.assertEqual(
            report.phases(),
            [
                ExecutionPhase.CONFIRM_TEARDOWN,
                ExecutionPhase.GRACEFUL_SHUTDOWN,
                ExecutionPhase.DESTROY,
                ExecutionPhase.LOCAL_CLEANUP,
                ExecutionPhase.RESIDUAL_SWEEP,
                ExecutionPhase.REPORT,
            ],
        )
        self.assertEqual(self.manager.mutating_runs, ["playbooks/shutdown.yml"])
        self.assertIn("destroy", self.provisioner.calls)
        self.assertFalse(self.store.exists())
        self.assertFalse((self.ansible_dir / "site.retry").exists())
        self.assertFalse(self.state_file.exists())
        self.assertEqual(self.cloud.sweeps, ["*-Instance"])
        self.assertEqual(report.residual_count, 0)
        self.assertEqual(len(self.presented), 1)
        self.assertEqual(
            self.confirmation.prompts,
            ["Are you sure you want to continue?", "Remove Terraform state files?"],
        )

    def test_without_inventory_shutdown_is_skipped(self) -> None:
        report = self._orchestrator().run()

        shutdown = report.result_for(ExecutionPhase.GRACEFUL_SHUTDOWN)
        self.assertEqual(shutdown.status, PhaseStatus.SKIPPED)
        self.assertEqual(shutdown.reason, "no inventory")
        self.assertEqual(self.manager.runs, [])
        self.assertEqual(report.result_for(ExecutionPhase.DESTROY).status, PhaseStatus.SUCCEEDED)
        self.assertEqual(report.status, TeardownStatus.COMPLETED)

    def test_without_ansible_shutdown_is_skipped(self) -> None:
        self._write_inventory()
        report = self._orchestrator(manager=StubConfigManager(installed=False)).run()

        shutdown = report.result_for(ExecutionPhase.GRACEFUL_SHUTDOWN)
        self.assertEqual(shutdown.status, PhaseStatus.SKIPPED)
        self.assertEqual(shutdown.reason, "configuration manager not installed")
        self.assertIn("destroy", self.provisioner.calls)

    def test_failed_shutdown_still_destroys(self) -> None:
        self._write_inventory()
        manager = StubConfigManager(unreachable_hosts={"playbooks/shutdown.yml": ["opa"]})
        report = self._orchestrator(manager=manager).run()

        shutdown = report.result_for(ExecutionPhase.GRACEFUL_SHUTDOWN)
        self.assertEqual(shutdown.status, PhaseStatus.FAILED)
        self.assertIn("opa", shutdown.reason)
        self.assertEqual(report.result_for(ExecutionPhase.DESTROY).status, PhaseStatus.SUCCEEDED)
        self.assertEqual(report.status, TeardownStatus.COMPLETED_WITH_WARNINGS)
        self.assertEqual(report.exit_code, 0)
        self.assertIsNone(report.primary_error)

    def test_failed_destroy_is_primary_error_and_later_states_run(self) -> None:
        self._write_inventory()
        provisioner = StubProvisioner(fail=["destroy"], state_paths=[self.state_file])
        report = self._orchestrator(answers=["yes", "no"], provisioner=provisioner).run()

        self.assertEqual(report.result_for(ExecutionPhase.DESTROY).status, PhaseStatus.FAILED)
        self.assertEqual(report.exit_code, 1)
        self.assertIn("Phase: Destroy", report.primary_error)
        self.assertIn("terraform state list", report.primary_error)
        self.assertEqual(report.result_for(ExecutionPhase.LOCAL_CLEANUP).status, PhaseStatus.SUCCEEDED)
        self.assertIsNotNone(report.result_for(ExecutionPhase.RESIDUAL_SWEEP))
        self.assertEqual(report.status, TeardownStatus.COMPLETED_WITH_WARNINGS)
        self.assertIn("Destroy failed", self.confirmation.prompts[-1])
        self.assertTrue(self.state_file.exists())

    def test_state_files_kept_when_second_question_declined(self) -> None:
        report = self._orchestrator(answers=["yes", "no"]).run()

        self.assertEqual(report.status, TeardownStatus.COMPLETED)
        self.assertTrue(self.state_file.exists())

    def test_residual_instances_are_warnings(self) -> None:
        report = self._orchestrator(cloud=StubCloudAccount(residual=2)).run()

        sweep = report.result_for(ExecutionPhase.RESIDUAL_SWEEP)
        self.assertEqual(sweep.status, PhaseStatus.SUCCEEDED_WITH_WARNINGS)
        self.assertIn("Found 2 instance(s)", sweep.warnings[0])
        self.assertEqual(report.residual_count, 2)
        self.assertEqual(report.status, TeardownStatus.COMPLETED_WITH_WARNINGS)
        self.assertEqual(report.exit_code, 0)

    def test_sweep_error_is_only_a_warning(self) -> None:
        report = self._orchestrator(cloud=StubCloudAccount(sweep_error="throttled")).run()

        sweep = report.result_for(ExecutionPhase.RESIDUAL_SWEEP)
        self.assertEqual(sweep.status, PhaseStatus.SUCCEEDED_WITH_WARNINGS)
        self.assertIn("throttled", sweep.warnings[0])
        self.assertIsNone(report.residual_count)
        self.assertEqual(report.exit_code, 0)

    def test_cancellation_between_states(self) -> None:
        control = RunControl()
        self._write_inventory()
        manager = StubConfigManager(on_run=lambda procedure: control.cancellation.cancel())
        report = self._orchestrator(manager=manager, control=control).run()

        self.assertEqual(report.status, TeardownStatus.ABORTED)
        self.assertTrue(report.cancelled)
        self.assertEqual(report.exit_code, 130)
        self.assertEqual(report.result_for(ExecutionPhase.GRACEFUL_SHUTDOWN).status, PhaseStatus.SUCCEEDED)
        self.assertNotIn("destroy", self.provisioner.calls)
        self.assertIn("before Destroy", report.primary_error)

    def test_interrupt_during_shutdown_waits_for_the_playbook(self) -> None:
        self._write_inventory()
        handler = signal.getsignal(signal.SIGINT)
        manager = StubConfigManager(on_run=lambda procedure: os.kill(os.getpid(), signal.SIGINT))
        report = self._orchestrator(manager=manager).run()

        self.assertTrue(report.cancelled)
        self.assertEqual(report.exit_code, 130)
        self.assertEqual(report.result_for(ExecutionPhase.GRACEFUL_SHUTDOWN).status, PhaseStatus.SUCCEEDED)
        self.assertNotIn("destroy", self.provisioner.calls)
        self.assertIn("before Destroy", report.primary_error)
        self.assertIs(signal.getsignal(signal.SIGINT), handler)

    def test_run_log_captures_residual_count(self) -> None:
        runs_dir = self.root / "runs"
        self._orchestrator(
            cloud=StubCloudAccount(residual=1), run_log=RunLog("cleanup", runs_dir)
        ).run()

        data = latest_run(runs_dir, "cleanup")
        self.assertEqual(data["status"], "completed_with_warnings")
        self.assertEqual(data["residual_count"], 1)
        self.assertEqual(data["phases"][-1]["phase"], "Report")


if __name__ == "__main__":
    unittest.main()
