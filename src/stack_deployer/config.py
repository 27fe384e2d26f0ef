"""Configuration loading utilities for stack-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

# Logical tool identifiers and the executables that satisfy them.
TOOL_BINARIES = {
    "provisioner": "terraform",
    "configuration_manager": "ansible-playbook",
    "collection_installer": "ansible-galaxy",
    "cloud_cli": "aws",
}


@dataclass
class TerraformConfig:
    """Settings for driving the infrastructure provisioner."""

    working_dir: str = "terraform"
    var_file: Optional[str] = None
    plan_file: str = "tfplan"
    binary: str = "terraform"


@dataclass
class AnsibleConfig:
    """Settings for driving the configuration manager."""

    working_dir: str = "ansible"
    inventory_file: str = "inventory.ini"      # relative to working_dir
    requirements_file: str = "requirements.yml"
    site_playbook: str = "playbooks/site.yml"
    test_playbook: str = "playbooks/test.yml"
    health_playbook: str = "playbooks/test.yml"
    shutdown_playbook: str = "playbooks/shutdown.yml"
    ssh_user: str = "ubuntu"
    ssh_key_file: Optional[str] = "~/.ssh/devops-key.pem"
    critical_roles: List[str] = field(default_factory=lambda: ["vault"])
    playbook_binary: str = "ansible-playbook"
    galaxy_binary: str = "ansible-galaxy"

    @property
    def inventory_path(self) -> Path:
        return Path(self.working_dir) / self.inventory_file


@dataclass
class CloudConfig:
    """Cloud account settings. Credentials themselves come from boto3's chain."""

    region: Optional[str] = None
    profile: Optional[str] = None
    residual_tag_pattern: str = "*-Instance"
    required_tools: List[str] = field(
        default_factory=lambda: ["provisioner", "configuration_manager", "cloud_cli"]
    )


@dataclass
class PipelineConfig:
    """Run control for both pipelines."""

    timeout_seconds: Optional[float] = None   # overall budget, None = unbounded
    probe_timeout_seconds: float = 10.0       # per HTTP health probe
    state_dir: str = ".stack-deployer"


@dataclass
class AppConfig:
    """Top-level configuration."""

    terraform: TerraformConfig = field(default_factory=TerraformConfig)
    ansible: AnsibleConfig = field(default_factory=AnsibleConfig)
    cloud: CloudConfig = field(default_factory=CloudConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        terraform_payload = _section(payload, "terraform")
        ansible_payload = _section(payload, "ansible")
        cloud_payload = _section(payload, "cloud")
        pipeline_payload = _section(payload, "pipeline")

        unknown_tools = [
            t for t in cloud_payload.get("required_tools", []) if t not in TOOL_BINARIES
        ]
        if unknown_tools:
            raise ConfigError(
                f"unknown tool identifiers in cloud.required_tools: {', '.join(unknown_tools)}",
                remediation=f"Use any of: {', '.join(TOOL_BINARIES)}",
            )

        try:
            return cls(
                terraform=TerraformConfig(**{**TerraformConfig().__dict__, **terraform_payload}),
                ansible=AnsibleConfig(**{**AnsibleConfig().__dict__, **ansible_payload}),
                cloud=CloudConfig(**{**CloudConfig().__dict__, **cloud_payload}),
                pipeline=PipelineConfig(**{**PipelineConfig().__dict__, **pipeline_payload}),
            )
        except TypeError as exc:
            raise ConfigError(
                f"invalid configuration key: {exc}",
                remediation="Compare the file against config/default_config.json.",
            ) from exc


def _section(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = payload.get(name, {}) or {}
    # Keys starting with "_" are comments
    return {k: v for k, v in section.items() if not k.startswith("_")}


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - STACK_DEPLOYER_TERRAFORM_DIR: Terraform working directory
    - STACK_DEPLOYER_ANSIBLE_DIR: Ansible working directory
    - STACK_DEPLOYER_SSH_USER: SSH user written into the inventory
    - STACK_DEPLOYER_SSH_KEY_FILE: SSH private key referenced by the inventory
    - STACK_DEPLOYER_TIMEOUT: overall pipeline timeout in seconds
    - AWS_DEFAULT_REGION / AWS_PROFILE: cloud account selection
    """

    config: Optional[AppConfig] = None
    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
        config = _read(candidate)
    elif _DEFAULT_CONFIG_PATH.is_file():
        config = _read(_DEFAULT_CONFIG_PATH)
    else:
        config = AppConfig()

    env_terraform_dir = os.getenv("STACK_DEPLOYER_TERRAFORM_DIR")
    if env_terraform_dir:
        config.terraform.working_dir = env_terraform_dir

    env_ansible_dir = os.getenv("STACK_DEPLOYER_ANSIBLE_DIR")
    if env_ansible_dir:
        config.ansible.working_dir = env_ansible_dir

    env_user = os.getenv("STACK_DEPLOYER_SSH_USER")
    if env_user:
        config.ansible.ssh_user = env_user

    env_key = os.getenv("STACK_DEPLOYER_SSH_KEY_FILE")
    if env_key:
        config.ansible.ssh_key_file = env_key

    env_timeout = os.getenv("STACK_DEPLOYER_TIMEOUT")
    if env_timeout:
        try:
            config.pipeline.timeout_seconds = float(env_timeout)
        except ValueError as exc:
            raise ConfigError(
                f"STACK_DEPLOYER_TIMEOUT is not a number: {env_timeout!r}",
                remediation="Set it to a number of seconds, or unset it.",
            ) from exc

    env_region = os.getenv("AWS_DEFAULT_REGION") or os.getenv("AWS_REGION")
    if env_region and not config.cloud.region:
        config.cloud.region = env_region

    env_profile = os.getenv("AWS_PROFILE")
    if env_profile and not config.cloud.profile:
        config.cloud.profile = env_profile

    return config


def _read(candidate: Path) -> AppConfig:
    with candidate.open("r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"{candidate} is not valid JSON: {exc}",
                remediation="Fix the syntax error and re-run.",
            ) from exc
    return AppConfig.from_dict(data)
