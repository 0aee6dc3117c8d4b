from .dsl import address_of, build, contract_step, deploy_contract, deployment, step, StepBuilder
from .model import DeployResult, Step
from .orchestrator import Orchestrator
from .registry import ALL, StepRegistry

__all__ = [
    "address_of", "build", "contract_step", "deploy_contract", "deployment", "step", "StepBuilder",
    "DeployResult", "Step", "Orchestrator", "ALL", "StepRegistry",
]
