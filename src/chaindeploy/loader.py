# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import List

from .model import Step
from .registry import StepRegistry

DEFAULT_SCRIPT = "deploy.py"


def load_steps(path: str | Path) -> List[Step]:
    """
    Load deployment steps from a python file.

    The file must define either:
      - steps() -> List[Step]
      - STEPS = [Step, ...]
    """
    script = Path(path).expanduser().resolve()
    if not script.exists():
        raise FileNotFoundError(f"Deploy script not found: {script}")
    if script.suffix != ".py":
        raise ValueError(f"Deploy script must be a .py file, got: {script.name}")

    module_name = f"chaindeploy_script_{script.stem}"
    globals_dict = runpy.run_path(str(script), run_name=module_name)

    loaded = None
    if "steps" in globals_dict and callable(globals_dict["steps"]):
        loaded = globals_dict["steps"]()
    elif "STEPS" in globals_dict:
        loaded = globals_dict["STEPS"]

    if not isinstance(loaded, list) or not all(isinstance(s, Step) for s in loaded):
        raise TypeError(
            "Deploy script must return/define a List[Step]. "
            "Define steps() -> List[Step] or STEPS = [Step, ...]."
        )
    return loaded


def load_registry(path: str | Path) -> StepRegistry:
    return StepRegistry(load_steps(path))
