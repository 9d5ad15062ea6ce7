"""Step Executor port

Real executors (git, deploy hooks, issue trackers) live outside this
package and implement StepExecutor. execute() may be sync or async.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any


class StepFailedError(RuntimeError):
    """Raised when an executor reports {"success": False} for a step."""


class StepExecutor(ABC):

    @abstractmethod
    def execute(self, step_type: str, step: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        """Run one step. Raise (or return success=False) on failure."""


class SimulatedStepExecutor(StepExecutor):
    """Default executor: logs each step and reports success."""

    def execute(self, step_type, step, context):
        description = step.get("description") or "Step completed"
        logging.info(f"SimulatedStepExecutor: {step_type} - {description}")
        return {"success": True, "step": step_type, "message": description}
