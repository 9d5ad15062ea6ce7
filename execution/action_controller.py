"""Action Controller - propose, confirm, execute, pause, resume, cancel, undo

RESPONSIBILITY:
- Turn a classified Intent into an Action with steps, undo steps and risks
- Decide the flow: auto_execute / confirm / clarify / reject
- Run steps in order through a StepExecutor, tracking completed steps
- Keep a bounded history of completed actions for undo

INVARIANTS:
- Status changes follow ALLOWED_TRANSITIONS only
- At most one pending and one executing action per user
- No public operation raises: state errors and step failures come back
  as {"success": False, ...} results
- An action's error is the failing step's exception message, verbatim

DOES NOT:
- Decide whether an action type needs confirmation (ConfirmationGate's job)
- Touch external systems itself (StepExecutor's job)
"""

import inspect
import logging
import secrets
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Callable

from core import response_formatter
from core.classifier_rules import Intent
from core.deadline import run_with_deadline
from core.router_config import RouterConfig
from execution import step_plans
from execution.step_executor import SimulatedStepExecutor, StepExecutor, StepFailedError


class ActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    ActionStatus.PENDING: {ActionStatus.EXECUTING, ActionStatus.CANCELLED},
    ActionStatus.EXECUTING: {ActionStatus.PAUSED, ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELLED},
    ActionStatus.PAUSED: {ActionStatus.EXECUTING, ActionStatus.CANCELLED},
    ActionStatus.FAILED: {ActionStatus.EXECUTING, ActionStatus.CANCELLED},  # resume from the failed step
    ActionStatus.COMPLETED: set(),
    ActionStatus.CANCELLED: set(),
}


class InvalidTransitionError(RuntimeError):
    pass


@dataclass
class Action:
    id: str
    type: str
    intent: Intent
    user_id: Optional[str] = None
    target: Optional[str] = None
    confidence: float = 0.0
    summary: str = ""
    steps: List[Dict[str, Any]] = field(default_factory=list)
    undo_steps: List[Dict[str, Any]] = field(default_factory=list)
    risk: str = "low"
    risk_factors: List[str] = field(default_factory=list)
    reversible: bool = False
    status: ActionStatus = ActionStatus.PENDING
    completed_steps: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    undone: bool = False
    context: Dict[str, Any] = field(default_factory=dict)
    proposed_at: float = 0.0
    started_at: Optional[float] = None
    paused_at: Optional[float] = None
    completed_at: Optional[float] = None
    failed_at: Optional[float] = None
    cancelled_at: Optional[float] = None
    undone_at: Optional[float] = None
    # set while a step loop owns this action
    running: bool = field(default=False, repr=False)


class ActionController:
    """Action lifecycle state machine."""

    GENERIC_ALTERNATIVES = (
        {"description": "Try a different approach", "confidence": 0.5},
        {"description": "Break into smaller steps", "confidence": 0.5},
        {"description": "Ask for more details", "confidence": 0.5},
    )

    ALTERNATIVES_SCHEMA = {
        "type": "object",
        "properties": {
            "alternatives": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    },
                    "required": ["description"],
                },
            }
        },
        "required": ["alternatives"],
    }

    def __init__(
        self,
        executor: Optional[StepExecutor] = None,
        config: Optional[RouterConfig] = None,
        planner=None,
        clock: Callable[[], float] = time.time,
    ):
        config = config or RouterConfig.get()
        settings = config.section("actions")
        self.thresholds: Dict[str, float] = dict(settings["thresholds"])
        self.max_history = int(settings["max_history"])
        self.planner_timeout = float(config.value("classifier", "ai_timeout_seconds", 5.0))

        self.executor = executor or SimulatedStepExecutor()
        self.planner = planner
        self._clock = clock

        self._pending: "OrderedDict[str, Action]" = OrderedDict()
        self._executing: "OrderedDict[str, Action]" = OrderedDict()
        self._paused: "OrderedDict[str, Action]" = OrderedDict()
        self._failed: "OrderedDict[str, Action]" = OrderedDict()
        self._history: deque = deque(maxlen=self.max_history)

        logging.info(f"ActionController initialized (executor={type(self.executor).__name__})")

    # =========================================================================
    # Proposal
    # =========================================================================

    async def propose_action(self, intent: Intent, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        context = dict(context or {})
        user_id = context.get("user_id")

        superseded = self._find(self._pending, None, user_id) if user_id else None
        if superseded:
            self.cancel(superseded.id)
            logging.info(f"ActionController: superseded pending action {superseded.id} for user {user_id}")

        action_type = intent.action_type or "unknown"
        target = intent.target or intent.project
        risks = step_plans.assess_action_risks(action_type, target, intent.confidence, intent.risk)

        action = Action(
            id=self._generate_id(),
            type=action_type,
            intent=intent,
            user_id=user_id,
            target=target,
            confidence=intent.confidence,
            steps=step_plans.plan_steps(action_type, intent.summary, intent.steps),
            undo_steps=step_plans.plan_undo_steps(action_type, context),
            risk=risks["level"],
            risk_factors=risks["factors"],
            reversible=step_plans.is_reversible(action_type),
            context=context,
            proposed_at=self._clock(),
        )
        action.summary = step_plans.generate_summary(action_type, target)
        self._pending[action.id] = action

        flow = self.decide_flow(action)
        if flow == "auto_execute":
            message = response_formatter.format_auto_execute(action)
        elif flow == "confirm":
            message = response_formatter.format_confirm(action)
        elif flow == "clarify":
            message = response_formatter.format_clarify(action, intent.clarifying_questions or None)
        else:
            message = response_formatter.format_reject(action)

        logging.info(
            f"ActionController: proposed {action.id} {action.type} -> {action.target} "
            f"(conf={action.confidence:.2f}, risk={action.risk}, flow={flow})"
        )
        return {"success": True, "action": action, "flow": flow, "message": message}

    def decide_flow(self, action: Action) -> str:
        if action.confidence >= self.thresholds["auto_execute"] and action.risk == "low":
            return "auto_execute"
        if action.confidence >= self.thresholds["confirm"]:
            return "confirm"
        if action.confidence >= self.thresholds["clarify"]:
            return "clarify"
        return "reject"

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_action(self, action_id: str) -> Dict[str, Any]:
        action = self._pending.get(action_id)
        if action is None:
            return {"success": False, "status": None, "message": "Action not found or already executed"}

        busy = self._find(self._executing, None, action.user_id) if action.user_id else None
        if busy:
            return {
                "success": False,
                "status": action.status.value,
                "message": f"Another action is already running: {busy.summary}",
            }

        del self._pending[action_id]
        self._transition(action, ActionStatus.EXECUTING)
        action.started_at = self._clock()
        self._executing[action_id] = action
        return await self._run_steps(action)

    async def resume(self, action_id: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        action = self._find(self._paused, action_id, user_id) or self._find(self._failed, action_id, user_id)
        if action is None:
            return {"success": False, "message": "No paused action to resume"}

        busy = self._find(self._executing, None, action.user_id) if action.user_id else None
        if busy:
            return {"success": False, "message": f"Another action is already running: {busy.summary}"}

        self._paused.pop(action.id, None)
        self._failed.pop(action.id, None)
        self._transition(action, ActionStatus.EXECUTING)
        action.error = None
        self._executing[action.id] = action
        if action.running:
            logging.info(f"ActionController: {action.id} resumed while its step is still in flight")
            return {
                "success": True,
                "status": action.status.value,
                "action": action,
                "message": f"Resumed: {action.summary} (step {len(action.completed_steps) + 1}/{len(action.steps)} still running)",
            }
        logging.info(f"ActionController: resuming {action.id} at step {len(action.completed_steps) + 1}/{len(action.steps)}")
        return await self._run_steps(action)

    async def _run_steps(self, action: Action) -> Dict[str, Any]:
        action.running = True
        try:
            return await self._step_loop(action)
        finally:
            action.running = False

    async def _step_loop(self, action: Action) -> Dict[str, Any]:
        total = len(action.steps)
        for index in range(len(action.completed_steps), total):
            if action.status != ActionStatus.EXECUTING:
                return self._interrupted_result(action, index)

            step = action.steps[index]
            try:
                result = await self._execute_step(step, action.context)
            except Exception as e:
                if action.status != ActionStatus.EXECUTING:
                    # paused or cancelled while the step was in flight; the step is retried on resume
                    action.error = str(e)
                    return self._interrupted_result(action, index)
                return self._fail(action, e)
            action.completed_steps.append({"step": step, "result": result, "completed_at": self._clock()})

        if action.status != ActionStatus.EXECUTING:
            return self._interrupted_result(action, total)

        self._transition(action, ActionStatus.COMPLETED)
        action.completed_at = self._clock()
        self._executing.pop(action.id, None)
        self._history.append(action)
        logging.info(f"ActionController: completed {action.id} ({total} steps)")

        return {
            "success": True,
            "status": action.status.value,
            "action": action,
            "results": list(action.completed_steps),
            "undo_available": action.reversible,
            "message": response_formatter.format_completion(action),
        }

    async def _execute_step(self, step: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        result = self.executor.execute(step.get("type"), step, context)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, dict) and result.get("success") is False:
            raise StepFailedError(result.get("error") or result.get("message") or f"Step {step.get('type')} failed")
        return result

    def _fail(self, action: Action, error: Exception) -> Dict[str, Any]:
        self._transition(action, ActionStatus.FAILED)
        action.error = str(error)
        action.failed_at = self._clock()
        self._executing.pop(action.id, None)
        self._failed[action.id] = action
        while len(self._failed) > self.max_history:
            self._failed.popitem(last=False)

        logging.warning(f"ActionController: {action.id} failed after {len(action.completed_steps)} steps: {action.error}")
        return {
            "success": False,
            "status": action.status.value,
            "action": action,
            "error": action.error,
            "completed_steps": list(action.completed_steps),
            "message": f"Action failed: {action.error}",
        }

    def _interrupted_result(self, action: Action, index: int) -> Dict[str, Any]:
        if action.status == ActionStatus.PAUSED:
            step = action.steps[index] if index < len(action.steps) else {}
            where = f" at step {index + 1}/{len(action.steps)}: {step.get('description') or step.get('type')}" if step else ""
            message = f"Paused{where}"
        else:
            message = "Action was cancelled"
        return {
            "success": True,
            "status": action.status.value,
            "action": action,
            "completed_steps": list(action.completed_steps),
            "message": message,
        }

    # =========================================================================
    # Override commands
    # =========================================================================

    def pause(self, action_id: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        action = self._find(self._executing, action_id, user_id)
        if action is None:
            return {"success": False, "message": "No active action to pause"}

        self._transition(action, ActionStatus.PAUSED)
        action.paused_at = self._clock()
        del self._executing[action.id]
        self._paused[action.id] = action
        return {"success": True, "message": f"Paused: {action.summary}", "action": action}

    def cancel(self, action_id: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        for owner in (self._executing, self._pending, self._paused, self._failed):
            action = self._find(owner, action_id, user_id)
            if action is not None:
                break
        else:
            return {"success": False, "message": "No action to cancel"}

        self._transition(action, ActionStatus.CANCELLED)
        action.cancelled_at = self._clock()
        for owner in (self._executing, self._pending, self._paused, self._failed):
            owner.pop(action.id, None)
        logging.info(f"ActionController: cancelled {action.id}")
        return {"success": True, "message": f"Cancelled: {action.summary}", "action": action}

    async def undo_last(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        candidates = [
            a for a in reversed(self._history)
            if a.reversible and not a.undone and (user_id is None or a.user_id == user_id)
        ]
        if not candidates:
            return {"success": False, "message": "Nothing to undo - no reversible actions in history"}

        action = candidates[0]
        if not action.undo_steps:
            return {"success": False, "message": f"Cannot undo \"{action.type}\" - no undo steps defined"}

        try:
            for step in action.undo_steps:
                await self._execute_step(step, action.context)
        except Exception as e:
            logging.warning(f"ActionController: undo of {action.id} failed: {e}")
            return {"success": False, "message": f"Undo failed: {e}", "error": str(e), "action": action}

        action.undone = True
        action.undone_at = self._clock()
        logging.info(f"ActionController: undid {action.id}")
        return {"success": True, "message": f"Undid: {action.summary}", "action": action}

    def explain(self, action_id: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        action = (
            self._find(self._pending, action_id, user_id)
            or self._find(self._executing, action_id, user_id)
            or self._find(self._paused, action_id, user_id)
            or self._find(self._failed, action_id, user_id)
        )
        if action is None:
            return {"success": False, "message": "No action to explain"}
        return {"success": True, "message": response_formatter.format_explanation(action), "action": action}

    async def change_approach(
        self,
        action_id: Optional[str] = None,
        suggestion: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        action = self._find(self._pending, action_id, user_id)
        if action is None:
            return {"success": False, "message": "No pending action to change"}

        self.cancel(action.id)
        alternatives = await self._generate_alternatives(action, suggestion)
        return {
            "success": True,
            "message": "Here are alternative approaches:",
            "alternatives": alternatives,
            "original_action": action,
        }

    async def _generate_alternatives(self, action: Action, suggestion: Optional[str]) -> List[Dict[str, Any]]:
        if self.planner is None:
            return [dict(a) for a in self.GENERIC_ALTERNATIVES]

        task = action.summary or action.type
        prompt = (
            f'For the task "{task}": suggest 3 alternative approaches, considering the user\'s preference for: "{suggestion}"'
            if suggestion
            else f'Suggest 3 alternative approaches to: "{task}"'
        )
        try:
            raw = await run_with_deadline(
                self.planner.generate, prompt, self.ALTERNATIVES_SCHEMA,
                timeout=self.planner_timeout, operation="alternative generation",
            )
            alternatives = [
                {"description": a["description"], "confidence": float(a.get("confidence", 0.7))}
                for a in raw.get("alternatives", [])
            ]
            if alternatives:
                return alternatives
        except Exception as e:
            logging.warning(f"ActionController: alternative generation failed: {e}")
        return [dict(a) for a in self.GENERIC_ALTERNATIVES]

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        def mine(actions):
            return [a for a in actions if user_id is None or a.user_id == user_id]

        return {
            "pending": [
                {"id": a.id, "summary": a.summary, "status": a.status.value, "type": a.type,
                 "confidence": a.confidence, "proposed_at": a.proposed_at}
                for a in mine(self._pending.values())
            ],
            "executing": [
                {"id": a.id, "summary": a.summary, "status": a.status.value,
                 "progress": f"{len(a.completed_steps)}/{len(a.steps)}", "started_at": a.started_at}
                for a in mine(self._executing.values())
            ],
            "paused": [
                {"id": a.id, "summary": a.summary, "status": a.status.value, "paused_at": a.paused_at}
                for a in mine(self._paused.values())
            ],
            "failed": [
                {"id": a.id, "summary": a.summary, "error": a.error, "failed_at": a.failed_at}
                for a in mine(self._failed.values())
            ],
            "last_completed": [
                {"id": a.id, "summary": a.summary, "status": a.status.value,
                 "undo_available": a.reversible and not a.undone, "completed_at": a.completed_at}
                for a in mine(self._history)[-3:]
            ],
        }

    def get_action(self, action_id: str) -> Optional[Action]:
        for owner in (self._pending, self._executing, self._paused, self._failed):
            if action_id in owner:
                return owner[action_id]
        return next((a for a in self._history if a.id == action_id), None)

    def has_active_actions(self, user_id: Optional[str] = None) -> bool:
        return any(
            self._find(owner, None, user_id) is not None
            for owner in (self._pending, self._executing, self._paused)
        )

    def clear_pending(self):
        for owner in (self._pending, self._paused, self._failed):
            for action in list(owner.values()):
                self._transition(action, ActionStatus.CANCELLED)
                action.cancelled_at = self._clock()
            owner.clear()
        logging.info("ActionController: cleared pending and paused actions")

    def clear_history(self):
        self._history.clear()
        logging.info("ActionController: cleared action history")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _generate_id(self) -> str:
        return f"act_{int(self._clock() * 1000)}_{secrets.token_hex(3)}"

    def _find(self, owner: "OrderedDict[str, Action]", action_id: Optional[str], user_id: Optional[str]) -> Optional[Action]:
        if action_id is not None:
            action = owner.get(action_id)
            if action is not None and user_id is not None and action.user_id != user_id:
                return None
            return action
        return next((a for a in owner.values() if user_id is None or a.user_id == user_id), None)

    def _transition(self, action: Action, new_status: ActionStatus):
        if new_status not in ALLOWED_TRANSITIONS[action.status]:
            allowed = ", ".join(s.value for s in ALLOWED_TRANSITIONS[action.status]) or "none"
            raise InvalidTransitionError(
                f"Invalid transition for {action.id}: {action.status.value} -> {new_status.value} (allowed: {allowed})"
            )
        action.status = new_status
