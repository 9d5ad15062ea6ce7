"""Command Router - one message in, one routed outcome out

Wires the pipeline once at startup:

    ConfirmationGate (yes/no) -> override commands -> correction check
    -> ContextResolver -> CommandDecomposer / MultiIntentParser
    -> IntentClassifier -> ActionController (+ ConfirmationGate policy)

INVARIANTS:
- handle_message never raises; every outcome is a dict with "success"
- Every result carries the resolved text and the decomposed steps
- A multi-step plan asks for a single confirmation for the whole plan
"""

import logging
import re
import time
from typing import Dict, Any, List, Optional, Callable

from agents.command_decomposer import CommandDecomposer
from agents.intent_classifier import IntentClassifier
from agents.multi_intent_parser import MultiIntentParser
from core import response_formatter
from core.classifier_rules import Intent
from core.confirmation_gate import ConfirmationGate
from core.context_resolver import ContextResolver
from core.project_registry import ProjectRegistry
from core.router_config import RouterConfig
from execution.action_controller import ActionController
from execution.step_executor import StepExecutor
from memory.corrections import CorrectionStore


class CommandRouter:
    """Routes chat messages through resolution, classification and the action lifecycle."""

    OVERRIDE_COMMANDS = (
        ("undo", re.compile(r"^(?:undo|undo that|revert that|roll\s*back)[.!]?$", re.IGNORECASE)),
        ("pause", re.compile(r"^(?:pause|hold on|wait)[.!]?$", re.IGNORECASE)),
        ("resume", re.compile(r"^(?:resume|continue|carry on|keep going)[.!]?$", re.IGNORECASE)),
        ("cancel", re.compile(r"^(?:stop|cancel|abort)[.!]?$", re.IGNORECASE)),
        ("explain", re.compile(r"^(?:explain|why|details|what are you doing)[.!?]?$", re.IGNORECASE)),
        ("status", re.compile(r"^(?:status|progress|what'?s running)[.!?]?$", re.IGNORECASE)),
    )

    PLAN_ACTION = "plan"

    def __init__(
        self,
        resolver: ContextResolver,
        decomposer: CommandDecomposer,
        parser: MultiIntentParser,
        classifier: IntentClassifier,
        controller: ActionController,
        gate: ConfirmationGate,
    ):
        self.resolver = resolver
        self.decomposer = decomposer
        self.parser = parser
        self.classifier = classifier
        self.controller = controller
        self.gate = gate
        self._last_classification: Dict[str, Intent] = {}

    @classmethod
    def build(
        cls,
        ai_enabled: bool = False,
        executor: Optional[StepExecutor] = None,
        config: Optional[RouterConfig] = None,
        registry: Optional[ProjectRegistry] = None,
        correction_store: Optional[CorrectionStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> "CommandRouter":
        """Default wiring. ai_enabled pulls classifier/planner models from ModelManager."""
        config = config or RouterConfig.get()
        registry = registry or ProjectRegistry.get()
        known_entities = registry.known_entities()

        ai_classifier = None
        planner = None
        if ai_enabled:
            from agents.ai_classifier import AIClassifier
            from models.model_manager import get_model_manager
            ai_classifier = AIClassifier()
            planner = get_model_manager().get("planner")

        router = cls(
            resolver=ContextResolver(registry=registry, config=config, clock=clock),
            decomposer=CommandDecomposer(
                min_words=int(config.value("decomposer", "min_words", 5)), known_entities=known_entities
            ),
            parser=MultiIntentParser(known_entities=known_entities),
            classifier=IntentClassifier(
                registry=registry, config=config, ai_classifier=ai_classifier,
                correction_store=correction_store, clock=clock,
            ),
            controller=ActionController(executor=executor, config=config, planner=planner, clock=clock),
            gate=ConfirmationGate(config=config, clock=clock),
        )
        logging.info(f"CommandRouter built (ai={'on' if ai_enabled else 'off'})")
        return router

    def start(self):
        self.resolver.start()
        self.gate.start()

    def close(self):
        self.gate.close()
        self.resolver.close()

    # =========================================================================
    # Entry point
    # =========================================================================

    async def handle_message(
        self,
        user_id: str,
        conversation_id: str,
        text: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        context = dict(context or {})
        context["user_id"] = user_id
        text = (text or "").strip()

        try:
            return await self._route(user_id, conversation_id, text, context)
        except Exception as e:
            logging.error(f"CommandRouter: failed to route \"{text}\": {e}", exc_info=True)
            return self._result(False, "error", f"Something went wrong: {e}", text)

    async def _route(self, user_id: str, conversation_id: str, text: str, context: Dict[str, Any]) -> Dict[str, Any]:
        reply = self.gate.is_confirmation(text)
        if reply and self.gate.has_pending(user_id):
            return await self._handle_reply(user_id, reply, text)

        override = self._match_override(text)
        if override:
            return await self._handle_override(user_id, override, text)

        if reply == "yes":
            return self._result(False, "confirmation", "Nothing is waiting for confirmation.", text)

        corrected = self.classifier.check_for_correction(
            text, {"user_id": user_id, "last_classification": self._last_classification.get(user_id)}
        )
        command = corrected or text

        resolved = self.resolver.resolve_pronouns(conversation_id, command)
        self.resolver.detect_and_record(conversation_id, resolved)

        plan = self.decomposer.decompose(resolved)
        if plan is not None:
            steps = plan.steps
            conditional = plan.is_conditional
        else:
            steps = [command.text for command in self.parser.parse(resolved).intents]
            conditional = False

        logging.info(f"CommandRouter[{conversation_id}]: \"{text}\" -> \"{resolved}\" steps={steps}")

        if len(steps) > 1:
            return self._propose_plan(user_id, steps, conditional, plan, text, resolved, context)
        return await self._route_single(user_id, steps[0] if steps else resolved, text, resolved, context)

    # =========================================================================
    # Single command
    # =========================================================================

    async def _route_single(
        self, user_id: str, command: str, text: str, resolved: str, context: Dict[str, Any]
    ) -> Dict[str, Any]:
        intent = await self.classifier.classify(command, context)
        self._last_classification[user_id] = intent

        self._drop_pending(user_id)
        proposal = await self.controller.propose_action(intent, context)
        action = proposal["action"]
        flow = proposal["flow"]
        gated = intent.requires_confirmation or self.gate.requires_confirmation(action.type)

        if flow == "auto_execute" and gated:
            flow = "confirm"
            proposal["message"] = response_formatter.format_confirm(action)

        if flow == "auto_execute":
            outcome = await self.controller.execute_action(action.id)
            return self._result(
                outcome["success"], flow, "\n\n".join((proposal["message"], outcome["message"])),
                text, resolved, [command], intent=intent, action=action,
            )

        if flow in ("confirm", "clarify"):
            self.gate.set_pending(
                user_id,
                action.type,
                params={"action_id": action.id, "target": action.target, "company": intent.company},
                context=context,
                message=proposal["message"],
            )
        else:
            self.controller.cancel(action.id)

        return self._result(True, flow, proposal["message"], text, resolved, [command], intent=intent, action=action)

    # =========================================================================
    # Multi-step plans
    # =========================================================================

    def _propose_plan(
        self, user_id: str, steps: List[str], conditional: bool, plan, text: str, resolved: str, context: Dict[str, Any]
    ) -> Dict[str, Any]:
        if plan is not None:
            message = self.decomposer.format_plan(plan)
        else:
            lines = ["I'll do this in order:"]
            lines.extend(f"{i}. {step}" for i, step in enumerate(steps, start=1))
            lines.extend(["", 'Reply "yes" to proceed or "no" to cancel.'])
            message = "\n".join(lines)

        self._drop_pending(user_id)
        self.gate.set_pending(
            user_id,
            self.PLAN_ACTION,
            params={"steps": steps, "conditional": conditional},
            context=context,
            message=message,
        )
        return self._result(True, "confirm_plan", message, text, resolved, steps, conditional=conditional)

    async def _run_plan(self, user_id: str, steps: List[str], conditional: bool, context: Dict[str, Any]) -> Dict[str, Any]:
        outcomes = []
        lines = []
        stopped = False

        for index, step in enumerate(steps, start=1):
            intent = await self.classifier.classify(step, context)
            self._last_classification[user_id] = intent
            proposal = await self.controller.propose_action(intent, context)
            action = proposal["action"]

            if proposal["flow"] == "reject":
                self.controller.cancel(action.id)
                outcome = {"success": False, "message": f"Could not understand \"{step}\""}
            else:
                outcome = await self.controller.execute_action(action.id)

            outcomes.append({"step": step, "action": action, "success": outcome["success"], "message": outcome["message"]})
            lines.append(f"{index}. {'done' if outcome['success'] else 'failed'}: {step}")

            if not outcome["success"] and conditional:
                stopped = True
                lines.append(f"Stopped: step {index} did not succeed, remaining steps skipped.")
                logging.info(f"CommandRouter: conditional plan stopped at step {index}")
                break

        success = all(o["success"] for o in outcomes) and not stopped
        return {"success": success, "outcomes": outcomes, "message": "\n".join(lines)}

    # =========================================================================
    # Confirmations and overrides
    # =========================================================================

    async def _handle_reply(self, user_id: str, reply: str, text: str) -> Dict[str, Any]:
        if reply == "no":
            self._drop_pending(user_id)
            return self._result(True, "cancelled", "Cancelled.", text)

        pending = self.gate.confirm(user_id)
        if pending is None:
            return self._result(False, "confirmation", "Nothing is waiting for confirmation.", text)

        if pending.action == self.PLAN_ACTION:
            steps = pending.params["steps"]
            outcome = await self._run_plan(user_id, steps, pending.params.get("conditional", False), pending.context)
            return self._result(
                outcome["success"], "plan_executed", outcome["message"], text, steps=steps, outcomes=outcome["outcomes"]
            )

        outcome = await self.controller.execute_action(pending.params["action_id"])
        return self._result(outcome["success"], "executed", outcome["message"], text, action=outcome.get("action"))

    def _drop_pending(self, user_id: str):
        """Forget the user's unanswered confirmation and cancel the action behind it."""
        pending = self.gate.get_pending(user_id)
        if pending is None:
            return
        self.gate.cancel(user_id)
        action_id = pending.params.get("action_id")
        if action_id:
            self.controller.cancel(action_id)

    def _match_override(self, text: str) -> Optional[str]:
        for name, pattern in self.OVERRIDE_COMMANDS:
            if pattern.match(text):
                return name
        return None

    async def _handle_override(self, user_id: str, command: str, text: str) -> Dict[str, Any]:
        if command == "undo":
            outcome = await self.controller.undo_last(user_id)
        elif command == "pause":
            outcome = self.controller.pause(user_id=user_id)
        elif command == "resume":
            outcome = await self.controller.resume(user_id=user_id)
        elif command == "cancel":
            self.gate.cancel(user_id)
            outcome = self.controller.cancel(user_id=user_id)
        elif command == "explain":
            outcome = self.controller.explain(user_id=user_id)
        else:
            outcome = {
                "success": True,
                "message": response_formatter.format_status(self.controller.get_status(user_id)),
            }

        logging.info(f"CommandRouter: override '{command}' for {user_id} -> success={outcome['success']}")
        return self._result(outcome["success"], command, outcome["message"], text, action=outcome.get("action"))

    @staticmethod
    def _result(
        success: bool,
        flow: str,
        message: str,
        text: str,
        resolved: Optional[str] = None,
        steps: Optional[List[str]] = None,
        **extra,
    ) -> Dict[str, Any]:
        result = {
            "success": success,
            "flow": flow,
            "message": message,
            "original": text,
            "resolved": resolved if resolved is not None else text,
            "steps": steps or [],
        }
        result.update(extra)
        return result
