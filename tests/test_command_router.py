import asyncio

import pytest
from unittest.mock import AsyncMock

from core.classifier_rules import Intent
from core.command_router import CommandRouter
from execution.action_controller import ActionStatus
from execution.step_executor import StepExecutor


class RecordingExecutor(StepExecutor):
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def execute(self, step_type, step, context):
        self.calls.append(step_type)
        if step_type == self.fail_on:
            raise RuntimeError(f"{step_type} failed")
        return {"success": True}


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def router(executor, config, registry, clock):
    return CommandRouter.build(executor=executor, config=config, registry=registry, clock=clock)


def send(router, text, user_id="u1", conversation_id="chat-1"):
    return asyncio.run(router.handle_message(user_id, conversation_id, text))


class TestSingleCommands:

    def test_clarify_then_confirm_executes(self, router, executor):
        result = send(router, "check judo status")

        assert result["flow"] == "clarify"
        assert result["intent"].intent == "check-status"
        assert router.gate.has_pending("u1")

        confirmed = send(router, "yes")
        assert confirmed["success"]
        assert confirmed["flow"] == "executed"
        assert executor.calls == ["fetch_status"]
        assert not router.gate.has_pending("u1")

    def test_pronoun_is_resolved_before_classification(self, router):
        send(router, "check judo status")
        send(router, "no")

        result = send(router, "deploy it")
        assert result["resolved"] == "deploy JUDO"
        assert result["steps"] == ["deploy JUDO"]
        assert result["intent"].project == "judo"
        assert result["intent"].risk == "high"

    def test_no_cancels_the_pending_action(self, router, executor):
        action = send(router, "deploy judo")["action"]
        result = send(router, "no")

        assert result["flow"] == "cancelled"
        assert action.status == ActionStatus.CANCELLED
        assert executor.calls == []

    def test_unintelligible_message_is_rejected(self, router):
        result = send(router, "xyzzy")
        assert result["flow"] == "reject"
        assert not router.gate.has_pending("u1")
        assert result["action"].status == ActionStatus.CANCELLED

    def test_yes_without_pending_confirmation(self, router):
        result = send(router, "yes")
        assert not result["success"]
        assert result["flow"] == "confirmation"

    def test_correction_reroutes_and_is_learned(self, router):
        first = send(router, "deploy judo")["action"]
        result = send(router, "no, I meant deploy lusotown")

        assert result["resolved"] == "deploy lusotown"
        assert result["intent"].project == "lusotown"
        assert first.status == ActionStatus.CANCELLED
        assert router.classifier.get_correction_stats()["total_corrections"] == 1

        # every recorded correction so far concerned "deploy", so confidence is damped below clarify
        assert result["intent"].confidence == pytest.approx(0.52 * 0.7)
        assert result["flow"] == "reject"
        assert not router.gate.has_pending("u1")

    def test_new_command_replaces_unanswered_confirmation(self, router):
        first = send(router, "deploy judo")["action"]
        second = send(router, "check judo status")["action"]

        assert first.status == ActionStatus.CANCELLED
        assert router.gate.get_pending("u1").params["action_id"] == second.id


class TestGatePolicy:

    def _with_intent(self, router, intent):
        router.classifier = AsyncMock()
        router.classifier.classify.return_value = intent
        router.classifier.check_for_correction = lambda text, context: None

    def test_high_confidence_low_risk_auto_executes(self, router, executor):
        self._with_intent(router, Intent(intent="check-status", action="check-status", project="judo",
                                         target="judo", confidence=0.97))
        result = send(router, "check judo status")

        assert result["flow"] == "auto_execute"
        assert result["success"]
        assert executor.calls == ["fetch_status"]

    def test_gate_policy_overrides_auto_execute(self, router, executor):
        self._with_intent(router, Intent(intent="list", action="list", project="judo", target="judo",
                                         confidence=0.97, requires_confirmation=True))
        result = send(router, "list judo")

        assert result["flow"] == "confirm"
        assert executor.calls == []
        assert router.gate.has_pending("u1")


class TestPlans:

    def test_conditional_plan_needs_one_confirmation(self, router, executor):
        result = send(router, "run tests on judo and if they pass deploy it")

        assert result["flow"] == "confirm_plan"
        assert result["steps"] == ["run tests on judo", "deploy JUDO"]
        assert result["conditional"]
        assert "If step 1 succeeds" in result["message"]

        done = send(router, "yes")
        assert done["success"]
        assert done["flow"] == "plan_executed"
        assert executor.calls == ["execute", "git_pull", "npm_install", "restart_service"]

    def test_conditional_plan_stops_after_failure(self, config, registry, clock):
        executor = RecordingExecutor(fail_on="execute")
        router = CommandRouter.build(executor=executor, config=config, registry=registry, clock=clock)

        send(router, "run tests on judo and if they pass deploy it")
        done = send(router, "yes")

        assert not done["success"]
        assert executor.calls == ["execute"]
        assert len(done["outcomes"]) == 1
        assert "remaining steps skipped" in done["message"]

    def test_parser_split_when_decomposer_declines(self, router):
        result = send(router, "show status and then list projects")
        assert result["flow"] == "confirm_plan"
        assert result["steps"] == ["show status", "list projects"]
        assert not result["conditional"]


class TestOverrides:

    def test_status_and_undo(self, router, executor):
        send(router, "deploy judo")
        send(router, "yes")

        status = send(router, "status")
        assert "Done: Deploy judo (undo available)" in status["message"]

        undone = send(router, "undo")
        assert undone["success"]
        assert executor.calls[-1] == "rollback"

    def test_explain_pending_action(self, router):
        send(router, "deploy judo")
        result = send(router, "explain")
        assert result["success"]
        assert "What: Deploy judo" in result["message"]

    def test_nothing_to_pause(self, router):
        result = send(router, "pause")
        assert not result["success"]
        assert result["flow"] == "pause"


def test_handle_message_never_raises(router):
    router.classifier.classify = AsyncMock(side_effect=RuntimeError("boom"))
    result = send(router, "deploy judo")

    assert not result["success"]
    assert result["flow"] == "error"
    assert "boom" in result["message"]
