import asyncio

import pytest
from unittest.mock import MagicMock

from core.classifier_rules import Intent
from execution.action_controller import (
    ALLOWED_TRANSITIONS,
    ActionController,
    ActionStatus,
    InvalidTransitionError,
)
from execution.step_executor import StepExecutor


class RecordingExecutor(StepExecutor):
    """Records step types; fails on the configured step type."""

    def __init__(self, fail_on=None, report_failure=False):
        self.calls = []
        self.fail_on = fail_on
        self.report_failure = report_failure
        self.hook = None

    def execute(self, step_type, step, context):
        self.calls.append(step_type)
        if self.hook:
            self.hook(step_type)
        if step_type == self.fail_on:
            if self.report_failure:
                return {"success": False, "error": f"{step_type} reported failure"}
            raise RuntimeError(f"{step_type} exploded")
        return {"success": True, "step": step_type}


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def controller(executor, config, clock):
    return ActionController(executor=executor, config=config, clock=clock)


def intent(action="deploy", project="judo", confidence=0.8, risk="low", **kwargs):
    return Intent(intent=action, action=action, project=project, target=project,
                  confidence=confidence, risk=risk, **kwargs)


def propose(controller, value, context=None):
    return asyncio.run(controller.propose_action(value, context or {"user_id": "u1"}))


def run(coro):
    return asyncio.run(coro)


class TestProposal:

    def test_deploy_gets_template_steps_undo_and_medium_risk(self, controller):
        proposal = propose(controller, intent("deploy", confidence=0.8))
        action = proposal["action"]

        assert proposal["success"]
        assert proposal["flow"] == "confirm"
        assert [s["type"] for s in action.steps] == ["git_pull", "npm_install", "restart_service"]
        assert [s["type"] for s in action.undo_steps] == ["rollback"]
        assert action.reversible
        assert action.risk == "medium"
        assert "Production deployment" in action.risk_factors
        assert action.status == ActionStatus.PENDING
        assert action.id.startswith("act_")
        assert action.summary == "Deploy judo"
        assert "Reply: yes to confirm" in proposal["message"]

    @pytest.mark.parametrize("confidence, risk, flow", [
        (0.97, "low", "auto_execute"),
        (0.97, "medium", "confirm"),
        (0.75, "low", "confirm"),
        (0.6, "low", "clarify"),
        (0.2, "low", "reject"),
    ])
    def test_flow_decision(self, controller, confidence, risk, flow):
        proposal = propose(controller, intent("check-status", confidence=confidence, risk=risk))
        assert proposal["flow"] == flow

    def test_unknown_type_gets_a_generic_step(self, controller):
        action = propose(controller, intent("run-tests", confidence=0.8, summary="run-tests judo"))["action"]
        assert action.steps == [{"type": "execute", "action": "run-tests", "description": "run-tests judo"}]
        assert not action.reversible

    def test_intent_steps_are_honoured(self, controller):
        steps = [{"type": "custom", "description": "Do the custom thing"}]
        action = propose(controller, intent("code-task", confidence=0.8, steps=steps))["action"]
        assert action.steps == steps

    def test_protected_target_and_delete_are_high_risk(self, controller):
        action = propose(controller, intent("delete", project="main", confidence=0.9))["action"]
        assert action.risk == "high"
        assert "Destructive action" in action.risk_factors
        assert "Affects main/production branch" in action.risk_factors

    def test_classified_risk_is_never_lowered(self, controller):
        action = propose(controller, intent("check-status", confidence=0.9, risk="high"))["action"]
        assert action.risk == "high"

    def test_new_proposal_supersedes_the_pending_one(self, controller):
        first = propose(controller, intent("deploy"))["action"]
        second = propose(controller, intent("check-status"))["action"]

        assert first.status == ActionStatus.CANCELLED
        assert controller.get_status("u1")["pending"][0]["id"] == second.id


class TestExecution:

    def test_execute_runs_steps_in_order_and_records_history(self, controller, executor):
        action = propose(controller, intent("deploy"))["action"]
        result = run(controller.execute_action(action.id))

        assert result["success"]
        assert result["status"] == "completed"
        assert executor.calls == ["git_pull", "npm_install", "restart_service"]
        assert len(action.completed_steps) == 3
        assert action.started_at is not None and action.completed_at is not None
        assert result["undo_available"]
        assert controller.get_status("u1")["last_completed"][0]["id"] == action.id

    def test_unknown_or_already_executed_id(self, controller):
        assert not run(controller.execute_action("act_missing"))["success"]

        action = propose(controller, intent("check-status"))["action"]
        run(controller.execute_action(action.id))
        assert not run(controller.execute_action(action.id))["success"]

    def test_step_exception_fails_with_verbatim_error(self, config, clock):
        executor = RecordingExecutor(fail_on="npm_install")
        controller = ActionController(executor=executor, config=config, clock=clock)
        action = propose(controller, intent("deploy"))["action"]

        result = run(controller.execute_action(action.id))

        assert not result["success"]
        assert result["status"] == "failed"
        assert result["error"] == "npm_install exploded"
        assert action.error == "npm_install exploded"
        assert [c["step"]["type"] for c in result["completed_steps"]] == ["git_pull"]
        assert executor.calls == ["git_pull", "npm_install"]

    def test_reported_failure_counts_as_failure(self, config, clock):
        executor = RecordingExecutor(fail_on="fetch_status", report_failure=True)
        controller = ActionController(executor=executor, config=config, clock=clock)
        action = propose(controller, intent("check-status"))["action"]

        result = run(controller.execute_action(action.id))
        assert result["status"] == "failed"
        assert result["error"] == "fetch_status reported failure"

    def test_failed_action_resumes_from_the_failed_step(self, config, clock):
        executor = RecordingExecutor(fail_on="npm_install")
        controller = ActionController(executor=executor, config=config, clock=clock)
        action = propose(controller, intent("deploy"))["action"]
        run(controller.execute_action(action.id))

        executor.fail_on = None
        result = run(controller.resume(action.id))

        assert result["success"]
        assert executor.calls == ["git_pull", "npm_install", "npm_install", "restart_service"]
        assert action.error is None

    def test_async_executor_is_awaited(self, config, clock):
        class AsyncExecutor(StepExecutor):
            async def execute(self, step_type, step, context):
                return {"success": True}

        controller = ActionController(executor=AsyncExecutor(), config=config, clock=clock)
        action = propose(controller, intent("deploy"))["action"]
        assert run(controller.execute_action(action.id))["success"]

    def test_one_executing_action_per_user(self, config, clock):
        seen = {}

        class ReentrantExecutor(StepExecutor):
            async def execute(self, step_type, step, context):
                if step_type == "git_pull" and not seen:
                    second = await controller.propose_action(intent("check-status"), {"user_id": "u1"})
                    seen["action"] = second["action"]
                    seen["result"] = await controller.execute_action(second["action"].id)
                return {"success": True}

        controller = ActionController(executor=ReentrantExecutor(), config=config, clock=clock)
        first = propose(controller, intent("deploy"))["action"]
        run(controller.execute_action(first.id))

        assert first.status == ActionStatus.COMPLETED
        assert not seen["result"]["success"]
        assert "already running" in seen["result"]["message"]
        assert seen["action"].status == ActionStatus.PENDING


class TestOverrides:

    def test_pause_between_steps_and_resume(self, controller, executor):
        action = propose(controller, intent("deploy"))["action"]

        def pause_after_pull(step_type):
            if step_type == "git_pull":
                controller.pause(action.id)

        executor.hook = pause_after_pull
        result = run(controller.execute_action(action.id))

        assert result["status"] == "paused"
        assert executor.calls == ["git_pull"]
        assert controller.get_status("u1")["paused"][0]["id"] == action.id
        assert "Paused" in result["message"]

        executor.hook = None
        resumed = run(controller.resume(user_id="u1"))
        assert resumed["success"]
        assert resumed["status"] == "completed"
        assert executor.calls == ["git_pull", "npm_install", "restart_service"]

    def test_cancel_during_execution_stops_remaining_steps(self, controller, executor):
        action = propose(controller, intent("deploy"))["action"]
        executor.hook = lambda step_type: controller.cancel(action.id) if step_type == "git_pull" else None

        result = run(controller.execute_action(action.id))

        assert result["status"] == "cancelled"
        assert executor.calls == ["git_pull"]
        assert action.cancelled_at is not None

    def test_resume_while_step_in_flight_keeps_a_single_run(self, config, clock):
        class GatedExecutor(StepExecutor):
            def __init__(self):
                self.calls = []
                self.started = None
                self.release = None

            async def execute(self, step_type, step, context):
                self.calls.append(step_type)
                if step_type == "git_pull":
                    self.started.set()
                    await self.release.wait()
                return {"success": True}

        executor = GatedExecutor()
        controller = ActionController(executor=executor, config=config, clock=clock)
        action = propose(controller, intent("deploy"))["action"]

        async def pause_and_resume_mid_step():
            executor.started, executor.release = asyncio.Event(), asyncio.Event()
            first = asyncio.create_task(controller.execute_action(action.id))
            await executor.started.wait()

            assert controller.pause(user_id="u1")["success"]
            resumed = await controller.resume(user_id="u1")
            executor.release.set()
            return resumed, await first

        resumed, finished = run(pause_and_resume_mid_step())

        assert resumed["success"]
        assert "still running" in resumed["message"]
        assert finished["success"]
        assert finished["status"] == "completed"
        assert executor.calls == ["git_pull", "npm_install", "restart_service"]
        assert [c["step"]["type"] for c in action.completed_steps] == ["git_pull", "npm_install", "restart_service"]
        assert not action.running

    def test_cancel_pending_by_user(self, controller):
        action = propose(controller, intent("deploy"))["action"]
        assert controller.cancel(user_id="u1")["success"]
        assert action.status == ActionStatus.CANCELLED
        assert not controller.has_active_actions("u1")

    def test_unknown_ids_fail_softly(self, controller):
        assert not controller.pause("nope")["success"]
        assert not controller.cancel("nope")["success"]
        assert not run(controller.resume("nope"))["success"]
        assert not controller.explain("nope")["success"]

    def test_explain_lists_steps_and_risks(self, controller):
        action = propose(controller, intent("deploy"))["action"]
        text = controller.explain(action.id)["message"]

        assert "What: Deploy judo" in text
        assert "[ ] 1. Pull latest code" in text
        assert "- Production deployment" in text
        assert "Reversible: Yes" in text

    def test_change_approach_without_planner_gives_generic_alternatives(self, controller):
        action = propose(controller, intent("deploy"))["action"]
        result = run(controller.change_approach(action.id, "use docker"))

        assert result["success"]
        assert len(result["alternatives"]) == 3
        assert action.status == ActionStatus.CANCELLED

    def test_change_approach_uses_the_planner(self, config, clock):
        planner = MagicMock()
        planner.generate.return_value = {"alternatives": [{"description": "Deploy with docker", "confidence": 0.8}]}
        controller = ActionController(config=config, planner=planner, clock=clock)
        action = propose(controller, intent("deploy"))["action"]

        result = run(controller.change_approach(action.id, "docker"))
        assert result["alternatives"] == [{"description": "Deploy with docker", "confidence": 0.8}]
        assert "docker" in planner.generate.call_args[0][0]

    def test_change_approach_planner_failure_falls_back(self, config, clock):
        planner = MagicMock()
        planner.generate.side_effect = RuntimeError("provider down")
        controller = ActionController(config=config, planner=planner, clock=clock)
        action = propose(controller, intent("deploy"))["action"]

        assert len(run(controller.change_approach(action.id))["alternatives"]) == 3


class TestUndo:

    def test_undo_replays_undo_steps_once(self, controller, executor):
        action = propose(controller, intent("deploy"))["action"]
        run(controller.execute_action(action.id))

        result = run(controller.undo_last("u1"))
        assert result["success"]
        assert action.undone
        assert executor.calls[-1] == "rollback"

        assert not run(controller.undo_last("u1"))["success"]

    def test_nothing_to_undo(self, controller):
        result = run(controller.undo_last())
        assert not result["success"]
        assert "Nothing to undo" in result["message"]

    def test_irreversible_actions_are_skipped(self, controller):
        action = propose(controller, intent("check-status"))["action"]
        run(controller.execute_action(action.id))
        assert not run(controller.undo_last())["success"]

    def test_failed_undo_leaves_flag_unset(self, controller, executor):
        action = propose(controller, intent("deploy"))["action"]
        run(controller.execute_action(action.id))
        executor.fail_on = "rollback"

        result = run(controller.undo_last())
        assert not result["success"]
        assert "rollback exploded" in result["message"]
        assert not action.undone


class TestStateMachine:

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[ActionStatus.COMPLETED] == set()
        assert ALLOWED_TRANSITIONS[ActionStatus.CANCELLED] == set()

    def test_invalid_transition_raises_internally(self, controller):
        action = propose(controller, intent("deploy"))["action"]
        with pytest.raises(InvalidTransitionError):
            controller._transition(action, ActionStatus.COMPLETED)

    def test_clear_pending_and_history(self, controller):
        pending = propose(controller, intent("deploy"))["action"]
        done = propose(controller, intent("check-status"), {"user_id": "u2"})["action"]
        run(controller.execute_action(done.id))

        controller.clear_pending()
        controller.clear_history()

        assert pending.status == ActionStatus.CANCELLED
        assert controller.get_action(done.id) is None
        assert not controller.has_active_actions()
