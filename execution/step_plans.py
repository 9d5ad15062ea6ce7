"""Step Plans - declarative step, undo and risk tables per action type

Pure lookups. The ActionController turns an intent into an Action using these
tables; StepExecutor implementations interpret the step "type" values.
"""

from typing import Dict, Any, List, Optional

STEP_TEMPLATES: Dict[str, List[Dict[str, str]]] = {
    "deploy": [
        {"type": "git_pull", "description": "Pull latest code"},
        {"type": "npm_install", "description": "Install dependencies"},
        {"type": "restart_service", "description": "Restart service"},
    ],
    "create-page": [
        {"type": "create_branch", "description": "Create feature branch"},
        {"type": "generate_code", "description": "Generate page code"},
        {"type": "commit", "description": "Commit changes"},
        {"type": "create_pr", "description": "Create pull request"},
    ],
    "create-feature": [
        {"type": "create_branch", "description": "Create feature branch"},
        {"type": "generate_code", "description": "Generate feature code"},
        {"type": "commit", "description": "Commit changes"},
        {"type": "create_pr", "description": "Create pull request"},
    ],
    "code-task": [
        {"type": "analyze", "description": "Analyze codebase"},
        {"type": "generate_solution", "description": "Generate solution"},
        {"type": "create_pr", "description": "Create pull request"},
    ],
    "create-task": [
        {"type": "create_issue", "description": "Create GitHub issue"},
    ],
    "check-status": [
        {"type": "fetch_status", "description": "Fetch project status"},
    ],
}

UNDO_TEMPLATES: Dict[str, List[Dict[str, str]]] = {
    "deploy": [{"type": "rollback", "description": "Rollback to previous version"}],
    "create-page": [
        {"type": "delete_branch", "description": "Delete feature branch"},
        {"type": "close_pr", "description": "Close pull request"},
    ],
    "create-feature": [
        {"type": "delete_branch", "description": "Delete feature branch"},
        {"type": "close_pr", "description": "Close pull request"},
    ],
    "create_file": [{"type": "delete_file", "description": "Delete created file"}],
    "git_commit": [{"type": "git_revert", "commit": "HEAD", "description": "Revert last commit"}],
    "create_branch": [{"type": "delete_branch", "description": "Delete created branch"}],
    "create-task": [{"type": "close_issue", "description": "Close created issue"}],
}

REVERSIBLE_TYPES = frozenset((
    "deploy", "create-page", "create-feature", "create_file", "git_commit", "create_branch", "create-task",
))

SUMMARY_TEMPLATES = {
    "deploy": "Deploy {target}",
    "create-page": "Create page in {target}",
    "create-feature": "Add feature to {target}",
    "create-task": "Create issue in {target}",
    "code-task": "Code task for {target}",
    "check-status": "Check status of {target}",
}

PROTECTED_TARGETS = frozenset(("main", "master", "production", "prod"))

RISK_ORDER = ("low", "medium", "high")


def plan_steps(action_type: str, summary: str = "", given: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    if given:
        return [dict(step) for step in given]
    template = STEP_TEMPLATES.get(action_type)
    if template:
        return [dict(step) for step in template]
    return [{"type": "execute", "action": action_type, "description": summary or f"Execute {action_type}"}]


def plan_undo_steps(action_type: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    steps = [dict(step) for step in UNDO_TEMPLATES.get(action_type, [])]
    for step in steps:
        step.update({k: v for k, v in (params or {}).items() if k in ("path", "branch") and v})
    return steps


def is_reversible(action_type: str) -> bool:
    return action_type in REVERSIBLE_TYPES


def assess_action_risks(action_type: str, target: Optional[str], confidence: float, base_level: str = "low") -> Dict[str, Any]:
    """Risk level and the factors that raised it. Never lower than base_level."""
    level = base_level if base_level in RISK_ORDER else "low"
    factors = []

    def raise_to(new_level: str):
        nonlocal level
        if RISK_ORDER.index(new_level) > RISK_ORDER.index(level):
            level = new_level

    if action_type == "deploy":
        factors.append("Production deployment")
        raise_to("medium")
    if "delete" in action_type:
        factors.append("Destructive action")
        raise_to("high")
    if target and target.lower() in PROTECTED_TARGETS:
        factors.append("Affects main/production branch")
        raise_to("high")
    if confidence < 0.7:
        factors.append("Low confidence classification")
        raise_to("medium")

    return {"level": level, "factors": factors}


def generate_summary(action_type: str, target: Optional[str]) -> str:
    template = SUMMARY_TEMPLATES.get(action_type)
    if template and target:
        return template.format(target=target)
    return f"{action_type} {target or ''}".strip()
