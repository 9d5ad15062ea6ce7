"""Response Formatter - user-facing text for actions and plans

Principle: prose is generated AFTER, never stored as state. Actions stay
structural; these functions render them for the chat channel.
"""

from typing import Dict, Any, List

RISK_MARKERS = {"low": "[low risk]", "medium": "[MEDIUM RISK]", "high": "[HIGH RISK]"}


def _percent(value: float) -> int:
    return round((value or 0) * 100)


def _numbered(steps: List[Dict[str, Any]]) -> List[str]:
    return [f"{i}. {s.get('description') or s.get('type')}" for i, s in enumerate(steps, start=1)]


def format_auto_execute(action) -> str:
    return f"Executing: {action.summary}\n(High confidence, low risk - proceeding automatically)"


def format_confirm(action) -> str:
    lines = [f"{RISK_MARKERS.get(action.risk, '')} {action.summary}".strip(), ""]

    if action.steps:
        lines.append("Steps:")
        lines.extend(_numbered(action.steps))
        lines.append("")

    risk_line = f"Risk: {action.risk}"
    if action.risk_factors:
        risk_line += f" ({', '.join(action.risk_factors)})"
    lines.append(risk_line)
    lines.append("Can be undone" if action.reversible else "Cannot be undone")
    lines.append("")
    lines.append("Reply: yes to confirm, explain for details, cancel to abort")
    return "\n".join(lines)


def format_clarify(action, questions: List[str] = None) -> str:
    questions = questions or ["Which project/repo?", "What exactly should I do?"]
    lines = [f"I'm {_percent(action.confidence)}% sure you want to: {action.summary}", "", "Could you clarify:"]
    lines.extend(f"- {q}" for q in questions)
    lines.append("")
    lines.append("Or reply yes if this is correct.")
    return "\n".join(lines)


def format_reject(action) -> str:
    return (
        f"I'm not sure what you want to do ({_percent(action.confidence)}% confidence).\n\n"
        "Could you rephrase? For example:\n"
        '- "deploy aws-clawd-bot"\n'
        '- "create a login page for LusoTown"\n'
        '- "check status of JUDO"'
    )


def format_explanation(action) -> str:
    lines = [
        "Action Explanation",
        "",
        f"What: {action.summary}",
        f"Type: {action.type}",
    ]
    if action.target:
        lines.append(f"Target: {action.target}")
    lines.append(f"Confidence: {_percent(action.confidence)}%")
    lines.append(f"Status: {action.status.value}")
    lines.append("")

    if action.steps:
        lines.append("Steps:")
        done = len(action.completed_steps)
        for i, step in enumerate(action.steps):
            mark = "[x]" if i < done else "[ ]"
            lines.append(f"{mark} {i + 1}. {step.get('description') or step.get('type')}")
        lines.append("")

    lines.append("Risks:")
    lines.extend(f"- {f}" for f in action.risk_factors or ["None identified"])
    lines.append("")

    lines.append(f"Reversible: {'Yes' if action.reversible else 'No'}")
    if action.reversible and action.undo_steps:
        lines.append("Undo steps:")
        lines.extend(f"- {s.get('description') or s.get('type')}" for s in action.undo_steps)
    return "\n".join(lines)


def format_completion(action) -> str:
    message = f"{action.summary} completed"
    if action.started_at and action.completed_at:
        seconds = round(action.completed_at - action.started_at)
        if seconds > 0:
            message += f" ({seconds}s)"
    if action.reversible:
        message += '\n\nSay "undo" to reverse this action'
    return message


def format_status(status: Dict[str, Any]) -> str:
    lines = []
    for item in status.get("executing", []):
        lines.append(f"Running: {item['summary']} ({item['progress']})")
    for item in status.get("paused", []):
        lines.append(f"Paused: {item['summary']}")
    for item in status.get("pending", []):
        lines.append(f"Waiting for confirmation: {item['summary']}")
    for item in status.get("last_completed", []):
        suffix = " (undo available)" if item.get("undo_available") else ""
        lines.append(f"Done: {item['summary']}{suffix}")
    return "\n".join(lines) or "Nothing running."
