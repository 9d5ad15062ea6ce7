"""Intent Classifier - two-tier classification with calibrated confidence

Tier (a): deterministic pattern scoring over the project registry (fast, free).
Tier (b): AI fallback under a hard deadline, used only when tier (a) is not
          confident enough. A late or malformed AI answer is discarded.

Confidence is a fixed-weight sum of four factors:
    keyword_match 0.4, context_match 0.25, history_match 0.15, specificity 0.2
Corrections recorded from users lower confidence for classifications that
were corrected before (see memory/corrections.py).

Context keys understood by classify():
    user_id, active_project, has_media, media_type, last_classification
"""

import logging
import re
import time
from typing import Dict, Any, List, Optional, Callable

from core.classifier_rules import (
    Intent,
    RECEIPT_KEYWORDS,
    ambiguity_questions,
    assess_risk,
    calculate_specificity,
    detect_company,
    detect_environment,
    score_intents,
    score_projects,
    weighted_confidence,
)
from core.deadline import DeadlineExceeded, run_with_deadline
from core.project_registry import ProjectRegistry
from core.router_config import RouterConfig
from memory.corrections import CorrectionLedger, CorrectionStore
from memory.user_history import UserFactsStore, UserHistory


class IntentClassifier:
    """Classifies single commands into typed, risk-assessed intents."""

    CORRECTION_PATTERNS = (
        re.compile(r"^no,?\s*i\s*meant\s+(.+)", re.IGNORECASE),
        re.compile(r"^not\s+that,?\s*(.+)", re.IGNORECASE),
        re.compile(r"^actually,?\s*(.+)", re.IGNORECASE),
        re.compile(r"^i\s*meant\s+(.+)", re.IGNORECASE),
        re.compile(r"^change\s+(?:it\s+)?to\s+(.+)", re.IGNORECASE),
        re.compile(r"^switch\s+to\s+(.+)", re.IGNORECASE),
        re.compile(r"^use\s+(.+)\s+instead", re.IGNORECASE),
    )

    def __init__(
        self,
        registry: Optional[ProjectRegistry] = None,
        config: Optional[RouterConfig] = None,
        ai_classifier=None,
        correction_store: Optional[CorrectionStore] = None,
        user_facts_store: Optional[UserFactsStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry or ProjectRegistry.get()
        settings = (config or RouterConfig.get()).section("classifier")

        self.weights: Dict[str, float] = dict(settings["weights"])
        self.thresholds: Dict[str, float] = dict(settings["thresholds"])
        self.ai_timeout = float(settings["ai_timeout_seconds"])
        self.history_window = int(settings["history_window"])
        self.correction_rate_threshold = float(settings["correction_rate_threshold"])
        self.learned = dict(settings["learned_pattern"])
        self.vague_phrases: List[str] = list(settings["vague_phrases"])
        self.risk_levels: Dict[str, List[str]] = dict(settings["risk_levels"])
        self.escalation_pattern: str = settings["escalation"]["pattern"]
        self.escalation_levels = int(settings["escalation"]["levels"])

        self.ai_classifier = ai_classifier
        self.user_history = UserHistory(
            max_users=int(settings["max_users"]),
            max_actions=int(settings["max_actions_per_user"]),
            store=user_facts_store,
            clock=clock,
        )
        self.corrections = CorrectionLedger(
            store=correction_store,
            max_corrections=int(settings["max_corrections"]),
            clock=clock,
        )

        logging.info(f"IntentClassifier initialized (ai={'on' if ai_classifier else 'off'})")

    # =========================================================================
    # Classification
    # =========================================================================

    async def classify(self, text: Optional[str], context: Optional[Dict[str, Any]] = None) -> Intent:
        context = context or {}
        message = (text or "").strip()
        if not message and not context.get("has_media"):
            return self.default_result("empty")

        corrected = self.check_for_correction(message, context)
        if corrected:
            message = corrected

        user_id = context.get("user_id")
        result = self.quick_pattern_match(message, context)
        self._enhance_with_history(result, user_id)
        self._enhance_with_corrections(result)
        self._apply_learned_patterns(result)

        if result.confidence > self.thresholds["high_confidence"]:
            return self._accept(result, user_id)

        ai_result = await self._ai_classify(message, context)
        if ai_result is not None:
            self._apply_learned_patterns(ai_result)
            self._detect_ambiguity(ai_result, message)
            if ai_result.confidence > self.thresholds["ai_accept"]:
                return self._accept(ai_result, user_id)

        self._detect_ambiguity(result, message)
        if result.confidence <= 0:
            result = self.default_result("unknown")
        return self._accept(result, user_id)

    async def classify_intent(self, text: Optional[str], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Controller-facing projection of classify()."""
        result = await self.classify(text, context)
        data = result.to_dict()
        data["target"] = result.target or result.project
        data["summary"] = result.summary or f"{result.intent or 'unknown'} {result.project or ''}".strip()
        return data

    def quick_pattern_match(self, message: str, context: Dict[str, Any]) -> Intent:
        result = Intent(source="pattern")
        factors = result.confidence_factors
        msg = message.lower()

        if context.get("has_media") and context.get("media_type", "image") == "image":
            matched = [k for k in RECEIPT_KEYWORDS if k in msg]
            if matched or not msg:
                return self._receipt_result(msg, matched)

        projects = score_projects(message, self.registry)
        if projects:
            result.project, factors.keyword_match = projects[0]

        intents = score_intents(message, self.registry)
        if intents:
            best, strength = intents[0]
            result.intent = best
            result.action = self.registry.get_action_for_intent(best) or best
            factors.keyword_match = max(factors.keyword_match, strength)

        result.company = detect_company(message, self.registry)
        if result.company and not result.project:
            result.project = self.registry.company_default_project
            factors.context_match = 0.7

        active = context.get("active_project")
        if active:
            if not result.project:
                result.project = active
                factors.context_match = max(factors.context_match, 0.6)
            elif result.project == active:
                factors.context_match = 0.9

        if result.intent and not result.project:
            intent_config = self.registry.intents.get(result.intent, {})
            if intent_config.get("requiredCapability"):
                result.project = self.find_project_by_capability(intent_config["requiredCapability"])
            elif intent_config.get("projectTypes"):
                result.project = self.find_project_by_type(intent_config["projectTypes"][0])

        for intent_id, strength in intents[1:3]:
            if strength > 0.3:
                result.alternatives.append({
                    "action_type": self.registry.get_action_for_intent(intent_id) or intent_id,
                    "project": result.project,
                    "confidence": strength * 0.7,
                    "reason": f"Also matches '{intent_id}'",
                })
        for project_id, strength in projects[1:3]:
            if strength > 0.5:
                result.alternatives.append({
                    "action_type": result.action_type or "unknown",
                    "project": project_id,
                    "confidence": strength * 0.8,
                    "reason": f"Also matches project '{project_id}'",
                })

        result.target = detect_environment(message) or result.project
        factors.specificity = calculate_specificity(message, result, self.vague_phrases)
        result.confidence = weighted_confidence(factors, self.weights)
        result.summary = " ".join(p for p in (result.intent or "unknown", result.project, result.company) if p)
        return result

    def _receipt_result(self, msg: str, matched: List[str]) -> Intent:
        result = Intent(intent="process-receipt", action="process-receipt", source="pattern")
        result.project = self.find_project_by_capability("receipts") or self.registry.company_default_project
        result.target = result.project
        factors = result.confidence_factors
        factors.keyword_match = 0.95 if matched else 0.7
        factors.context_match = 1.0
        factors.specificity = 0.85
        result.summary = "Process receipt for expense tracking"

        result.company = detect_company(msg, self.registry) if msg else None
        if result.company:
            factors.specificity = 0.95
            result.summary += f" for {result.company}"

        result.confidence = weighted_confidence(factors, self.weights)
        return result

    def _accept(self, result: Intent, user_id: Optional[str]) -> Intent:
        result.risk, result.requires_confirmation = assess_risk(
            result, self.risk_levels, self.escalation_pattern, self.escalation_levels
        )
        if user_id and result.intent and result.confidence > self.thresholds["track"]:
            self.user_history.track(user_id, result.intent, result.project, result.company)
        logging.info(
            f"IntentClassifier: {result.intent}/{result.project} conf={result.confidence:.2f} "
            f"risk={result.risk} source={result.source} ambiguous={result.ambiguous}"
        )
        return result

    def _detect_ambiguity(self, result: Intent, message: str):
        result.ambiguous, result.clarifying_questions = ambiguity_questions(
            result, message, self.thresholds, self.vague_phrases
        )

    def default_result(self, reason: str = "unknown") -> Intent:
        questions = []
        if reason == "unknown":
            questions = ["What would you like me to do?", "Which project is this for?"]
        return Intent(
            ambiguous=reason != "empty",
            clarifying_questions=questions,
            reason=reason,
            source="default",
        )

    # =========================================================================
    # Learning signals
    # =========================================================================

    def _enhance_with_history(self, result: Intent, user_id: Optional[str]):
        result.confidence_factors.history_match = self.user_history.history_match(
            user_id, result.intent, result.project, self.history_window
        )
        result.confidence = weighted_confidence(result.confidence_factors, self.weights)

    def _enhance_with_corrections(self, result: Intent):
        rate = self.corrections.correction_rate(result.intent, result.project)
        if rate <= self.correction_rate_threshold:
            return
        before = result.confidence
        result.confidence *= 1 - rate * 0.3
        result.penalty += before - result.confidence
        result.alternatives.append({
            "action_type": "check-with-user",
            "project": result.project,
            "confidence": rate,
            "reason": "This type of request was often corrected before",
        })

    def _apply_learned_patterns(self, result: Intent):
        learned = self.corrections.learned_pattern(result.intent, result.project)
        if not learned or learned.get("count", 0) < self.learned["min_count"]:
            return
        penalty = min(learned["count"] * self.learned["penalty_step"], self.learned["penalty_cap"])
        before = result.confidence
        result.confidence = max(0.0, result.confidence - penalty)
        result.penalty += before - result.confidence
        result.ambiguous = True
        if learned.get("corrected_text"):
            result.clarifying_questions.append(
                f"Last time you corrected this to \"{learned['corrected_text']}\". Did you mean that again?"
            )
        else:
            result.clarifying_questions.append("You have corrected this kind of request before. Is this what you meant?")

    def check_for_correction(self, message: str, context: Dict[str, Any]) -> Optional[str]:
        """Record a correction if message rejects the last classification.

        Returns:
            The corrected command text, or None when message is not a correction
        """
        last = context.get("last_classification")
        if not last or not message:
            return None

        for pattern in self.CORRECTION_PATTERNS:
            match = pattern.match(message.strip())
            if match:
                correction_text = match.group(1).strip()
                original = last.to_dict() if isinstance(last, Intent) else dict(last)
                self.record_correction(original, {"correction_text": correction_text}, context.get("user_id"))
                logging.info(f"IntentClassifier: correction detected -> \"{correction_text}\"")
                return correction_text
        return None

    def record_correction(self, original: Dict[str, Any], corrected: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        return self.corrections.record(original, corrected, user_id)

    def get_correction_stats(self) -> Dict[str, Any]:
        return self.corrections.stats()

    # =========================================================================
    # AI tier
    # =========================================================================

    async def _ai_classify(self, message: str, context: Dict[str, Any]) -> Optional[Intent]:
        if self.ai_classifier is None:
            return None

        prompt = self._build_ai_prompt(message, context)
        try:
            raw = await run_with_deadline(
                self.ai_classifier.classify, prompt, timeout=self.ai_timeout, operation="AI classification"
            )
        except DeadlineExceeded as e:
            logging.warning(f"IntentClassifier: {e}, using pattern result")
            return None
        except Exception as e:
            logging.warning(f"IntentClassifier: AI classification failed: {e}, using pattern result")
            return None

        try:
            return self._from_ai(raw, message)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logging.warning(f"IntentClassifier: malformed AI answer ({type(e).__name__}: {e}), using pattern result")
            return None

    def _from_ai(self, raw: Dict[str, Any], message: str) -> Intent:
        intent_id = raw.get("intent")
        result = Intent(
            intent=intent_id,
            action=self.registry.get_action_for_intent(intent_id) or intent_id if intent_id else None,
            project=raw.get("project"),
            company=raw.get("company"),
            summary=raw.get("summary") or "",
            tasks=list(raw.get("tasks") or []),
            ambiguous=bool(raw.get("ambiguous", False)),
            clarifying_questions=list(raw.get("clarifyingQuestions") or []),
            source="ai",
        )
        result.target = detect_environment(message) or result.project
        result.alternatives = [
            {
                "action_type": alt["actionType"],
                "project": alt.get("project"),
                "confidence": float(alt.get("confidence", 0)),
                "reason": alt.get("reason", ""),
            }
            for alt in raw.get("alternatives") or []
        ]

        factors = raw.get("confidenceFactors")
        if factors:
            result.confidence_factors.keyword_match = float(factors.get("keywordMatch", 0))
            result.confidence_factors.context_match = float(factors.get("contextMatch", 0))
            result.confidence_factors.history_match = float(factors.get("historyMatch", 0))
            result.confidence_factors.specificity = float(factors.get("specificity", 0))
            result.confidence = weighted_confidence(result.confidence_factors, self.weights)
        else:
            result.confidence = max(0.0, min(float(raw["confidence"]), 1.0))
        return result

    def _build_ai_prompt(self, message: str, context: Dict[str, Any]) -> str:
        projects = "\n".join(
            f"- {pid}: {p.get('description', '')} (capabilities: {', '.join(p.get('capabilities') or [])})"
            for pid, p in self.registry.projects.items()
        )
        intents = "\n".join(f"- {iid}" for iid in self.registry.intents)
        companies = "\n".join(f"- {code}: {c.get('name', '')}" for code, c in self.registry.companies.items())
        recent = self.user_history.recent(context.get("user_id"), 5) if context.get("user_id") else []
        history = ", ".join(f"{a['intent']}/{a['project']}" for a in recent) or "none"

        return f"""Classify this chat command for an automation assistant.

MESSAGE:
"{message}"

ACTIVE PROJECT: {context.get('active_project') or 'none'}
RECENT ACTIONS: {history}

PROJECTS:
{projects}

INTENTS:
{intents}

COMPANIES:
{companies}

Respond with JSON containing:
- intent: one of the intents above, or null
- project: one of the project ids above, or null
- company: a company code, or null
- confidence: 0.0 to 1.0
- confidenceFactors: keywordMatch, contextMatch, historyMatch, specificity (each 0.0 to 1.0)
- alternatives: other plausible readings [{{"actionType", "project", "confidence", "reason"}}]
- tasks: concrete tasks if the message contains several
- summary: one line
- ambiguous: true if you would need to ask the user
- clarifyingQuestions: questions to ask when ambiguous
"""

    async def extract_tasks(self, text: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Split a rambling (often voice-transcribed) message into per-project tasks."""
        context = context or {}
        fallback = {
            "summary": text[:100],
            "tasks": [{"task": text, "project": context.get("active_project")}],
        }
        if self.ai_classifier is None or not text:
            return fallback

        projects = "\n".join(f"- {pid}: {p.get('description', '')}" for pid, p in self.registry.projects.items())
        prompt = f"""Extract actionable tasks from this message and assign each to the most appropriate project.

MESSAGE (possibly transcribed voice):
"{text}"

AVAILABLE PROJECTS:
{projects}

Respond with JSON: {{"summary": "...", "tasks": [{{"task", "project", "priority": "high|medium|low", "type"}}]}}
Return an empty tasks array for questions or greetings.
"""
        try:
            raw = await run_with_deadline(
                self.ai_classifier.extract_tasks, prompt, timeout=self.ai_timeout, operation="task extraction"
            )
        except Exception as e:
            logging.warning(f"IntentClassifier: task extraction failed: {e}")
            return fallback
        return {"summary": raw.get("summary") or text[:100], "tasks": raw.get("tasks") or []}

    # =========================================================================
    # Lookups and settings
    # =========================================================================

    def detect_company(self, message: str) -> Optional[str]:
        return detect_company(message, self.registry)

    def find_project_by_capability(self, capability: str) -> Optional[str]:
        return self.registry.find_project_by_capability(capability)

    def find_project_by_type(self, project_type: str) -> Optional[str]:
        return self.registry.find_project_by_type(project_type)

    def get_user_history(self, user_id: str) -> List[Dict[str, Any]]:
        return self.user_history.recent(user_id, self.user_history.max_actions)

    def clear_user_history(self, user_id: str):
        self.user_history.clear(user_id)

    def get_thresholds(self) -> Dict[str, float]:
        return {"ambiguity": self.thresholds["ambiguity"], "clarification": self.thresholds["clarification"]}

    def set_thresholds(self, ambiguity: Optional[float] = None, clarification: Optional[float] = None):
        if ambiguity is not None:
            self.thresholds["ambiguity"] = ambiguity
        if clarification is not None:
            self.thresholds["clarification"] = clarification
