"""
Deterministic evaluation of a finished interview transcript.

Only the moderator's (human) utterances are judged. Numeric results depend on the
transcript text and the rule set alone; timestamps only feed the duration.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import List, Optional, Sequence

from interview_roleplay.core.rules import (
    DEFAULT_RULES,
    Category,
    Criterion,
    ManualItem,
    ProhibitedItem,
    RequiredItem,
    RuleSet,
)
from interview_roleplay.core.transcript import TranscriptEntry
from interview_roleplay.core.types import Role

logger = logging.getLogger(__name__)


class Grade(StrEnum):
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


GRADE_THRESHOLDS = (
    (Grade.S, 95),
    (Grade.A, 85),
    (Grade.B, 75),
    (Grade.C, 65),
    (Grade.D, 50),
)


def grade_for(percentage: int) -> Grade:
    for grade, threshold in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return grade
    return Grade.F


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


@dataclass(frozen=True, slots=True)
class CriterionResult:
    criterion_id: str
    name: str
    score: int
    max_score: int
    passed: bool
    feedback: str


@dataclass(frozen=True, slots=True)
class CategoryResult:
    category_id: str
    name: str
    weight: float
    score: int
    max_score: int
    percentage: int
    criteria: tuple[CriterionResult, ...]


@dataclass(frozen=True, slots=True)
class Violation:
    item: ProhibitedItem
    occurrences: tuple[str, ...]

    @property
    def critical(self) -> bool:
        return self.item.severity == "critical"


@dataclass(frozen=True, slots=True)
class ManualViolation:
    item: ManualItem
    excerpt: str
    feedback: str


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    session_id: str
    evaluated_at: datetime
    duration_s: int
    total_score: int
    max_score: int
    percentage: int
    grade: Grade
    passed: bool
    passing_score: int
    categories: tuple[CategoryResult, ...]
    violations: tuple[Violation, ...]
    missing_required: tuple[RequiredItem, ...]
    manual_violations: tuple[ManualViolation, ...]
    summary: str
    strengths: tuple[str, ...]
    improvements: tuple[str, ...]
    action_items: tuple[str, ...]

    @property
    def critical_violations(self) -> tuple[Violation, ...]:
        return tuple(v for v in self.violations if v.critical)


class ScoringEngine:
    def __init__(self, rules: RuleSet = DEFAULT_RULES) -> None:
        self.rules = rules
        self._prohibited = [(item, re.compile(item.pattern, re.IGNORECASE)) for item in rules.prohibited_items]
        self._manual = [
            (item, re.compile(p.pattern, re.IGNORECASE), p.feedback)
            for item in rules.manual_items
            for p in item.incorrect_patterns
        ]

    def evaluate(
        self,
        entries: Sequence[TranscriptEntry],
        *,
        session_id: str = "",
        started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> EvaluationResult:
        now = now or datetime.now(timezone.utc)
        if started_at is None and entries:
            started_at = entries[0].timestamp
        duration = max(0, int((now - started_at).total_seconds())) if started_at else 0

        human = [e.text for e in entries if e.speaker is Role.HUMAN]
        human_text = "\n".join(human)

        violations = self._check_prohibited(human)
        missing = self._check_required(human_text)
        manual = self._check_manual(human_text)
        categories = tuple(self._score_category(c, human_text, violations, missing) for c in self.rules.categories)

        weighted_total = sum(c.score * c.weight for c in categories)
        weighted_max = sum(c.max_score * c.weight for c in categories)
        percentage = round_half_up(weighted_total / weighted_max * 100) if weighted_max > 0 else 0
        grade = grade_for(percentage)
        has_critical = any(v.critical for v in violations)
        passed = percentage >= self.rules.passing_score and not has_critical

        strengths, improvements, actions = self._feedback(categories, violations, missing, manual, percentage)
        result = EvaluationResult(
            session_id=session_id,
            evaluated_at=now,
            duration_s=duration,
            total_score=round_half_up(weighted_total),
            max_score=round_half_up(weighted_max),
            percentage=percentage,
            grade=grade,
            passed=passed,
            passing_score=self.rules.passing_score,
            categories=categories,
            violations=violations,
            missing_required=missing,
            manual_violations=manual,
            summary=self._summary(percentage, has_critical),
            strengths=strengths,
            improvements=improvements,
            action_items=actions,
        )
        logger.info(
            "Evaluated session %s: %s%% grade %s passed=%s (%d human utterances)",
            session_id, percentage, grade, passed, len(human),
        )
        return result

    def _check_prohibited(self, utterances: List[str]) -> tuple[Violation, ...]:
        found = []
        for item, rx in self._prohibited:
            hits = tuple(u for u in utterances if rx.search(u))
            if hits:
                found.append(Violation(item=item, occurrences=hits))
        return tuple(found)

    def _check_required(self, human_text: str) -> tuple[RequiredItem, ...]:
        lowered = human_text.lower()
        return tuple(
            item for item in self.rules.required_items
            if not any(k.lower() in lowered for k in item.keywords)
        )

    def _check_manual(self, human_text: str) -> tuple[ManualViolation, ...]:
        out = []
        for item, rx, feedback in self._manual:
            m = rx.search(human_text)
            if m:
                out.append(ManualViolation(item=item, excerpt=m.group(0), feedback=feedback))
        return tuple(out)

    def _score_criterion(
        self,
        c: Criterion,
        human_text: str,
        violations: tuple[Violation, ...],
        missing: tuple[RequiredItem, ...],
    ) -> CriterionResult:
        if c.check_type == "required":
            related = [m for m in missing if not c.rule_ids or m.id in c.rule_ids]
            if related:
                return CriterionResult(c.id, c.name, 0, c.max_points, False, " ".join(m.feedback.missing for m in related))
            return CriterionResult(c.id, c.name, c.max_points, c.max_points, True, "You covered the required points.")

        if c.check_type == "prohibited":
            related = [v for v in violations if not c.rule_ids or v.item.id in c.rule_ids]
            if related:
                return CriterionResult(c.id, c.name, 0, c.max_points, False, " ".join(v.item.feedback for v in related))
            return CriterionResult(c.id, c.name, c.max_points, c.max_points, True, "No inappropriate wording found.")

        if len(human_text) > self.rules.quality_length_threshold:
            return CriterionResult(c.id, c.name, c.max_points, c.max_points, True, "Handled appropriately.")
        return CriterionResult(c.id, c.name, c.max_points // 2, c.max_points, True, "More detailed explanations would help.")

    def _score_category(
        self,
        category: Category,
        human_text: str,
        violations: tuple[Violation, ...],
        missing: tuple[RequiredItem, ...],
    ) -> CategoryResult:
        results = tuple(self._score_criterion(c, human_text, violations, missing) for c in category.criteria)
        score = sum(r.score for r in results)
        max_score = sum(r.max_score for r in results)
        return CategoryResult(
            category_id=category.id,
            name=category.name,
            weight=category.weight,
            score=score,
            max_score=max_score,
            percentage=round_half_up(score / max_score * 100) if max_score else 0,
            criteria=results,
        )

    def _feedback(
        self,
        categories: tuple[CategoryResult, ...],
        violations: tuple[Violation, ...],
        missing: tuple[RequiredItem, ...],
        manual: tuple[ManualViolation, ...],
        percentage: int,
    ) -> tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]:
        strengths: List[str] = []
        improvements: List[str] = []
        actions: List[str] = []

        for c in categories:
            if c.percentage >= 80:
                strengths.append(f"{c.name}: handled very well.")
            elif c.percentage < 60:
                improvements.append(f"{c.name}: needs improvement ({c.percentage}%).")

        for v in violations:
            if v.item.severity == "critical":
                improvements.append(f"[Critical] {v.item.feedback}")
                actions.append(f"Review the correct facts about: {v.item.description}.")
            elif v.item.severity == "major":
                improvements.append(v.item.feedback)

        for item in missing:
            improvements.append(item.feedback.missing)
            actions.append(f"Always cover \"{item.name}\".")

        for mv in manual:
            improvements.append(mv.feedback)
            actions.append(f"Re-read the manual section on {mv.item.topic}.")

        if not strengths:
            strengths.append("You engaged with the interview throughout.")
        if not improvements and percentage < 100:
            improvements.append("Offer support proposals more proactively.")

        return tuple(strengths), tuple(improvements), tuple(actions)

    def _summary(self, percentage: int, has_critical: bool) -> str:
        passing = self.rules.passing_score
        if percentage < passing:
            return f"Below the passing line ({passing}%). Review the points raised and practise again."
        if has_critical:
            return "The basics were handled, but there was a critical issue. Review the points raised and improve."
        if percentage >= 90:
            return "Excellent work! Attention to the small details will make it even better."
        return "You reached the passing line. Keep the improvement points in mind next time."
