"""
Scoring rules as data.

The built-in set targets a career advisor accompanying a foreign candidate. A
JSON file with the same shape (RULES_PATH) replaces it wholesale.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from interview_roleplay.core.errors import RulesError

Severity = Literal["critical", "major", "minor"]
CheckType = Literal["required", "prohibited", "quality"]


def _check_regex(value: str) -> str:
    try:
        re.compile(value)
    except re.error as e:
        raise ValueError(f"invalid regular expression {value!r}: {e}") from e
    return value


class Criterion(BaseModel):
    id: str
    name: str
    description: str = ""
    max_points: int = Field(gt=0)
    check_type: CheckType
    # required/prohibited items this criterion is judged on; empty means all of that kind
    rule_ids: List[str] = Field(default_factory=list)


class Category(BaseModel):
    id: str
    name: str
    description: str = ""
    weight: float = Field(gt=0)
    criteria: List[Criterion] = Field(min_length=1)


class ProhibitedItem(BaseModel):
    id: str
    pattern: str
    description: str
    severity: Severity
    deduction: int = 0
    feedback: str

    check_pattern = field_validator("pattern")(_check_regex)


class RequiredFeedback(BaseModel):
    present: str
    missing: str


class RequiredItem(BaseModel):
    id: str
    name: str
    description: str = ""
    keywords: List[str] = Field(min_length=1)
    points: int = 0
    feedback: RequiredFeedback


class IncorrectPattern(BaseModel):
    pattern: str
    feedback: str

    check_pattern = field_validator("pattern")(_check_regex)


class ManualItem(BaseModel):
    id: str
    topic: str
    correct_info: str = ""
    keywords: List[str] = Field(default_factory=list)
    incorrect_patterns: List[IncorrectPattern] = Field(default_factory=list)


class RuleSet(BaseModel):
    categories: List[Category] = Field(min_length=1)
    prohibited_items: List[ProhibitedItem] = Field(default_factory=list)
    required_items: List[RequiredItem] = Field(default_factory=list)
    manual_items: List[ManualItem] = Field(default_factory=list)
    passing_score: int = Field(default=70, ge=0, le=100)
    quality_length_threshold: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _check_links(self) -> "RuleSet":
        known = {
            "required": {i.id for i in self.required_items},
            "prohibited": {i.id for i in self.prohibited_items},
        }
        for cat in self.categories:
            for c in cat.criteria:
                if c.check_type == "quality":
                    continue
                unknown = [r for r in c.rule_ids if r not in known[c.check_type]]
                if unknown:
                    raise ValueError(f"criterion {c.id} links unknown {c.check_type} items: {unknown}")
        return self


def load_rules(path: str | Path) -> RuleSet:
    p = Path(path)
    if not p.exists():
        raise RulesError(f"Rules file not found: {p}")
    try:
        return RuleSet.model_validate_json(p.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise RulesError(f"Invalid rules file {p}: {e}") from e


DEFAULT_RULES = RuleSet(
    categories=[
        Category(
            id="communication",
            name="Communication",
            description="How well the advisor handles the interviewer and the candidate",
            weight=0.3,
            criteria=[
                Criterion(id="comm-clarity", name="Clear explanations", max_points=10, check_type="quality"),
                Criterion(id="comm-timing", name="Timing of interventions", max_points=10, check_type="quality"),
                Criterion(
                    id="comm-tone",
                    name="Tone and wording",
                    max_points=10,
                    check_type="prohibited",
                    rule_ids=["ng-discriminatory"],
                ),
            ],
        ),
        Category(
            id="knowledge",
            name="Expertise",
            description="Accurate knowledge of visas and employment",
            weight=0.4,
            criteria=[
                Criterion(
                    id="know-visa",
                    name="Residence status",
                    max_points=15,
                    check_type="required",
                    rule_ids=["req-visa-status", "req-work-permit"],
                ),
                Criterion(id="know-labor", name="Labour law", max_points=15, check_type="quality"),
                Criterion(id="know-procedure", name="Procedures", max_points=10, check_type="quality"),
            ],
        ),
        Category(
            id="support",
            name="Support",
            description="Appropriate support for the candidate",
            weight=0.3,
            criteria=[
                Criterion(
                    id="sup-follow",
                    name="Follow-up",
                    max_points=10,
                    check_type="required",
                    rule_ids=["req-next-steps"],
                ),
                Criterion(id="sup-advice", name="Advice", max_points=10, check_type="quality"),
                Criterion(id="sup-empathy", name="Empathy", max_points=10, check_type="quality"),
            ],
        ),
    ],
    prohibited_items=[
        ProhibitedItem(
            id="ng-visa-tourist",
            pattern=r"tourist visa.*\b(work|job|employ)",
            description="Claiming work is allowed on a tourist visa",
            severity="critical",
            deduction=20,
            feedback="Working on a tourist (short-term stay) visa is illegal. Explain the correct residence status.",
        ),
        ProhibitedItem(
            id="ng-visa-guarantee",
            pattern=r"visa.*\b(definitely|guarantee|certainly|surely)\b",
            description="Promising that a visa will be granted",
            severity="major",
            deduction=10,
            feedback="Immigration decides on visas. Never promise approval.",
        ),
        ProhibitedItem(
            id="ng-labor-overtime",
            pattern=r"overtime.*(no limit|unlimited|as much as)",
            description="Wrong statement about overtime limits",
            severity="major",
            deduction=10,
            feedback="Labour law caps overtime. Give accurate information.",
        ),
        ProhibitedItem(
            id="ng-discriminatory",
            pattern=r"\b(gaijin|because you are a foreigner|foreigners like you)\b",
            description="Discriminatory wording",
            severity="critical",
            deduction=15,
            feedback="Avoid discriminatory wording. Say 'foreign nationals' instead.",
        ),
    ],
    required_items=[
        RequiredItem(
            id="req-introduction",
            name="Introduction and role",
            description="Explain the role of the career advisor",
            keywords=["career support", "agent", "support", "help you"],
            points=5,
            feedback=RequiredFeedback(
                present="You explained your role.",
                missing="Introduce yourself and your role to build trust.",
            ),
        ),
        RequiredItem(
            id="req-visa-status",
            name="Residence status check",
            description="Confirm the candidate's current residence status",
            keywords=["residence status", "visa", "residence card", "work permit"],
            points=10,
            feedback=RequiredFeedback(
                present="You addressed the residence status.",
                missing="Supporting foreign candidates always requires confirming their residence status.",
            ),
        ),
        RequiredItem(
            id="req-work-permit",
            name="Permitted scope of work",
            description="Explain what work the residence status allows",
            keywords=["allowed to work", "permission", "restriction", "specified skilled", "engineer/specialist"],
            points=10,
            feedback=RequiredFeedback(
                present="You mentioned the permitted scope of work.",
                missing="The permitted work depends on the residence status. Explain it.",
            ),
        ),
        RequiredItem(
            id="req-next-steps",
            name="Next steps",
            description="Explain what happens after the interview",
            keywords=["next step", "going forward", "contact you", "result", "job offer"],
            points=5,
            feedback=RequiredFeedback(
                present="You explained the next steps.",
                missing="Explain what happens after the interview (result, next steps).",
            ),
        ),
    ],
    manual_items=[
        ManualItem(
            id="manual-visa-types",
            topic="Types of residence status",
            correct_info="Engineer/Specialist in Humanities/International Services, Specified Skilled Worker, "
                         "Technical Intern, Permanent Resident and more, each for a purpose",
            keywords=["specified skilled", "residence status"],
            incorrect_patterns=[
                IncorrectPattern(
                    pattern=r"work visa.*(only one|just one|all the same)",
                    feedback="There are several residence statuses that allow work. Explain them accurately.",
                ),
                IncorrectPattern(
                    pattern=r"any (visa|residence status).*(same|no difference)",
                    feedback="Working conditions differ by residence status.",
                ),
            ],
        ),
        ManualItem(
            id="manual-work-hours",
            topic="Working hour limits",
            correct_info="8 hours a day, 40 a week; overtime under a labour agreement is capped at 45 hours "
                         "a month and 360 a year",
            keywords=["8 hours", "40 hours", "overtime"],
            incorrect_patterns=[
                IncorrectPattern(
                    pattern=r"overtime.*(no|without) (limit|cap)",
                    feedback="Overtime has a legal cap. Explain the labour agreement rules.",
                ),
            ],
        ),
        ManualItem(
            id="manual-minimum-wage",
            topic="Minimum wage",
            correct_info="Minimum wage is set per prefecture and applies to foreign workers too",
            keywords=["minimum wage", "prefecture"],
            incorrect_patterns=[
                IncorrectPattern(
                    pattern=r"foreign(ers?)?.*minimum wage.*(does ?n[o']?t apply|not apply|different)",
                    feedback="Minimum wage applies regardless of nationality.",
                ),
            ],
        ),
    ],
    passing_score=70,
    quality_length_threshold=50,
)
