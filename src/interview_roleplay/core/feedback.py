from __future__ import annotations

from typing import Any, Dict, List

from interview_roleplay.core.scoring import EvaluationResult, Grade, round_half_up

GRADE_EMOJI: Dict[Grade, str] = {
    Grade.S: "🌟",
    Grade.A: "✨",
    Grade.B: "👍",
    Grade.C: "📝",
    Grade.D: "⚠️",
    Grade.F: "❌",
}

GRADE_MESSAGE: Dict[Grade, str] = {
    Grade.S: "Outstanding! A flawless performance",
    Grade.A: "Very good work",
    Grade.B: "Good work",
    Grade.C: "Passed, with room for improvement",
    Grade.D: "Needs improvement",
    Grade.F: "Not passed. Practise again",
}


def progress_bar(percentage: int, width: int = 10) -> str:
    filled = max(0, min(width, round_half_up(percentage * width / 100)))
    return "█" * filled + "░" * (width - filled)


def format_text(result: EvaluationResult) -> str:
    """Multi-line report for logs and terminals."""
    lines: List[str] = ["═" * 50, "📋 Evaluation report", "═" * 50, ""]

    lines += [
        "[Overall]",
        f"  Grade: {GRADE_EMOJI[result.grade]} {result.grade}",
        f"  Score: {result.total_score}/{result.max_score} ({result.percentage}%)",
        f"  {GRADE_MESSAGE[result.grade]}",
        "",
    ]

    critical = result.critical_violations
    if result.passed:
        lines.append("✅ Verdict: passed")
    else:
        lines.append("❌ Verdict: not passed")
        if critical:
            lines.append("   * a critical issue was detected")
    lines.append("")

    lines += ["[Summary]", f"  {result.summary}", ""]

    lines.append("[Categories]")
    for c in result.categories:
        lines.append(f"  {c.name}: {progress_bar(c.percentage)} {c.percentage}%")
    lines.append("")

    if result.strengths:
        lines.append("[Strengths]")
        lines += [f"  ✓ {s}" for s in result.strengths]
        lines.append("")

    if result.improvements:
        lines.append("[Improvements]")
        lines += [f"  • {s}" for s in result.improvements]
        lines.append("")

    if critical:
        lines.append("[⚠️ Critical issues]")
        for v in critical:
            lines.append(f"  ❌ {v.item.description}")
            lines.append(f"     {v.item.feedback}")
            if v.occurrences:
                lines.append(f"     Said: \"{v.occurrences[0][:50]}...\"")
        lines.append("")

    if result.missing_required:
        lines.append("[Missing required points]")
        for item in result.missing_required:
            lines.append(f"  ⚠ {item.name}")
            lines.append(f"    {item.feedback.missing}")
        lines.append("")

    if result.action_items:
        lines.append("[Next steps]")
        lines += [f"  {i}. {a}" for i, a in enumerate(result.action_items, start=1)]
        lines.append("")

    minutes, seconds = divmod(result.duration_s, 60)
    lines += [
        "─" * 50,
        f"Evaluated at: {result.evaluated_at.isoformat()}",
        f"Duration: {minutes}m{seconds}s",
        "═" * 50,
    ]
    return "\n".join(lines)


def to_payload(result: EvaluationResult) -> Dict[str, Any]:
    """JSON-ready view sent to clients as `evaluation_result`."""
    return {
        "passed": result.passed,
        "grade": result.grade.value,
        "gradeEmoji": GRADE_EMOJI[result.grade],
        "gradeMessage": GRADE_MESSAGE[result.grade],
        "score": {
            "total": result.total_score,
            "max": result.max_score,
            "percentage": result.percentage,
        },
        "summary": result.summary,
        "categories": [
            {"name": c.name, "score": c.score, "maxScore": c.max_score, "percentage": c.percentage}
            for c in result.categories
        ],
        "strengths": list(result.strengths),
        "improvements": list(result.improvements),
        "actionItems": list(result.action_items),
        "criticalIssues": [
            {"description": v.item.description, "feedback": v.item.feedback}
            for v in result.critical_violations
        ],
        "missingItems": [
            {"name": item.name, "feedback": item.feedback.missing}
            for item in result.missing_required
        ],
        "manualViolations": [
            {"topic": mv.item.topic, "feedback": mv.feedback}
            for mv in result.manual_violations
        ],
        "duration": result.duration_s,
        "evaluatedAt": result.evaluated_at.isoformat(),
    }


def format_chat(result: EvaluationResult, max_improvements: int = 3) -> str:
    lines = [
        f"{GRADE_EMOJI[result.grade]} **Grade: {result.grade}** ({result.percentage}%)",
        "",
        "✅ **Passed**" if result.passed else "❌ **Not passed**",
        "",
        result.summary,
    ]
    if result.improvements:
        lines += ["", "**Improvements:**"]
        lines += [f"• {s}" for s in result.improvements[:max_improvements]]
    return "\n".join(lines)
