from typing import Any, Dict

from .models import TestResults
from .render import mrkdwn, slack_escape

# Slack rejects section text longer than this.
MAX_SECTION_TEXT = 3000
FENCE = "```"


def log_block(log_tail: str) -> Dict[str, Any]:
    body = (log_tail or "").strip("\n") or "(empty log)"
    room = MAX_SECTION_TEXT - 2 * len(FENCE) - 2
    if len(body) > room:
        # keep the end, that is where the failure is
        body = body[-room:]
    return {"type": "section", "text": mrkdwn(f"{FENCE}\n{body}\n{FENCE}")}


def unavailable_block(what: str) -> Dict[str, Any]:
    return {"type": "section", "text": mrkdwn(f"⚠️ Could not retrieve {what}.")}


def _status_emoji(counts) -> str:
    if counts.failed == 0:
        return "✅"
    if counts.passed == 0:
        return "❌"
    return "⚠️"


def results_block(results: TestResults | None, job_name: str) -> Dict[str, Any]:
    """Compact inline summary; ``None`` means the log could not be parsed."""
    if results is None:
        return {
            "type": "section",
            "text": mrkdwn(
                f"❌ *Could not parse test results for {job_name}*\n"
                "The test output format may not be recognized."
            ),
        }

    job_name = slack_escape(job_name)
    t = results.tests
    lines = [
        f"{_status_emoji(t)} *Test Results for {job_name}*",
        f"✓ {t.passed}/{t.total} tests passed in {results.duration}",
    ]
    if t.skipped:
        lines.append(f"⏭️ {t.skipped} skipped")
    if results.coverage:
        cov = results.coverage
        lines.append(
            f"📊 Coverage: {cov.statements.percentage:.1f}% statements, {cov.lines.percentage:.1f}% lines"
        )
    if t.failed:
        lines.append(f"❌ {t.failed} tests failed")
        for ft in results.failed_tests[:5]:
            lines.append(f"• {slack_escape(ft.file)}: {slack_escape(ft.test_name)}")
    return {"type": "section", "text": mrkdwn("\n".join(lines)[:MAX_SECTION_TEXT])}
