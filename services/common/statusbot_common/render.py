"""
Pipeline message rendering.

``render_pipeline`` is a pure function of (snapshot, expanded stages): it never
looks at the clock, at randomness or at the previous rendering, so equal inputs
always produce equal block lists.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .models import Job, PipelineSnapshot
from .testlog import is_test_job
from .utils import chunked, jdump

# Slack block kit ceilings.
MAX_SECTION_FIELDS = 10
MAX_ACTION_ELEMENTS = 5
MAX_HEADER_CHARS = 150

SHOW_STAGE = "show_stage"
HIDE_STAGE = "hide_stage"
SHOW_ERROR_LOG = "show_error_log"
SHOW_TEST_SUMMARY = "show_test_summary"

STATUS_EMOJI = {
    "success": "✅",
    "failed": "❌",
    "running": "⚙️",
    "pending": "⏳",
    "created": "📝",
}
NOT_STARTED_EMOJI = "⚪"


@dataclass(frozen=True)
class RenderedMessage:
    blocks: List[Dict[str, Any]] = field(default_factory=list)
    text: str = ""


def status_emoji(status: str) -> str:
    return STATUS_EMOJI.get(status, "❓")


def stage_status(jobs: Iterable[Job]) -> str:
    statuses = [j.status for j in jobs]
    if any(s == "failed" for s in statuses):
        return "failed"
    if all(s == "success" for s in statuses):
        return "success"
    if all(s in ("created", "pending") for s in statuses):
        return "pending"
    return "running"


def slack_escape(text: str) -> str:
    """Escape the three characters Slack treats as control sequences in mrkdwn."""
    return (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def mrkdwn(text: str) -> Dict[str, str]:
    return {"type": "mrkdwn", "text": text}


def plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text, "emoji": True}


def button(label: str, action_id: str, value: str, style: str | None = None) -> Dict[str, Any]:
    b = {"type": "button", "text": plain(label), "action_id": action_id, "value": value}
    if style:
        b["style"] = style
    return b


def action_id_for(kind: str, job: Job) -> str:
    """Buttons sharing an actions block need distinct action ids; the kind is the prefix."""
    return f"{kind}:{job.id}"


def action_kind(action_id: str) -> str:
    return (action_id or "").split(":", 1)[0]


def toggle_value(pipeline_id: int, stage: str) -> str:
    return jdump({"pipeline_id": pipeline_id, "stage": stage})


def summary_value(job: Job) -> str:
    return jdump({"job_id": job.id, "job_name": job.name})


def header_blocks(snapshot: PipelineSnapshot) -> List[Dict[str, Any]]:
    c = snapshot.commit
    title = f"Pipeline for {snapshot.project_name or 'unknown project'}"[:MAX_HEADER_CHARS]
    commit = f"<{c.url}|{c.short_id}>" if c.url else (c.short_id or "unknown")
    line = f"*Branch:* {slack_escape(snapshot.ref)} | *Commit:* {commit} by {slack_escape(c.author_name or 'unknown')}"
    return [
        {"type": "header", "text": plain(title)},
        {"type": "context", "elements": [mrkdwn(line)]},
        {"type": "divider"},
    ]


def stage_blocks(snapshot: PipelineSnapshot, expanded_stages) -> List[Dict[str, Any]]:
    blocks = []
    by_stage = snapshot.jobs_by_stage()
    for stage in snapshot.stages:
        jobs = by_stage.get(stage) or []
        if not jobs:
            blocks.append({"type": "section", "text": mrkdwn(f"{NOT_STARTED_EMOJI} *{slack_escape(stage)}*")})
            continue

        expanded = stage in expanded_stages
        blocks.append({
            "type": "section",
            "text": mrkdwn(f"{status_emoji(stage_status(jobs))} *{slack_escape(stage)}*"),
            "accessory": button(
                "Hide" if expanded else "Show",
                HIDE_STAGE if expanded else SHOW_STAGE,
                toggle_value(snapshot.pipeline_id, stage),
            ),
        })
        if expanded:
            rows = [mrkdwn(f"{status_emoji(j.status)} *{slack_escape(j.name)}:* {slack_escape(j.status)}") for j in jobs]
            for chunk in chunked(rows, MAX_SECTION_FIELDS):
                blocks.append({"type": "section", "fields": chunk})
    return blocks


def diagnostic_buttons(snapshot: PipelineSnapshot) -> List[Dict[str, Any]]:
    failed = [j for j in snapshot.builds if j.status == "failed"]
    passed_tests = [j for j in snapshot.builds if j.status == "success" and is_test_job(j.name)]
    buttons = [button(f"Log: {j.name}", action_id_for(SHOW_ERROR_LOG, j), str(j.id), style="danger") for j in failed]
    buttons += [button(f"📊 {j.name}", action_id_for(SHOW_TEST_SUMMARY, j), summary_value(j), style="primary") for j in passed_tests]
    buttons += [
        button(f"📊 {j.name}", action_id_for(SHOW_TEST_SUMMARY, j), summary_value(j), style="danger")
        for j in failed if is_test_job(j.name)
    ]
    return buttons


def fallback_text(snapshot: PipelineSnapshot) -> str:
    project = snapshot.project_name or "unknown project"
    status = snapshot.status or "unknown"
    return f"{project} pipeline #{snapshot.pipeline_id} on {snapshot.ref}: {status}"


def render_pipeline(snapshot: PipelineSnapshot, expanded_stages=frozenset()) -> RenderedMessage:
    blocks = header_blocks(snapshot)
    blocks += stage_blocks(snapshot, expanded_stages)

    buttons = diagnostic_buttons(snapshot)
    if buttons:
        blocks.append({"type": "divider"})
        for chunk in chunked(buttons, MAX_ACTION_ELEMENTS):
            blocks.append({"type": "actions", "elements": chunk})

    return RenderedMessage(blocks=blocks, text=fallback_text(snapshot))
