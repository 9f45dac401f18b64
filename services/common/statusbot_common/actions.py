"""
Action patch resolver for clicks on a pipeline message.

Stage toggles change persisted state and re-render the whole message.
Diagnostic clicks (job log, test summary) patch only the message the user is
looking at: the actions block holding the clicked control is found by exact
(action_id, value) match in the block list Slack sent with the click, and
replaced by the diagnostic block. Every other block is passed back untouched.
"""
import json

from .diagnostics import log_block, results_block, unavailable_block
from .engine import with_conflict_retries
from .errors import LogFetchFailed, StaleActionPayload
from .log import get_logger
from .models import ActionInvocation
from .render import HIDE_STAGE, SHOW_ERROR_LOG, SHOW_STAGE, SHOW_TEST_SUMMARY, action_kind, render_pipeline
from .testlog import parse_jest_output

log = get_logger("actions")

INFORMATIONAL = ("view_console", "configure_alerts")
PATCH_TEXT = "Pipeline status updated."


def find_action_block(blocks: list, action_id: str, value: str) -> int:
    for i, block in enumerate(blocks):
        if block.get("type") != "actions":
            continue
        for el in block.get("elements") or []:
            if el.get("action_id") == action_id and el.get("value") == value:
                return i
    raise StaleActionPayload(f"no control action_id={action_id!r} value={value!r} in message")


def splice_block(blocks: list, action_id: str, value: str, replacement: dict) -> list:
    """New block list with the matching actions block swapped for ``replacement``."""
    i = find_action_block(blocks, action_id, value)
    return blocks[:i] + [replacement] + blocks[i + 1:]


def _json_value(value: str) -> dict:
    try:
        data = json.loads(value)
    except (TypeError, ValueError) as e:
        raise StaleActionPayload(f"undecodable action value {value!r}") from e
    if not isinstance(data, dict):
        raise StaleActionPayload(f"unexpected action value {value!r}")
    return data


def parse_interaction(payload: dict) -> list[ActionInvocation]:
    """Slack ``block_actions`` payload -> one invocation per activated control."""
    if (payload or {}).get("type") != "block_actions":
        return []
    container = payload.get("container") or {}
    message = payload.get("message") or {}
    channel = (payload.get("channel") or {}).get("id") or container.get("channel_id")
    ts = message.get("ts") or container.get("message_ts")
    if not channel or not ts:
        log.error("interaction without channel/message ts, cannot patch")
        return []
    return [
        ActionInvocation(
            action_id=a.get("action_id", ""),
            value=a.get("value", ""),
            channel=channel,
            ts=ts,
            blocks=message.get("blocks") or [],
        )
        for a in payload.get("actions") or []
    ]


class ActionResolver:
    def __init__(self, store, transport, logs, log_tail_lines: int = 20, conflict_retries: int = 3):
        self.store = store
        self.transport = transport
        self.logs = logs
        self.log_tail_lines = log_tail_lines
        self.conflict_retries = conflict_retries

    def handle(self, action: ActionInvocation) -> bool:
        """Returns True when the message was updated."""
        kind = action_kind(action.action_id)
        if kind in INFORMATIONAL:
            log.debug("acknowledged %s", action.action_id)
            return False
        handlers = {
            SHOW_STAGE: lambda a: self.toggle_stage(a, True),
            HIDE_STAGE: lambda a: self.toggle_stage(a, False),
            SHOW_ERROR_LOG: self.show_error_log,
            SHOW_TEST_SUMMARY: self.show_test_summary,
        }
        handler = handlers.get(kind)
        if handler is None:
            log.info("ignoring unknown action_id=%s", action.action_id)
            return False
        try:
            handler(action)
        except StaleActionPayload as e:
            log.info("stale click on ts=%s: %s", action.ts, e)
            return False
        return True

    def toggle_stage(self, action: ActionInvocation, show: bool) -> None:
        data = _json_value(action.value)
        try:
            pid, stage = int(data["pipeline_id"]), str(data["stage"])
        except (KeyError, TypeError, ValueError) as e:
            raise StaleActionPayload(f"bad toggle value {action.value!r}") from e

        def _apply():
            state = self.store.get(pid)
            if state is None:
                raise StaleActionPayload(f"no state for pipeline={pid}")
            expanded = set(state.expanded_stages)
            if show:
                expanded.add(stage)
            else:
                expanded.discard(stage)
            new = state.model_copy(update={"expanded_stages": expanded})
            rendered = render_pipeline(new.snapshot, new.expanded_stages)
            self.transport.update_message(action.message, rendered.blocks, rendered.text)
            self.store.put(pid, new)

        with_conflict_retries(self.conflict_retries, f"toggle pipeline={pid} stage={stage}", _apply)
        log.info("pipeline=%s stage=%s %s", pid, stage, "expanded" if show else "collapsed")

    def show_error_log(self, action: ActionInvocation) -> None:
        try:
            job_id = int(action.value)
        except (TypeError, ValueError) as e:
            raise StaleActionPayload(f"bad job id {action.value!r}") from e
        find_action_block(action.blocks, action.action_id, action.value)

        try:
            block = log_block(self.logs.fetch_job_tail(job_id, self.log_tail_lines))
        except LogFetchFailed as e:
            log.warning("job=%s log fetch failed: %s", job_id, e)
            block = unavailable_block("job log")
        self._patch(action, block)

    def show_test_summary(self, action: ActionInvocation) -> None:
        data = _json_value(action.value)
        try:
            job_id, job_name = int(data["job_id"]), str(data.get("job_name", ""))
        except (KeyError, TypeError, ValueError) as e:
            raise StaleActionPayload(f"bad test summary value {action.value!r}") from e
        find_action_block(action.blocks, action.action_id, action.value)

        try:
            block = results_block(parse_jest_output(self.logs.fetch_job_trace(job_id)), job_name)
        except LogFetchFailed as e:
            log.warning("job=%s trace fetch failed: %s", job_id, e)
            block = unavailable_block(f"test output for {job_name}")
        self._patch(action, block)

    def _patch(self, action: ActionInvocation, block: dict) -> None:
        blocks = splice_block(action.blocks, action.action_id, action.value, block)
        self.transport.update_message(action.message, blocks, PATCH_TEXT)
