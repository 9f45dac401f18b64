"""
Event merge logic: GitLab webhook events -> pipeline render state -> Slack message.

Write discipline, on every path: the message is dispatched first and the
state is written only after Slack accepted it. A rejected dispatch therefore
leaves the store untouched; a failed write after a successful dispatch leaves
the message ahead of the store until the next event for that pipeline.

Writes are compare-and-swap on the state version. On conflict the event is
re-applied against a fresh read, up to ``conflict_retries`` times.
"""
from enum import Enum

from .errors import StatusBotError, StoreConflict, TransportRejected, UnrecognizedEvent
from .log import get_logger
from .models import JobEvent, MessageRef, PipelineEvent, PipelineRenderState, parse_event
from .render import render_pipeline
from .store import StateStore

log = get_logger("engine")


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DROPPED = "dropped"
    IGNORED = "ignored"


def with_conflict_retries(attempts: int, what: str, fn):
    """Call ``fn`` until it stops raising StoreConflict, at most ``attempts`` times."""
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except StoreConflict as e:
            if attempt == attempts:
                raise
            log.warning("%s: %s (attempt %d/%d), reloading", what, e, attempt, attempts)


class StatusEngine:
    def __init__(self, store: StateStore, transport, channel: str, conflict_retries: int = 3):
        self.store = store
        self.transport = transport
        self.channel = channel
        self.conflict_retries = conflict_retries

    def handle_event(self, payload: dict) -> Outcome:
        try:
            event = parse_event(payload)
        except UnrecognizedEvent as e:
            log.info("ignoring webhook: %s", e)
            return Outcome.IGNORED
        if isinstance(event, PipelineEvent):
            return self.handle_pipeline_event(event)
        return self.handle_job_event(event)

    def handle_pipeline_event(self, event: PipelineEvent) -> Outcome:
        pid = event.pipeline_id
        return with_conflict_retries(
            self.conflict_retries, f"pipeline event pipeline={pid}", lambda: self._apply_pipeline(event)
        )

    def handle_job_event(self, event: JobEvent) -> Outcome:
        pid = event.pipeline_id
        return with_conflict_retries(
            self.conflict_retries, f"job event pipeline={pid} job={event.job_id}", lambda: self._apply_job(event)
        )

    def publish(self, state: PipelineRenderState) -> None:
        rendered = render_pipeline(state.snapshot, state.expanded_stages)
        self.transport.update_message(state.message, rendered.blocks, rendered.text)

    def _apply_pipeline(self, event: PipelineEvent) -> Outcome:
        pid = event.pipeline_id
        state = self.store.get(pid)
        if state is None:
            return self._create(event)

        new = state.model_copy(update={"snapshot": event.snapshot})
        self.publish(new)
        self.store.put(pid, new)
        log.info("pipeline=%s updated status=%s", pid, event.snapshot.status)
        return Outcome.UPDATED

    def _create(self, event: PipelineEvent) -> Outcome:
        pid = event.pipeline_id
        rendered = render_pipeline(event.snapshot, set())
        ref = self.transport.post_message(self.channel, rendered.blocks, rendered.text)
        try:
            self.store.put(pid, PipelineRenderState(message=ref, snapshot=event.snapshot))
        except StatusBotError:
            # Lost the create race or the store is down: at most one message per pipeline.
            self._withdraw(pid, ref)
            raise
        log.info("pipeline=%s created message channel=%s ts=%s", pid, ref.channel, ref.ts)
        return Outcome.CREATED

    def _withdraw(self, pipeline_id: int, ref: MessageRef) -> None:
        try:
            self.transport.delete_message(ref)
        except TransportRejected as e:
            log.error("pipeline=%s could not delete duplicate message ts=%s: %s", pipeline_id, ref.ts, e)

    def _apply_job(self, event: JobEvent) -> Outcome:
        pid = event.pipeline_id
        state = self.store.get(pid)
        if state is None:
            log.info("pipeline=%s job=%s: no pipeline event seen yet, dropping", pid, event.job_id)
            return Outcome.DROPPED

        new = state.model_copy(deep=True)
        job = new.snapshot.find_job(event.job_id)
        if job is None:
            log.info("pipeline=%s job=%s not in snapshot, dropping", pid, event.job_id)
            return Outcome.DROPPED
        if job.status == event.status:
            return Outcome.UNCHANGED

        job.status = event.status
        self.publish(new)
        self.store.put(pid, new)
        log.info("pipeline=%s job=%s (%s) -> %s", pid, job.id, job.name, job.status)
        return Outcome.UPDATED
