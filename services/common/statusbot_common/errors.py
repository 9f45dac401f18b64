class StatusBotError(RuntimeError):
    """Base class for per-event failures. None of these are fatal to the process."""


class StoreUnavailable(StatusBotError):
    """The backing state store could not be reached."""


class StoreConflict(StatusBotError):
    """A compare-and-swap write lost against a concurrent writer."""

    def __init__(self, pipeline_id: int, expected: int, found: int | None):
        super().__init__(f"state_conflict pipeline={pipeline_id} expected_version={expected} found_version={found}")
        self.pipeline_id = pipeline_id
        self.expected = expected
        self.found = found


class TransportRejected(StatusBotError):
    """Slack refused (or never answered) a post/update/delete call."""


class LogFetchFailed(StatusBotError):
    pass


class StaleActionPayload(StatusBotError):
    """No control matching the clicked (action_id, value) exists in the message."""


class UnrecognizedEvent(StatusBotError):
    pass
