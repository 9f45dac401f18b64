from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_serializer

from .errors import UnrecognizedEvent


class Job(BaseModel):
    id: int
    name: str = ""
    stage: str = ""
    status: str = "created"


class Commit(BaseModel):
    id: str = ""
    url: str = ""
    author_name: str = ""

    @property
    def short_id(self) -> str:
        return self.id[:8]


class PipelineSnapshot(BaseModel):
    pipeline_id: int
    project_name: str = ""
    project_url: str = ""
    ref: str = ""
    status: str = ""
    commit: Commit = Field(default_factory=Commit)
    stages: List[str] = Field(default_factory=list)
    builds: List[Job] = Field(default_factory=list)

    @classmethod
    def from_gitlab(cls, payload: Dict[str, Any]) -> "PipelineSnapshot":
        attrs = payload.get("object_attributes") or {}
        project = payload.get("project") or {}
        commit = payload.get("commit") or {}
        return cls(
            pipeline_id=attrs["id"],
            project_name=project.get("name", ""),
            project_url=project.get("web_url", ""),
            ref=attrs.get("ref", ""),
            status=attrs.get("status", ""),
            commit=Commit(
                id=commit.get("id", ""),
                url=commit.get("url", ""),
                author_name=(commit.get("author") or {}).get("name", ""),
            ),
            stages=list(attrs.get("stages") or []),
            builds=[
                Job(id=b["id"], name=b.get("name", ""), stage=b.get("stage", ""), status=b.get("status", "created"))
                for b in payload.get("builds") or []
            ],
        )

    def find_job(self, job_id: int) -> Optional[Job]:
        for job in self.builds:
            if job.id == job_id:
                return job
        return None

    def jobs_by_stage(self) -> Dict[str, List[Job]]:
        grouped: Dict[str, List[Job]] = {}
        for job in self.builds:
            grouped.setdefault(job.stage, []).append(job)
        return grouped


class MessageRef(BaseModel):
    model_config = {"frozen": True}

    channel: str
    ts: str


class PipelineRenderState(BaseModel):
    message: MessageRef
    expanded_stages: Set[str] = Field(default_factory=set)
    snapshot: PipelineSnapshot
    version: int = 0
    updated_at: str = ""

    # Sets do not survive a JSON round-trip in a stable order.
    @field_serializer("expanded_stages")
    def _sorted_stages(self, stages: Set[str]) -> List[str]:
        return sorted(stages)


class PipelineEvent(BaseModel):
    kind: str = "pipeline"
    snapshot: PipelineSnapshot

    @property
    def pipeline_id(self) -> int:
        return self.snapshot.pipeline_id


class JobEvent(BaseModel):
    kind: str = "job"
    pipeline_id: int
    job_id: int
    status: str
    job_name: str = ""
    stage: str = ""

    @classmethod
    def from_gitlab(cls, payload: Dict[str, Any]) -> "JobEvent":
        return cls(
            pipeline_id=payload["pipeline_id"],
            job_id=payload["build_id"],
            status=payload.get("build_status", ""),
            job_name=payload.get("build_name", ""),
            stage=payload.get("build_stage", ""),
        )


def parse_event(payload: Dict[str, Any]) -> PipelineEvent | JobEvent:
    """Map a GitLab webhook body onto the two event kinds the engine understands."""
    kind = (payload or {}).get("object_kind")
    try:
        if kind == "pipeline":
            return PipelineEvent(snapshot=PipelineSnapshot.from_gitlab(payload))
        if kind == "build":
            return JobEvent.from_gitlab(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise UnrecognizedEvent(f"malformed {kind} event: {e}") from e
    raise UnrecognizedEvent(f"unsupported object_kind={kind!r}")


def event_pipeline_id(payload: Dict[str, Any]) -> Optional[int]:
    """Best-effort pipeline id for queue routing; None when the body has none."""
    payload = payload or {}
    pid = payload.get("pipeline_id") or (payload.get("object_attributes") or {}).get("id")
    try:
        return int(pid) if pid is not None else None
    except (TypeError, ValueError):
        return None


class ActionInvocation(BaseModel):
    action_id: str
    value: str = ""
    channel: str
    ts: str
    blocks: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def message(self) -> MessageRef:
        return MessageRef(channel=self.channel, ts=self.ts)


class SuiteCounts(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0


class CoverageMetric(BaseModel):
    percentage: float = 0.0


class Coverage(BaseModel):
    statements: CoverageMetric
    branches: CoverageMetric
    functions: CoverageMetric
    lines: CoverageMetric


class TestFile(BaseModel):
    name: str
    status: str
    duration: Optional[str] = None


class FailedTest(BaseModel):
    file: str
    test_name: str
    error: str = "Test failed"


class TestResults(BaseModel):
    suites: SuiteCounts
    tests: SuiteCounts
    duration: str = "N/A"
    coverage: Optional[Coverage] = None
    test_files: List[TestFile] = Field(default_factory=list)
    failed_tests: List[FailedTest] = Field(default_factory=list)
