import requests

from .errors import LogFetchFailed
from .utils import tail_lines


def gl_headers(token: str) -> dict:
    return {"PRIVATE-TOKEN": token}


class GitLabClient:
    def __init__(self, base_url: str, token: str, project_id: str, session: requests.Session | None = None, timeout: int = 30):
        self.api = f"{base_url.rstrip('/')}/api/v4"
        self.project_id = project_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(gl_headers(token))

    def fetch_job_trace(self, job_id: int) -> str:
        url = f"{self.api}/projects/{self.project_id}/jobs/{job_id}/trace"
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise LogFetchFailed(f"GitLab GET {url} -> {e}") from e
        if r.status_code >= 400:
            raise LogFetchFailed(f"GitLab GET {url} -> {r.status_code}")
        return r.text

    def fetch_job_tail(self, job_id: int, lines: int = 20) -> str:
        return tail_lines(self.fetch_job_trace(job_id), lines)
