import re

from .log import get_logger
from .models import Coverage, CoverageMetric, FailedTest, SuiteCounts, TestFile, TestResults

log = get_logger("testlog")

TEST_JOB_PATTERNS = ("test", "jest", "spec", "unit", "integration", "e2e", "coverage")

FILE_RE = re.compile(r"^\s*(PASS|FAIL)\s+(.+?)(?:\s+\(([0-9.]+)\s*s\))?\s*$")
SUITES_RE = re.compile(r"Test Suites:([^\n]*?)(?:(\d+)\s+of\s+)?(\d+)\s+total")
TESTS_RE = re.compile(r"Tests:([^\n]*?)(?:(\d+)\s+of\s+)?(\d+)\s+total")
COUNT_RE = re.compile(r"(\d+)\s+(failed|passed|skipped|todo)")
TIME_RE = re.compile(r"Time:\s*([0-9.]+)\s*s")
COVERAGE_RE = re.compile(r"All files\s*\|\s*([\d.]+)\s*\|\s*([\d.]+)\s*\|\s*([\d.]+)\s*\|\s*([\d.]+)")
FAILED_CASE_RE = re.compile(r"[✕×]\s+(.+?)(?:\s+\(\d+\s*ms\))?\s*$")


def is_test_job(job_name: str) -> bool:
    name = (job_name or "").lower()
    return any(p in name for p in TEST_JOB_PATTERNS)


def _counts(m) -> SuiteCounts:
    # "Tests: 1 failed, 2 skipped, 9 passed, 10 of 12 total"
    counts = {word: int(n) for n, word in COUNT_RE.findall(m.group(1))}
    total = int(m.group(3))
    ran = int(m.group(2)) if m.group(2) is not None else total
    failed = counts.get("failed", 0)
    skipped = counts.get("skipped", 0) + counts.get("todo", 0)
    passed = counts["passed"] if "passed" in counts else max(ran - failed - skipped, 0)
    return SuiteCounts(total=total, passed=passed, failed=failed, skipped=skipped)


def parse_jest_output(text: str) -> TestResults | None:
    """
    Parse a Jest run out of a raw job trace.
    Returns None when the summary lines are missing (not a Jest log).
    """
    suites_m = SUITES_RE.search(text or "")
    tests_m = TESTS_RE.search(text or "")
    if not suites_m or not tests_m:
        log.debug("no jest summary found in %d chars of output", len(text or ""))
        return None

    test_files = []
    failed_tests = []
    failing_file = None
    for line in text.splitlines():
        if line.lstrip().startswith("Test Suites:"):
            failing_file = None
            continue
        fm = FILE_RE.match(line)
        if fm:
            status, name, secs = fm.group(1), fm.group(2).strip(), fm.group(3)
            test_files.append(TestFile(name=name, status=status, duration=f"{secs}s" if secs else None))
            failing_file = name if status == "FAIL" else None
            continue
        if failing_file:
            cm = FAILED_CASE_RE.search(line)
            if cm:
                failed_tests.append(FailedTest(file=failing_file, test_name=cm.group(1).strip()))

    coverage = None
    cov_m = COVERAGE_RE.search(text)
    if cov_m:
        pct = [CoverageMetric(percentage=float(g)) for g in cov_m.groups()]
        coverage = Coverage(statements=pct[0], branches=pct[1], functions=pct[2], lines=pct[3])

    time_m = TIME_RE.search(text)
    tests = _counts(tests_m)
    return TestResults(
        suites=_counts(suites_m),
        tests=tests,
        duration=f"{time_m.group(1)}s" if time_m else "N/A",
        coverage=coverage,
        test_files=test_files,
        failed_tests=failed_tests if tests.failed else [],
    )
