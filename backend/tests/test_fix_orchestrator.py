import pytest

from fakes import FakePipedrive, FakeXero, make_deal, make_quote
from modules.fixes.models import FixConfig, FixContext
from modules.fixes.orchestrator import DRY_RUN_WARNING, SESSIONS_COLLECTION, FixOrchestrator
from modules.validation.models import IssueCode, ValidationIssue
from services.xero.quotes import RESTORE_WARNING


def title_issue(deal_id=1, title="NY2594 Ocean Star", expected="NY2594-Ocean Star"):
    return ValidationIssue(
        severity="error",
        code=IssueCode.INVALID_TITLE_FORMAT,
        message="bad title",
        deal_id=deal_id,
        field="title",
        metadata={"title": title, "expected_title": expected},
    )


def status_issue(quote_id, deal_id=1, current_status="SENT"):
    return ValidationIssue(
        severity="error",
        code=IssueCode.QUOTE_STATUS_MISMATCH,
        message="wrong status",
        deal_id=deal_id,
        quote_id=quote_id,
        metadata={"current_status": current_status, "expected_status": "ACCEPTED"},
    )


def placement_issue():
    return ValidationIssue(
        severity="error", code=IssueCode.WON_DEAL_IN_UNQUALIFIED_PIPELINE, message="wrong pipeline", deal_id=1
    )


def number_issue(quote_id="q9"):
    return ValidationIssue(
        severity="error",
        code=IssueCode.ACCEPTED_QUOTE_INVALID_FORMAT,
        message="bad number",
        quote_id=quote_id,
        metadata={"quote_number": "QU9", "suggested_number": "NY1-QU9-1"},
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def pipedrive():
    return FakePipedrive([make_deal(1, "NY2594 Ocean Star")])


@pytest.fixture
def xero():
    return FakeXero([make_quote(f"q{i}", f"NY1-QU{i}-1", status="SENT") for i in (1, 2, 3)])


@pytest.fixture
def make_orchestrator(pipedrive, xero, sleeps):
    async def sleep(seconds):
        sleeps.append(seconds)

    def build(progress_callback=None, **config):
        context = FixContext(tenant_id="tenant-a", config=FixConfig(**config), pipedrive=pipedrive, xero=xero)
        return FixOrchestrator(context, progress_callback=progress_callback, sleep=sleep, clock=lambda: 0.0)

    return build


async def test_title_fix_is_applied_and_placement_issues_are_excluded(make_orchestrator, pipedrive):
    orchestrator = make_orchestrator()
    session = orchestrator.initialize_session([title_issue(), placement_issue()], tenant_name="Tenant A")

    assert [issue.code for issue in session.issues] == [IssueCode.INVALID_TITLE_FORMAT]

    session = await orchestrator.execute_fix_workflow(session)

    assert session.status == "completed"
    assert pipedrive.renamed == [(1, "NY2594-Ocean Star")]
    [result] = session.results
    assert result.status == "fixed"
    assert result.original_value == "NY2594 Ocean Star"
    assert result.rollback_data == {"deal_id": 1, "original_title": "NY2594 Ocean Star"}
    assert session.summary.fixed_count == 1
    assert [step.status for step in session.steps] == ["completed"] * 4


async def test_transient_failures_are_retried(make_orchestrator, xero, sleeps):
    xero.failures = 2
    orchestrator = make_orchestrator(retry_delay=0.5)

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([status_issue("q1")]))

    [result] = session.results
    assert result.status == "fixed"
    assert result.attempts == 3
    assert sleeps == [0.5, 1.0]
    assert xero.quotes["q1"].status == "ACCEPTED"


async def test_exhausted_retries_fail_the_fix(make_orchestrator, xero):
    xero.failures = 10
    orchestrator = make_orchestrator(max_retries=2, retry_delay=0)

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([status_issue("q1")]))

    [result] = session.results
    assert result.status == "failed"
    assert result.attempts == 3
    assert session.summary.failed_count == 1
    assert any("manual review" in line for line in session.summary.recommendations)


async def test_circuit_breaker_skips_remaining_fixes(make_orchestrator, xero):
    xero.failures = 100
    orchestrator = make_orchestrator(max_retries=0, circuit_breaker_threshold=2)
    issues = [status_issue("q1"), status_issue("q2"), status_issue("q3")]

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session(issues))

    assert [(r.status, r.error) for r in session.results][2] == ("skipped", "Circuit breaker open")
    assert [r.status for r in session.results] == ["failed", "failed", "skipped"]
    assert any("repeated failures" in line for line in session.summary.recommendations)


async def test_dry_run_writes_nothing(make_orchestrator, pipedrive):
    orchestrator = make_orchestrator(dry_run=True)

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([title_issue()]))

    [result] = session.results
    assert session.dry_run
    assert result.status == "skipped"
    assert result.new_value == "NY2594-Ocean Star"
    assert result.warnings == [DRY_RUN_WARNING]
    assert pipedrive.renamed == []
    assert session.summary.recommendations[0].startswith("Dry run: 1 fix(es)")


async def test_stale_issue_is_skipped(make_orchestrator, pipedrive):
    orchestrator = make_orchestrator()
    issue = title_issue(title="NY2594  Ocean Star (old)")

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([issue]))

    [result] = session.results
    assert result.status == "skipped"
    assert result.error == "Deal title has changed since validation"
    assert pipedrive.renamed == []


async def test_rollback_restores_original_title(make_orchestrator, pipedrive):
    orchestrator = make_orchestrator()
    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([title_issue()]))

    rolled_back = await orchestrator.rollback_session(session)

    assert len(rolled_back) == 1
    assert session.results[0].rolled_back
    assert pipedrive.renamed[-1] == (1, "NY2594 Ocean Star")
    assert await orchestrator.rollback_session(session) == []


async def test_cancel_skips_fixes_not_yet_started(make_orchestrator, pipedrive):
    def cancel_when_applying(step):
        if step.id == "apply_fixes" and step.status == "running":
            orchestrator.cancel_session(session)

    orchestrator = make_orchestrator(progress_callback=cancel_when_applying)
    session = orchestrator.initialize_session([title_issue()])

    session = await orchestrator.execute_fix_workflow(session)

    assert session.status == "cancelled"
    assert [(r.status, r.error) for r in session.results] == [("skipped", "Fix session cancelled")]
    assert pipedrive.renamed == []


async def test_restore_warning_is_reported(make_orchestrator, xero):
    xero.quotes["q9"] = make_quote("q9", "QU9")
    xero.fail_on_status = {"ACCEPTED"}
    orchestrator = make_orchestrator()

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([number_issue()]))

    [result] = session.results
    assert result.status == "fixed"
    assert result.new_value == "NY1-QU9-1"
    assert result.warnings == [RESTORE_WARNING]
    assert any("with warnings" in line for line in session.summary.recommendations)


async def test_apply_single_fix(make_orchestrator, pipedrive):
    orchestrator = make_orchestrator()
    unknown = ValidationIssue(severity="info", code=IssueCode.NO_QUOTE_LINKED, message="no quote", deal_id=1)

    assert (await orchestrator.apply_fix(placement_issue())).status == "skipped"
    assert (await orchestrator.apply_fix(unknown)).error == "No handler available"
    assert (await orchestrator.apply_fix(title_issue())).status == "fixed"
    assert pipedrive.renamed == [(1, "NY2594-Ocean Star")]


async def test_session_is_persisted(make_orchestrator, fake_mongo):
    orchestrator = make_orchestrator()

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([title_issue()]))

    [stored] = fake_mongo.collections[SESSIONS_COLLECTION]
    assert stored["id"] == session.id
    assert stored["status"] == "completed"
    assert stored["results"][0]["status"] == "fixed"


async def test_failed_edit_is_retried_from_accepted(make_orchestrator, xero):
    xero.quotes["q9"] = make_quote("q9", "QU9")
    xero.fail_calls = {2}
    orchestrator = make_orchestrator(retry_delay=0)

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([number_issue()]))

    [result] = session.results
    assert result.status == "fixed"
    assert result.attempts == 2
    assert result.warnings == []
    assert [write["Status"] for write in xero.writes] == ["SENT", "ACCEPTED", "SENT", "SENT", "ACCEPTED"]
    assert xero.quotes["q9"].status == "ACCEPTED"
    assert xero.quotes["q9"].quote_number == "NY1-QU9-1"


async def test_edit_that_cannot_be_restored_fails_naming_the_status(make_orchestrator, xero):
    xero.quotes["q9"] = make_quote("q9", "QU9")
    xero.fail_calls = {2}
    xero.fail_on_status = {"ACCEPTED"}
    orchestrator = make_orchestrator(retry_delay=0)

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([number_issue()]))

    [result] = session.results
    assert result.status == "failed"
    assert result.attempts == 1
    assert "left in SENT instead of ACCEPTED" in result.error
    assert xero.quotes["q9"].status == "SENT"


async def test_status_retry_keeps_the_first_seen_status(make_orchestrator, xero):
    xero.quotes["q4"] = make_quote("q4", "NY1-QU4-1", status="DECLINED")
    xero.fail_calls = {2}
    issue = status_issue("q4", current_status="DECLINED")
    orchestrator = make_orchestrator(retry_delay=0)

    session = await orchestrator.execute_fix_workflow(orchestrator.initialize_session([issue]))

    [result] = session.results
    assert result.status == "fixed"
    assert result.attempts == 2
    assert result.original_value == "DECLINED"
    assert result.rollback_data == {"quote_id": "q4", "original_status": "DECLINED"}
    assert xero.quotes["q4"].status == "ACCEPTED"
    assert orchestrator.context.original_statuses == {}


async def test_apply_fix_with_own_context_leaves_orchestrator_state(make_orchestrator, pipedrive, xero):
    orchestrator = make_orchestrator()
    strict = FixContext(
        tenant_id="tenant-a",
        config=FixConfig(max_retries=0, circuit_breaker_threshold=1),
        pipedrive=pipedrive,
        xero=xero,
    )
    xero.failures = 1

    result = await orchestrator.apply_fix(status_issue("q1"), context=strict)

    assert (result.status, result.attempts) == ("failed", 1)
    assert orchestrator.context is not strict
    assert orchestrator.config.max_retries == FixConfig().max_retries
    assert orchestrator.breaker.failures == 0
    assert (await orchestrator.apply_fix(status_issue("q1"))).status == "fixed"
