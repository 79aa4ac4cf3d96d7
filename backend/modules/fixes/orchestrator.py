import asyncio
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from core.backoff import retry_with_exponential_backoff
from core.base_database import BaseDatabase
from core.base_handler import BaseWorkflowHandler, ProgressCallback
from core.errors import CrossValError, FetchError
from core.logger import Logger
from modules.validation.models import IssueCode, ValidationIssue
from schema.workflow import new_session_id, utcnow

from .handlers import FixHandler, default_handlers
from .models import FixContext, FixResult, FixSession, FixSummary

logger = Logger(__name__)

SESSIONS_COLLECTION = "fix_sessions"
DRY_RUN_WARNING = "Dry run: no changes written"

# placement problems need a human decision, never an automatic move
EXCLUDED_CODES = (IssueCode.WON_DEAL_IN_UNQUALIFIED_PIPELINE, IssueCode.OPEN_DEAL_IN_WRONG_PIPELINE)


class CircuitBreaker:
    """Opens after ``threshold`` consecutive failures, closes again after ``reset_seconds``."""

    def __init__(self, threshold: int, reset_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self.failures = 0
        self.opened_at: Optional[float] = None

    def record_success(self):
        self.failures = 0
        self.opened_at = None

    def record_failure(self):
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = self._clock()
            logger.warning(f"Circuit breaker opened after {self.failures} consecutive failures")

    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        if self._clock() - self.opened_at >= self.reset_seconds:
            logger.info("Circuit breaker reset")
            self.record_success()
            return False
        return True


class FixOrchestrator(BaseWorkflowHandler, BaseDatabase):
    """
    Applies corrective writes for a set of validation issues.

    Steps: analyze_issues (keep issues some handler can fix), validate_fixes
    (handlers confirm the data is still as validated), apply_fixes (batched,
    retried with exponential backoff, guarded by a circuit breaker) and
    generate_summary.
    """

    workflow_name = "fix"

    def __init__(
        self,
        context: FixContext,
        handlers: Optional[Sequence[FixHandler]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        sleep=asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(progress_callback)
        self.context = context
        self.config = context.config
        self.handlers = list(handlers) if handlers is not None else default_handlers()
        self._sleep = sleep
        self._clock = clock
        self.breaker = CircuitBreaker(self.config.circuit_breaker_threshold, self.config.circuit_breaker_reset, clock)
        self._cancelled = False

    def get_steps(self):
        return [
            ("analyze_issues", "Analyze Issues", "Identifying fixable issues"),
            ("validate_fixes", "Validate Fixes", "Validating fix operations"),
            ("apply_fixes", "Apply Fixes", "Applying fixes to Pipedrive and Xero"),
            ("generate_summary", "Generate Summary", "Creating fix report"),
        ]

    def handler_for(self, issue: ValidationIssue) -> Optional[FixHandler]:
        return next((handler for handler in self.handlers if handler.can_handle(issue)), None)

    def initialize_session(self, issues: Sequence[ValidationIssue], tenant_name: str = "") -> FixSession:
        kept = [issue for issue in issues if issue.code not in EXCLUDED_CODES]
        session = FixSession(
            id=new_session_id("fix"),
            tenant_id=self.context.tenant_id,
            tenant_name=tenant_name,
            dry_run=self.config.dry_run,
            issues=kept,
            steps=self.create_steps(),
        )
        logger.info(
            f"Fix session {session.id} initialized",
            tenant_id=session.tenant_id,
            issues=len(kept),
            excluded=len(issues) - len(kept),
        )
        return session

    async def execute_fix_workflow(self, session: FixSession) -> FixSession:
        self._cancelled = False
        session.status = "running"
        session.started_at = utcnow()
        steps = {step.id: step for step in session.steps}

        try:
            fixable = await self.run_step(
                steps["analyze_issues"], self.analyze_issues, session.issues, summarize=lambda r: {"fixable": len(r)}
            )
            validated, skipped = await self.run_step(
                steps["validate_fixes"],
                self.validate_fixes,
                fixable,
                summarize=lambda r: {"validated": len(r[0]), "skipped": len(r[1])},
            )
            applied = await self.run_step(
                steps["apply_fixes"], self.apply_fixes, validated, summarize=lambda r: {"results": len(r)}
            )
            session.results = skipped + applied
            session.summary = await self.run_step(
                steps["generate_summary"],
                self.generate_summary,
                session,
                len(fixable),
                summarize=lambda s: s.model_dump(),
            )
        except Exception as e:
            session.status = "failed"
            session.error = str(e)
            session.ended_at = utcnow()
            await self.skip_pending(session.steps)
            logger.error(f"Fix workflow {session.id} failed: {e}")
            await self._persist(session)
            raise

        session.status = "cancelled" if self._cancelled else "completed"
        session.ended_at = utcnow()
        logger.info(
            f"Fix workflow {session.id} {session.status}",
            fixed=session.summary.fixed_count,
            skipped=session.summary.skipped_count,
            failed=session.summary.failed_count,
        )
        await self._persist(session)
        return session

    async def analyze_issues(self, issues: Sequence[ValidationIssue]) -> List[ValidationIssue]:
        fixable = [issue for issue in issues if self.handler_for(issue)]
        logger.info(f"Issue analysis completed: {len(fixable)} of {len(issues)} fixable")
        return fixable

    async def validate_fixes(self, issues: Sequence[ValidationIssue]) -> Tuple[List[ValidationIssue], List[FixResult]]:
        validated, skipped = [], []
        for issue in issues:
            reason = await self._check(self.handler_for(issue), issue, self.context)
            if reason:
                skipped.append(self._result(issue, "skipped", error=reason))
            else:
                validated.append(issue)
        logger.info(f"Fix validation completed: {len(validated)} validated, {len(skipped)} rejected")
        return validated, skipped

    async def apply_fixes(self, issues: Sequence[ValidationIssue]) -> List[FixResult]:
        results: List[FixResult] = []
        batch_size = max(1, self.config.batch_size)

        for start in range(0, len(issues), batch_size):
            if start and self.config.batch_delay:
                await self._sleep(self.config.batch_delay)
            for issue in issues[start:start + batch_size]:
                if self._cancelled:
                    results.append(self._result(issue, "skipped", error="Fix session cancelled"))
                elif self.breaker.is_open():
                    results.append(self._result(issue, "skipped", error="Circuit breaker open"))
                else:
                    results.append(await self._apply(self.handler_for(issue), issue, self.context, self.breaker))
        return results

    async def apply_fix(self, issue: ValidationIssue, context: Optional[FixContext] = None) -> FixResult:
        """
        Validate and fix a single issue outside of a session. A ``context``
        passed here applies to this call only, with its own circuit breaker.
        """
        breaker = self.breaker
        if context is None:
            context = self.context
        else:
            breaker = CircuitBreaker(
                context.config.circuit_breaker_threshold, context.config.circuit_breaker_reset, self._clock
            )
        if issue.code in EXCLUDED_CODES:
            return self._result(issue, "skipped", error="Pipeline placement issues are not fixed automatically")
        handler = self.handler_for(issue)
        if handler is None:
            return self._result(issue, "skipped", error="No handler available")
        reason = await self._check(handler, issue, context)
        if reason:
            return self._result(issue, "skipped", error=reason)
        return await self._apply(handler, issue, context, breaker)

    async def _check(self, handler: FixHandler, issue: ValidationIssue, context: FixContext) -> Optional[str]:
        try:
            return await handler.validate(issue, context)
        except CrossValError as e:
            logger.error(f"Error validating fix for {issue.code}: {e}", deal_id=issue.deal_id)
            return f"Validation failed: {e}"

    async def _apply(
        self, handler: FixHandler, issue: ValidationIssue, context: FixContext, breaker: CircuitBreaker
    ) -> FixResult:
        config = context.config
        if config.dry_run:
            return self._result(
                issue,
                "skipped",
                new_value=issue.metadata.get("expected_title")
                or issue.metadata.get("expected_status")
                or issue.metadata.get("suggested_number"),
                warnings=[DRY_RUN_WARNING],
            )

        attempts = 0

        @retry_with_exponential_backoff(
            FetchError,
            initial_delay=config.retry_delay,
            max_retries=config.max_retries,
            jitter=False,
            sleep=self._sleep,
        )
        async def attempt():
            nonlocal attempts
            attempts += 1
            return await handler.apply_fix(issue, context)

        try:
            outcome = await attempt()
        except CrossValError as e:
            breaker.record_failure()
            logger.error(f"Fix {handler.handler_id} failed after {attempts} attempt(s): {e}", deal_id=issue.deal_id)
            return self._result(issue, "failed", error=str(e), attempts=attempts)
        finally:
            context.original_statuses.clear()

        breaker.record_success()
        return self._result(
            issue,
            "fixed",
            original_value=outcome.original_value,
            new_value=outcome.new_value,
            warnings=outcome.warnings,
            attempts=attempts,
            rollback_data=outcome.rollback_data if config.enable_rollback else None,
        )

    async def generate_summary(self, session: FixSession, fixable_count: int) -> FixSummary:
        results = session.results
        fixed = [r for r in results if r.status == "fixed"]
        skipped = [r for r in results if r.status == "skipped"]
        failed = [r for r in results if r.status == "failed"]
        with_warnings = [r for r in fixed if r.warnings]
        ended = datetime.utcnow()

        recommendations = []
        planned = [r for r in skipped if DRY_RUN_WARNING in r.warnings]
        if session.dry_run:
            recommendations.append(f"Dry run: {len(planned)} fix(es) would be attempted - rerun without dry run to apply")
        if fixed:
            recommendations.append(f"Successfully applied {len(fixed)} fix(es)")
        if with_warnings:
            recommendations.append(f"{len(with_warnings)} fix(es) completed with warnings - check the affected quotes")
        if failed:
            recommendations.append(f"{len(failed)} fix(es) failed - manual review required")
        if skipped and not session.dry_run:
            recommendations.append(f"{len(skipped)} issue(s) were skipped - they may need manual attention")
        if any(r.error == "Circuit breaker open" for r in skipped):
            recommendations.append("Fixes stopped after repeated failures - check API connectivity before retrying")

        return FixSummary(
            total_issues=len(session.issues),
            fixable_issues=fixable_count,
            fixed_count=len(fixed),
            skipped_count=len(skipped),
            failed_count=len(failed),
            duration_ms=int((ended - session.started_at).total_seconds() * 1000),
            recommendations=recommendations,
        )

    async def rollback_session(self, session: FixSession) -> List[FixResult]:
        """Undo every fixed result of ``session``, newest first."""
        issues = {(i.code, i.deal_id, i.quote_id): i for i in session.issues}
        rolled_back = []
        for result in reversed(session.results):
            if result.status != "fixed" or not result.rollback_data or result.rolled_back:
                continue
            issue = issues.get((result.issue_code, result.deal_id, result.quote_id))
            handler = self.handler_for(issue) if issue else None
            if handler is None:
                continue
            try:
                await handler.rollback(issue, result.rollback_data, self.context)
            except CrossValError as e:
                logger.error(f"Rollback of {result.issue_code} failed: {e}", deal_id=result.deal_id)
                result.warnings.append(f"Rollback failed: {e}")
                continue
            result.rolled_back = True
            rolled_back.append(result)
        logger.info(f"Rolled back {len(rolled_back)} fix(es) of session {session.id}")
        await self._persist(session)
        return rolled_back

    def cancel_session(self, session: FixSession):
        """Stop after the fix in flight; remaining issues are reported as skipped."""
        self._cancelled = True
        if session.status in ("pending", "running"):
            session.status = "cancelled"
        logger.info(f"Fix session {session.id} cancelled")

    def _result(self, issue: ValidationIssue, status: str, **fields) -> FixResult:
        return FixResult(issue_code=issue.code, deal_id=issue.deal_id, quote_id=issue.quote_id, status=status, **fields)

    async def _persist(self, session: FixSession):
        if not self.has_database():
            return
        await self.mongodb.upsert_one(SESSIONS_COLLECTION, {"id": session.id}, session.model_dump(mode="json"))
