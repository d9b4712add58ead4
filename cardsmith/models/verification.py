"""Verification tallies for a written configuration surface."""

from enum import Enum

from pydantic import Field

from cardsmith.models.base import CardsmithBaseModel


class CheckOutcome(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class VerificationStatus(str, Enum):
    """Three-tier score of a verification pass."""

    PERFECT = "Perfect"
    GOOD = "Good"
    ISSUES = "Issues"


class CheckRecord(CardsmithBaseModel):
    check: str
    outcome: CheckOutcome
    detail: str = ""


class VerificationResult(CardsmithBaseModel):
    """Ordered check records with their success/warning/error counters."""

    records: list[CheckRecord] = Field(default_factory=list)
    successes: int = 0
    warnings: int = 0
    errors: int = 0

    def record(self, check: str, outcome: CheckOutcome, detail: str = "") -> None:
        self.records.append(CheckRecord(check=check, outcome=outcome, detail=detail))
        if outcome == CheckOutcome.SUCCESS:
            self.successes += 1
        elif outcome == CheckOutcome.WARNING:
            self.warnings += 1
        else:
            self.errors += 1

    def success(self, check: str, detail: str = "") -> None:
        self.record(check, CheckOutcome.SUCCESS, detail)

    def warning(self, check: str, detail: str) -> None:
        self.record(check, CheckOutcome.WARNING, detail)

    def error(self, check: str, detail: str) -> None:
        self.record(check, CheckOutcome.ERROR, detail)

    @property
    def status(self) -> VerificationStatus:
        if self.errors:
            return VerificationStatus.ISSUES
        if self.warnings:
            return VerificationStatus.GOOD
        return VerificationStatus.PERFECT

    def outcome_of(self, check: str) -> CheckOutcome | None:
        """Outcome of the named check, or None when it did not run."""
        for rec in self.records:
            if rec.check == check:
                return CheckOutcome(rec.outcome)
        return None

    def findings(self) -> list[CheckRecord]:
        """Records that are not successes, in check order."""
        return [r for r in self.records if r.outcome != CheckOutcome.SUCCESS]


__all__ = ["CheckOutcome", "CheckRecord", "VerificationResult", "VerificationStatus"]
