"""Claim outcomes and the per-pass batch report."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel

# What the store reports for one claim attempt.
ClaimResult = Literal["sent", "already_handled", "contended"]

# What the Claim Manager reports: the store result, or "failed".
ClaimStatus = Literal["sent", "already_handled", "contended", "failed"]

# "billing": the billing endpoint failed. "store": a store error unrelated to locking.
FailureKind = Literal["billing", "store"]


@dataclass
class ClaimOutcome:
    invoice_id: int
    status: ClaimStatus
    failure_kind: FailureKind | None = None
    error: BaseException | None = None

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None


class BatchFailure(BaseModel):
    invoice_id: int
    kind: FailureKind
    message: str


class BatchReport(BaseModel):
    sent: int = 0
    already_handled: int = 0
    contended: int = 0
    failed: int = 0
    failures: list[BatchFailure] = []

    @property
    def total(self) -> int:
        return self.sent + self.already_handled + self.contended + self.failed

    def add(self, outcome: ClaimOutcome) -> None:
        if outcome.status == "sent":
            self.sent += 1
        elif outcome.status == "already_handled":
            self.already_handled += 1
        elif outcome.status == "contended":
            self.contended += 1
        else:
            self.failed += 1
            self.failures.append(
                BatchFailure(
                    invoice_id=outcome.invoice_id,
                    kind=outcome.failure_kind or "store",
                    message=(outcome.message or "")[:2000],
                )
            )
