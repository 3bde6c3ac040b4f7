from __future__ import annotations

from dataclasses import replace

from guidepass.economy.credits.types import (
    ConsumeResult,
    CreditBucket,
    CreditPool,
    CreditsLedger,
    CreditSummary,
    RefundResult,
    RefundTarget,
)


def _non_negative(value: int) -> int:
    return max(0, int(value or 0))


def create_ledger(
    *,
    trial_available: int = 0,
    trial_used: int = 0,
    purchased_available: int = 0,
    purchased_used: int = 0,
) -> CreditsLedger:
    return CreditsLedger(
        trial=CreditBucket(
            available=_non_negative(trial_available),
            used=_non_negative(trial_used),
        ),
        purchased=CreditBucket(
            available=_non_negative(purchased_available),
            used=_non_negative(purchased_used),
        ),
    )


def _drain(bucket: CreditBucket, amount: int) -> tuple[CreditBucket, int]:
    drained = min(amount, bucket.available)
    if drained <= 0:
        return bucket, 0
    return (
        CreditBucket(available=bucket.available - drained, used=bucket.used + drained),
        drained,
    )


def _restore(bucket: CreditBucket, amount: int) -> tuple[CreditBucket, int]:
    restored = min(amount, bucket.used)
    if restored <= 0:
        return bucket, 0
    return (
        CreditBucket(available=bucket.available + restored, used=bucket.used - restored),
        restored,
    )


def consume(ledger: CreditsLedger, amount: int) -> ConsumeResult:
    """Drains the trial pool first, then the purchased pool.

    Requests above ``available_total`` are under-consumed: the shortfall is
    reported in ``remaining`` and no bucket goes negative.
    """
    requested = _non_negative(amount)
    if requested == 0:
        return ConsumeResult(ledger=ledger, from_trial=0, from_purchased=0, remaining=0)

    trial, from_trial = _drain(ledger.trial, requested)
    purchased, from_purchased = _drain(ledger.purchased, requested - from_trial)
    return ConsumeResult(
        ledger=CreditsLedger(trial=trial, purchased=purchased),
        from_trial=from_trial,
        from_purchased=from_purchased,
        remaining=requested - from_trial - from_purchased,
    )


def refund(
    ledger: CreditsLedger,
    amount: int,
    *,
    target: RefundTarget = RefundTarget.PURCHASED_FIRST,
) -> RefundResult:
    requested = _non_negative(amount)
    if requested == 0:
        return RefundResult(ledger=ledger, to_purchased=0, to_trial=0)

    if target == RefundTarget.TRIAL_FIRST:
        trial, to_trial = _restore(ledger.trial, requested)
        purchased, to_purchased = _restore(ledger.purchased, requested - to_trial)
    else:
        purchased, to_purchased = _restore(ledger.purchased, requested)
        trial, to_trial = _restore(ledger.trial, requested - to_purchased)

    return RefundResult(
        ledger=CreditsLedger(trial=trial, purchased=purchased),
        to_purchased=to_purchased,
        to_trial=to_trial,
    )


def grant(ledger: CreditsLedger, pool: CreditPool, amount: int) -> CreditsLedger:
    granted = _non_negative(amount)
    if granted == 0:
        return ledger

    bucket = ledger.bucket(pool)
    updated = replace(bucket, available=bucket.available + granted)
    if pool == CreditPool.TRIAL:
        return replace(ledger, trial=updated)
    return replace(ledger, purchased=updated)


def summarize(ledger: CreditsLedger) -> CreditSummary:
    available_total = ledger.available_total
    used_total = ledger.used_total
    total = available_total + used_total
    ratio = available_total / total if total > 0 else 0.0
    return CreditSummary(
        available_total=available_total,
        used_total=used_total,
        total=total,
        purchased_available=ledger.purchased.available,
        available_ratio=ratio,
        percent_available=round(ratio * 100),
    )


def reset(ledger: CreditsLedger) -> CreditsLedger:
    """Returns every used credit to the bucket it came from."""
    return CreditsLedger(
        trial=CreditBucket(available=ledger.trial.available + ledger.trial.used, used=0),
        purchased=CreditBucket(available=ledger.purchased.available + ledger.purchased.used, used=0),
    )
