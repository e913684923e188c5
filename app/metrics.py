from prometheus_client import Counter, Gauge

commission_transitions_total = Counter(
    "affiliate_commission_transitions_total",
    "Total commission status transitions",
    ["to_status"],
)

commissions_recorded_total = Counter(
    "affiliate_commissions_recorded_total",
    "Total commissions recorded",
    ["status"],
)

payouts_total = Counter(
    "affiliate_payouts_total", "Total affiliate payouts by outcome", ["status"]
)

payout_amount_cents_total = Counter(
    "affiliate_payout_amount_cents_total", "Total cents disbursed to affiliates"
)

payout_batches_total = Counter(
    "affiliate_payout_batches_total", "Total payout batch runs", ["dry_run"]
)

ledger_drift_total = Counter(
    "affiliate_ledger_drift_total",
    "Detected mismatches between stored and derived affiliate balances",
    ["source"],
)

alerts_total = Counter(
    "affiliate_alerts_total", "Alerts raised", ["category", "severity"]
)

job_runs_total = Counter(
    "affiliate_job_runs_total", "Scheduled job executions", ["job_name", "status"]
)

last_batch_amount_paid = Gauge(
    "affiliate_last_batch_amount_paid_cents",
    "Amount paid by the most recent non-dry-run payout batch",
)
