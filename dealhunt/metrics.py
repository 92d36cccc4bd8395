"""Prometheus metrics for the ingestion pipeline."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("dealhunt", "Dealhunt ingestion pipeline info")
app_info.info({"version": "0.1.0", "name": "dealhunt"})

# Page metrics
pages_fetched_total = Counter(
    "dealhunt_pages_fetched_total",
    "Total number of result page fetch attempts",
    ["source", "status"],
)

page_fetch_duration_seconds = Histogram(
    "dealhunt_page_fetch_duration_seconds",
    "Time spent fetching and extracting one result page",
    ["source"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Record metrics
records_extracted_total = Counter(
    "dealhunt_records_extracted_total",
    "Total number of records accepted by the quality gate",
    ["source"],
)

records_rejected_total = Counter(
    "dealhunt_records_rejected_total",
    "Total number of records rejected during validation",
    ["source", "reason"],
)

# Selector metrics
extraction_misses_total = Counter(
    "dealhunt_extraction_misses_total",
    "Total number of fields where every selector failed",
    ["source", "field"],
)

heal_attempts_total = Counter(
    "dealhunt_heal_attempts_total",
    "Total number of selector heal attempts",
    ["source", "field", "outcome"],
)

# Persistence metrics
upserts_total = Counter(
    "dealhunt_upserts_total",
    "Total number of catalog upserts",
    ["source", "result"],
)

persistence_errors_total = Counter(
    "dealhunt_persistence_errors_total",
    "Total number of failed catalog writes",
    ["source"],
)


def record_page(source: str, status: str, duration: float | None = None):
    """Record a page fetch outcome (ok, blocked, error, given_up)."""
    pages_fetched_total.labels(source=source, status=status).inc()
    if duration is not None:
        page_fetch_duration_seconds.labels(source=source).observe(duration)


def record_extracted(source: str, count: int = 1):
    """Record records accepted by the quality gate."""
    records_extracted_total.labels(source=source).inc(count)


def record_rejected(source: str, reason: str):
    """Record a validation rejection."""
    records_rejected_total.labels(source=source, reason=reason).inc()


def record_extraction_miss(source: str, field: str):
    """Record a field where no selector produced a value."""
    extraction_misses_total.labels(source=source, field=field).inc()


def record_heal_attempt(source: str, field: str, outcome: str):
    """Record a heal attempt outcome (repaired, unavailable, malformed)."""
    heal_attempts_total.labels(source=source, field=field, outcome=outcome).inc()


def record_upsert(source: str, is_new: bool):
    """Record a successful catalog upsert."""
    result = "new" if is_new else "updated"
    upserts_total.labels(source=source, result=result).inc()


def record_persistence_error(source: str):
    """Record a failed catalog write."""
    persistence_errors_total.labels(source=source).inc()
