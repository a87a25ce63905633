"""Monthly cost estimation from bucket usage counters."""

from collections.abc import Iterable
from dataclasses import dataclass

from storageroom.models import CostBreakdown

GIB = 1024**3


@dataclass(frozen=True)
class Rates:
    """Per-unit AWS prices (us-east-1 standard tier, approximate)."""

    s3_storage_per_gb_month: float = 0.023
    s3_put_per_1k: float = 0.005
    s3_get_per_1k: float = 0.0004
    s3_delete_per_1k: float = 0.0
    s3_list_per_1k: float = 0.005
    s3_transfer_per_gb: float = 0.09
    cf_transfer_per_gb: float = 0.085
    cf_https_per_10k: float = 0.01
    # Share of stored bytes assumed to leave through the CDN each month.
    cf_storage_egress_ratio: float = 0.1
    # Share of transferred bytes assumed to be served by the CDN.
    cf_transfer_ratio: float = 0.3


DEFAULT_RATES = Rates()


def _round4(value: float) -> float:
    return round(value, 4)


def _non_negative(*values: float) -> list[float]:
    return [max(0.0, float(v or 0)) for v in values]


def estimate_cost(
    storage_bytes: float,
    write_count: float,
    read_count: float,
    rates: Rates = DEFAULT_RATES,
) -> float:
    """Rough monthly cost for a bucket, rounded to cents."""
    storage_bytes, write_count, read_count = _non_negative(storage_bytes, write_count, read_count)
    storage_gb = storage_bytes / GIB

    storage = storage_gb * rates.s3_storage_per_gb_month
    puts = write_count / 1000 * rates.s3_put_per_1k
    gets = read_count / 1000 * rates.s3_get_per_1k
    cf_transfer = storage_gb * rates.cf_storage_egress_ratio * rates.cf_transfer_per_gb

    return round(storage + puts + gets + cf_transfer, 2)


def breakdown(
    storage_bytes: float,
    write_count: float,
    read_count: float,
    delete_count: float,
    list_count: float,
    transfer_bytes: float,
    rates: Rates = DEFAULT_RATES,
) -> CostBreakdown:
    """Itemised monthly cost for a bucket.

    Request counts are supplied by the caller; nothing here assumes how they
    were measured. Negative counters are treated as zero.
    """
    storage_bytes, write_count, read_count, delete_count, list_count, transfer_bytes = (
        _non_negative(
            storage_bytes, write_count, read_count, delete_count, list_count, transfer_bytes
        )
    )
    storage_gb = storage_bytes / GIB
    transfer_gb = transfer_bytes / GIB

    components = {
        "s3_storage": storage_gb * rates.s3_storage_per_gb_month,
        "s3_put_requests": write_count / 1000 * rates.s3_put_per_1k,
        "s3_get_requests": read_count / 1000 * rates.s3_get_per_1k,
        "s3_delete_requests": delete_count / 1000 * rates.s3_delete_per_1k,
        "s3_list_requests": list_count / 1000 * rates.s3_list_per_1k,
        "s3_data_transfer": transfer_gb * rates.s3_transfer_per_gb,
        "cf_data_transfer": transfer_gb * rates.cf_transfer_ratio * rates.cf_transfer_per_gb,
        "cf_requests": (read_count + write_count) / 10000 * rates.cf_https_per_10k,
    }
    total = sum(components.values())

    return CostBreakdown(
        **{name: _round4(value) for name, value in components.items()},
        total=_round4(total),
    )


def sum_breakdowns(items: Iterable[CostBreakdown]) -> CostBreakdown:
    """Aggregate per-bucket breakdowns into a project or account total."""
    items = list(items)
    return CostBreakdown(
        s3_storage=_round4(sum(c.s3_storage for c in items)),
        s3_put_requests=_round4(sum(c.s3_put_requests for c in items)),
        s3_get_requests=_round4(sum(c.s3_get_requests for c in items)),
        s3_delete_requests=_round4(sum(c.s3_delete_requests for c in items)),
        s3_list_requests=_round4(sum(c.s3_list_requests for c in items)),
        s3_data_transfer=_round4(sum(c.s3_data_transfer for c in items)),
        cf_data_transfer=_round4(sum(c.cf_data_transfer for c in items)),
        cf_requests=_round4(sum(c.cf_requests for c in items)),
        total=_round4(sum(c.total for c in items)),
    )
