"""Observability endpoints for points-core counters and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from trendle_api.api.dependencies.security import require_admin_api_key
from trendle_api.observability.points import get_points_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/points",
    dependencies=[Depends(require_admin_api_key)],
    summary="Points core observability snapshot",
)
async def get_points_snapshot() -> dict[str, object]:
    """Ledger, redemption, voucher, check-in and moderation counters since process start."""

    return get_points_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_admin_api_key)],
    summary="Prometheus-formatted points metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_points_store().snapshot()
    lines: list[str] = []

    for reason, value in sorted(snapshot.ledger.get("entries_by_reason", {}).items()):
        lines.extend(
            _format_metric("trendle_ledger_entries_total", "Ledger entries committed", value, labels={"reason": reason})
        )
    for reason, value in sorted(snapshot.ledger.get("points_by_reason", {}).items()):
        lines.extend(
            _format_metric("trendle_ledger_points_total", "Net points moved", value, labels={"reason": reason})
        )

    grouped = (
        ("trendle_redemptions_total", "Redemption attempts by outcome", snapshot.redemptions),
        ("trendle_voucher_validations_total", "Voucher validations by outcome", snapshot.vouchers),
        ("trendle_checkins_total", "Check-in attempts by outcome", snapshot.checkins),
    )
    for name, description, counts in grouped:
        for outcome, value in sorted(counts.items()):
            lines.extend(_format_metric(name, description, value, labels={"outcome": outcome}))

    for action, value in sorted(snapshot.moderation.items()):
        lines.extend(
            _format_metric("trendle_moderation_actions_total", "Moderation actions applied", value, labels={"action": action})
        )

    return PlainTextResponse("\n".join(lines) + "\n")
