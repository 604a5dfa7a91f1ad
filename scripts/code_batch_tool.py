from __future__ import annotations

import argparse
import asyncio
import csv
from datetime import datetime, timezone
from pathlib import Path

from app.db.repo.users_repo import UsersRepo
from app.db.session import SessionLocal
from app.economy.purchases.catalog import MAX_CODES_PER_PURCHASE, MIN_CODES_PER_PURCHASE
from app.economy.purchases.service import PurchaseService
from app.economy.purchases.types import CodeGrantResult

ISSUER_ROLES = ("ADMIN", "MANAGER")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Subscription code batch grant tool")
    parser.add_argument("--issuer-email", required=True, help="Email of the ADMIN/MANAGER issuing codes")
    parser.add_argument("--months", type=int, required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument("--plan-name")
    parser.add_argument("--output-csv", type=Path)
    return parser.parse_args(argv)


def _validate_args(args: argparse.Namespace) -> None:
    if args.months < 1:
        raise ValueError("--months must be at least 1")
    if not (MIN_CODES_PER_PURCHASE <= args.quantity <= MAX_CODES_PER_PURCHASE):
        raise ValueError(
            f"--quantity must be in range {MIN_CODES_PER_PURCHASE}..{MAX_CODES_PER_PURCHASE}"
        )


async def _grant(args: argparse.Namespace) -> CodeGrantResult:
    async with SessionLocal.begin() as session:
        issuer = await UsersRepo.get_by_email(session, args.issuer_email)
        if issuer is None:
            raise ValueError(f"issuer not found: {args.issuer_email}")
        if issuer.role not in ISSUER_ROLES:
            raise ValueError(f"issuer {args.issuer_email} has role {issuer.role}, expected ADMIN or MANAGER")

        return await PurchaseService.grant_codes(
            session,
            issuer_user_id=issuer.id,
            months=args.months,
            quantity=args.quantity,
            now_utc=datetime.now(timezone.utc),
            plan_name=args.plan_name,
        )


def _write_output(path: Path, result: CodeGrantResult) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as file:
        writer = csv.writer(file)
        writer.writerow(["code", "purchase_id", "plan_name", "duration_days"])
        for code in result.codes:
            writer.writerow([code, str(result.purchase_id), result.plan_name, result.duration_days])


async def _run(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    _validate_args(args)
    result = await _grant(args)

    output_csv = args.output_csv or Path(f"reports/subscription_codes_{result.purchase_id}.csv")
    _write_output(output_csv, result)
    print(  # noqa: T201
        f"purchase_id={result.purchase_id} codes={len(result.codes)} output={output_csv}"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    return asyncio.run(_run(argv))


if __name__ == "__main__":
    raise SystemExit(main())
