from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from medbill.access import CompanyScope
from medbill.exceptions import ValidationFailed
from medbill.models.company import Company
from medbill.models.patient import Patient
from medbill.models.prebill import PreBill
from medbill.models.service_record import ServiceRecord

PERIODS = ("week", "month", "quarter", "year", "custom")


def period_bounds(
    period: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> tuple[date, date]:
    today = today or date.today()
    if period == "week":
        return today - timedelta(days=today.weekday()), today
    if period == "month":
        return today.replace(day=1), today
    if period == "quarter":
        first_month = 3 * ((today.month - 1) // 3) + 1
        return today.replace(month=first_month, day=1), today
    if period == "year":
        return today.replace(month=1, day=1), today
    if period == "custom":
        if not start or not end:
            raise ValidationFailed("start_date and end_date are required for a custom period")
        if end < start:
            raise ValidationFailed("end_date must not be before start_date")
        return start, end
    raise ValidationFailed(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    return value.date() if isinstance(value, datetime) else value


class DashboardService:
    async def get_stats(
        self,
        db: AsyncSession,
        scope: CompanyScope,
        period: str = "month",
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict:
        start_date, end_date = period_bounds(period, start, end)
        today = date.today()

        services = scope.apply(select(ServiceRecord).where(ServiceRecord.active.is_(True)), ServiceRecord.company_id)
        services_sub = services.subquery()

        today_services = await db.scalar(
            select(func.count()).select_from(services_sub).where(services_sub.c.service_date == today)
        ) or 0
        total_services = await db.scalar(
            select(func.count()).select_from(services_sub).where(
                services_sub.c.service_date.between(start_date, end_date)
            )
        ) or 0
        pending_services = await db.scalar(
            select(func.count()).select_from(services_sub).where(services_sub.c.status == "pending")
        ) or 0
        total_patients = await db.scalar(
            select(func.count()).select_from(Patient).where(Patient.active.is_(True))
        ) or 0

        top_result = await db.execute(
            select(
                services_sub.c.cups_code,
                func.count().label("count"),
                func.coalesce(func.sum(services_sub.c.value), 0).label("total_value"),
            )
            .where(services_sub.c.service_date.between(start_date, end_date))
            .group_by(services_sub.c.cups_code)
            .order_by(func.count().desc(), services_sub.c.cups_code)
            .limit(10)
        )
        top_services = [
            {"cups_code": cups, "count": count, "total_value": float(total or 0)}
            for cups, count, total in top_result.all()
        ]

        # Month and ISO week buckets are folded in Python over the in-period rows
        prebill_query = scope.apply(
            select(PreBill).where(
                PreBill.status != "cancelled",
                PreBill.created_at >= datetime.combine(start_date, time.min),
                PreBill.created_at < datetime.combine(end_date + timedelta(days=1), time.min),
            ),
            PreBill.company_id,
        )
        prebills = (await db.execute(prebill_query)).scalars().all()

        company_names = dict((await db.execute(select(Company.id, Company.name))).all())
        by_company: dict[int, dict] = {}
        by_month: dict[tuple[int, int], float] = {}
        by_week: dict[str, float] = {}
        for p in prebills:
            entry = by_company.setdefault(p.company_id, {
                "company_id": p.company_id,
                "company_name": company_names.get(p.company_id, ""),
                "count": 0,
                "total_value": 0.0,
            })
            entry["count"] += 1
            entry["total_value"] += p.total_value or 0
            created = _as_date(p.created_at)
            by_month[(created.year, created.month)] = by_month.get((created.year, created.month), 0) + (p.total_value or 0)
            iso = created.isocalendar()
            week_key = f"{iso[0]}-W{iso[1]:02d}"
            by_week[week_key] = by_week.get(week_key, 0) + (p.total_value or 0)

        regimen_result = await db.execute(
            select(Patient.regimen, func.count())
            .where(Patient.active.is_(True))
            .group_by(Patient.regimen)
            .order_by(func.count().desc())
        )
        municipality_result = await db.execute(
            select(Patient.municipality, func.count())
            .where(Patient.active.is_(True), Patient.municipality.isnot(None))
            .group_by(Patient.municipality)
            .order_by(func.count().desc())
            .limit(10)
        )

        return {
            "period": {"name": period, "start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            "today_services": today_services,
            "total_patients": total_patients,
            "total_services": total_services,
            "pending_services": pending_services,
            "prebills_by_company": sorted(by_company.values(), key=lambda x: x["total_value"], reverse=True),
            "top_services": top_services,
            "values_by_month": [
                {"year": y, "month": m, "total_value": round(v, 2)} for (y, m), v in sorted(by_month.items())
            ],
            "regimen_distribution": [
                {"regimen": regimen or "UNSPECIFIED", "count": count} for regimen, count in regimen_result.all()
            ],
            "top_municipalities": [
                {"municipality": name, "count": count} for name, count in municipality_result.all()
            ],
            "weekly_billing": [
                {"week": week, "total_value": round(v, 2)} for week, v in sorted(by_week.items())
            ],
        }

    async def get_recent_activity(self, db: AsyncSession, scope: CompanyScope, limit: int = 10) -> list[dict]:
        services = await db.execute(
            scope.apply(select(ServiceRecord), ServiceRecord.company_id)
            .order_by(ServiceRecord.created_at.desc(), ServiceRecord.id.desc())
            .limit(limit)
        )
        prebills = await db.execute(
            scope.apply(select(PreBill), PreBill.company_id)
            .order_by(PreBill.created_at.desc(), PreBill.id.desc())
            .limit(limit)
        )
        patients = await db.execute(
            select(Patient).order_by(Patient.created_at.desc(), Patient.id.desc()).limit(limit)
        )

        activity = [
            {
                "type": "service",
                "id": s.id,
                "description": f"Service {s.cups_code} for {s.document_number}",
                "value": s.value,
                "status": s.status,
                "created_at": s.created_at,
            }
            for s in services.scalars().all()
        ]
        activity += [
            {
                "type": "prebill",
                "id": p.id,
                "description": f"Pre-bill for {(p.patient_data or {}).get('full_name', '')}",
                "value": p.total_value,
                "status": p.status,
                "created_at": p.created_at,
            }
            for p in prebills.scalars().all()
        ]
        activity += [
            {
                "type": "patient",
                "id": p.id,
                "description": f"Patient {p.full_name} registered",
                "value": None,
                "status": "active" if p.active else "inactive",
                "created_at": p.created_at,
            }
            for p in patients.scalars().all()
        ]
        activity.sort(key=lambda a: (a["created_at"] is not None, a["created_at"] or datetime.min), reverse=True)
        return activity[:limit]


dashboard_service = DashboardService()
