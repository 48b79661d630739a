from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from medbill.database import get_db
from medbill.auth import require_permission, require_company_access, UserPrincipal
from medbill.models.company import Company, Contract
from medbill.schemas.common import ok
from medbill.schemas.company import (
    CompanyCreate,
    CompanyResponse,
    CompanyUpdate,
    ContractCreate,
    ContractResponse,
)

router = APIRouter()


async def _get_company(db: AsyncSession, company_id: int, current_user: UserPrincipal) -> Company:
    require_company_access(current_user, company_id)
    company = await db.get(Company, company_id)
    if not company:
        raise HTTPException(status_code=404, detail=f"Company {company_id} not found")
    return company


@router.get("")
async def list_companies(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("companies", "read")),
):
    # Company filter: unrestricted users see every company, others only their assignments
    query = current_user.company_scope.apply(select(Company), Company.id)
    if not include_inactive:
        query = query.where(Company.status == "active")
    companies = (await db.execute(query.order_by(Company.name))).scalars().all()
    return ok([CompanyResponse.model_validate(c) for c in companies])


@router.get("/{company_id}")
async def get_company(
    company_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("companies", "read")),
):
    return ok(CompanyResponse.model_validate(await _get_company(db, company_id, current_user)))


@router.post("", status_code=201)
async def create_company(
    data: CompanyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("companies", "create")),
):
    clauses = [Company.nit == data.nit]
    if data.code:
        clauses.append(Company.code == data.code)
    if await db.scalar(select(Company.id).where(or_(*clauses))):
        raise HTTPException(status_code=400, detail="A company with that NIT or code already exists")

    company = Company(**data.model_dump(), created_by=current_user.id)
    db.add(company)
    await db.flush()
    await db.refresh(company)
    return ok(CompanyResponse.model_validate(company), message="Company created")


@router.put("/{company_id}")
async def update_company(
    company_id: int,
    data: CompanyUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("companies", "update")),
):
    company = await _get_company(db, company_id, current_user)

    update_data = data.model_dump(exclude_unset=True)
    if "nit" in update_data and update_data["nit"] != company.nit:
        if await db.scalar(select(Company.id).where(Company.nit == update_data["nit"], Company.id != company_id)):
            raise HTTPException(status_code=400, detail="A company with that NIT already exists")
    for key, value in update_data.items():
        setattr(company, key, value)
    company.updated_by = current_user.id

    await db.flush()
    await db.refresh(company)
    return ok(CompanyResponse.model_validate(company), message="Company updated")


@router.delete("/{company_id}")
async def deactivate_company(
    company_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("companies", "delete")),
):
    company = await _get_company(db, company_id, current_user)
    company.status = "inactive"
    company.updated_by = current_user.id
    await db.flush()
    return ok({"id": company.id, "status": company.status}, message="Company deactivated")


@router.get("/{company_id}/contracts")
async def list_contracts(
    company_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("contracts", "read")),
):
    await _get_company(db, company_id, current_user)
    result = await db.execute(
        select(Contract).where(Contract.company_id == company_id).order_by(Contract.name)
    )
    return ok([ContractResponse.model_validate(c) for c in result.scalars().all()])


@router.post("/{company_id}/contracts", status_code=201)
async def create_contract(
    company_id: int,
    data: ContractCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("contracts", "create")),
):
    await _get_company(db, company_id, current_user)
    if data.start_date and data.end_date and data.end_date < data.start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")
    contract = Contract(company_id=company_id, **data.model_dump(), created_by=current_user.id)
    db.add(contract)
    await db.flush()
    await db.refresh(contract)
    return ok(ContractResponse.model_validate(contract), message="Contract created")
