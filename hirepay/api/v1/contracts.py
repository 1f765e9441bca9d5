"""Customers and hire-purchase contracts"""

import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from hirepay.api.dependencies import get_audit_context, get_request_id
from hirepay.api.errors import to_http_exception
from hirepay.api.v1.schemas import (
    ContractCreateRequest,
    ContractResponse,
    CustomerCreateRequest,
    CustomerResponse,
    PaymentResponse,
)
from hirepay.domain.exceptions import CustomerNotFoundError, DomainException
from hirepay.domain.installments import generate_installment_plan
from hirepay.infrastructure.clients.hubtel import channel_for, format_phone
from hirepay.infrastructure.database.repositories import (
    ContractRepository,
    CustomerRepository,
    PaymentTransactionRepository,
)
from hirepay.infrastructure.database.session import get_db
from hirepay.services import audit

router = APIRouter()


@router.post("/customers", response_model=CustomerResponse, status_code=201)
def create_customer(request_body: CustomerCreateRequest, request: Request, db: Session = Depends(get_db)):
    customers = CustomerRepository(db)
    phone = format_phone(request_body.phone)
    if customers.get_by_phone(phone) is not None:
        raise HTTPException(status_code=409, detail="A customer with this phone number already exists")

    try:
        customer = customers.create_customer(
            first_name=request_body.first_name,
            last_name=request_body.last_name,
            phone=phone,
            email=request_body.email,
        )
        db.commit()
        return customer
    except Exception as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))


@router.post("/contracts", response_model=ContractResponse, status_code=201)
def create_contract(
    request_body: ContractCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    context: audit.AuditContext = Depends(get_audit_context),
):
    """
    Create a contract and its installment schedule.

    Flow:
    1. Check the customer exists and the mobile money details are usable
    2. Split the financed amount into installments
    3. Persist contract + installments in one transaction
    """
    request_id = get_request_id(request)
    try:
        if CustomerRepository(db).get_by_id(request_body.customer_id) is None:
            raise CustomerNotFoundError(f"Customer {request_body.customer_id} not found")

        network = request_body.mobile_money_network.upper() if request_body.mobile_money_network else None
        if network:
            channel_for(network)
        number = format_phone(request_body.mobile_money_number) if request_body.mobile_money_number else None

        finance = request_body.total_price_pesewas - request_body.deposit_pesewas
        plan = generate_installment_plan(
            finance,
            request_body.total_installments,
            request_body.payment_frequency,
            request_body.start_date,
        )

        contract = ContractRepository(db).create_contract(
            customer_id=request_body.customer_id,
            total_price_pesewas=request_body.total_price_pesewas,
            deposit_pesewas=request_body.deposit_pesewas,
            plan=plan,
            payment_frequency=request_body.payment_frequency.value,
            grace_period_days=request_body.grace_period_days,
            penalty_percentage=request_body.penalty_percentage,
            payment_method=request_body.payment_method.value,
            mobile_money_network=network,
            mobile_money_number=number,
        )
        contract_id = contract.id
        db.commit()

    except DomainException as e:
        db.rollback()
        logging.warning(f"Contract rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)

    except Exception as e:
        db.rollback()
        raise to_http_exception(e, request_id)

    audit.record_audit(
        db,
        audit.CREATE_CONTRACT,
        "HirePurchaseContract",
        contract_id,
        new_values={
            "customer_id": request_body.customer_id,
            "total_price_pesewas": request_body.total_price_pesewas,
            "deposit_pesewas": request_body.deposit_pesewas,
            "total_installments": request_body.total_installments,
            "payment_method": request_body.payment_method.value,
        },
        context=context,
    )
    return ContractRepository(db).get_by_id(contract_id)


@router.get("/contracts/{contract_id}", response_model=ContractResponse)
def get_contract(contract_id: str, db: Session = Depends(get_db)):
    """Contract with its installments and penalties"""
    contract = ContractRepository(db).get_by_id(contract_id)
    if contract is None:
        raise HTTPException(status_code=404, detail="Contract not found")
    return contract


@router.get("/contracts/{contract_id}/payments", response_model=List[PaymentResponse])
def get_contract_payments(contract_id: str, db: Session = Depends(get_db)):
    if ContractRepository(db).get_by_id(contract_id) is None:
        raise HTTPException(status_code=404, detail="Contract not found")
    return PaymentTransactionRepository(db).get_contract_payments(contract_id)
