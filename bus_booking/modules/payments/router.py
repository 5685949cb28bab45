from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bus_booking.db.session import get_session
from bus_booking.schemas.payment import PaymentCreateRequest, PaymentProcessRequest, PaymentSessionResponse
from bus_booking.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter()


@router.post("/create", response_model=PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    req: PaymentCreateRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    session = await gateway.create_session(db, req.booking_id)
    return PaymentSessionResponse.model_validate(session)


@router.post("/process", response_model=PaymentSessionResponse)
async def process_payment(
    req: PaymentProcessRequest,
    db: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Sandbox charge. Card ``0000000000000000`` is always declined."""
    session = await gateway.process(
        db,
        req.payment_id,
        card_number=req.card_number,
        card_type=req.card_type,
        expiry_month=req.expiry_month,
        expiry_year=req.expiry_year,
        cvv=req.cvv,
        simulate_failure=req.simulate_failure,
    )
    return PaymentSessionResponse.model_validate(session)


@router.get("/{payment_id}", response_model=PaymentSessionResponse)
async def get_payment(payment_id: str, gateway: PaymentGateway = Depends(get_payment_gateway)):
    session = await gateway.get_session(payment_id)
    return PaymentSessionResponse.model_validate(session)
