"""
Transaction API endpoints
"""
from datetime import date as date_type, datetime
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fintrack.api.deps import get_cache, get_db, get_owner_id
from fintrack.application.transactions import TransactionService
from fintrack.infrastructure.db.models import Transaction


router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


# === Request models ===

class CreateTransactionRequest(BaseModel):
    account_id: int
    transaction_type: str  # income / expense
    amount: str  # Decimal as string, entered magnitude
    date: date_type
    category_id: int | None = None
    description: str = ""
    notes: str | None = None
    payment_method: str = ""


class CreateTransferRequest(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: str  # Decimal as string
    date: date_type
    description: str = ""
    notes: str | None = None
    payment_method: str = ""


class EditTransactionRequest(BaseModel):
    amount: str | None = None
    transaction_type: str | None = None
    account_id: int | None = None
    category_id: int | None = None
    date: date_type | None = None
    description: str | None = None
    notes: str | None = None
    payment_method: str | None = None


class TransactionResponse(BaseModel):
    id: int
    account_id: int
    category_id: int | None = None
    transaction_type: str
    amount: str  # signed
    date: date_type
    description: str
    notes: str | None = None
    payment_method: str
    transfer_group: str | None = None
    created_at: datetime


class TransferResponse(BaseModel):
    outgoing: TransactionResponse
    incoming: TransactionResponse


def to_transaction_response(tx: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        account_id=tx.account_id,
        category_id=tx.category_id,
        transaction_type=tx.transaction_type,
        amount=str(tx.amount),
        date=tx.date,
        description=tx.description,
        notes=tx.notes,
        payment_method=tx.payment_method,
        transfer_group=tx.transfer_group,
        created_at=tx.created_at,
    )


# === Endpoints ===

@router.get("", response_model=list[TransactionResponse])
def list_transactions(
    start: date_type | None = None,
    end: date_type | None = None,
    limit: int | None = None,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
):
    """Newest first; with start and end only that inclusive range"""
    service = TransactionService(db)
    if start is not None and end is not None:
        transactions = service.list_by_date_range(owner_id, start, end)
    else:
        transactions = service.list_by_owner(owner_id, limit=limit)
    return [to_transaction_response(tx) for tx in transactions]


@router.get("/recent", response_model=list[TransactionResponse])
def list_recent(limit: int = 5, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    return [to_transaction_response(tx) for tx in TransactionService(db).list_recent(owner_id, limit=limit)]


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
def create_transaction(
    req: CreateTransactionRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Post an income or expense"""
    tx = TransactionService(db, cache=cache).post_transaction(
        owner_id=owner_id,
        account_id=req.account_id,
        amount=req.amount,
        transaction_type=req.transaction_type,
        date=req.date,
        category_id=req.category_id,
        description=req.description,
        notes=req.notes,
        payment_method=req.payment_method,
    )
    return to_transaction_response(tx)


@router.post("/transfer", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
def create_transfer(
    req: CreateTransferRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Move money between two of the owner's accounts"""
    outgoing, incoming = TransactionService(db, cache=cache).post_transfer(
        owner_id=owner_id,
        from_account_id=req.from_account_id,
        to_account_id=req.to_account_id,
        amount=req.amount,
        date=req.date,
        description=req.description,
        notes=req.notes,
        payment_method=req.payment_method,
    )
    return TransferResponse(
        outgoing=to_transaction_response(outgoing),
        incoming=to_transaction_response(incoming),
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: int, owner_id: int = Depends(get_owner_id), db: Session = Depends(get_db)):
    return to_transaction_response(TransactionService(db).get_transaction(owner_id, transaction_id))


@router.patch("/{transaction_id}", response_model=TransactionResponse)
def edit_transaction(
    transaction_id: int,
    req: EditTransactionRequest,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Correct a transaction; only fields present in the body are changed"""
    changes = req.model_dump(exclude_unset=True)
    tx = TransactionService(db, cache=cache).edit_transaction(owner_id, transaction_id, **changes)
    return to_transaction_response(tx)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_transaction(
    transaction_id: int,
    owner_id: int = Depends(get_owner_id),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    TransactionService(db, cache=cache).delete_transaction(owner_id, transaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
