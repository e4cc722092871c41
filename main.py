import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from contact_store import ContactStore
from db_setup import init_db, transaction
from db_models import (
    AddContactRequest,
    AddContactResponse,
    ErrorResponse,
    FinalResponse,
    IdentifyRequest,
    LinkPrecedence,
)
from errors import IntegrityViolation, ReconciliationError, ValidationError
from reconciler import reconcile
from settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    if exc.retryable:
        logger.warning(f"{request.url.path} failed, retryable: {exc.reason}")
    elif exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.reason}")

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.reason, retryable=exc.retryable).model_dump(),
        headers=headers,
    )


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


# Plain def: sqlite calls block, so FastAPI runs these in its threadpool
@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest):
    return reconcile(request.email, request.phoneNumber)


@app.post("/add-contact", response_model=AddContactResponse)
def add_contact(request: AddContactRequest):
    """Add a contact with explicit fields, refusing anything that breaks the primary/secondary links."""
    if not request.email and not request.phoneNumber:
        raise ValidationError("Either email or phoneNumber must be provided")

    try:
        with transaction() as conn:
            store = ContactStore(conn)

            if request.linkPrecedence == LinkPrecedence.SECONDARY:
                if request.linkedId is None:
                    raise IntegrityViolation("A secondary contact needs a linkedId")
                parent = store.get_contact(request.linkedId)
                if parent is None or not parent.is_primary:
                    raise IntegrityViolation(
                        f"linkedId {request.linkedId} is not a live primary contact"
                    )
            elif request.linkedId is not None:
                raise IntegrityViolation("A primary contact cannot have a linkedId")

            contact = store.create_contact(
                email=request.email,
                phone=request.phoneNumber,
                linked_id=request.linkedId,
                precedence=request.linkPrecedence,
                contact_id=request.id,
                created_at=request.createdAt,
            )
    except IntegrityViolation as e:
        raise HTTPException(status_code=422, detail=e.reason)

    logger.info(f"Added {contact.linkPrecedence.value} contact {contact.id}")
    return AddContactResponse(message="Contact added successfully", contact_id=contact.id)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.log_level, format='%(levelname)s: %(message)s')
    uvicorn.run(app, host=settings.host, port=settings.port)
