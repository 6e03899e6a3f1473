from library_service import loans
from library_service import models
from library_service import schemas
from library_service import storage
from library_service.auth import verify_api_key
from library_service.database import engine, get_db
from library_service.errors import LibraryError, NotFound, ValidationError

import os
import logging
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from fastapi import APIRouter, FastAPI, Depends, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Library Management API",
    description="Members, book catalog, loans with overdue fines, and activity reports",
    version="1.0.0",
)

api = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])

ERROR_RESPONSES = {
    400: {"model": schemas.ErrorResponse},
    404: {"model": schemas.ErrorResponse},
    409: {"model": schemas.ErrorResponse},
}


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    """
    Turn domain errors into JSON responses.

    Business-rule rejections (no copy available, already returned) are
    expected outcomes of user actions, so they are answered, not re-raised.
    """
    content = {"detail": exc.detail}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters are answered with 400, not 422."""
    error = ValidationError(errors=jsonable_encoder(exc.errors()))
    return await library_error_handler(request, error)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal database error"},
    )


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Simple status message indicating the service is running
    """
    return {"status": "healthy", "service": "library-api"}


# Members


@api.get("/members", response_model=List[schemas.Member])
async def list_members(
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
):
    """
    List members, newest first.

    Args:
        search: Optional text matched against name, member number and
            identity number
        db: Database session (injected)
    """
    return storage.list_members(db, search)


@api.get("/members/{member_id}", response_model=schemas.Member, responses=ERROR_RESPONSES)
async def get_member(member_id: int, db: Session = Depends(get_db)):
    member = storage.get_member(db, member_id)
    if member is None:
        raise NotFound("Member", member_id)
    return member


@api.post(
    "/members",
    response_model=schemas.Member,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_member(member: schemas.MemberCreate, db: Session = Depends(get_db)):
    """
    Register a new member.

    The member number is assigned from the member sequence.
    """
    return storage.create_member(db, member)


@api.put("/members/{member_id}", response_model=schemas.Member, responses=ERROR_RESPONSES)
async def update_member(
    member_id: int, member_update: schemas.MemberUpdate, db: Session = Depends(get_db)
):
    return storage.update_member(db, member_id, member_update)


@api.delete(
    "/members/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_member(member_id: int, db: Session = Depends(get_db)):
    """
    Delete a member.

    Deleting a member that does not exist succeeds. A member with loan
    records is refused with 409.
    """
    storage.delete_member(db, member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Books


@api.get("/books", response_model=List[schemas.Book])
async def list_books(
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
):
    """
    List books, newest first.

    Args:
        search: Optional text matched against title, author and publisher
        db: Database session (injected)
    """
    return storage.list_books(db, search)


@api.get("/books/{book_id}", response_model=schemas.Book, responses=ERROR_RESPONSES)
async def get_book(book_id: int, db: Session = Depends(get_db)):
    book = storage.get_book(db, book_id)
    if book is None:
        raise NotFound("Book", book_id)
    return book


@api.post(
    "/books",
    response_model=schemas.Book,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_book(book: schemas.BookCreate, db: Session = Depends(get_db)):
    """
    Catalog a new book with all of its copies available.
    """
    return storage.create_book(db, book)


@api.put("/books/{book_id}", response_model=schemas.Book, responses=ERROR_RESPONSES)
async def update_book(
    book_id: int, book_update: schemas.BookUpdate, db: Session = Depends(get_db)
):
    """
    Update a book's catalog information.

    This implements partial updates (PATCH-like behavior with PUT).
    A new quantity does not change available_quantity.
    """
    return storage.update_book(db, book_id, book_update)


@api.delete(
    "/books/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_book(book_id: int, db: Session = Depends(get_db)):
    storage.delete_book(db, book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Loans


@api.get("/loans", response_model=List[schemas.LoanWithRelations])
async def list_loans(db: Session = Depends(get_db)):
    """
    List every loan with its member and book, most recent first.
    """
    return loans.list_loans(db)


@api.get("/loans/active", response_model=List[schemas.LoanWithRelations])
async def list_active_loans(db: Session = Depends(get_db)):
    return loans.list_active_loans(db)


@api.get("/loans/overdue", response_model=List[schemas.LoanWithRelations])
async def list_overdue_loans(db: Session = Depends(get_db)):
    """
    List active loans whose due date has passed.

    The loans keep status "active"; their display_status reads "overdue".
    """
    return loans.list_overdue_loans(db)


@api.get(
    "/loans/{loan_id}",
    response_model=schemas.LoanWithRelations,
    responses=ERROR_RESPONSES,
)
async def get_loan(loan_id: int, db: Session = Depends(get_db)):
    loan = loans.get_loan(db, loan_id)
    if loan is None:
        raise NotFound("Loan", loan_id)
    return loan


@api.post(
    "/loans",
    response_model=schemas.Loan,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_loan(loan_data: schemas.LoanCreate, db: Session = Depends(get_db)):
    """
    Lend a book to a member.

    Business Logic:
    1. The member must exist (404 otherwise)
    2. The book must exist and have a free copy (400 otherwise)
    3. The loan is due 7 days from now and the book loses one available copy

    Args:
        loan_data: member_id and book_id
        db: Database session (injected)

    Returns:
        The created loan
    """
    return loans.create_loan(db, loan_data.member_id, loan_data.book_id)


@api.put(
    "/loans/{loan_id}/return",
    response_model=schemas.Loan,
    responses=ERROR_RESPONSES,
)
async def return_loan(loan_id: int, db: Session = Depends(get_db)):
    """
    Record the return of a loaned book.

    Business Logic:
    1. The loan must exist (404) and still be active (409)
    2. The fine is Rp 1,000 for every started day past the due date
    3. The book gets its copy back

    Returns:
        The returned loan with return_date and fine set
    """
    return loans.return_book(db, loan_id)


@api.delete("/loans/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_loan(loan_id: int, db: Session = Depends(get_db)):
    """
    Delete a loan record.

    An active loan gives its copy back to the book first. Deleting a loan
    that does not exist succeeds.
    """
    loans.delete_loan(db, loan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Reports


@api.get("/reports", response_model=List[schemas.Report])
async def list_reports(db: Session = Depends(get_db)):
    return storage.list_reports(db)


@api.post(
    "/reports",
    response_model=schemas.Report,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_report(report: schemas.ReportCreate, db: Session = Depends(get_db)):
    """
    Record a report request.

    The request is stored with status "pending"; no document is rendered.
    """
    return storage.create_report(db, report)


@api.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(report_id: int, db: Session = Depends(get_db)):
    storage.delete_report(db, report_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Dashboard


@api.get("/dashboard/stats", response_model=schemas.DashboardStats)
async def dashboard_stats(db: Session = Depends(get_db)):
    return storage.dashboard_stats(db)


app.include_router(api)
