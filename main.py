import logging
from datetime import date
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import Storage
from models import TransactionType
from schemas import (
    CategoryIn,
    CategoryOut,
    CategoryPatch,
    ImportResultOut,
    OverviewOut,
    ReminderIn,
    ReminderOut,
    ReminderPatch,
    SettingsOut,
    SettingsPatch,
    StatsOut,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    VoiceDraftOut,
    VoiceParseIn,
)
from services import (
    SETTINGS_ID,
    CategoryService,
    ConsistencyError,
    CSVService,
    MetricsService,
    NotFoundError,
    ReminderService,
    SettingsService,
    TransactionService,
    local_today,
    seed_defaults,
)
from voice_input import parse_voice_input

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

MAX_IMPORT_BYTES = 5 * 1024 * 1024

_ENTITY_BY_PREFIX = (
    ("/api/categories", "category"),
    ("/api/transactions", "transaction"),
    ("/api/reminders", "reminder"),
    ("/api/settings", "settings"),
)


def _entity_for(path: str) -> str:
    for prefix, entity in _ENTITY_BY_PREFIX:
        if path.startswith(prefix):
            return entity
    return "request"


def create_app(storage: Optional[Storage] = None, *, seed: Optional[bool] = None):
    settings = get_settings()
    storage = storage or Storage()
    storage.create_schema()
    if seed is None:
        seed = settings.seed_defaults
    if seed:
        with storage.session_scope() as session:
            seed_defaults(session)

    app = FastAPI(title="Pocket Expenses")
    app.state.storage = storage

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"] if part != "body"),
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "message": f"Invalid {_entity_for(request.url.path)} data",
                "errors": errors,
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"unhandled_error: path={request.url.path}")
        return JSONResponse(status_code=500, content={"message": "Internal error"})

    app.include_router(router)
    return app


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_db(storage: Storage = Depends(get_storage)):
    db = storage.session()
    try:
        yield db
    finally:
        db.close()


# categories


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return [CategoryOut.model_validate(c) for c in CategoryService(db).list_all()]


@router.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    category = CategoryService(db).get(category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return CategoryOut.model_validate(category)


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryOut.model_validate(CategoryService(db).create(data))


@router.patch("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int, data: CategoryPatch, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConsistencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CategoryOut.model_validate(category)


@router.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConsistencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


# transactions


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    type: str = Query(default="all", pattern="^(all|income|expense)$"),
    db: Session = Depends(get_db),
):
    txn_type = None if type == "all" else TransactionType(type)
    return [
        TransactionOut.model_validate(t)
        for t in TransactionService(db).history(txn_type)
    ]


@router.get("/transactions/export.csv")
def export_transactions_csv(
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
):
    today = local_today()
    year = year or today.year
    month = month or today.month
    content = CSVService(db).export(year, month)
    filename = f"Expenses_{date(year, month, 1):%B}_{year}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/transactions/import", response_model=ImportResultOut)
async def import_transactions_csv(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(raw) > MAX_IMPORT_BYTES:
        raise HTTPException(status_code=400, detail="File too large (max 5MB)")
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="File must be UTF-8 CSV") from exc
    try:
        result = CSVService(db).import_csv(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    txn = TransactionService(db).get(transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionOut.model_validate(txn)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ConsistencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionOut.model_validate(txn)


@router.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, data: TransactionPatch, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConsistencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionOut.model_validate(txn)


@router.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# settings


@router.get("/settings", response_model=SettingsOut)
def get_settings_record(db: Session = Depends(get_db)):
    settings = SettingsService(db).get(SETTINGS_ID)
    if settings is None:
        raise HTTPException(status_code=404, detail="Settings not found")
    return SettingsOut.model_validate(settings)


@router.post("/settings", response_model=SettingsOut)
def update_settings_record(data: SettingsPatch, db: Session = Depends(get_db)):
    try:
        settings = SettingsService(db).update(SETTINGS_ID, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Settings not found") from exc
    return SettingsOut.model_validate(settings)


# reminders


@router.get("/reminders", response_model=list[ReminderOut])
def list_reminders(db: Session = Depends(get_db)):
    return [ReminderOut.model_validate(r) for r in ReminderService(db).list_all()]


@router.get("/reminders/{reminder_id}", response_model=ReminderOut)
def get_reminder(reminder_id: int, db: Session = Depends(get_db)):
    reminder = ReminderService(db).get(reminder_id)
    if reminder is None:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return ReminderOut.model_validate(reminder)


@router.post("/reminders", response_model=ReminderOut, status_code=201)
def create_reminder(data: ReminderIn, db: Session = Depends(get_db)):
    return ReminderOut.model_validate(ReminderService(db).create(data))


@router.patch("/reminders/{reminder_id}", response_model=ReminderOut)
def update_reminder(
    reminder_id: int, data: ReminderPatch, db: Session = Depends(get_db)
):
    try:
        reminder = ReminderService(db).update(reminder_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ReminderOut.model_validate(reminder)


@router.delete("/reminders/{reminder_id}", status_code=204)
def delete_reminder(reminder_id: int, db: Session = Depends(get_db)):
    try:
        ReminderService(db).delete(reminder_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# stats


@router.get("/stats/overview", response_model=OverviewOut)
def stats_overview(db: Session = Depends(get_db)):
    return MetricsService(db).overview()


@router.get("/stats", response_model=StatsOut)
def stats(range: str = Query(default="month"), db: Session = Depends(get_db)):
    try:
        return MetricsService(db).stats(range)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# voice input


@router.post("/voice/parse", response_model=VoiceDraftOut)
def parse_voice(data: VoiceParseIn, db: Session = Depends(get_db)):
    categories = CategoryService(db).list_all()
    try:
        draft = parse_voice_input(data.text, categories, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return VoiceDraftOut.model_validate(draft)


app = create_app()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
