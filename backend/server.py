from fastapi import FastAPI, APIRouter, Depends, UploadFile, File, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from dotenv import load_dotenv
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
import os
import io
import logging
from pathlib import Path
from typing import Any, List, Optional

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from auth import (  # noqa: E402
    ACCESS_TOKEN_COOKIE,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_user_token,
    get_current_user_id,
    get_password_hash,
    verify_password,
)
from documents import DocumentStorage  # noqa: E402
from errors import (  # noqa: E402
    AppError,
    BadRequest,
    DuplicateEntity,
    Forbidden,
    Internal,
    NotFound,
    Unauthenticated,
    UpstreamUnavailable,
    ValidationError,
)
from models import (  # noqa: E402
    DEFAULT_TAGS,
    RECORD_TYPES,
    HealthRecordCreate,
    HealthRecordUpdate,
    LoginRequest,
    MedicationCreate,
    MedicationDoseCreate,
    MedicationDoseUpdate,
    MedicationReminderCreate,
    MedicationReminderUpdate,
    MedicationUpdate,
    PatientCreate,
    PatientUpdate,
    SignupRequest,
    UserUpdate,
)
from ownership import (  # noqa: E402
    HEALTH_RECORD_CHAIN,
    MEDICATION_CHAIN,
    MEDICATION_DOSE_CHAIN,
    MEDICATION_REMINDER_CHAIN,
    PATIENT_CHAIN,
    USERS,
    OwnershipChain,
    OwnershipResolver,
)
from store import ASCENDING, DESCENDING, EntityStore, connect_database, serialize_document  # noqa: E402
from trends import extract_trend  # noqa: E402
from validation import first_error, validate_payload  # noqa: E402

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

USER_HIDDEN_FIELDS = ("passwordHash",)

# Create the main app without a prefix
app = FastAPI(title="HealthNest API")

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# ==================== STORE HANDLES ====================

@app.on_event("startup")
async def startup_db_client():
    client, db = connect_database(os.environ['MONGO_URL'], os.environ['DB_NAME'])
    app.state.mongo_client = client
    app.state.db = db
    bucket_name = os.environ.get("DOCUMENTS_BUCKET", "documents").strip()
    app.state.documents = DocumentStorage(db, bucket_name) if bucket_name else None
    if app.state.documents is None:
        logger.warning("DOCUMENTS_BUCKET is empty, document uploads are disabled")

@app.on_event("shutdown")
async def shutdown_db_client():
    client = getattr(app.state, "mongo_client", None)
    if client is not None:
        client.close()

def get_db(request: Request) -> AsyncIOMotorDatabase:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise UpstreamUnavailable("Database is not configured")
    return db

def get_document_storage(request: Request) -> Optional[DocumentStorage]:
    return getattr(request.app.state, "documents", None)

def chain_store(db: AsyncIOMotorDatabase, chain: OwnershipChain) -> EntityStore:
    """Store for the chain's leaf collection; its parent key is never updatable."""
    return EntityStore(db[chain.leaf_collection], immutable_fields=(chain.parent_field,))

def users_store(db: AsyncIOMotorDatabase) -> EntityStore:
    return EntityStore(db[USERS])

# ==================== ERROR HANDLERS ====================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = first_error(exc)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Store failure on {request.method} {request.url.path}", exc_info=exc)
    error = Internal("An unexpected error occurred")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": f"HTTP_{exc.status_code}"},
        headers=getattr(exc, "headers", None)
    )

# ==================== HELPERS ====================

async def read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise ValidationError("body", "Malformed JSON body")

async def get_owned(db: AsyncIOMotorDatabase, chain: OwnershipChain, entity_id: str, user_id: str) -> dict:
    resolution = await OwnershipResolver(db).resolve(chain, entity_id, user_id)
    return serialize_document(resolution.leaf)

async def update_owned(
    db: AsyncIOMotorDatabase,
    chain: OwnershipChain,
    entity_id: str,
    user_id: str,
    changes: dict
) -> dict:
    await OwnershipResolver(db).resolve(chain, entity_id, user_id)
    updated = await chain_store(db, chain).update(entity_id, changes)
    if updated is None:
        # Deleted between the ownership check and the update.
        raise NotFound(f"{chain.label} not found")
    return serialize_document(updated)

async def delete_owned(db: AsyncIOMotorDatabase, chain: OwnershipChain, entity_id: str, user_id: str) -> dict:
    await OwnershipResolver(db).resolve(chain, entity_id, user_id)
    if not await chain_store(db, chain).delete(entity_id):
        raise NotFound(f"{chain.label} not found")
    logger.info(f"User {user_id} deleted {chain.leaf_collection} {entity_id}")
    return {"message": f"{chain.label} deleted successfully"}

async def create_owned(db: AsyncIOMotorDatabase, chain: OwnershipChain, doc: dict) -> dict:
    await chain_store(db, chain).insert(doc)
    return serialize_document(doc)

# ==================== AUTH ====================

@api_router.post("/auth/signup", status_code=201)
async def signup(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Register a new user with email and password"""
    data = validate_payload(SignupRequest, await read_json(request))
    users = users_store(db)

    existing_user = await users.find_one({"emails": data.email})
    if existing_user:
        raise DuplicateEntity("User with this email already exists")

    new_user = {
        "firstName": data.first_name,
        "middleName": "",
        "lastName": data.last_name,
        "title": "",
        "suffix": "",
        "emails": [data.email],
        "mobileNumbers": [],
        "preferences": {},
        "onboardingCompleted": False,
        "passwordHash": get_password_hash(data.password),
        "authProvider": "credentials",
    }
    user_id = await users.insert(new_user)
    logger.info(f"Registered user {user_id}")
    return {"message": "User created successfully", "userId": user_id}

@api_router.post("/auth/login")
async def login(request: Request, response: Response, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Login user and set JWT cookie"""
    data = validate_payload(LoginRequest, await read_json(request))
    user_doc = await users_store(db).find_one({"emails": data.email})
    if not user_doc or not user_doc.get("passwordHash") or not verify_password(data.password, user_doc["passwordHash"]):
        raise Unauthenticated("Incorrect email or password")

    user_id = str(user_doc["_id"])
    access_token = create_user_token(user_id)
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        secure=True,
        samesite="none",
        path="/",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )
    logger.info(f"User {user_id} logged in")
    return {
        "message": "Login successful",
        "accessToken": access_token,
        "user": serialize_document(user_doc, hidden=USER_HIDDEN_FIELDS)
    }

@api_router.post("/auth/logout")
async def logout(response: Response):
    """Logout user"""
    response.delete_cookie(key=ACCESS_TOKEN_COOKIE, path="/")
    return {"message": "Logged out successfully"}

# ==================== USERS ====================

@api_router.get("/users/me")
async def get_me(
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Get current user info"""
    user_doc = await users_store(db).get_by_id(user_id)
    if not user_doc:
        raise NotFound("User not found")
    return serialize_document(user_doc, hidden=USER_HIDDEN_FIELDS)

@api_router.put("/users/me")
async def update_me(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(UserUpdate, await read_json(request))
    updated = await users_store(db).update(user_id, data.changes())
    if not updated:
        raise NotFound("User not found")
    return serialize_document(updated, hidden=USER_HIDDEN_FIELDS)

@api_router.post("/users/onboarding/complete")
async def complete_onboarding(
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    updated = await users_store(db).update(user_id, {"onboardingCompleted": True})
    if not updated:
        raise NotFound("User not found")
    return serialize_document(updated, hidden=USER_HIDDEN_FIELDS)

# ==================== PATIENTS ====================

@api_router.get("/patients", response_model=List[dict])
async def get_patients(
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    patients = await chain_store(db, PATIENT_CHAIN).find(
        {"ownerUserId": user_id},
        sort=[("createdAt", DESCENDING)]
    )
    return [serialize_document(p) for p in patients]

@api_router.post("/patients", response_model=dict, status_code=201)
async def create_patient(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(PatientCreate, await read_json(request))
    if not await users_store(db).get_by_id(user_id):
        raise NotFound("User not found")
    doc = {"ownerUserId": user_id, **data.to_document()}
    return await create_owned(db, PATIENT_CHAIN, doc)

@api_router.get("/patients/search", response_model=List[dict])
async def search_patients(
    hospital_system: Optional[str] = Query(None, alias="hospitalSystem"),
    identifier_type: Optional[str] = Query(None, alias="identifierType"),
    identifier_value: Optional[str] = Query(None, alias="identifierValue"),
    mobile_number: Optional[str] = Query(None, alias="mobileNumber"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Find own patients by hospital identifier triple or mobile number"""
    query = {"ownerUserId": user_id}
    if hospital_system and identifier_type and identifier_value:
        query["hospitalIdentifiers"] = {
            "$elemMatch": {
                "systemName": hospital_system,
                "identifierType": identifier_type,
                "value": identifier_value
            }
        }
    elif mobile_number:
        query["mobileNumbers.number"] = mobile_number
    else:
        raise BadRequest(
            "Please provide either hospitalSystem+identifierType+identifierValue or mobileNumber"
        )
    patients = await chain_store(db, PATIENT_CHAIN).find(query, sort=[("createdAt", DESCENDING)])
    return [serialize_document(p) for p in patients]

@api_router.get("/patients/{patient_id}", response_model=dict)
async def get_patient(
    patient_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await get_owned(db, PATIENT_CHAIN, patient_id, user_id)

@api_router.put("/patients/{patient_id}", response_model=dict)
async def update_patient(
    patient_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(PatientUpdate, await read_json(request))
    return await update_owned(db, PATIENT_CHAIN, patient_id, user_id, data.changes())

@api_router.delete("/patients/{patient_id}")
async def delete_patient(
    patient_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Delete a patient. Records and medications are left in place."""
    return await delete_owned(db, PATIENT_CHAIN, patient_id, user_id)

# ==================== HEALTH RECORDS ====================

@api_router.get("/health-records", response_model=List[dict])
async def get_health_records(
    patient_id: str = Query(..., alias="patientId"),
    record_type: Optional[str] = Query(None, alias="recordType"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await OwnershipResolver(db).resolve(PATIENT_CHAIN, patient_id, user_id)
    query = {"patientId": patient_id}
    if record_type:
        query["recordType"] = record_type
    records = await chain_store(db, HEALTH_RECORD_CHAIN).find(query, sort=[("createdAt", DESCENDING)])
    return [serialize_document(r) for r in records]

@api_router.post("/health-records", response_model=dict, status_code=201)
async def create_health_record(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(HealthRecordCreate, await read_json(request))
    await OwnershipResolver(db).resolve(PATIENT_CHAIN, data.patient_id, user_id)
    return await create_owned(db, HEALTH_RECORD_CHAIN, data.to_document())

@api_router.get("/health-records/tags")
async def get_record_vocabulary(user_id: str = Depends(get_current_user_id)):
    return {"recordTypes": list(RECORD_TYPES), "tags": list(DEFAULT_TAGS)}

@api_router.get("/health-records/trends")
async def get_health_record_trends(
    patient_id: str = Query(..., alias="patientId"),
    metric: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Time series of one data key across all of a patient's records"""
    await OwnershipResolver(db).resolve(PATIENT_CHAIN, patient_id, user_id)
    records = await chain_store(db, HEALTH_RECORD_CHAIN).find(
        {"patientId": patient_id},
        sort=[("createdAt", ASCENDING)]
    )
    trends = extract_trend(records, metric)
    return {
        "patientId": patient_id,
        "metric": metric,
        "trends": [point.model_dump(by_alias=True) for point in trends]
    }

@api_router.get("/health-records/{record_id}", response_model=dict)
async def get_health_record(
    record_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await get_owned(db, HEALTH_RECORD_CHAIN, record_id, user_id)

@api_router.put("/health-records/{record_id}", response_model=dict)
async def update_health_record(
    record_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(HealthRecordUpdate, await read_json(request))
    return await update_owned(db, HEALTH_RECORD_CHAIN, record_id, user_id, data.changes())

@api_router.delete("/health-records/{record_id}")
async def delete_health_record(
    record_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await delete_owned(db, HEALTH_RECORD_CHAIN, record_id, user_id)

# ==================== MEDICATIONS ====================

@api_router.get("/medications", response_model=List[dict])
async def get_medications(
    patient_id: str = Query(..., alias="patientId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await OwnershipResolver(db).resolve(PATIENT_CHAIN, patient_id, user_id)
    query = {"patientId": patient_id}
    if is_active is not None:
        query["isActive"] = is_active
    meds = await chain_store(db, MEDICATION_CHAIN).find(query, sort=[("startDate", DESCENDING)])
    return [serialize_document(m) for m in meds]

@api_router.post("/medications", response_model=dict, status_code=201)
async def create_medication(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(MedicationCreate, await read_json(request))
    await OwnershipResolver(db).resolve(PATIENT_CHAIN, data.patient_id, user_id)
    return await create_owned(db, MEDICATION_CHAIN, data.to_document())

@api_router.get("/medications/{medication_id}", response_model=dict)
async def get_medication(
    medication_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await get_owned(db, MEDICATION_CHAIN, medication_id, user_id)

@api_router.put("/medications/{medication_id}", response_model=dict)
async def update_medication(
    medication_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(MedicationUpdate, await read_json(request))
    return await update_owned(db, MEDICATION_CHAIN, medication_id, user_id, data.changes())

@api_router.delete("/medications/{medication_id}")
async def delete_medication(
    medication_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await delete_owned(db, MEDICATION_CHAIN, medication_id, user_id)

# ==================== MEDICATION DOSES ====================

@api_router.get("/medications/{medication_id}/doses", response_model=List[dict])
async def get_medication_doses(
    medication_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await OwnershipResolver(db).resolve(MEDICATION_CHAIN, medication_id, user_id)
    doses = await chain_store(db, MEDICATION_DOSE_CHAIN).find(
        {"medicationId": medication_id},
        sort=[("scheduledTime", DESCENDING)]
    )
    return [serialize_document(d) for d in doses]

@api_router.post("/medications/{medication_id}/doses", response_model=dict, status_code=201)
async def create_medication_dose(
    medication_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Log a scheduled or taken dose"""
    data = validate_payload(MedicationDoseCreate, await read_json(request))
    await OwnershipResolver(db).resolve(MEDICATION_CHAIN, medication_id, user_id)
    doc = {"medicationId": medication_id, **data.to_document()}
    return await create_owned(db, MEDICATION_DOSE_CHAIN, doc)

@api_router.get("/medication-doses/{dose_id}", response_model=dict)
async def get_medication_dose(
    dose_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await get_owned(db, MEDICATION_DOSE_CHAIN, dose_id, user_id)

@api_router.put("/medication-doses/{dose_id}", response_model=dict)
async def update_medication_dose(
    dose_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(MedicationDoseUpdate, await read_json(request))
    return await update_owned(db, MEDICATION_DOSE_CHAIN, dose_id, user_id, data.changes())

@api_router.delete("/medication-doses/{dose_id}")
async def delete_medication_dose(
    dose_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await delete_owned(db, MEDICATION_DOSE_CHAIN, dose_id, user_id)

# ==================== MEDICATION REMINDERS ====================

@api_router.get("/medications/{medication_id}/reminders", response_model=List[dict])
async def get_medication_reminders(
    medication_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await OwnershipResolver(db).resolve(MEDICATION_CHAIN, medication_id, user_id)
    reminders = await chain_store(db, MEDICATION_REMINDER_CHAIN).find(
        {"medicationId": medication_id},
        sort=[("scheduledTime", ASCENDING)]
    )
    return [serialize_document(r) for r in reminders]

@api_router.post("/medications/{medication_id}/reminders", response_model=dict, status_code=201)
async def create_medication_reminder(
    medication_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(MedicationReminderCreate, await read_json(request))
    await OwnershipResolver(db).resolve(MEDICATION_CHAIN, medication_id, user_id)
    doc = {"medicationId": medication_id, **data.to_document()}
    return await create_owned(db, MEDICATION_REMINDER_CHAIN, doc)

@api_router.get("/medication-reminders/{reminder_id}", response_model=dict)
async def get_medication_reminder(
    reminder_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await get_owned(db, MEDICATION_REMINDER_CHAIN, reminder_id, user_id)

@api_router.put("/medication-reminders/{reminder_id}", response_model=dict)
async def update_medication_reminder(
    reminder_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = validate_payload(MedicationReminderUpdate, await read_json(request))
    return await update_owned(db, MEDICATION_REMINDER_CHAIN, reminder_id, user_id, data.changes())

@api_router.delete("/medication-reminders/{reminder_id}")
async def delete_medication_reminder(
    reminder_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await delete_owned(db, MEDICATION_REMINDER_CHAIN, reminder_id, user_id)

# ==================== DOCUMENTS ====================

@api_router.post("/documents/upload")
async def upload_document(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    storage: Optional[DocumentStorage] = Depends(get_document_storage)
):
    """Upload a record document to the blob store"""
    if storage is None:
        raise UpstreamUnavailable(
            "File storage is not configured. Set DOCUMENTS_BUCKET to enable uploads."
        )
    content = await file.read()
    content_type = file.content_type or "application/octet-stream"
    url = await storage.upload(user_id, file.filename, content, content_type)
    return {
        "url": url,
        "fileName": file.filename,
        "size": len(content),
        "type": content_type
    }

@api_router.get("/files/{filename}")
async def get_file(
    filename: str,
    user_id: str = Depends(get_current_user_id),
    storage: Optional[DocumentStorage] = Depends(get_document_storage)
):
    """Stream a stored document back to its owner"""
    if storage is None:
        raise UpstreamUnavailable("File storage is not configured")
    stored = await storage.open(filename)
    if stored is None:
        raise NotFound("File not found")
    if stored.owner_user_id != user_id:
        raise Forbidden("Unauthorized access to this file")
    return StreamingResponse(
        io.BytesIO(stored.content),
        media_type=stored.content_type,
        headers={"Content-Disposition": f"inline; filename=\"{filename}\""}
    )

# ==================== ROOT ====================

@api_router.get("/")
async def root():
    return {"message": "HealthNest API"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)
