from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.routing import APIRouter
from starlette.concurrency import run_in_threadpool
from contextlib import asynccontextmanager
from sqlalchemy.orm import Session
from pydantic import ValidationError as PydanticValidationError
from datetime import datetime, timezone
import logging

# Database imports
from app.database import get_db, engine
from app import models

# Authentication and security imports
from app.auth.security import Identity, get_current_identity, get_current_user, require_verified_user

# Models
from app.models.user import User

# Services
from app.services.cloudinary_service import cloudinary_service
from app.services.redis_service import redis_service
from app.services.stripe_service import stripe_service
from app.services.detection import Detector, ImageInput, get_detector, is_ai_score
from app.services.rate_limiter import rate_limit

# Billing system
from app.billing.scheduler import start_scheduler
from app.billing.enforce import ensure_scan_allowed, get_credit_balance
from app.billing.plans import plan_limit, price_for_purchase, resolve_plan, CREDIT_PLAN
from app.billing.resets import apply_monthly_reset
from app.billing.timeutils import now_utc, start_of_next_utc_month
from app.billing.usage import record_scan
from app.billing.webhooks import handle_event

# Pydantic schemas
from app.models.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PortalResponse,
    ScanResponse,
    ScanUrlRequest,
    SignupRequest,
    UsageOut,
    UserOut,
)

# Errors
from app.errors import Conflict, NoBillingCustomer, ValidationError, register_error_handlers

# Config
from app.config import settings

# Setup Logger
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("verifly")

# Lifespan events to handle startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Verifly starting up...")
    # Create DB tables
    models.Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

    # Test Redis connection
    if redis_service.ping():
        logger.info("Redis connected successfully")
    else:
        logger.warning("Redis connection failed. Token revocation will not work.")

    scheduler = None
    try:
        scheduler = start_scheduler()
        logger.info("Background housekeeping scheduler started")
    except Exception as e:
        logger.error(f"Failed to start housekeeping scheduler: {e}")

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info("Verifly shutting down...")

# Create FastAPI app with lifespan
app = FastAPI(
    title="Verifly API",
    description="AI-generated image detection with plan and credit entitlements",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "Stripe-Signature"],
)

register_error_handlers(app)

# API Routers
auth_router = APIRouter(prefix="/auth", tags=["Authentication"])
scan_router = APIRouter(tags=["Scans"])
account_router = APIRouter(prefix="/account", tags=["Account"])
billing_router = APIRouter(tags=["Billing"])
health_router = APIRouter(prefix="/health", tags=["Health"])

# =============================================================================
# AUTHENTICATION ROUTES
# =============================================================================

@app.post("/signup", response_model=UserOut, status_code=status.HTTP_201_CREATED,
          dependencies=[Depends(rate_limit("signup", settings.signup_rate_limit_max,
                                           settings.signup_rate_limit_window_minutes))])
def signup(body: SignupRequest, db: Session = Depends(get_db)):
    """Create the user record for an identity registered with the auth service"""
    if db.get(User, body.id) is not None:
        raise Conflict("User already exists")
    if db.query(User).filter(User.email == body.email).first() is not None:
        raise Conflict("Email already registered")

    user = User(
        id=body.id,
        email=body.email,
        full_name=body.full_name,
        email_verified=False,
        plan_type="free",
        monthly_usage=0,
        usage_reset_at=now_utc(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Signup: user {user.id}")
    return user

@auth_router.post("/logout")
def logout(identity: Identity = Depends(get_current_identity)):
    """Revoke the presented token server-side"""
    ttl = int((identity.expires_at - now_utc()).total_seconds()) if identity.expires_at else 0
    if not redis_service.blacklist_token(identity.token, ttl):
        return {
            "ok": True,
            "message": "Logged out (client-side only)",
            "warning": "Server-side token invalidation unavailable",
        }
    return {"ok": True, "message": "Successfully logged out", "user_id": identity.id}

# =============================================================================
# SCAN ROUTES
# =============================================================================

async def read_scan_image(request: Request) -> ImageInput:
    """Accept either a multipart ``file`` upload or a JSON ``{"imageUrl": ...}`` body"""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise ValidationError("No file provided")
        if not upload.content_type or not upload.content_type.startswith("image/"):
            raise ValidationError(f"File must be an image. Received: {upload.content_type}")
        file_content = await upload.read()
        if len(file_content) == 0:
            raise ValidationError("Uploaded file is empty")
        return ImageInput(content=file_content, content_type=upload.content_type)

    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Send an image file as multipart/form-data or a JSON body with imageUrl")
    try:
        parsed = ScanUrlRequest.model_validate(body)
    except PydanticValidationError:
        raise ValidationError("imageUrl is required")
    return ImageInput(url=parsed.image_url)

@scan_router.post("/scan", response_model=ScanResponse)
async def scan(
    request: Request,
    current_user: User = Depends(require_verified_user),
    ip: str = Depends(rate_limit("scan", settings.scan_rate_limit_max,
                                 settings.scan_rate_limit_window_minutes)),
    detector: Detector = Depends(get_detector),
    db: Session = Depends(get_db),
):
    """Score an image, charging one unit of plan allowance or one credit"""
    image = await read_scan_image(request)

    # Admission first: inference is never paid for on a denied request
    entitlement = await run_in_threadpool(ensure_scan_allowed, db, current_user.id)

    image_url = image.url
    if image_url is None:
        stamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S_%f')
        image_url = await run_in_threadpool(
            cloudinary_service.store_scan_image, image.content, current_user.id, stamp
        )
        if image_url:
            image = ImageInput(url=image_url)

    score = await run_in_threadpool(detector.detect, image)
    is_ai = is_ai_score(score)

    await run_in_threadpool(
        record_scan, db, current_user.id, score, is_ai, ip, entitlement, image_url=image_url
    )

    return ScanResponse(
        allowed=True,
        ai_score=score,
        is_ai=is_ai,
        scans_remaining=entitlement.remaining,
        plan_type=entitlement.plan_type,
    )

# =====================================================================
# ACCOUNT ROUTES
# =====================================================================

@account_router.get("/me", response_model=UserOut)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user

@account_router.get("/usage", response_model=UsageOut)
def get_usage(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Plan allowance and credits, with the monthly reset applied"""
    current_utc = now_utc()
    if apply_monthly_reset(current_user, current_utc):
        db.commit()

    next_reset = start_of_next_utc_month(current_utc)
    return UsageOut(
        plan_type=resolve_plan(current_user.plan_type),
        monthly_limit=plan_limit(current_user.plan_type),
        monthly_usage=current_user.monthly_usage,
        credit_balance=get_credit_balance(db, current_user.id),
        days_until_reset=max(0, (next_reset - current_utc).days),
    )

# =====================================================================
# BILLING ROUTES
# =====================================================================

@billing_router.post("/create-checkout", response_model=CheckoutResponse,
                     dependencies=[Depends(rate_limit("create-checkout", settings.checkout_rate_limit_max,
                                                      settings.checkout_rate_limit_window_minutes))])
def create_checkout(
    body: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    price_id = price_for_purchase(body.plan)
    if price_id is None:
        raise ValidationError(f"Plan '{body.plan}' is not available")

    customer_id = stripe_service.ensure_customer(
        current_user.id, current_user.email, current_user.stripe_customer_id
    )
    if current_user.stripe_customer_id != customer_id:
        current_user.stripe_customer_id = customer_id
        db.commit()

    mode = "payment" if body.plan == CREDIT_PLAN else "subscription"
    session = stripe_service.create_checkout_session(customer_id, current_user.id, price_id, mode)
    logger.info(f"Checkout session {session['id']} ({body.plan}) for user {current_user.id}")
    return CheckoutResponse(session_id=session["id"], url=session["url"])

@billing_router.post("/create-portal-session", response_model=PortalResponse)
def create_portal_session(current_user: User = Depends(get_current_user)):
    if not current_user.stripe_customer_id:
        raise NoBillingCustomer("No billing account yet. Make a purchase first.")
    return PortalResponse(url=stripe_service.create_portal_session(current_user.stripe_customer_id))

@billing_router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Stripe events. The signature covers the exact bytes Stripe sent, so this
    route reads the raw body itself and must never declare a body model."""
    payload = await request.body()
    event = stripe_service.construct_event(payload, request.headers.get("stripe-signature"))
    logger.info(f"Stripe event {event['id']} ({event['type']})")
    handle_event(db, event)
    return {"received": True}

# =====================================================================
# HEALTH ROUTES
# =====================================================================

@health_router.get("/redis")
def redis_health():
    if redis_service.ping():
        return {"status": "healthy", "redis": "connected"}
    else:
        return {"status": "unhealthy", "redis": "disconnected"}

@health_router.get("/")
def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }

@app.get("/", response_class=PlainTextResponse)
def root():
    return "Verifly backend running"

# Register all routers
app.include_router(auth_router)
app.include_router(scan_router)
app.include_router(account_router)
app.include_router(billing_router)
app.include_router(health_router)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
