"""
Nutrition Coach — FastAPI Backend
All coaching logic lives in coach/. This module wires the services at startup
and exposes them over HTTP. User identity arrives in the X-User-Id header;
authentication happens upstream.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coach import __version__
from coach.api_exceptions import (
    AuthenticationError,
    CoachAPIError,
    ExternalServiceError,
    RateLimitError,
    ResourceNotFoundError,
)
from coach.cache import RedisCache
from coach.chat import CHAT_UNAVAILABLE_REPLY, build_chat_prompt
from coach.config import ConfigResolver
from coach.db import SupabaseStore, connect
from coach.food_image import decode_image
from coach.gateway import AIGateway
from coach.monitoring import HealthCheck, init_sentry
from coach.rate_limiter import RateLimiter
from coach.schemas import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    FeedbackRequest,
    FoodAnalysisResponse,
    FoodImageRequest,
    HealthCheckResponse,
    NutritionContext,
    RecommendationResponse,
    TrackBehaviorRequest,
)
from coach.service import ErrorKind, NutritionCoach
from coach.settings import Settings
from coach.structured_logging import logger, setup_json_logging


ERROR_STATUS = {
    ErrorKind.NO_USER:        401,
    ErrorKind.UNCONFIGURED:   503,
    ErrorKind.RATE_LIMITED:   429,
    ErrorKind.PROVIDER_ERROR: 502,
    ErrorKind.STORAGE_ERROR:  503,
    ErrorKind.UNEXPECTED:     500,
}

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing X-User-Id header"},
    429: {"model": ErrorResponse, "description": "Request or provider rate limit hit"},
    503: {"model": ErrorResponse, "description": "Storage or AI provider unavailable"},
}


# ══════════════════════════════════════════════
# STARTUP
# ══════════════════════════════════════════════

def build_health_checks(store, cache: RedisCache, resolver: ConfigResolver) -> HealthCheck:
    health = HealthCheck()

    async def supabase_check():
        return await store.ping(), {}

    async def ai_check():
        config = await resolver.resolve()
        return config.is_configured, {"provider": config.provider, "model": config.model,
                                      "source": config.source}

    health.register("supabase", supabase_check, critical=True)
    health.register("ai_provider", ai_check)
    if cache.enabled:
        async def redis_check():
            return await cache.ping(), {}
        health.register("redis", redis_check)
    return health


async def init_services(app: FastAPI, settings: Settings) -> None:
    """Build the process-wide service objects onto app.state."""
    store = SupabaseStore(await connect(settings))
    cache = RedisCache.from_url(settings.redis_url)
    resolver = ConfigResolver(store, settings)
    gateway = AIGateway(resolver, cooldown=settings.cooldown_seconds)

    app.state.settings = settings
    app.state.store = store
    app.state.cache = cache
    app.state.resolver = resolver
    app.state.gateway = gateway
    app.state.coach = NutritionCoach(store, gateway, cache)
    app.state.health = build_health_checks(store, cache, resolver)


async def close_services(app: FastAPI) -> None:
    await app.state.gateway.aclose()
    await app.state.resolver.aclose()
    await app.state.cache.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    setup_json_logging(settings.log_file)
    init_sentry(settings.sentry_dsn)
    await init_services(app, settings)
    logger.info(f"✓ Nutrition coach {__version__} started")
    try:
        yield
    finally:
        await close_services(app)


app = FastAPI(
    title="Nutrition Coach API",
    description="Agentic nutrition recommendations behind a rate-limited AI gateway",
    version=__version__,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)
app.state.rate_limiter = RateLimiter()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "Request validation failed",
            "error_code": "VALIDATION_ERROR",
            "details": {
                "errors": [
                    {
                        "field": ".".join(str(x) for x in err["loc"]),
                        "message": err["msg"],
                    }
                    for err in exc.errors()
                ]
            },
        },
    )


@app.exception_handler(CoachAPIError)
async def coach_exception_handler(request: Request, exc: CoachAPIError):
    """Handle coach API exceptions."""
    logger.warning(f"API Error: {exc.error_code} - {exc.message}", path=request.url.path)
    return exc.to_response()


# ══════════════════════════════════════════════
# DEPENDENCIES
# ══════════════════════════════════════════════

def current_user(request: Request, x_user_id: Optional[str] = Header(None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthenticationError()
    logger.log_request(request.method, request.url.path, user_id)
    return user_id


def rate_limited(endpoint: str):
    def check(request: Request, user_id: str = Depends(current_user)) -> str:
        request.app.state.rate_limiter.check_rate_limit(request, endpoint, user_id)
        return user_id
    return check


def get_coach(request: Request) -> NutritionCoach:
    return request.app.state.coach


# ══════════════════════════════════════════════
# RECOMMENDATIONS
# ══════════════════════════════════════════════

@app.post("/api/recommendations", response_model=RecommendationResponse, responses=ERROR_RESPONSES)
async def create_recommendation(
    context: NutritionContext,
    user_id: str = Depends(rate_limited("/api/recommendations")),
    coach: NutritionCoach = Depends(get_coach),
):
    result = await coach.get_agentic_recommendation(user_id, context)
    if result.ok:
        return RecommendationResponse(recommendation=result.recommendation)

    body = RecommendationResponse(success=False, error_kind=result.error_kind.value)
    headers = None
    if result.error_kind is ErrorKind.RATE_LIMITED:
        headers = {"Retry-After": str(max(1, round(coach.gateway.cooldown)))}
    return JSONResponse(status_code=ERROR_STATUS[result.error_kind], content=body.model_dump(),
                        headers=headers)


@app.get("/api/recommendations/today", response_model=RecommendationResponse, responses=ERROR_RESPONSES)
async def todays_recommendation(
    user_id: str = Depends(rate_limited("default")),
    coach: NutritionCoach = Depends(get_coach),
):
    return RecommendationResponse(recommendation=await coach.get_todays_recommendation(user_id))


@app.post("/api/recommendations/{recommendation_id}/feedback", responses=ERROR_RESPONSES)
async def recommendation_feedback(
    recommendation_id: str,
    body: FeedbackRequest,
    user_id: str = Depends(rate_limited("/api/feedback")),
    coach: NutritionCoach = Depends(get_coach),
):
    ok = await coach.record_recommendation_feedback(
        user_id, recommendation_id, body.rating, body.feedback, body.was_followed,
    )
    if not ok:
        raise ResourceNotFoundError("Recommendation", recommendation_id)
    return {"success": True}


# ══════════════════════════════════════════════
# BEHAVIOR TRACKING
# ══════════════════════════════════════════════

@app.post("/api/behavior", responses=ERROR_RESPONSES)
async def track_behavior(
    body: TrackBehaviorRequest,
    user_id: str = Depends(rate_limited("/api/behavior")),
    coach: NutritionCoach = Depends(get_coach),
):
    ok = await coach.track_daily_behavior(
        user_id, body.nutrition, body.water_intake, body.goals, body.meals_logged,
    )
    if not ok:
        raise ExternalServiceError("supabase", "could not record daily behavior")
    return {"success": True}


# ══════════════════════════════════════════════
# CHAT
# ══════════════════════════════════════════════

@app.post("/api/chat", response_model=ChatResponse, responses=ERROR_RESPONSES)
async def chat_ep(
    body: ChatRequest,
    user_id: str = Depends(rate_limited("/api/chat")),
    coach: NutritionCoach = Depends(get_coach),
):
    prompt = build_chat_prompt(body.profile, body.nutrition, body.goals,
                               body.water_intake, body.history, body.message)
    try:
        reply = await coach.complete(prompt)
    except RateLimitError:
        raise
    except Exception as e:
        logger.error(f"Chat completion failed: {e}", user_id=user_id)
        raise ExternalServiceError("ai_provider", CHAT_UNAVAILABLE_REPLY) from e
    return ChatResponse(message=reply, timestamp=datetime.now(timezone.utc))


# ══════════════════════════════════════════════
# FOOD PHOTOS
# ══════════════════════════════════════════════

@app.post("/api/food/analyze", response_model=FoodAnalysisResponse, responses=ERROR_RESPONSES)
async def analyze_food(
    body: FoodImageRequest,
    user_id: str = Depends(rate_limited("/api/food/analyze")),
    coach: NutritionCoach = Depends(get_coach),
):
    analysis = await coach.analyze_food_image(decode_image(body.image))
    if analysis is None:
        raise ExternalServiceError("ai_provider", "could not analyze the food image")
    return FoodAnalysisResponse(analysis=analysis)


# ══════════════════════════════════════════════
# ADMIN + HEALTH
# ══════════════════════════════════════════════

@app.post("/api/admin/ai-config/refresh")
async def refresh_ai_config(request: Request):
    await request.app.state.gateway.reload_config()
    config = await request.app.state.resolver.resolve()
    return {"success": True, "provider": config.provider, "model": config.model,
            "configured": config.is_configured}


@app.get("/health", response_model=HealthCheckResponse)
async def health(request: Request):
    return HealthCheckResponse(**await request.app.state.health.run_all())
