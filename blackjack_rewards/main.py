import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from blackjack_rewards.core.config import Settings, get_settings
from blackjack_rewards.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from blackjack_rewards.core.logging import bind_request_id, configure_logging, get_logger
from blackjack_rewards.core.security import SessionTokenIssuer
from blackjack_rewards.db.init import init_db
from blackjack_rewards.routers import admin, auth, currency
from blackjack_rewards.services.identity import CredentialVerifier, FirebaseIdentityProvider, IdentityProvider
from blackjack_rewards.services.mailer import Mailer, SmtpMailer

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Blackjack Rewards API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(currency.router, prefix="/api", tags=["currency"])
app.include_router(admin.router, prefix="/api", tags=["admin"])


def install_services(
    target: FastAPI,
    cfg: Settings,
    identity_provider: IdentityProvider | None = None,
    mailer: Mailer | None = None,
) -> None:
    """Create the service singletons handlers receive through ``deps``."""
    provider = identity_provider or FirebaseIdentityProvider.from_settings(cfg)
    issuer = SessionTokenIssuer.from_settings(cfg)
    target.state.identity_provider = provider
    target.state.token_issuer = issuer
    target.state.credential_verifier = CredentialVerifier(
        provider,
        issuer,
        attempts=cfg.provider_verify_attempts,
        timeout=cfg.provider_verify_timeout,
    )
    target.state.mailer = mailer or SmtpMailer.from_settings(cfg)


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    await init_db()
    log.info("startup", msg="DB connected")
    install_services(app, settings)
    provider_status = app.state.identity_provider.status
    if provider_status != "ok":
        log.warning("startup", msg="Identity provider unavailable", identity_provider=provider_status)


@app.on_event("shutdown")
async def shutdown():
    mailer = getattr(app.state, "mailer", None)
    if mailer is not None:
        await mailer.close()


@app.get("/health")
async def health():
    """Health check for load balancers; reports a degraded identity provider."""
    provider = getattr(app.state, "identity_provider", None)
    provider_status = provider.status if provider is not None else "unconfigured"
    return {
        "status": "ok" if provider_status == "ok" else "degraded",
        "identityProvider": provider_status,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
