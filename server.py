import html
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from avatar_agent.container import AppContainer, build_container
from avatar_agent.dto import (
    ConnectionEstablishedEvent,
    MessageReceivedEvent,
    PresentationCallback,
    PresentationRequestBody,
    SessionStartBody,
)
from avatar_agent.errors import (
    AvatarAgentError,
    ExternalServiceError,
    NotConfigured,
    NotFound,
    OwnershipViolation,
    ValidationError,
)

logger = logging.getLogger("avatar_agent")

SERVICE_NAME = "avatar-agent"

ERROR_STATUS = {
    ValidationError: 400,
    OwnershipViolation: 403,
    NotFound: 404,
    ExternalServiceError: 502,
    NotConfigured: 503,
}

ERROR_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{TITLE} - Live Avatar</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
           background: #1a1a2e; color: #fff; min-height: 100vh; margin: 0;
           display: flex; align-items: center; justify-content: center; }}
    .container {{ max-width: 500px; padding: 40px; text-align: center;
                 border: 1px solid rgba(255, 255, 255, 0.2); border-radius: 20px; }}
    p {{ color: rgba(255, 255, 255, 0.8); line-height: 1.6; }}
  </style>
</head>
<body>
  <div class="container">
    <h1>{TITLE}</h1>
    <p>{MESSAGE}</p>
  </div>
</body>
</html>"""


def render_error_page(title: str, message: str, status_code: int = 500) -> HTMLResponse:
    body = ERROR_PAGE.format(TITLE=html.escape(title), MESSAGE=html.escape(message))
    return HTMLResponse(body, status_code=status_code)


def _status_for(error: AvatarAgentError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            app.state.container = build_container()
        app.state.container.startup()
        logger.info(
            f"Avatar agent up: public={app.state.container.config.PUBLIC_URL} "
            f"vs_agent={app.state.container.config.VS_AGENT_URL} "
            f"liveavatar={'configured' if app.state.container.streaming.is_configured() else 'not configured'}"
        )
        yield
        app.state.container.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
        logger.warning(f"{request.method} {request.url.path} rejected: {errors}")
        return JSONResponse(status_code=400, content={"error": "Invalid payload", "detail": errors})

    @app.exception_handler(AvatarAgentError)
    async def avatar_agent_error_handler(request: Request, exc: AvatarAgentError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=_status_for(exc), content={"error": exc.user_message()})

    def _container(request: Request) -> AppContainer:
        return request.app.state.container

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/message-received")
    def message_received(event: MessageReceivedEvent, request: Request):
        return _container(request).router.handle_message_received(event.model_dump())

    @app.post("/connection-established")
    def connection_established(event: ConnectionEstablishedEvent, request: Request):
        return _container(request).router.handle_connection_established(event.model_dump())

    @app.post("/api/presentation")
    def create_presentation(body: PresentationRequestBody, request: Request):
        container = _container(request)
        config = container.configs.find_by_id(body.avatarConfigId)
        if config is None:
            raise HTTPException(status_code=404, detail="Avatar configuration not found")
        return container.coordinator.create_presentation_request(config.id, body.connectionId)

    @app.post("/api/presentation/callback")
    def presentation_callback(body: PresentationCallback, request: Request):
        return _container(request).router.handle_presentation_callback(body.model_dump())

    @app.post("/api/session")
    def create_session(request: Request):
        streaming = _container(request).streaming
        if not streaming.is_configured():
            return JSONResponse(
                status_code=500,
                content={"error": "LiveAvatar not configured. Please set API credentials."},
            )
        token = streaming.create_default_session()
        return {"sessionId": token.session_id, "sessionToken": token.session_token}

    @app.post("/api/session/start")
    def start_session(body: SessionStartBody, request: Request):
        if not body.sessionToken:
            return JSONResponse(status_code=400, content={"error": "sessionToken is required"})
        credentials = _container(request).streaming.start_session(body.sessionToken)
        return {"livekitUrl": credentials.livekit_url, "livekitToken": credentials.livekit_token}

    @app.get("/avatar")
    def avatar_page(request: Request, session: Optional[str] = None):
        container = _container(request)
        streaming = container.streaming

        if not streaming.is_configured() or (not session and not container.config.liveavatar_defaults_configured()):
            return render_error_page("Configuration Error", "LiveAvatar not configured. Please set API credentials.")

        try:
            token = session or streaming.create_default_session().session_token
            credentials = streaming.start_session(token)
        except AvatarAgentError as e:
            detail = e.detail if isinstance(e, ExternalServiceError) else e.user_message()
            logger.error(f"Error creating avatar session: {detail}")
            if "Insufficient credits" in detail:
                return render_error_page(
                    "Credits Exhausted",
                    "The LiveAvatar API has run out of credits. Please contact the administrator.",
                    status_code=503,
                )
            return render_error_page("Session Error", f"Unable to start avatar session: {detail}")

        return RedirectResponse(credentials.meet_url(), status_code=302)

    @app.get("/invitation")
    def invitation(request: Request):
        try:
            url = _container(request).gateway.get_invitation_url()
        except ExternalServiceError as e:
            logger.error(f"Error fetching invitation: {e}")
            return PlainTextResponse(f"Error fetching invitation: {e.detail}", status_code=500)
        if not url:
            return PlainTextResponse("Failed to get invitation URL", status_code=500)
        return RedirectResponse(url, status_code=302)

    @app.get("/api/invitation")
    def api_invitation(request: Request):
        return _container(request).gateway.get_invitation()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from avatar_agent.app_config import AppConfig

    uvicorn.run(app, host="0.0.0.0", port=AppConfig().PORT)
