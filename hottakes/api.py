"""FastAPI surface for the hot takes service.

Every route answers CORS preflight and carries permissive cross-origin
headers. Errors are returned as `{"error": "..."}`; `create-connection`
reports every failure as a 400.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .broker import MatchBroker
from .config import Settings, load_settings
from .conversation import ConversationChannel
from .data_models import (
    ClaimPostRequest,
    CreateConnectionRequest,
    CreateConnectionResponse,
    SendMessageRequest,
    SubmitPostRequest,
)
from .embedding import EmbeddingOracle, OpenAIEmbeddingOracle
from .errors import HotTakesError
from .matcher import Matcher
from .pipeline import SubmissionPipeline
from .storage import SecretStore

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
}

# Maps a bearer token to a user id (None when the token is not accepted).
IdentityResolver = Callable[[str], Optional[str]]


def bearer_token_identity(token: str) -> Optional[str]:
    """Default resolver: the token is the opaque user id.

    Suitable when an authenticating gateway in front of the service forwards
    the verified user id as the bearer token.
    """
    return token or None


def caller_identity(request: Request, resolver: IdentityResolver) -> Optional[str]:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return resolver(token.strip())


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SecretStore] = None,
    oracle: Optional[EmbeddingOracle] = None,
    matcher: Optional[Matcher] = None,
    identity_resolver: IdentityResolver = bearer_token_identity,
) -> FastAPI:
    """Wire the store, oracle and services into a FastAPI app."""
    settings = settings or load_settings()
    if store is None:
        store = SecretStore(settings.database_url)
        store.init_db()
    if oracle is None:
        oracle = OpenAIEmbeddingOracle(model=settings.embedding_model, api_key=settings.openai_api_key)

    pipeline = SubmissionPipeline(store, oracle, matcher=matcher, top_k=settings.top_k)
    broker = MatchBroker(store)
    channel = ConversationChannel(store)

    app = FastAPI(title="hottakes", version="0.1.0")
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.broker = broker
    app.state.channel = channel

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(HotTakesError)
    async def handle_error(request: Request, exc: HotTakesError) -> JSONResponse:
        return _error(exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_bad_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected request body: %s", exc.errors())
        return _error("Invalid request body", 400)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        # runs outside the CORS middleware
        response = _error("Internal server error", 500)
        response.headers.update(CORS_HEADERS)
        return response

    def caller(request: Request) -> Optional[str]:
        return caller_identity(request, identity_resolver)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/submit-post")
    def submit_post(body: SubmitPostRequest) -> JSONResponse:
        result = pipeline.submit(body.text, owner_id=body.owner_id)
        return JSONResponse(result.model_dump(mode="json"))

    @app.post("/create-connection")
    def create_connection(body: CreateConnectionRequest, request: Request) -> JSONResponse:
        try:
            result = broker.connect(caller(request), body.caller_post_id, body.target_post_id)
        except HotTakesError as exc:
            logger.error("Error in create-connection: %s", exc)
            return _error(exc.message, 400)
        payload = CreateConnectionResponse(connection_id=result.connection.id, message=result.message)
        return JSONResponse(payload.model_dump(mode="json"))

    @app.post("/claim-post")
    def claim_post(body: ClaimPostRequest, request: Request) -> JSONResponse:
        post = broker.claim_post(caller(request), body.post_id)
        return JSONResponse({"post": post.model_dump(mode="json")})

    @app.get("/posts")
    def list_posts(request: Request) -> JSONResponse:
        posts = broker.list_posts(caller(request))
        return JSONResponse({"posts": [p.model_dump(mode="json") for p in posts]})

    @app.delete("/posts/{post_id}")
    def delete_post(post_id: str, request: Request) -> JSONResponse:
        broker.delete_post(caller(request), post_id)
        return JSONResponse({"success": True})

    @app.get("/connections")
    def list_connections(request: Request) -> JSONResponse:
        connections = channel.list_connections(caller(request))
        return JSONResponse({"connections": [c.model_dump(mode="json") for c in connections]})

    @app.get("/connections/{connection_id}/messages")
    def list_messages(connection_id: str, request: Request) -> JSONResponse:
        messages = channel.list_messages(connection_id, caller(request))
        return JSONResponse({"messages": [m.model_dump(mode="json") for m in messages]})

    @app.post("/connections/{connection_id}/messages")
    def send_message(connection_id: str, body: SendMessageRequest, request: Request) -> JSONResponse:
        message = channel.send_message(connection_id, caller(request), body.content)
        return JSONResponse({"message": message.model_dump(mode="json")}, status_code=201)

    return app


def run_app(app: FastAPI, settings: Settings) -> None:
    """Serve one app through uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
