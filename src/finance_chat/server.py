"""FastAPI application exposing accounts, memory, chat history and the chat pipeline."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .auth import CredentialStore, GoogleIdentityVerifier, IdentityVerifier, Session, SessionSigner
from .config import default_api_key, load_config, signing_secret
from .db import Database
from .errors import ConfigurationMissing, FinanceChatError, Forbidden
from .generators import (
    BudgetPlan,
    ConceptExplanation,
    ExpenseReport,
    GoalStrategy,
    StructuredPlanner,
)
from .history import ConversationLog
from .llm import ChatClient, GenerationConfig, create_from_config
from .memory import MemoryStore
from .orchestrator import ConversationOrchestrator
from .prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class SignupRequest(BaseModel):
    name: str = Field(default="", max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class GoogleLoginRequest(BaseModel):
    token: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    auth: bool = True
    token: str
    user: Dict[str, Any]


class MemoryCreate(BaseModel):
    category: Optional[str] = None
    content: str = Field(..., min_length=1)


class MessageCreate(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class HistoryItem(BaseModel):
    role: str
    content: str


class TurnRequest(BaseModel):
    message: str = Field(..., min_length=1)
    # Optional working set; the stored log is used when omitted.
    history: Optional[List[HistoryItem]] = None


class TurnResponse(BaseModel):
    reply: str
    memory: Optional[Dict[str, Any]] = None


class BudgetRequest(BaseModel):
    income: float = Field(..., ge=0)
    fixed_costs: float = Field(..., ge=0)
    goals: str = ""


class GoalRequest(BaseModel):
    name: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    years: float = Field(..., gt=0)
    risk: str = Field(default="Medium")


class ExpenseRequest(BaseModel):
    csv: str = Field(..., min_length=1)


class ExplainRequest(BaseModel):
    term: str = Field(..., min_length=1)


# -----------------------------
# Utilities
# -----------------------------
def _get_system_prompt(cfg: Dict[str, Any]) -> str:
    sys_prompt = cfg.get("assistant", {}).get("system_prompt") or SYSTEM_PROMPT
    return str(sys_prompt).strip()


def _make_database(cfg: Dict[str, Any]) -> Database:
    db = Database(cfg.get("database", {}).get("path") or ":memory:")
    db.init_db()
    return db


def _make_verifier(cfg: Dict[str, Any]) -> Optional[IdentityVerifier]:
    client_id = cfg.get("auth", {}).get("google_client_id")
    return GoogleIdentityVerifier(str(client_id)) if client_id else None


def _auth_payload(session: Session, credentials: CredentialStore) -> AuthResponse:
    user = credentials.get_user(session.user_id)
    return AuthResponse(token=session.token, user=user.to_public())


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    *,
    database: Optional[Database] = None,
    client: Optional[ChatClient] = None,
    verifier: Optional[IdentityVerifier] = None,
    cfg: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    cfg = cfg if cfg is not None else load_config(config_path)
    auth_cfg = cfg.get("auth", {})
    assistant_cfg = cfg.get("assistant", {})

    # Services
    db = database or _make_database(cfg)
    signer = SessionSigner(
        signing_secret(cfg),
        ttl=timedelta(hours=float(auth_cfg.get("token_ttl_hours", 24))),
    )
    credentials = CredentialStore(db, signer, bcrypt_rounds=int(auth_cfg.get("bcrypt_rounds", 8)))
    memory = MemoryStore(db)
    history = ConversationLog(db)
    client = client or create_from_config(cfg)
    verifier = verifier or _make_verifier(cfg)
    fallback_key = default_api_key(cfg)

    orchestrator = ConversationOrchestrator(
        memory,
        history,
        client,
        persona=_get_system_prompt(cfg),
        chat_config=GenerationConfig(
            temperature=float(assistant_cfg.get("chat_temperature", 0.7)),
            max_tokens=int(cfg.get("llm", {}).get("max_tokens", 1024)),
        ),
    )
    planner = StructuredPlanner(client)

    app = FastAPI(title="Finance Chat Server", version="0.1.0")
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FinanceChatError)
    def _handle_domain_error(request: Request, exc: FinanceChatError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=422, content={"error": problems or "Invalid request"})

    # --------- dependencies ----------
    def current_user(authorization: Optional[str] = Header(default=None)) -> int:
        """Resolve the bearer session to a user id before any owner-scoped access."""
        if not authorization:
            raise Forbidden("No token provided")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer":
            token = ""
        return signer.verify(token.strip())

    def model_key(x_model_api_key: Optional[str] = Header(default=None)) -> Optional[str]:
        return (x_model_api_key or "").strip() or fallback_key

    # --------- health ----------
    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "database": db.path,
            "model": client.model,
            "federated_login": verifier is not None,
        }

    # --------- auth ----------
    @app.post("/api/auth/signup", response_model=AuthResponse)
    def signup(req: SignupRequest):
        user = credentials.register(req.name, req.email, req.password)
        return AuthResponse(token=signer.issue(user.id).token, user=user.to_public())

    @app.post("/api/auth/login", response_model=AuthResponse)
    def login(req: LoginRequest):
        return _auth_payload(credentials.authenticate(req.email, req.password), credentials)

    @app.post("/api/auth/google", response_model=AuthResponse)
    def google_login(req: GoogleLoginRequest):
        if verifier is None:
            raise ConfigurationMissing("Google Auth is not configured on the server")
        return _auth_payload(credentials.federated_login(req.token, verifier), credentials)

    @app.get("/api/auth/me")
    def me(user_id: int = Depends(current_user)) -> Dict[str, Any]:
        return credentials.get_user(user_id).to_public()

    # --------- memory ----------
    @app.get("/api/memory")
    def list_memory(user_id: int = Depends(current_user)) -> List[Dict[str, Any]]:
        return [f.to_dict() for f in memory.list(user_id)]

    @app.post("/api/memory")
    def add_memory(req: MemoryCreate, user_id: int = Depends(current_user)) -> Dict[str, Any]:
        return memory.add(user_id, req.content, category=req.category).to_dict()

    @app.delete("/api/memory/{fact_id}")
    def delete_memory(fact_id: int, user_id: int = Depends(current_user)) -> Dict[str, Any]:
        memory.remove(user_id, fact_id)
        return {"message": "Memory deleted"}

    @app.delete("/api/memory")
    def clear_memory(user_id: int = Depends(current_user)) -> Dict[str, Any]:
        return {"message": "All memories cleared", "removed": memory.clear(user_id)}

    # --------- chat history ----------
    @app.get("/api/chat")
    def list_chat(user_id: int = Depends(current_user)) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in history.list(user_id)]

    @app.post("/api/chat")
    def append_chat(req: MessageCreate, user_id: int = Depends(current_user)) -> Dict[str, Any]:
        return history.append(user_id, req.role, req.content).to_dict()

    @app.delete("/api/chat")
    def clear_chat(user_id: int = Depends(current_user)) -> Dict[str, Any]:
        return {"message": "Chat history cleared", "removed": history.clear(user_id)}

    @app.get("/api/chat/export", response_class=PlainTextResponse)
    def export_chat(user_id: int = Depends(current_user)) -> str:
        return history.export_text(user_id)

    # --------- conversation ----------
    @app.post("/api/chat/turn", response_model=TurnResponse)
    def chat_turn(
        req: TurnRequest,
        user_id: int = Depends(current_user),
        api_key: Optional[str] = Depends(model_key),
    ):
        prior = [h.model_dump() for h in req.history] if req.history is not None else None
        result = orchestrator.run_turn(user_id, req.message, api_key=api_key, prior=prior)
        return TurnResponse(reply=result.reply, memory=result.fact.to_dict() if result.fact else None)

    # --------- structured planners ----------
    @app.post("/api/budget", response_model=BudgetPlan)
    def budget(
        req: BudgetRequest,
        user_id: int = Depends(current_user),
        api_key: Optional[str] = Depends(model_key),
    ):
        return planner.budget_plan(req.income, req.fixed_costs, req.goals, api_key=api_key)

    @app.post("/api/goal", response_model=GoalStrategy)
    def goal(
        req: GoalRequest,
        user_id: int = Depends(current_user),
        api_key: Optional[str] = Depends(model_key),
    ):
        return planner.goal_strategy(req.name, req.amount, req.years, req.risk, api_key=api_key)

    @app.post("/api/expenses", response_model=ExpenseReport)
    def expenses(
        req: ExpenseRequest,
        user_id: int = Depends(current_user),
        api_key: Optional[str] = Depends(model_key),
    ):
        return planner.analyze_expenses(req.csv, api_key=api_key)

    @app.post("/api/explain", response_model=ConceptExplanation)
    def explain(
        req: ExplainRequest,
        user_id: int = Depends(current_user),
        api_key: Optional[str] = Depends(model_key),
    ):
        return planner.explain_concept(req.term, api_key=api_key)

    return app
