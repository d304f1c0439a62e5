"""ytangent FastAPI application."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ytangent.conversations.router import get_chat_service
from ytangent.conversations.router import router as conversations_router
from ytangent.conversations.service import DEFAULT_MODEL, ChatService
from ytangent.db.connection import DEFAULT_DB_PATH, Database
from ytangent.documents.provider import SearchDocumentsClient
from ytangent.providers.anthropic import AnthropicProvider
from ytangent.providers.gateway import GatewayProvider
from ytangent.providers.openai import OpenAIProvider
from ytangent.providers.openrouter import OpenRouterProvider
from ytangent.providers.registry import clear_providers, get_all_providers, register_provider

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Each builds itself from env vars, or returns None when unconfigured.
PROVIDER_CLASSES = (OpenAIProvider, AnthropicProvider, OpenRouterProvider, GatewayProvider)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Secrets live in backend/.env, not the shell profile.
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    db = await Database.connect(os.environ.get("YTANGENT_DB_PATH", DEFAULT_DB_PATH))

    for provider_cls in PROVIDER_CLASSES:
        provider = provider_cls.from_env()
        if provider is not None:
            register_provider(provider)

    documents = SearchDocumentsClient.from_env()
    service = ChatService(
        db,
        documents=documents,
        default_model=os.environ.get("YTANGENT_DEFAULT_MODEL", DEFAULT_MODEL),
    )
    app.dependency_overrides[get_chat_service] = lambda: service
    logger.info(
        "ytangent started with providers: %s; document search %s",
        ", ".join(p.name for p in get_all_providers()) or "(none)",
        "on" if documents is not None else "off",
    )

    yield

    for provider in get_all_providers():
        await provider.close()
    clear_providers()
    if documents is not None:
        await documents.close()
    await db.close()


app = FastAPI(
    title="ytangent",
    description="Branching chat with forkable turns and nested tangent threads",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:8080"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Node-Id", "X-Tangent-Id"],
)

app.include_router(conversations_router)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": VERSION}


@app.get("/api/providers")
async def providers() -> list[dict]:
    return [
        {"name": p.name, "models": p.suggested_models} for p in get_all_providers()
    ]
