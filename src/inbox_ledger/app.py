import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from inbox_ledger.api.routes import sync, transactions
from inbox_ledger.core import settings
from inbox_ledger.extractors.llm import LLMExtractor
from inbox_ledger.integration.gmail import GmailClient
from inbox_ledger.logger import get_logger, setup_logging
from inbox_ledger.services.batch import BatchExtractor
from inbox_ledger.services.fetcher import MessageFetcher
from inbox_ledger.services.normalizer import Normalizer
from inbox_ledger.services.sync import SyncService
from inbox_ledger.storage.database import Store
from inbox_ledger.storage.repository import LedgerRepository

logger = get_logger(__name__)


def build_sync_service(
    fetcher: MessageFetcher,
    repository: LedgerRepository,
    config: settings.PipelineSettings,
) -> SyncService | None:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.warning("OPENAI_API_KEY not found. Sync is disabled.")
        return None

    model = settings.get_env_str("OPENAI_MODEL", settings.DEFAULT_OPENAI_MODEL)
    base_url = os.getenv("OPENAI_BASE_URL")
    extractor = LLMExtractor(
        api_key=api_key,
        model=model,
        base_url=base_url,
        default_currency=config.default_currency,
    )
    logger.info("Extraction service enabled: model=%s, base_url=%s", model, base_url or "default")
    return SyncService(
        fetcher=fetcher,
        batch=BatchExtractor(extractor, Normalizer(config), config),
        repository=repository,
    )


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        config = settings.PipelineSettings.from_env()
        store = Store(settings.DATABASE_URL)
        store.create_schema()
        repository = LedgerRepository(store)
        gmail = GmailClient()
        fetcher = MessageFetcher(gmail, config)

        app.state.repository = repository
        app.state.gmail = gmail
        app.state.fetcher = fetcher
        app.state.sync_service = build_sync_service(fetcher, repository, config)

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await gmail.aclose()
        store.dispose()

    app = FastAPI(title="Inbox Ledger", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(sync.router)
    app.include_router(transactions.router)

    return app


app = create_app()
