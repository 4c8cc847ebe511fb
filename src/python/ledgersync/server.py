"""HTTP endpoints for push sync and statement import."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any
import logging
import sqlite3
import threading

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ledgersync.__version__ import __version__
from ledgersync.applier import BatchApplier
from ledgersync.bulk import BulkChannel, BulkInsertChannel, StoreBulkChannel
from ledgersync.config import Settings
from ledgersync.exceptions import NotFoundError
from ledgersync.importer import preview_import, run_import
from ledgersync.models import ImportLine, ImportSummary
from ledgersync.reconcile import DEFAULT_THRESHOLDS, MatchThresholds
from ledgersync.repository import Repository
from ledgersync.schema import EntityType
from ledgersync.statement import parse_statement

logger = logging.getLogger(__name__)


class ImportLineModel(BaseModel):
    date: str
    description: str
    amount: str | float
    installment_index: int | None = None
    installment_total: int | None = None
    card_last_digits: str = ""
    note: str = ""


class ImportRequest(BaseModel):
    card_id: str
    reference_month: str | None = None
    lines: list[ImportLineModel] | None = None
    text: str | None = None
    dry_run: bool = False


def _import_lines(request: ImportRequest) -> list[ImportLine]:
    try:
        if request.lines is not None:
            return [ImportLine.from_payload(line.model_dump()) for line in request.lines]
        if request.text:
            return parse_statement(request.text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail="lines or text is required")


def summary_payload(summary: ImportSummary, include_items: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "card_id": summary.card_id,
        "total": summary.total,
        "already_recorded": summary.already_recorded,
        "new": summary.new,
        "excluded_by_card_suffix": summary.excluded_by_card_suffix,
        "imported": summary.imported,
        "realigned_reference_month": summary.realigned_reference_month,
        "default_attribution": summary.default_attribution,
    }
    if include_items:
        payload["items"] = [
            {
                **item.line.to_payload(),
                "transaction_key": item.transaction_key,
                "status": item.status,
                "matched_id": item.matched_id,
                "match_kind": item.match_kind,
            }
            for item in summary.items
        ]
    return payload


def create_app(
    store: Repository,
    bulk_channel: BulkChannel | None = None,
    thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
    lifespan=None,
) -> FastAPI:
    """Build the API around an open authoritative store.

    Endpoints run in a threadpool over one shared connection, so every handler
    that opens a store transaction or reads card data holds ``store_lock``.
    """
    app = FastAPI(title="ledgersync", version=__version__, lifespan=lifespan)
    store_lock = threading.Lock()
    applier = BatchApplier(store, bulk_channel, lock=store_lock)
    app.state.applier = applier

    def load_card(card_id: str):
        try:
            return store.get_card(card_id)
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get("/api/sync/health")
    def health() -> JSONResponse:
        try:
            store.ping()
        except (sqlite3.Error, RuntimeError) as exc:
            logger.error("Store health check failed: %s", exc)
            return JSONResponse(status_code=503, content={"ok": False, "message": str(exc)})
        return JSONResponse(content={"ok": True, "version": __version__})

    @app.post("/api/sync/push")
    def push(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        status, body = applier.handle_push(payload)
        return JSONResponse(status_code=status, content=body)

    @app.post("/api/cards/import/preview")
    def import_preview(request: ImportRequest) -> dict[str, Any]:
        with store_lock:
            card = load_card(request.card_id)
            lines = _import_lines(request)
            existing = store.read_card_transactions(card.id)
        summary = preview_import(card, lines, existing, thresholds)
        return summary_payload(summary, include_items=True)

    @app.post("/api/cards/import/run")
    def import_run(request: ImportRequest) -> dict[str, Any]:
        with store_lock:
            card = load_card(request.card_id)
            lines = _import_lines(request)
            existing = store.read_card_transactions(card.id)
            store.begin_transaction()
            try:
                summary = run_import(
                    card,
                    lines,
                    existing,
                    sink=lambda item: store.append_one(
                        EntityType.CARD_TRANSACTION, item.to_payload()
                    ),
                    realign=store.realign_reference_month,
                    reference_month=request.reference_month,
                    dry_run=request.dry_run,
                    thresholds=thresholds,
                )
                store.commit()
            except ValueError as exc:
                store.rollback()
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            except Exception:
                store.rollback()
                raise
        return summary_payload(summary)

    return app


def app_from_settings(settings: Settings) -> FastAPI:
    """Build the API over ``settings.store_db_path``.

    With bulk credentials configured, transaction-only batches go to the remote
    bulk channel, which must front the same backing store as the fallback path.
    """
    if settings.store_db_path is None:
        raise ValueError("store_db_path is required to serve the API")
    store = Repository(settings.store_db_path)
    store.connect()
    if settings.has_bulk_channel:
        channel: BulkChannel = BulkInsertChannel(
            settings.bulk_url, settings.bulk_token, settings.push_timeout_seconds
        )
    else:
        channel = StoreBulkChannel(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    logger.info("Serving store %s", settings.store_db_path)
    return create_app(store, channel, settings.match_thresholds, lifespan=lifespan)
