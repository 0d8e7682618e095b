"""
crm_sync/services/sync_service.py

Builds the sync component graph from settings and runs it on demand.
"""

from __future__ import annotations

import logging
import threading
from functools import lru_cache

import requests

from crm_sync.auth.galaxy_auth import GalaxyAuthenticator
from crm_sync.auth.session_store import SessionStore
from crm_sync.auth.token_cache import TokenCache
from crm_sync.auth.zoho_oauth import ZohoOAuthClient
from crm_sync.config import (
    GalaxySettings,
    HTTPSettings,
    SyncRunSettings,
    ZohoSettings,
    get_galaxy_settings,
    get_http_settings,
    get_scheduler_settings,
    get_sync_run_settings,
    get_zoho_settings,
    validate_settings,
)
from crm_sync.connectors.galaxy import GalaxyConnector
from crm_sync.connectors.zoho_crm import ZohoCrmConnector
from crm_sync.domain.entities import SourceEntity, TargetEntity
from crm_sync.domain.sync_run import RunSummary
from crm_sync.logging_utils import LoggingEventEmitter, SyncEventEmitter
from crm_sync.mappers.accounts import REV_NUMBER, TRADER_ID
from crm_sync.retry import RetryPolicy
from crm_sync.services.batch_upserter import BatchUpserter
from crm_sync.services.relationship_resolver import build_relationship_resolver
from crm_sync.services.sync_orchestrator import SyncOrchestrator
from crm_sync.services.watermark_resolver import WatermarkResolver

logger = logging.getLogger(__name__)

ACCOUNTS = TargetEntity(module="Accounts", dedup_field=TRADER_ID, revision_field=REV_NUMBER)


def customer_entity(settings: GalaxySettings) -> SourceEntity:
    return SourceEntity(
        name="customer",
        path=settings.customers_path,
        id_field="TRDRID",
        revision_field="THIRDPARTYREVNUM",
    )


def affiliate_entity(settings: GalaxySettings) -> SourceEntity:
    return SourceEntity(
        name="affiliate",
        path=settings.affiliates_path,
        id_field="AFFILIATES_TRDRID",
        revision_field="AFFILIATES_REVNUM",
    )


class SyncService:
    """
    Owns one orchestrator and remembers the most recent run summary.
    """

    def __init__(self, *, orchestrator: SyncOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._last_summary: RunSummary | None = None
        self._summary_lock = threading.Lock()

    @property
    def last_summary(self) -> RunSummary | None:
        with self._summary_lock:
            return self._last_summary

    def run_once(
        self,
        *,
        full_resync: bool | None = None,
        watermark_override: int | None = None,
        dev_limit: int | None = None,
    ) -> RunSummary:
        """
        Run one sync and keep its summary.
        """

        logger.info(
            "Sync run starting full_resync=%s watermark_override=%s dev_limit=%s",
            full_resync,
            watermark_override,
            dev_limit,
        )
        summary = self._orchestrator.run(
            full_resync=full_resync,
            watermark_override=watermark_override,
            dev_limit=dev_limit,
        )
        with self._summary_lock:
            self._last_summary = summary
        return summary


def build_sync_service(
    *,
    galaxy: GalaxySettings,
    zoho: ZohoSettings,
    http: HTTPSettings,
    run: SyncRunSettings,
    galaxy_session: requests.Session | None = None,
    zoho_session: requests.Session | None = None,
    emitter: SyncEventEmitter | None = None,
) -> SyncService:
    """
    Wire every component from explicit settings.

    Sessions can be injected so tests can mount an in-process transport.
    """

    emitter = emitter or LoggingEventEmitter(verbose=run.verbose)
    galaxy_session = galaxy_session or requests.Session()
    zoho_session = zoho_session or requests.Session()

    store = SessionStore(galaxy.session_file)
    store.seed_ss_pid(galaxy.ss_pid)

    token_cache = TokenCache(
        token_provider=ZohoOAuthClient(settings=zoho, http_settings=http, session=zoho_session),
        session_authenticator=GalaxyAuthenticator(settings=galaxy, http_settings=http, session=galaxy_session),
        session_store=store,
        refresh_margin_seconds=http.token_refresh_margin_seconds,
    )

    source = GalaxyConnector(
        settings=galaxy,
        http_settings=http,
        token_cache=token_cache,
        session=galaxy_session,
    )
    client = ZohoCrmConnector(
        settings=zoho,
        http_settings=http,
        token_cache=token_cache,
        session=zoho_session,
    )
    upserter = BatchUpserter(
        client=client,
        chunk_size=run.chunk_size,
        max_workers=run.upsert_workers,
        emitter=emitter,
    )
    resolver = build_relationship_resolver(
        run.link_strategy,
        source=source,
        client=client,
        upserter=upserter,
        secondary_entity=affiliate_entity(galaxy),
        target_entity=ACCOUNTS,
        retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=http.retry_backoff_seconds),
        timeout_seconds=http.affiliate_timeout_seconds,
        membership_field=run.membership_field,
        link_workers=run.link_workers,
        emitter=emitter,
    )
    orchestrator = SyncOrchestrator(
        token_cache=token_cache,
        source=source,
        watermark_resolver=WatermarkResolver(client=client),
        resolver=resolver,
        upserter=upserter,
        primary_source_entity=customer_entity(galaxy),
        primary_target_entity=ACCOUNTS,
        run_settings=run,
        emitter=emitter,
    )
    logger.info(
        "Sync service ready source=%s zoho_dc=%s strategy=%s chunk_size=%d",
        galaxy.base_url,
        zoho.dc,
        run.link_strategy,
        upserter.chunk_size,
    )
    return SyncService(orchestrator=orchestrator)


@lru_cache(maxsize=1)
def get_sync_service() -> SyncService:
    """
    Validate settings, then build and cache the sync service.
    """

    galaxy = get_galaxy_settings()
    zoho = get_zoho_settings()
    run = get_sync_run_settings()
    validate_settings(galaxy=galaxy, zoho=zoho, run=run, scheduler=get_scheduler_settings())
    return build_sync_service(galaxy=galaxy, zoho=zoho, http=get_http_settings(), run=run)
