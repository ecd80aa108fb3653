"""
The process-wide session: owns every store and collaborator.

Nothing in the package keeps module-level mutable state. The session is
built once from Settings (or from explicit parts in tests) and handed by
reference to whatever needs it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .agents import AgentBroker, AgentDirectory
from .config import Settings
from .ledger import LedgerRecorder
from .openserv import OpenServClient
from .pipeline import VerificationPipeline
from .recognition import RecognitionExtractor
from .stores import AccountStore, VerificationRecordStore
from .ton import TonWallet, ToncenterClient

logger = logging.getLogger(__name__)


class OracleSession:
    """Owns the four in-memory stores and the services built on them."""

    def __init__(
        self,
        *,
        workspace_id: int,
        records: VerificationRecordStore,
        accounts: AccountStore,
        directory: AgentDirectory,
        broker: AgentBroker,
        recorder: LedgerRecorder,
        pipeline: VerificationPipeline,
        mnemonic: str | None = None,
        resources: tuple[Any, ...] = (),
    ):
        self.workspace_id = workspace_id
        self.records = records
        self.accounts = accounts
        self.directory = directory
        self.broker = broker
        self.recorder = recorder
        self.pipeline = pipeline
        self._mnemonic = mnemonic
        self._resources = resources

    @classmethod
    def from_settings(cls, settings: Settings) -> OracleSession:
        records = VerificationRecordStore()
        accounts = AccountStore()

        openserv = OpenServClient(settings.openserv_api_key, base_url=settings.openserv_api_url)
        directory = AgentDirectory(
            openserv, settings.workspace_id, settings.agent_id, ttl=settings.agent_cache_ttl
        )
        broker = AgentBroker(
            openserv,
            directory,
            settings.workspace_id,
            poll_interval=settings.agent_poll_interval,
            timeout=settings.agent_response_timeout,
            recency_buffer=settings.agent_recency_buffer,
            fallback_window=settings.agent_fallback_window,
        )

        resources: tuple[Any, ...] = (openserv,)
        ledger_client = None
        if settings.ledger_configured:
            ledger_client = ToncenterClient(settings.ton_api_url, api_key=settings.ton_api_key)
            resources += (ledger_client,)

        recorder = LedgerRecorder(
            ledger_client,
            receiver_address=settings.ledger_receiver_address,
            transfer_value=settings.ledger_transfer_value,
            confirm_timeout=settings.ledger_confirm_timeout,
            poll_interval=settings.ledger_poll_interval,
        )
        extractor = RecognitionExtractor(
            language=settings.ocr_language, min_width=settings.ocr_min_width
        )
        pipeline = VerificationPipeline(
            extractor,
            recorder,
            records,
            accounts,
            require_ledger_confirmation=settings.require_ledger_confirmation,
        )

        return cls(
            workspace_id=settings.workspace_id,
            records=records,
            accounts=accounts,
            directory=directory,
            broker=broker,
            recorder=recorder,
            pipeline=pipeline,
            mnemonic=settings.ton_mnemonic,
            resources=resources,
        )

    async def start(self) -> None:
        """Derive the wallet (if configured) and warm the agent cache."""
        if self._mnemonic and self.recorder.client is not None:
            try:
                self.recorder.wallet = await asyncio.to_thread(TonWallet.from_mnemonic, self._mnemonic)
            except Exception as e:
                logger.error("TON wallet initialisation failed, continuing in demo mode: %s", e)
        else:
            logger.info("No TON mnemonic provided — ledger recording in demo mode")

        agents = await self.directory.list_agents()
        logger.info(
            "Session ready: %d agents, current agent %s, ledger %s",
            len(agents),
            await self.directory.agent_name(),
            "active" if self.recorder.configured else "demo mode",
        )

    async def aclose(self) -> None:
        for resource in self._resources:
            await resource.aclose()
