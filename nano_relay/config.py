"""
Configuration management for the relay.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .blocks import BlockBuilder
from .codec import MessageCodec
from .journal import RelayJournal
from .ledger import DEFAULT_REPRESENTATIVE, LedgerClient
from .relay import RelayOrchestrator, SettlementPolicy
from .work import DEFAULT_DIFFICULTY, RemoteWorkProvider


class Settings(BaseSettings):
    """
    Environment-based settings.

    Every field can be overridden with a RELAY_-prefixed environment
    variable, e.g. RELAY_NODE_URL.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Node RPC
    node_url: str = Field(default="http://127.0.0.1:7076", description="Node JSON RPC URL")
    request_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    default_representative: str = Field(
        default=DEFAULT_REPRESENTATIVE,
        description="Representative for accounts that have none",
    )
    address_prefix: str = Field(default="nano_", description="Prefix for derived addresses")

    # Work server
    work_url: str = Field(default="http://127.0.0.1:7000", description="Work server URL")
    work_difficulty: str = Field(default=DEFAULT_DIFFICULTY, description="Minimum work difficulty")
    work_timeout: float = Field(default=120.0, description="Work generation timeout in seconds")

    # Settlement polling
    settlement_delay_seconds: float = Field(default=5.0, description="Wait before the first poll")
    poll_attempts: int = Field(default=6, description="Maximum receivable polls per step")
    poll_backoff_factor: float = Field(default=2.0, description="Delay multiplier between polls")
    max_poll_delay_seconds: float = Field(default=30.0, description="Upper bound for one delay")
    max_settlement_wait_seconds: float = Field(default=120.0, description="Total wait budget per step")

    # Provenance lookups
    history_limit: int = Field(default=50, description="History entries scanned by reveal")

    # Journal
    journal_url: str = Field(default="sqlite:///./relay.db", description="SQLAlchemy database URL")

    def settlement_policy(self) -> SettlementPolicy:
        return SettlementPolicy(
            initial_delay=self.settlement_delay_seconds,
            max_attempts=self.poll_attempts,
            backoff_factor=self.poll_backoff_factor,
            max_delay=self.max_poll_delay_seconds,
            max_wait=self.max_settlement_wait_seconds,
        )


@dataclass
class RelayConfig:
    """Full relay configuration."""

    settings: Settings

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls(settings=settings)

    def create_ledger(self) -> LedgerClient:
        return LedgerClient(
            url=self.settings.node_url,
            timeout=self.settings.request_timeout,
            default_representative=self.settings.default_representative,
        )

    def create_codec(self, ledger: Optional[LedgerClient] = None) -> MessageCodec:
        return MessageCodec(ledger or self.create_ledger(), self.settings.history_limit)

    def create_journal(self) -> RelayJournal:
        return RelayJournal(self.settings.journal_url)

    def create_orchestrator(self, with_journal: bool = True) -> RelayOrchestrator:
        """Wire ledger, work server, builder, codec and journal together."""
        settings = self.settings
        ledger = self.create_ledger()
        work = RemoteWorkProvider(
            url=settings.work_url,
            difficulty=settings.work_difficulty,
            timeout=settings.work_timeout,
        )
        return RelayOrchestrator(
            ledger=ledger,
            builder=BlockBuilder(work),
            codec=self.create_codec(ledger),
            policy=settings.settlement_policy(),
            journal=self.create_journal() if with_journal else None,
            address_prefix=settings.address_prefix,
            history_limit=settings.history_limit,
        )
