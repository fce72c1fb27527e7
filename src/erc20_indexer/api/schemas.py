"""
Pydantic models for the query API responses.

Field aliases carry the camelCase names the HTTP clients expect.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TransferItem(_ApiModel):
    """One indexed Transfer event"""
    tx_hash: str = Field(..., alias="txHash", description="Transaction hash")
    block_number: int = Field(..., alias="blockNumber", description="Block containing the event")
    timestamp: int = Field(..., description="Block timestamp (Unix seconds)")
    from_address: str = Field(..., alias="from", description="Sender address (lowercase)")
    to_address: str = Field(..., alias="to", description="Recipient address (lowercase)")
    value: str = Field(..., description="Raw token amount as an exact decimal string")
    value_formatted: str = Field(..., alias="valueFormatted", description="Amount scaled by token decimals")


class TransfersResponse(_ApiModel):
    """Transfers involving one address, newest block first"""
    address: str = Field(..., description="Queried address as given")
    total: int = Field(..., description="Number of records returned")
    data: list[TransferItem] = Field(default_factory=list, description="Matching transfers")


class IngestionStatus(_ApiModel):
    """Snapshot of the background ingestion worker"""
    state: str = Field(..., description="Worker state")
    last_error: str | None = Field(None, alias="lastError", description="Most recent scan error")
    last_scan_at: datetime | None = Field(None, alias="lastScanAt", description="When the last scan ended")
    scans_completed: int = Field(0, alias="scansCompleted", description="Scans that reached the head")
    scans_failed: int = Field(0, alias="scansFailed", description="Scans aborted by an error")
    ticks_skipped: int = Field(0, alias="ticksSkipped", description="Ticks skipped while a scan was running")


class IndexingStatusResponse(_ApiModel):
    """Ingestion progress"""
    last_indexed_block: int | None = Field(
        None, alias="lastIndexedBlock", description="Highest fully indexed block, null before the first chunk"
    )
    contract_address: str | None = Field(
        None, alias="contractAddress", description="Observed contract, null when not configured"
    )
    configured: bool = Field(..., description="Whether the RPC endpoint and contract are configured")
    ingestion: IngestionStatus | None = Field(None, description="Worker status, null when no worker runs")


class HealthResponse(BaseModel):
    status: str = Field("ok", description="Liveness indicator")
