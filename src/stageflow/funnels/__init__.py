"""Funnel data layer -- schemas, persistence models, and store implementations.

Provides Pydantic schemas (Stage, Opportunity, StageHistoryEntry, webhook
payloads), SQLAlchemy models, the StageStore/HistorySink/EntityEventNotifier
interfaces the engine consumes, and FunnelRepository/StageHistoryRepository
for async CRUD.
"""
