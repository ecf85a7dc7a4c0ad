"""Persistence of the Top Picks ranking configuration."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import TopPicksConfigRecord
from ..models import TopPicksConfig

logger = logging.getLogger(__name__)

CONFIG_ROW_ID = 1


class TopPicksConfigStore:
    """Loads and saves the single ``top_picks_config`` row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self) -> TopPicksConfig:
        """Return the stored configuration, or the defaults when none is saved.

        Columns left ``NULL`` by older rows fall back to the model defaults.
        """

        async with self._session_factory() as session:
            record = await session.get(TopPicksConfigRecord, CONFIG_ROW_ID)
        if record is None:
            return TopPicksConfig()

        payload = {}
        for name in TopPicksConfig.model_fields:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        return TopPicksConfig.model_validate(payload)

    async def save(self, config: TopPicksConfig) -> TopPicksConfig:
        """Upsert ``config`` as the stored configuration."""

        values = config.model_dump()
        values["movies_languages"] = list(config.movies_languages)
        values["series_languages"] = list(config.series_languages)

        async with self._session_factory() as session:
            record = await session.get(TopPicksConfigRecord, CONFIG_ROW_ID)
            if record is None:
                record = TopPicksConfigRecord(id=CONFIG_ROW_ID)
                session.add(record)
            for name, value in values.items():
                setattr(record, name, value)
            record.updated_at = datetime.utcnow()
            await session.commit()

        logger.info(
            "Saved Top Picks config (movies=%s, series=%s)",
            config.movies_popularity_source,
            config.series_popularity_source,
        )
        return config
