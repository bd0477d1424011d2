"""
Unit tests for the router session lifecycle.

Tests start-up restore, snapshot persistence and logout / account switch
teardown.
"""

import os
import tempfile

import pytest

from insight_router.config.loader import RouterConfig, StorageConfig
from insight_router.core.resolution import RoutePath
from insight_router.core.routing import InsightQuery
from insight_router.core.session import RouterSession


class TestRouterSession:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = RouterConfig(storage=StorageConfig(db_path=os.path.join(self.temp_dir, "router.db")))

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _query(self, user_id="u1"):
        return InsightQuery(user_id=user_id, vendor="Starbucks Coffee #55", amount=4.5)

    @pytest.mark.asyncio
    async def test_learned_patterns_survive_restart(self):
        session = RouterSession.from_config(self.config)
        await session.start("u1")
        await session.engine.learn("Starbucks Coffee", "Dining")
        await session.close()

        restarted = RouterSession.from_config(self.config)
        await restarted.start("u1")

        assert restarted.table.lookup("STARBUCKS COFFEE").category == "Dining"
        result = await restarted.resolve(self._query())
        assert result.source == RoutePath.LOCAL
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_cache_snapshot_survives_restart(self):
        session = RouterSession.from_config(self.config)
        await session.start("u1")
        await session.engine.learn("Starbucks Coffee", "Dining")
        first = await session.resolve(self._query())
        await session.close()

        restarted = RouterSession.from_config(self.config)
        await restarted.start("u1")
        second = await restarted.resolve(self._query())

        assert second == first
        assert restarted.engine.metrics().cache_hits == 1

    @pytest.mark.asyncio
    async def test_logout_clears_per_user_state(self):
        session = RouterSession.from_config(self.config)
        await session.start("u1")
        await session.engine.learn("Starbucks Coffee", "Dining")
        await session.resolve(self._query())
        session.meter.check_and_reserve("u1", 500)

        await session.logout()

        assert len(session.cache) == 0
        assert len(session.outcomes) == 0
        assert session.meter.snapshot("u1").tokens_used == 0
        assert session.user_id is None
        assert session.repository.load_cache_entries() == []
        # Vendor patterns are not user data
        assert "STARBUCKS COFFEE" in session.table

    @pytest.mark.asyncio
    async def test_account_switch_clears_cache(self):
        session = RouterSession(self.config)
        await session.start("u1")
        await session.engine.learn("Starbucks Coffee", "Dining")
        await session.resolve(self._query("u1"))
        assert len(session.cache) == 1

        await session.resolve(self._query("u2"))

        assert session.user_id == "u2"
        assert len(session.cache) == 1
        assert session.meter.snapshot("u1").requests_used == 0

    @pytest.mark.asyncio
    async def test_in_memory_session(self):
        session = RouterSession()
        await session.start()
        result = await session.resolve(self._query())

        assert session.user_id == "u1"
        assert result.degraded is True
        await session.close()

    @pytest.mark.asyncio
    async def test_feedback_through_session(self):
        session = RouterSession()
        await session.start("u1")
        first = await session.resolve(self._query())

        rule = await session.feedback(first.insight_id, first, {"correctCategory": "Dining"})

        assert rule.signature == "STARBUCKS COFFEE"
        assert rule.confidence == 0.75
