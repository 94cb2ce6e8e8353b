"""Background task that keeps stored page tokens from expiring"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Callable, ContextManager, Optional

from igbridge.core.config import settings
from igbridge.core.metrics import scheduler_runs_counter
from igbridge.db.repositories import CredentialRepository
from igbridge.db.session import session_scope
from igbridge.db.sql_repositories import SqlCredentialRepository
from igbridge.services.graph_client import InstagramGraphClient
from igbridge.services.token_service import RefreshReport, Sleep, TokenRefresher

logger = logging.getLogger(__name__)
token_refresh_logger = logging.getLogger("token_refresh")

RepositoryScope = Callable[[], ContextManager[CredentialRepository]]


@contextmanager
def sql_credential_scope():
    """Credential repository on a fresh session, closed when the tick ends"""
    with session_scope() as db:
        yield SqlCredentialRepository(db)


class TokenRefreshScheduler:
    """Periodic refresh of tokens expiring within the horizon.

    One instance is created in the application lifespan and kept on
    ``app.state``. ``start`` runs one tick immediately and then one per
    interval; ``stop`` cancels the timer but lets a running tick finish.
    """

    def __init__(
        self,
        client: InstagramGraphClient,
        repository_scope: RepositoryScope = sql_credential_scope,
        interval_hours: Optional[float] = None,
        horizon_days: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.client = client
        self.repository_scope = repository_scope
        self.interval_hours = interval_hours if interval_hours is not None else settings.TOKEN_REFRESH_INTERVAL_HOURS
        self.horizon_days = horizon_days if horizon_days is not None else settings.TOKEN_REFRESH_HORIZON_DAYS
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.TOKEN_REFRESH_DELAY_SECONDS
        self.sleep = sleep or asyncio.sleep
        self._timer: Optional[asyncio.Task] = None
        self._ticks = set()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.is_running:
            token_refresh_logger.warning("Token refresh scheduler already running")
            return

        token_refresh_logger.info(
            f"Token refresh scheduler started. Checking every {self.interval_hours} hours "
            f"for tokens expiring within {self.horizon_days} days."
        )
        self._spawn_tick()
        self._timer = asyncio.create_task(self._timer_loop())

    def stop(self) -> None:
        if not self.is_running:
            return
        self._timer.cancel()
        self._timer = None
        token_refresh_logger.info("Token refresh scheduler stopped")

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self.tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_hours * 3600)
            self._spawn_tick()

    async def tick(self) -> Optional[RefreshReport]:
        """One scheduled run; never raises"""
        try:
            report = await self.refresh_expiring_tokens()
        except Exception as e:
            scheduler_runs_counter.labels(status="error").inc()
            token_refresh_logger.error(f"Token refresh run failed: {type(e).__name__}: {e}", exc_info=True)
            return None

        scheduler_runs_counter.labels(status="success").inc()
        return report

    async def refresh_expiring_tokens(self) -> RefreshReport:
        with self.repository_scope() as repository:
            candidates = repository.list_expiring_within(self.horizon_days)
            if not candidates:
                token_refresh_logger.info(f"No tokens expiring within {self.horizon_days} days")
                return RefreshReport()

            token_refresh_logger.info(f"Found {len(candidates)} expiring token(s)")
            refresher = TokenRefresher(repository, self.client, sleep=self.sleep)
            return await refresher.refresh_batch(candidates, self.delay_seconds)

    async def refresh_all_tokens(self) -> RefreshReport:
        """Refresh every stored credential regardless of expiry"""
        with self.repository_scope() as repository:
            credentials = repository.list_all()
            refresher = TokenRefresher(repository, self.client, sleep=self.sleep)
            return await refresher.refresh_batch(credentials, self.delay_seconds)

    async def refresh_one(self, facebook_page_id: str) -> dict:
        with self.repository_scope() as repository:
            return await TokenRefresher(repository, self.client, sleep=self.sleep).refresh_one(facebook_page_id)
