"""FastAPI dependency providers for repositories and services"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from igbridge.db.session import get_db
from igbridge.db.sql_repositories import (
    SqlBillingAccountRepository, SqlCredentialRepository, SqlLicenseRepository,
    SqlPostHistoryRepository, SqlPublishAttemptRepository
)
from igbridge.services.graph_client import InstagramGraphClient
from igbridge.services.license_service import LicenseService
from igbridge.services.oauth_service import OAuthExchangeService
from igbridge.services.publish_service import MediaPublishWorkflow
from igbridge.services.subscription_service import SubscriptionService
from igbridge.tasks.token_refresh import TokenRefreshScheduler


def get_graph_client(request: Request) -> InstagramGraphClient:
    return request.app.state.graph_client


def get_token_scheduler(request: Request) -> TokenRefreshScheduler:
    return request.app.state.token_scheduler


def get_credential_repository(db: Session = Depends(get_db)) -> SqlCredentialRepository:
    return SqlCredentialRepository(db)


def get_attempt_repository(db: Session = Depends(get_db)) -> SqlPublishAttemptRepository:
    return SqlPublishAttemptRepository(db)


def get_history_repository(db: Session = Depends(get_db)) -> SqlPostHistoryRepository:
    return SqlPostHistoryRepository(db)


def get_license_service(db: Session = Depends(get_db)) -> LicenseService:
    return LicenseService(
        SqlLicenseRepository(db),
        SubscriptionService(SqlBillingAccountRepository(db)),
    )


def get_oauth_service(client: InstagramGraphClient = Depends(get_graph_client)) -> OAuthExchangeService:
    return OAuthExchangeService(client)


def get_publish_workflow(
    credentials: SqlCredentialRepository = Depends(get_credential_repository),
    attempts: SqlPublishAttemptRepository = Depends(get_attempt_repository),
    history: SqlPostHistoryRepository = Depends(get_history_repository),
    client: InstagramGraphClient = Depends(get_graph_client),
) -> MediaPublishWorkflow:
    return MediaPublishWorkflow(credentials, attempts, history, client)
