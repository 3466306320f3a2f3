"""Common FastAPI dependency providers."""

from fastapi import Depends

from crm_delivery.pubsub import get_pubsub
from crm_delivery.repositories import DeliveryReportRepository, MessageRepository
from crm_delivery.services.delivery_ingress import DeliveryReportIngress
from crm_delivery.services.delivery_reports import DeliveryReportService
from crm_delivery.services.notifier import PubSubNotifier, StatusNotifier


def get_message_repo() -> MessageRepository:
    return MessageRepository()


def get_report_repo() -> DeliveryReportRepository:
    return DeliveryReportRepository()


def get_notifier() -> StatusNotifier:
    """Fan-out used for status changes; backed by the process pub/sub."""

    return PubSubNotifier(get_pubsub())


def get_delivery_ingress(
    message_repo: MessageRepository = Depends(get_message_repo),
    report_repo: DeliveryReportRepository = Depends(get_report_repo),
    notifier: StatusNotifier = Depends(get_notifier),
) -> DeliveryReportIngress:
    """Build a request-scoped ingress with its collaborators injected."""

    return DeliveryReportIngress(message_repo, report_repo=report_repo, notifier=notifier)


def get_delivery_report_service(
    report_repo: DeliveryReportRepository = Depends(get_report_repo),
    message_repo: MessageRepository = Depends(get_message_repo),
) -> DeliveryReportService:
    return DeliveryReportService(report_repo, message_repo=message_repo)
