"""
Bid Notifier - best-effort notification issuance for bid events

Runs only after the state change it reports has been committed. Any
failure is logged and counted, never raised: a notification that could
not be enqueued must not be mistaken for a failed bid transition.
"""

from decimal import Decimal
from typing import Any

from urgentfix.bids.models import Bid
from urgentfix.kernel.logging import get_logger
from urgentfix.kernel.metrics import notifications_total
from urgentfix.notifications.dispatcher import NotificationDispatcher
from urgentfix.notifications.models import (
    Channel,
    Notification,
    NotificationPriority,
    NotificationType,
)

logger = get_logger(__name__)


CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "EUR": "€", "GBP": "£"}


def format_currency(amount: Decimal, currency: str = "USD") -> str:
    """
    Format an amount for display, whole amounts without cents

    Example:
        >>> format_currency(Decimal("1500"))
        '$1,500'
        >>> format_currency(Decimal("99.5"), "EUR")
        '€99.50'
        >>> format_currency(Decimal("20"), "CHF")
        'CHF 20'
    """
    code = currency.upper()
    prefix = CURRENCY_SYMBOLS.get(code, f"{code} ")
    cents = amount.quantize(Decimal("0.01"))
    if cents == cents.to_integral_value():
        return f"{prefix}{int(cents):,}"
    return f"{prefix}{cents:,.2f}"


def display_name(user: dict[str, Any] | None) -> str | None:
    """'First Last' for a user record, or None when the name is unknown"""
    if not user:
        return None
    name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p)
    return name or None


def build_quote_received(
    bid: Bid,
    customer_id: str,
    contractor: dict[str, Any] | None,
    request_title: str | None,
    currency: str = "USD",
) -> Notification:
    contractor_name = display_name(contractor) or "A contractor"
    target = f' for "{request_title}"' if request_title else ""
    return Notification(
        id=Notification.make_id(NotificationType.QUOTE_RECEIVED, bid.id),
        type=NotificationType.QUOTE_RECEIVED,
        title="New bid received",
        message=f"{contractor_name} sent a bid of {format_currency(bid.amount, currency)}{target}.",
        priority=NotificationPriority.HIGH,
        channels=[Channel.IN_APP, Channel.WEB_PUSH, Channel.EMAIL],
        recipient_user_id=customer_id,
        payload={
            "bid_id": bid.id,
            "service_request_id": bid.service_request,
            "contractor_name": contractor_name,
            "amount": str(bid.amount),
        },
        action_url=f"/quotes/{bid.service_request}",
        action_label="View bid",
    )


def build_quote_accepted(bid: Bid, currency: str = "USD") -> Notification:
    return Notification(
        id=Notification.make_id(NotificationType.QUOTE_ACCEPTED, bid.id),
        type=NotificationType.QUOTE_ACCEPTED,
        title="Your bid was accepted!",
        message=f"Your bid of {format_currency(bid.amount, currency)} has been accepted.",
        priority=NotificationPriority.HIGH,
        channels=[Channel.IN_APP, Channel.WEB_PUSH, Channel.EMAIL],
        recipient_user_id=bid.contractor,
        payload={
            "bid_id": bid.id,
            "service_request_id": bid.service_request,
            "amount": str(bid.amount),
        },
        action_url="/contractor/dashboard",
        action_label="View job",
    )


def build_quote_rejected(bid: Bid, currency: str = "USD") -> Notification:
    return Notification(
        id=Notification.make_id(NotificationType.QUOTE_REJECTED, bid.id),
        type=NotificationType.QUOTE_REJECTED,
        title="Bid not selected",
        message=f"Your bid of {format_currency(bid.amount, currency)} was not selected.",
        priority=NotificationPriority.NORMAL,
        channels=[Channel.IN_APP, Channel.EMAIL],
        recipient_user_id=bid.contractor,
        payload={
            "bid_id": bid.id,
            "service_request_id": bid.service_request,
            "amount": str(bid.amount),
            "reason": bid.rejection_reason.value if bid.rejection_reason else None,
        },
        action_url="/contractor/dashboard/explore",
        action_label="See more requests",
    )


class BidNotifier:
    """
    Issues bid notifications through a dispatcher

    Every method returns the notification id when it was enqueued by this
    call, and None when it was a duplicate or failed.
    """

    def __init__(self, dispatcher: NotificationDispatcher, currency: str = "USD") -> None:
        self.dispatcher = dispatcher
        self.currency = currency

    def quote_received(
        self,
        bid: Bid,
        service_request: dict[str, Any] | None,
        contractor: dict[str, Any] | None,
        customer_id: str | None,
    ) -> str | None:
        if not customer_id:
            logger.debug("No customer linked to request, skipping quote_received", bid_id=bid.id)
            return None
        request_title = service_request.get("request_title") if service_request else None
        return self._send(
            NotificationType.QUOTE_RECEIVED,
            bid.id,
            lambda: build_quote_received(
                bid, customer_id, contractor, request_title, self.currency
            ),
        )

    def quote_accepted(self, bid: Bid) -> str | None:
        return self._send(
            NotificationType.QUOTE_ACCEPTED, bid.id, lambda: build_quote_accepted(bid, self.currency)
        )

    def quote_rejected(self, bid: Bid) -> str | None:
        return self._send(
            NotificationType.QUOTE_REJECTED, bid.id, lambda: build_quote_rejected(bid, self.currency)
        )

    def _send(self, notification_type: NotificationType, bid_id: str, build: Any) -> str | None:
        try:
            notification = build()
            enqueued = self.dispatcher.dispatch(notification)
        except Exception as e:
            notifications_total.labels(type=notification_type.value, outcome="failed").inc()
            logger.error(
                "Notification dispatch failed",
                type=notification_type.value,
                bid_id=bid_id,
                error=str(e),
                exc_info=True,
            )
            return None

        outcome = "sent" if enqueued else "duplicate"
        notifications_total.labels(type=notification_type.value, outcome=outcome).inc()
        return notification.id if enqueued else None
