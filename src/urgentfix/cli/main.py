"""
UrgentFix CLI

Command-line interface for the bid marketplace core.
Provides commands for users, service requests, bids and maintenance sweeps.

Usage:
    urgentfix init --db marketplace.db
    urgentfix user add --first Ana --last Diaz --role contractor
    urgentfix request create --customer <id> --title "Leaking pipe"
    urgentfix bid submit --request <id> --contractor <id> --amount 500 --description "Fix leaking pipe"
    urgentfix bid accept --id <bid_id> --by <customer_id>
    urgentfix bid expire-overdue
    urgentfix reconcile
"""

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from urgentfix.bids.models import Bid, DecisionResult
from urgentfix.kernel.errors import UrgentFixError
from urgentfix.kernel.logging import configure_logging
from urgentfix.marketplace import Marketplace

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(
    json_output=os.getenv("URGENTFIX_LOG_JSON", "") == "1",
    log_level=os.getenv("URGENTFIX_LOG_LEVEL", "WARNING"),
)

app = typer.Typer(
    name="urgentfix",
    help="UrgentFix - bid lifecycle for a home-services marketplace",
    add_completion=False,
)

# Sub-apps
user_app = typer.Typer(help="User account commands")
request_app = typer.Typer(help="Service request commands")
bid_app = typer.Typer(help="Bid lifecycle commands")
notifications_app = typer.Typer(help="Notification commands")

app.add_typer(user_app, name="user")
app.add_typer(request_app, name="request")
app.add_typer(bid_app, name="bid")
app.add_typer(notifications_app, name="notifications")

# Global state
DEFAULT_DB = Path(".urgentfix.db")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_market(db_path: Optional[Path] = None) -> Marketplace:
    """Get Marketplace instance"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'urgentfix init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return Marketplace(db)


@contextmanager
def domain_errors() -> Iterator[None]:
    """Report domain errors as 'Error: <kind>: <message>' and exit 1"""
    try:
        yield
    except UrgentFixError as e:
        typer.echo(f"Error: {e.kind}: {e}", err=True)
        raise typer.Exit(1)


def parse_json(value: Optional[str], option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {option} is not valid JSON: {e}", err=True)
        raise typer.Exit(1)


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def echo_bid(bid: Bid) -> None:
    typer.echo(f"\nBid: {bid.id}")
    typer.echo(f"  Title: {bid.title}")
    typer.echo(f"  Service request: {bid.service_request}")
    typer.echo(f"  Contractor: {bid.contractor}")
    typer.echo(f"  Amount: ${bid.amount}")
    typer.echo(f"  Status: {bid.status.value}")
    typer.echo(f"  Submitted: {bid.submitted_at}")
    for label, value in (
        ("Accepted", bid.accepted_at),
        ("Rejected", bid.rejected_at),
        ("Withdrawn", bid.withdrawn_at),
        ("Expired", bid.expired_at),
        ("Valid until", bid.valid_until),
    ):
        if value:
            typer.echo(f"  {label}: {value}")
    if bid.rejection_reason:
        typer.echo(f"  Rejection reason: {bid.rejection_reason.value}")
    if bid.superseded_by:
        typer.echo(f"  Superseded by: {bid.superseded_by}")


def echo_decision(result: DecisionResult) -> None:
    verb = "Accepted" if result.decision.value == "accept" else "Rejected"
    if result.noop:
        typer.echo(f"Bid {result.bid.id} already {result.bid.status.value} - nothing to do")
    else:
        typer.echo(f"✓ {verb} bid: {result.bid.id}")
    effects = result.side_effects
    if effects.assigned_service_request:
        typer.echo(f"  Assigned request: {effects.assigned_service_request}")
    if effects.auto_rejected_bid_ids:
        typer.echo(f"  Auto-rejected: {', '.join(effects.auto_rejected_bid_ids)}")
    if effects.failed_rejection_bid_ids:
        typer.echo(
            f"  Still pending (run reconcile): {', '.join(effects.failed_rejection_bid_ids)}"
        )
    if effects.notification_ids:
        typer.echo(f"  Notifications sent: {len(effects.notification_ids)}")


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new marketplace database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    Marketplace(db)
    typer.echo(f"✓ Initialized marketplace database: {db}")


# User commands


@user_app.command("add")
def user_add(
    first: Annotated[str, typer.Option("--first", help="First name")],
    last: Annotated[str, typer.Option("--last", help="Last name")],
    role: Annotated[
        str,
        typer.Option("--role", help="Role (customer, contractor, admin, superadmin)"),
    ] = "customer",
    email: Annotated[Optional[str], typer.Option("--email", help="Email address")] = None,
    user_id: Annotated[Optional[str], typer.Option("--id", help="Explicit user ID")] = None,
    db: DbOption = None,
) -> None:
    """Register a user"""
    market = get_market(db)
    with domain_errors():
        user = market.register_user(first, last, role=role, email=email, user_id=user_id)

    typer.echo(f"✓ Added user: {user['id']}")
    typer.echo(f"  Name: {user['first_name']} {user['last_name']}")
    typer.echo(f"  Role: {user['role']}")


# Service request commands


@request_app.command("create")
def request_create(
    customer: Annotated[str, typer.Option("--customer", help="Customer user ID")],
    title: Annotated[str, typer.Option("--title", help="Request title")],
    description: Annotated[
        Optional[str], typer.Option("--description", help="What needs fixing")
    ] = None,
    request_id: Annotated[Optional[str], typer.Option("--id", help="Explicit request ID")] = None,
    db: DbOption = None,
) -> None:
    """Post a service request"""
    market = get_market(db)
    with domain_errors():
        request = market.create_service_request(
            customer, title, description=description, request_id=request_id
        )

    typer.echo(f"✓ Created service request: {request['id']}")
    typer.echo(f"  Title: {request['request_title']}")
    typer.echo(f"  Status: {request['status']}")


@request_app.command("show")
def request_show(
    request_id: Annotated[str, typer.Option("--id", help="Service request ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show a service request and its bids"""
    market = get_market(db)
    with domain_errors():
        request = market.get_service_request(request_id)
        bids = market.list_bids(service_request_id=request_id)

    if json_output:
        echo_json({**request, "bids": [b.model_dump(mode="json") for b in bids]})
        return

    typer.echo(f"\nService request: {request['id']}")
    typer.echo(f"  Title: {request.get('request_title')}")
    typer.echo(f"  Status: {request['status']}")
    typer.echo(f"  Customer: {request.get('customer')}")
    if request.get("assigned_contractor"):
        typer.echo(f"  Assigned contractor: {request['assigned_contractor']}")
        typer.echo(f"  Accepted bid: {request.get('accepted_bid')}")

    typer.echo(f"\n  Bids ({len(bids)}):")
    for bid in bids:
        typer.echo(f"    {bid.id}: ${bid.amount} [{bid.status.value}] {bid.title}")


# Bid commands


@bid_app.command("submit")
def bid_submit(
    request_id: Annotated[str, typer.Option("--request", help="Service request ID")],
    contractor: Annotated[str, typer.Option("--contractor", help="Contractor user ID")],
    amount: Annotated[str, typer.Option("--amount", help="Bid amount in USD")],
    description: Annotated[str, typer.Option("--description", help="Proposed work")],
    title: Annotated[Optional[str], typer.Option("--title", help="Bid title")] = None,
    estimated_duration: Annotated[
        Optional[str], typer.Option("--estimated-duration", help="e.g. '2 hours'")
    ] = None,
    warranty: Annotated[Optional[str], typer.Option("--warranty", help="Warranty offered")] = None,
    availability: Annotated[
        Optional[str], typer.Option("--availability", help="When work can start")
    ] = None,
    valid_until: Annotated[
        Optional[str], typer.Option("--valid-until", help="Expiry (ISO 8601)")
    ] = None,
    materials: Annotated[
        Optional[str], typer.Option("--materials", help="Materials (JSON array)")
    ] = None,
    price_breakdown: Annotated[
        Optional[str], typer.Option("--price-breakdown", help="Price breakdown (JSON)")
    ] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes")] = None,
    db: DbOption = None,
) -> None:
    """Submit a bid on a service request"""
    market = get_market(db)

    try:
        amount_decimal = Decimal(amount)
    except InvalidOperation:
        typer.echo(f"Error: validation_error: amount '{amount}' is not a number", err=True)
        raise typer.Exit(1)

    optional: dict[str, Any] = {
        "title": title,
        "estimated_duration": estimated_duration,
        "warranty": warranty,
        "availability": availability,
        "valid_until": valid_until,
        "materials": parse_json(materials, "--materials"),
        "price_breakdown": parse_json(price_breakdown, "--price-breakdown"),
        "notes": notes,
    }
    with domain_errors():
        bid = market.create_bid(
            request_id,
            contractor,
            amount_decimal,
            description,
            **{k: v for k, v in optional.items() if v is not None},
        )

    typer.echo(f"✓ Submitted bid: {bid.id}")
    typer.echo(f"  Title: {bid.title}")
    typer.echo(f"  Amount: ${bid.amount}")
    typer.echo(f"  Status: {bid.status.value}")


@bid_app.command("list")
def bid_list(
    request_id: Annotated[
        Optional[str], typer.Option("--request", help="Filter by service request ID")
    ] = None,
    contractor: Annotated[
        Optional[str], typer.Option("--contractor", help="Filter by contractor ID")
    ] = None,
    status: Annotated[
        Optional[str],
        typer.Option("--status", help="Filter by status (pending, accepted, rejected, withdrawn, expired)"),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List bids, newest first"""
    market = get_market(db)
    with domain_errors():
        bids = market.list_bids(
            service_request_id=request_id, contractor_id=contractor, status=status
        )

    if json_output:
        echo_json([b.model_dump(mode="json") for b in bids])
        return

    if not bids:
        typer.echo(f"No bids{f' with status {status}' if status else ''}")
        return

    typer.echo(f"Bids ({len(bids)}):")
    for bid in bids:
        typer.echo(
            f"  {bid.id}: ${bid.amount} [{bid.status.value}] "
            f"request={bid.service_request} contractor={bid.contractor}"
        )


@bid_app.command("show")
def bid_show(
    bid_id: Annotated[str, typer.Option("--id", help="Bid ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show bid details"""
    market = get_market(db)
    with domain_errors():
        bid = market.get_bid(bid_id)

    if json_output:
        echo_json(bid.model_dump(mode="json"))
        return
    echo_bid(bid)


@bid_app.command("accept")
def bid_accept(
    bid_id: Annotated[str, typer.Option("--id", help="Bid ID")],
    by: Annotated[str, typer.Option("--by", help="Deciding customer (or admin) ID")],
    timeout: Annotated[
        Optional[float], typer.Option("--timeout", help="Deadline in seconds")
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Accept a bid (assigns the request, rejects competing bids)"""
    market = get_market(db)
    with domain_errors():
        result = market.accept_bid(bid_id, by, timeout_seconds=timeout)

    if json_output:
        echo_json(result.model_dump(mode="json"))
        return
    echo_decision(result)


@bid_app.command("reject")
def bid_reject(
    bid_id: Annotated[str, typer.Option("--id", help="Bid ID")],
    by: Annotated[str, typer.Option("--by", help="Deciding customer (or admin) ID")],
    timeout: Annotated[
        Optional[float], typer.Option("--timeout", help="Deadline in seconds")
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Reject a bid"""
    market = get_market(db)
    with domain_errors():
        result = market.reject_bid(bid_id, by, timeout_seconds=timeout)

    if json_output:
        echo_json(result.model_dump(mode="json"))
        return
    echo_decision(result)


@bid_app.command("withdraw")
def bid_withdraw(
    bid_id: Annotated[str, typer.Option("--id", help="Bid ID")],
    contractor: Annotated[str, typer.Option("--contractor", help="Contractor who submitted the bid")],
    db: DbOption = None,
) -> None:
    """Withdraw your own pending bid"""
    market = get_market(db)
    with domain_errors():
        bid = market.withdraw_bid(bid_id, contractor)

    typer.echo(f"✓ Withdrew bid: {bid.id}")
    typer.echo(f"  Status: {bid.status.value}")


@bid_app.command("expire")
def bid_expire(
    bid_id: Annotated[str, typer.Option("--id", help="Bid ID")],
    db: DbOption = None,
) -> None:
    """Expire a pending bid past its valid-until date"""
    market = get_market(db)
    with domain_errors():
        bid = market.expire_bid(bid_id)

    typer.echo(f"✓ Expired bid: {bid.id}")
    typer.echo(f"  Valid until: {bid.valid_until}")


@bid_app.command("expire-overdue")
def bid_expire_overdue(db: DbOption = None) -> None:
    """Expire every pending bid past its valid-until date"""
    market = get_market(db)
    with domain_errors():
        expired = market.expire_overdue_bids()

    if not expired:
        typer.echo("No overdue bids")
        return

    typer.echo(f"✓ Expired {len(expired)} bid(s):")
    for bid in expired:
        typer.echo(f"  {bid.id} (valid until {bid.valid_until})")


# Maintenance commands


@app.command()
def reconcile(db: DbOption = None) -> None:
    """Finish acceptances interrupted by a failure or timeout"""
    market = get_market(db)
    with domain_errors():
        results = market.reconcile()

    if not results:
        typer.echo("✓ Nothing to reconcile")
        return

    typer.echo(f"✓ Reconciled {len(results)} accepted bid(s):")
    for result in results:
        effects = result.side_effects
        typer.echo(
            f"  {result.bid.id}: request {effects.assigned_service_request}, "
            f"{len(effects.auto_rejected_bid_ids)} auto-rejected"
        )


# Notification commands


@notifications_app.command("list")
def notifications_list(
    user_id: Annotated[str, typer.Option("--user", help="Recipient user ID")],
    unread: Annotated[bool, typer.Option("--unread", help="Only unread notifications")] = False,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List notifications sent to a user"""
    market = get_market(db)
    with domain_errors():
        notifications = market.list_notifications(user_id, unread_only=unread)

    if json_output:
        echo_json([n.model_dump(mode="json") for n in notifications])
        return

    if not notifications:
        typer.echo(f"No notifications for {user_id}")
        return

    typer.echo(f"Notifications for {user_id} ({len(notifications)}):")
    for notification in notifications:
        typer.echo(f"  [{notification.type.value}] {notification.title}")
        typer.echo(f"    {notification.message}")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
