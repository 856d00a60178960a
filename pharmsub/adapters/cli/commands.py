"""CLI command implementations for Pharmsub management.

Provides staff actions through the command-line interface.

This adapter maps CLI commands (list, details, create, edit, ship, log,
delete, stats) to SubscriptionManagementPort operations. It handles
CLI-specific argument parsing, formatting and error reporting.
"""

import logging
from datetime import datetime
from typing import Any

from pharmsub.core.errors import PharmsubError
from pharmsub.core.models import Subscription
from pharmsub.core.ports import SubscriptionManagementPort
from pharmsub.core.status import next_unshipped

logger = logging.getLogger(__name__)


def subscription_to_dict(subscription: Subscription) -> dict[str, Any]:
    """Render a subscription as a JSON-compatible dict including its id."""
    return {"id": subscription.id, **subscription.to_document()}


class CLICommandHandler:
    """Handles CLI commands by delegating to SubscriptionManagementPort.

    Every method returns a dict with a ``status`` of ``success`` or
    ``error``; domain and repository errors never escape to the caller.
    """

    def __init__(self, management: SubscriptionManagementPort):
        """Initialize the CLI command handler.

        Args:
            management: SubscriptionManagementPort implementation to execute commands.
        """
        self.management = management

    @staticmethod
    def _error(operation: str, message: str, **context: Any) -> dict[str, Any]:
        return {"status": "error", "operation": operation, "message": message, **context}

    async def list_subscriptions(
        self, status: str | None = None, output_format: str = "json"
    ) -> dict[str, Any]:
        """List subscriptions with derived status.

        Args:
            status: Optional derived status label to filter on.
            output_format: 'json' or 'text'.
        """
        try:
            subscriptions = await self.management.list_subscriptions(status=status)
        except PharmsubError as e:
            logger.error(f"Failed to list subscriptions: {e}")
            return self._error("list", str(e))

        if output_format == "text":
            lines = [
                f"{s.id}  {s.patient_name:<24} {s.status.label:<15} "
                f"Rx: {s.physician_status.value:<9} {s.duration} mo"
                + ("  [CALL]" if s.new_rx_call else "")
                for s in subscriptions
            ]
            return {
                "status": "success",
                "operation": "list",
                "count": len(subscriptions),
                "data": "\n".join(lines),
            }
        if output_format != "json":
            return self._error("list", f"Unsupported format: {output_format}")

        return {
            "status": "success",
            "operation": "list",
            "count": len(subscriptions),
            "data": [subscription_to_dict(s) for s in subscriptions],
        }

    async def get_subscription_details(
        self, subscription_id: str, output_format: str = "json"
    ) -> dict[str, Any]:
        """Show one subscription, its schedule and its log."""
        subscription = await self.management.get_subscription(subscription_id)
        if subscription is None:
            return self._error(
                "details",
                f"Subscription {subscription_id} not found",
                subscription_id=subscription_id,
            )

        if output_format == "text":
            return {
                "status": "success",
                "operation": "details",
                "data": self._format_details_as_text(subscription),
            }
        if output_format != "json":
            return self._error("details", f"Unsupported format: {output_format}")

        data = subscription_to_dict(subscription)
        upcoming = next_unshipped(subscription.fulfillments)
        data["nextFulfillment"] = upcoming.to_document() if upcoming else None
        return {"status": "success", "operation": "details", "data": data}

    def _format_details_as_text(self, subscription: Subscription) -> str:
        """Format subscription details as human-readable text."""
        lines = [
            f"Subscription ID: {subscription.id}",
            f"Patient: {subscription.patient_name}",
            f"Started: {subscription.start_date.isoformat()}",
            f"Duration: {subscription.duration} month(s)",
            f"Status: {subscription.status.label}",
            f"Physician: {subscription.physician_status.value}",
            f"New Rx call needed: {'yes' if subscription.new_rx_call else 'no'}",
            "",
            "Fulfillments:",
        ]
        for fulfillment in subscription.fulfillments:
            state = (
                f"shipped (tracking {fulfillment.tracking or 'N/A'})"
                if fulfillment.shipped
                else "pending"
            )
            lines.append(
                f"  [{fulfillment.slot}] {fulfillment.fulfillment_date.isoformat()}  {state}"
            )

        lines.append("")
        lines.append("Communication log:")
        for entry in subscription.communication_log:
            lines.append(f"  {entry.date.isoformat()}  {entry.actor}: {entry.message}")

        return "\n".join(lines)

    async def create_subscription(
        self,
        patient_name: str,
        duration: int,
        status: str = "Pending",
        physician_status: str = "Pending",
        new_rx_call: bool = False,
    ) -> dict[str, Any]:
        """Create a subscription from form fields."""
        try:
            subscription_id = await self.management.create_subscription(
                patient_name=patient_name,
                duration=int(duration),
                status=status,
                physician_status=physician_status,
                new_rx_call=new_rx_call,
            )
        except (PharmsubError, ValueError) as e:
            logger.error(f"Failed to create subscription: {e}")
            return self._error("create", str(e))

        return {
            "status": "success",
            "operation": "create",
            "subscription_id": subscription_id,
            "message": f"Subscription {subscription_id} created",
        }

    async def edit_subscription(
        self,
        subscription_id: str,
        patient_name: str | None = None,
        status: str | None = None,
        physician_status: str | None = None,
        new_rx_call: bool | None = None,
    ) -> dict[str, Any]:
        """Edit the editable fields of a subscription."""
        try:
            edited = await self.management.update_subscription(
                subscription_id,
                patient_name=patient_name,
                status=status,
                physician_status=physician_status,
                new_rx_call=new_rx_call,
            )
        except PharmsubError as e:
            logger.error(f"Failed to edit subscription: {e}")
            return self._error("edit", str(e), subscription_id=subscription_id)

        if edited is None:
            return self._error(
                "edit",
                f"Subscription {subscription_id} not found; refresh and retry",
                subscription_id=subscription_id,
            )
        return {
            "status": "success",
            "operation": "edit",
            "subscription_id": subscription_id,
            "message": f"Subscription {subscription_id} updated",
        }

    async def ship_fulfillment(
        self,
        subscription_id: str,
        fulfillment_date: str | None = None,
        tracking: str | None = None,
        slot: int | None = None,
    ) -> dict[str, Any]:
        """Record a shipment.

        The fulfillment is given by its ISO date as shown in ``details``, or
        by ``slot`` alone, in which case its date is looked up.
        """
        if fulfillment_date is None and slot is None:
            return self._error(
                "ship",
                "Missing required parameter: fulfillment_date or slot",
                subscription_id=subscription_id,
            )

        subscription = await self.management.get_subscription(subscription_id)
        if subscription is None:
            return self._error(
                "ship",
                f"Subscription {subscription_id} not found; refresh and retry",
                subscription_id=subscription_id,
            )

        try:
            if fulfillment_date is not None:
                target_date = datetime.fromisoformat(fulfillment_date)
            elif 0 <= slot < len(subscription.fulfillments):  # type: ignore[operator]
                target_date = subscription.fulfillments[slot].fulfillment_date  # type: ignore[index]
            else:
                return self._error(
                    "ship",
                    f"No fulfillment {slot} on subscription {subscription_id}",
                    subscription_id=subscription_id,
                )

            # An unmatched date would still append a shipment log entry
            if subscription.find_fulfillment(target_date, slot) is None:
                return self._error(
                    "ship",
                    f"No fulfillment scheduled on {target_date.isoformat()}"
                    + (f" in slot {slot}" if slot is not None else ""),
                    subscription_id=subscription_id,
                )

            shipped = await self.management.mark_fulfillment_shipped(
                subscription_id, target_date, tracking, slot=slot
            )
        except (PharmsubError, ValueError) as e:
            logger.error(f"Failed to record shipment: {e}")
            return self._error("ship", str(e), subscription_id=subscription_id)

        if shipped is None:
            return self._error(
                "ship",
                "Nothing recorded: subscription unknown or fulfillment already shipped",
                subscription_id=subscription_id,
            )
        return {
            "status": "success",
            "operation": "ship",
            "subscription_id": subscription_id,
            "fulfillment_date": target_date.isoformat(),
            "tracking": tracking,
            "message": f"Shipment recorded for subscription {subscription_id}",
        }

    async def add_log_entry(self, subscription_id: str, message: str) -> dict[str, Any]:
        """Append a staff message to the communication log."""
        try:
            updated = await self.management.append_communication_log(subscription_id, message)
        except PharmsubError as e:
            logger.error(f"Failed to append log entry: {e}")
            return self._error("log", str(e), subscription_id=subscription_id)

        if updated is None:
            return self._error(
                "log",
                "Nothing recorded: empty message or unknown subscription",
                subscription_id=subscription_id,
            )
        return {
            "status": "success",
            "operation": "log",
            "subscription_id": subscription_id,
            "entries": len(updated.communication_log),
        }

    async def delete_subscription(
        self, subscription_id: str, confirm: bool = False
    ) -> dict[str, Any]:
        """Delete a subscription. Requires ``confirm`` since it cannot be undone."""
        if not confirm:
            return self._error(
                "delete",
                "Deletion is permanent; pass \"confirm\": true to proceed",
                subscription_id=subscription_id,
            )

        try:
            removed = await self.management.delete_subscription(subscription_id)
        except PharmsubError as e:
            logger.error(f"Failed to delete subscription: {e}")
            return self._error("delete", str(e), subscription_id=subscription_id)

        if not removed:
            return self._error(
                "delete",
                f"Subscription {subscription_id} not found",
                subscription_id=subscription_id,
            )
        return {
            "status": "success",
            "operation": "delete",
            "subscription_id": subscription_id,
            "message": f"Subscription {subscription_id} deleted",
        }

    async def get_stats(self) -> dict[str, Any]:
        """Summary counts over all subscriptions."""
        stats = await self.management.get_stats()
        return {
            "status": "success",
            "operation": "stats",
            "data": {
                "total_subscriptions": stats.total_subscriptions,
                "by_status": dict(stats.by_status),
                "by_physician_status": dict(stats.by_physician_status),
                "new_rx_calls": stats.new_rx_calls,
                "renewals_needed": stats.renewals_needed,
                "unshipped_fulfillments": stats.unshipped_fulfillments,
            },
        }


def _require(args: dict[str, Any], *names: str) -> None:
    for name in names:
        if name not in args:
            raise ValueError(f"Missing required parameter: {name}")


async def run_command(
    handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Run a CLI command.

    Maps command names to handler methods.

    Args:
        handler: CLICommandHandler bound to the management service.
        command: Command name.
        args: Dictionary of command arguments.

    Returns:
        Dictionary with command result.

    Raises:
        ValueError: If the command is not recognized or a required
            argument is missing.
    """
    if command == "list":
        return await handler.list_subscriptions(
            status=args.get("status"),
            output_format=args.get("format", "json"),
        )

    elif command == "details":
        _require(args, "subscription_id")
        return await handler.get_subscription_details(
            args["subscription_id"],
            output_format=args.get("format", "json"),
        )

    elif command == "create":
        _require(args, "patient_name", "duration")
        return await handler.create_subscription(
            patient_name=args["patient_name"],
            duration=args["duration"],
            status=args.get("status", "Pending"),
            physician_status=args.get("physician_status", "Pending"),
            new_rx_call=args.get("new_rx_call", False),
        )

    elif command == "edit":
        _require(args, "subscription_id")
        return await handler.edit_subscription(
            args["subscription_id"],
            patient_name=args.get("patient_name"),
            status=args.get("status"),
            physician_status=args.get("physician_status"),
            new_rx_call=args.get("new_rx_call"),
        )

    elif command == "ship":
        _require(args, "subscription_id")
        return await handler.ship_fulfillment(
            args["subscription_id"],
            fulfillment_date=args.get("fulfillment_date"),
            tracking=args.get("tracking"),
            slot=args.get("slot"),
        )

    elif command == "log":
        _require(args, "subscription_id", "message")
        return await handler.add_log_entry(args["subscription_id"], args["message"])

    elif command == "delete":
        _require(args, "subscription_id")
        return await handler.delete_subscription(
            args["subscription_id"], confirm=args.get("confirm", False)
        )

    elif command == "stats":
        return await handler.get_stats()

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")
