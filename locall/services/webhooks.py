"""
Inbound webhook processing for HubSpot, Google Calendar and Calendly.

Each delivery fans out to every active connection for the provider: fetch
the changed object from the provider API, then upsert it into
``synced_contacts`` / ``synced_appointments`` on the table's unique key.
Outbound calls are made once, with no retry. A failure for one connection is
logged as a ``webhook_error`` integration event and the next connection is
still processed.
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Mapping, Optional

import httpx
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from locall.config.settings import get_settings
from locall.exceptions import InvalidSignatureError, UnsupportedProviderError, WebhookProcessingError
from locall.models import IntegrationConnection, IntegrationEvent, SyncedAppointment, SyncedContact
from locall.models.base import utc_now
from locall.security import verify_hubspot_signature

logger = logging.getLogger(__name__)

HUBSPOT_SIGNATURE_HEADER = "x-hubspot-signature-v2"
PAYLOAD_PREVIEW_CHARS = 500

# URL path segment -> stored provider name
WEBHOOK_PROVIDERS = {
    "hubspot": "hubspot",
    "google": "google_calendar",
    "google_calendar": "google_calendar",
    "calendly": "calendly",
}


def parse_provider_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO date or datetime strings from provider APIs into aware datetimes."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed_date = date.fromisoformat(value)
        except ValueError:
            logger.warning(f"Unparseable provider datetime: {value!r}")
            return None
        parsed = datetime(parsed_date.year, parsed_date.month, parsed_date.day)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _last_path_segment(uri: Optional[str]) -> Optional[str]:
    if not uri:
        return None
    return uri.rstrip("/").split("/")[-1] or None


class WebhookProcessor:
    """Verifies and applies one webhook delivery."""

    def __init__(self, db: AsyncSession, http_client: Optional[httpx.AsyncClient] = None):
        self.db = db
        self.settings = get_settings()
        self._http_client = http_client

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
            yield client

    async def process(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> dict:
        """
        Verify and dispatch a delivery.

        Raises:
            InvalidSignatureError: HubSpot signature missing or wrong
            UnsupportedProviderError: unknown provider segment
            WebhookProcessingError: any other failure
        """
        stored_provider = WEBHOOK_PROVIDERS.get(provider)
        if stored_provider is None:
            raise UnsupportedProviderError(provider)

        if stored_provider == "hubspot":
            signature = headers.get(HUBSPOT_SIGNATURE_HEADER)
            if not verify_hubspot_signature(self.settings.hubspot_webhook_secret, raw_body, signature):
                logger.warning("Rejected HubSpot webhook with invalid signature")
                raise InvalidSignatureError()

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            logger.error(f"Webhook error for {provider}: invalid JSON body ({e})")
            raise WebhookProcessingError() from e

        try:
            if stored_provider == "hubspot":
                processed = await self._process_hubspot(payload)
            elif stored_provider == "google_calendar":
                processed = await self._process_google(payload)
            else:
                processed = await self._process_calendly(payload)
        except Exception as e:
            logger.error(f"Webhook error for {provider}: {e}", exc_info=True)
            await self.db.rollback()
            raise WebhookProcessingError() from e

        return {"success": True, "processed": processed}

    async def _active_connections(self, provider: str) -> AsyncIterator[IntegrationConnection]:
        """Yield active connections, each reloaded from the database."""
        result = await self.db.execute(
            select(IntegrationConnection.id).where(
                IntegrationConnection.provider == provider,
                IntegrationConnection.status == "connected",
                IntegrationConnection.is_active.is_(True),
            )
        )
        for connection_id in result.scalars().all():
            connection = await self.db.get(IntegrationConnection, connection_id, populate_existing=True)
            if connection is not None:
                yield connection

    @staticmethod
    def _auth_headers(connection: IntegrationConnection) -> dict:
        token = connection.access_token or (connection.config or {}).get("access_token")
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def _upsert(self, model, key: dict, values: dict):
        row = (
            await self.db.execute(select(model).filter_by(**key))
        ).scalar_one_or_none()
        if row is None:
            row = model(**key, **values)
            self.db.add(row)
        else:
            for field, value in values.items():
                setattr(row, field, value)
        return row

    async def _record_event(
        self,
        connection: IntegrationConnection,
        event_type: str,
        payload: dict,
        status: str = "processed",
        error_message: Optional[str] = None,
    ) -> None:
        self.db.add(
            IntegrationEvent(
                workspace_id=connection.workspace_id,
                connection_id=connection.id,
                provider=connection.provider,
                event_type=event_type,
                payload=payload,
                status=status,
                error_message=error_message,
            )
        )

    async def _record_failure(
        self, connection_id, workspace_id, provider: str, event: Any, error: Exception, payload: Any
    ) -> None:
        await self.db.rollback()
        self.db.add(
            IntegrationEvent(
                workspace_id=workspace_id,
                connection_id=connection_id,
                provider=provider,
                event_type="webhook_error",
                payload={
                    "event_type": event,
                    "error": str(error),
                    "payload_preview": json.dumps(payload, default=str)[:PAYLOAD_PREVIEW_CHARS],
                },
                status="error",
                error_message=str(error),
            )
        )
        await self.db.commit()

    async def _mark_synced(self, connection: IntegrationConnection) -> None:
        connection.last_sync_at = utc_now()
        connection.sync_status = "synced"

    # HubSpot

    async def _process_hubspot(self, payload: Any) -> int:
        events = payload if isinstance(payload, list) else [payload]
        processed = 0
        for event in events:
            if event.get("subscriptionType") != "contact.propertyChange":
                continue
            object_id = event.get("objectId")
            async for connection in self._active_connections("hubspot"):
                connection_id, workspace_id = connection.id, connection.workspace_id
                try:
                    if await self._sync_hubspot_contact(connection, object_id):
                        processed += 1
                except Exception as e:
                    logger.error(f"Error updating HubSpot contact {object_id} for workspace {workspace_id}: {e}")
                    await self._record_failure(
                        connection_id, workspace_id, "hubspot", event.get("subscriptionType"), e, event
                    )
        return processed

    async def _sync_hubspot_contact(self, connection: IntegrationConnection, object_id: Any) -> bool:
        url = f"{self.settings.hubspot_api_base_url}/crm/v3/objects/contacts/{object_id}"
        async with self._http() as client:
            response = await client.get(url, headers=self._auth_headers(connection))
        if not response.is_success:
            logger.warning(f"HubSpot contact fetch for {object_id} returned {response.status_code}")
            return False

        contact = response.json()
        properties = contact.get("properties", {})
        await self._upsert(
            SyncedContact,
            {
                "workspace_id": connection.workspace_id,
                "provider": "hubspot",
                "provider_contact_id": str(contact["id"]),
            },
            {
                "connection_id": connection.id,
                "email": properties.get("email"),
                "first_name": properties.get("firstname"),
                "last_name": properties.get("lastname"),
                "phone": properties.get("phone"),
                "company": properties.get("company"),
                "raw_data": contact,
                "last_synced_at": utc_now(),
            },
        )
        await self._mark_synced(connection)
        await self.db.commit()
        return True

    # Google Calendar

    async def _process_google(self, payload: Any) -> int:
        if not isinstance(payload, dict) or not (payload.get("resourceId") and payload.get("resourceUri")):
            return 0
        processed = 0
        async for connection in self._active_connections("google_calendar"):
            connection_id, workspace_id = connection.id, connection.workspace_id
            try:
                processed += await self._sync_google_events(connection)
            except Exception as e:
                logger.error(f"Error processing Google webhook for workspace {workspace_id}: {e}")
                await self._record_failure(
                    connection_id, workspace_id, "google_calendar", "push_notification", e, payload
                )
        return processed

    async def _sync_google_events(self, connection: IntegrationConnection) -> int:
        url = f"{self.settings.google_calendar_api_base_url}/calendars/primary/events"
        async with self._http() as client:
            response = await client.get(url, headers=self._auth_headers(connection))
        if not response.is_success:
            logger.warning(f"Google Calendar events fetch returned {response.status_code}")
            return 0

        processed = 0
        for event in response.json().get("items", []):
            key = {
                "workspace_id": connection.workspace_id,
                "provider": "google_calendar",
                "provider_event_id": event["id"],
            }
            if event.get("status") == "cancelled":
                await self.db.execute(delete(SyncedAppointment).filter_by(**key))
            else:
                start = event.get("start", {})
                end = event.get("end", {})
                await self._upsert(
                    SyncedAppointment,
                    key,
                    {
                        "connection_id": connection.id,
                        "title": event.get("summary") or "Untitled event",
                        "description": event.get("description"),
                        "start_time": parse_provider_datetime(start.get("dateTime") or start.get("date")),
                        "end_time": parse_provider_datetime(end.get("dateTime") or end.get("date")),
                        "location": event.get("location"),
                        "attendees": [a.get("email") for a in event.get("attendees", []) if a.get("email")],
                        "status": event.get("status", "confirmed"),
                        "raw_data": event,
                        "last_synced_at": utc_now(),
                    },
                )
            processed += 1
        await self._mark_synced(connection)
        await self.db.commit()
        return processed

    # Calendly

    async def _process_calendly(self, payload: Any) -> int:
        if not isinstance(payload, dict):
            return 0
        event_name = payload.get("event")
        body = payload.get("payload")
        if not event_name or not body:
            return 0

        processed = 0
        async for connection in self._active_connections("calendly"):
            connection_id, workspace_id = connection.id, connection.workspace_id
            try:
                event_id = _last_path_segment(body.get("uri"))
                if not event_id:
                    logger.error("No event ID found in Calendly payload")
                    continue

                if event_name == "invitee.created":
                    await self._calendly_invitee_created(connection, event_id, body)
                elif event_name == "invitee.canceled":
                    await self._delete_appointment(connection, "calendly", event_id)
                    await self._record_event(
                        connection,
                        "invitee_canceled",
                        {"event_id": event_id, "canceled_at": utc_now().isoformat()},
                    )
                elif event_name == "invitee.rescheduled":
                    old_event_id = _last_path_segment(body.get("old_invitee"))
                    new_event_id = _last_path_segment(body.get("new_invitee"))
                    if not (old_event_id and new_event_id):
                        continue
                    # The new booking arrives as its own invitee.created delivery
                    await self._delete_appointment(connection, "calendly", old_event_id)
                    await self._record_event(
                        connection,
                        "invitee_rescheduled",
                        {
                            "old_event_id": old_event_id,
                            "new_event_id": new_event_id,
                            "rescheduled_at": utc_now().isoformat(),
                        },
                    )
                else:
                    logger.info(f"Unhandled Calendly webhook event: {event_name}")
                    continue

                await self.db.commit()
                processed += 1
            except Exception as e:
                logger.error(f"Error processing Calendly webhook for workspace {workspace_id}: {e}")
                await self._record_failure(connection_id, workspace_id, "calendly", event_name, e, body)
        return processed

    async def _calendly_invitee_created(self, connection: IntegrationConnection, event_id: str, body: dict) -> None:
        base = f"{self.settings.calendly_api_base_url}/scheduled_events/{event_id}"
        headers = self._auth_headers(connection)
        async with self._http() as client:
            details_response = await client.get(base, headers=headers)
            invitees_response = await client.get(f"{base}/invitees", headers=headers)

        details: dict = {}
        if details_response.is_success:
            details = details_response.json().get("resource") or {}
        attendees: list[str] = []
        if invitees_response.is_success:
            attendees = [
                invitee.get("email")
                for invitee in invitees_response.json().get("collection", [])
                if invitee.get("email")
            ]

        event_type_name = (body.get("event_type") or {}).get("name")
        location = details.get("location") or {}
        await self._upsert(
            SyncedAppointment,
            {"workspace_id": connection.workspace_id, "provider": "calendly", "provider_event_id": event_id},
            {
                "connection_id": connection.id,
                "title": details.get("name") or event_type_name or "Calendly Meeting",
                "description": details.get("meeting_notes_plain"),
                "start_time": parse_provider_datetime(details.get("start_time") or body.get("start_time")),
                "end_time": parse_provider_datetime(details.get("end_time") or body.get("end_time")),
                "location": location.get("location") or location.get("join_url"),
                "attendees": attendees,
                "status": "confirmed",
                "raw_data": {"event": details or None, "payload": body, "invitees": attendees},
                "last_synced_at": utc_now(),
            },
        )
        await self._mark_synced(connection)
        await self._record_event(
            connection,
            "invitee_created",
            {
                "event_id": event_id,
                "invitee_email": attendees[0] if attendees else "unknown",
                "event_type": details.get("name") or event_type_name,
            },
        )

    async def _delete_appointment(self, connection: IntegrationConnection, provider: str, event_id: str) -> int:
        result = await self.db.execute(
            delete(SyncedAppointment).where(
                SyncedAppointment.workspace_id == connection.workspace_id,
                SyncedAppointment.provider == provider,
                SyncedAppointment.provider_event_id == event_id,
            )
        )
        return result.rowcount
