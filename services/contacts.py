"""Find-or-create Systeme contacts and attach tags to them.

Systeme has no atomic upsert and Shopify delivers webhooks at least once,
so the same order can arrive twice in quick succession.  ``upsert_contact``
therefore always looks up before creating and looks up again when creation
fails, which turns a duplicate-creation race into a successful lookup.
"""

from __future__ import annotations

import logging
import time

from api.exceptions import UpstreamError, UpstreamUnavailableError
from services.systeme import SystemeGateway, positive_id, response_items

logger = logging.getLogger(__name__)

CONTACTS_PATH = "/api/contacts"


class ContactService:
    """Contact lookup, creation and tagging on top of the gateway."""

    def __init__(
        self,
        gateway: SystemeGateway,
        fallback_form_id: str = "",
        poll_attempts: int = 3,
        poll_delay: float = 2.0,
    ) -> None:
        self.gateway = gateway
        self.fallback_form_id = fallback_form_id
        self.poll_attempts = poll_attempts
        self.poll_delay = poll_delay

    @classmethod
    def from_settings(cls, gateway: SystemeGateway, settings) -> ContactService:
        return cls(
            gateway,
            fallback_form_id=settings.systeme_fallback_form_id,
            poll_attempts=settings.contact_poll_attempts,
            poll_delay=settings.contact_poll_delay,
        )

    # -- lookup / create ---------------------------------------------------

    def find_contact_id(self, email: str) -> int | None:
        """Return the ID of the contact whose email matches (case-insensitive)."""
        result = self.gateway.call(
            CONTACTS_PATH, "GET", params={"email": email}, tolerate_not_found=True,
        )
        if result.not_found:
            return None

        wanted = email.strip().lower()
        for contact in response_items(result.data):
            if not isinstance(contact, dict):
                continue
            if str(contact.get("email") or "").strip().lower() == wanted:
                return positive_id(contact.get("id"))
        return None

    def create_contact(self, email: str, first_name: str = "", last_name: str = "") -> int | None:
        """Create a contact and return its ID; None when no creation route exists.

        Raises:
            UpstreamError: Systeme rejected the contact or returned no ID.
        """
        result = self.gateway.call(
            CONTACTS_PATH,
            "POST",
            json={"email": email, "first_name": first_name, "last_name": last_name},
            tolerate_not_found=True,
        )
        if result.not_found:
            return None
        data = result.data if isinstance(result.data, dict) else {}
        contact_id = positive_id(data.get("id"))
        if contact_id is None:
            msg = f"Systeme created contact {email} without returning an ID"
            raise UpstreamError(msg, status=result.status, body=result.data)
        return contact_id

    def subscribe_via_form(self, email: str, first_name: str = "", last_name: str = "") -> None:
        """Submit the contact through the configured fallback form."""
        self.gateway.call(
            f"/api/forms/{self.fallback_form_id}/subscribe",
            "POST",
            json={"email": email, "first_name": first_name, "last_name": last_name},
        )

    def _poll_for_contact(self, email: str) -> int | None:
        for attempt in range(self.poll_attempts):
            time.sleep(self.poll_delay)
            contact_id = self.find_contact_id(email)
            if contact_id is not None:
                return contact_id
            logger.info(
                "Contact %s not visible yet (poll %d/%d)", email, attempt + 1, self.poll_attempts,
            )
        return None

    def upsert_contact(self, email: str, first_name: str = "", last_name: str = "") -> int:
        """Return the ID of the contact for *email*, creating it if needed.

        Order of attempts: lookup, create, lookup again (a concurrent
        delivery may have created it), then the fallback form when no
        creation route exists and a form is configured.

        Raises:
            UpstreamUnavailableError: Every path was exhausted.
        """
        contact_id = self.find_contact_id(email)
        if contact_id is not None:
            return contact_id

        create_error: UpstreamError | None = None
        routes_missing = False
        try:
            contact_id = self.create_contact(email, first_name, last_name)
            if contact_id is not None:
                logger.info("Created Systeme contact %s (id %d)", email, contact_id)
                return contact_id
            routes_missing = True
        except UpstreamError as exc:
            create_error = exc
            logger.warning("Contact creation for %s failed (%s), looking up again", email, exc)

        contact_id = self.find_contact_id(email)
        if contact_id is not None:
            return contact_id

        status = 404 if routes_missing else None
        body = None
        if create_error is not None:
            status, body = create_error.status, create_error.body

        if routes_missing and self.fallback_form_id:
            logger.warning("No contact creation route answered, using form %s", self.fallback_form_id)
            try:
                self.subscribe_via_form(email, first_name, last_name)
            except UpstreamError as exc:
                status, body = exc.status, exc.body
                logger.warning("Form subscription for %s failed (%s)", email, exc)
            else:
                contact_id = self._poll_for_contact(email)
                if contact_id is not None:
                    return contact_id

        msg = f"Could not find or create Systeme contact for {email}"
        raise UpstreamUnavailableError(msg, status=status, body=body)

    # -- tagging -------------------------------------------------------------

    def attach_tag(self, contact_id: int, tag_id: int) -> None:
        """Attach *tag_id* to *contact_id*.

        Systeme treats re-attaching a present tag as a no-op, so repeated
        deliveries converge without local bookkeeping.  If the ``tagId``
        body is rejected the older ``tag_id`` spelling is tried once.
        """
        path = f"{CONTACTS_PATH}/{contact_id}/tags"
        try:
            self.gateway.call(path, "POST", json={"tagId": tag_id})
        except UpstreamError as exc:
            logger.warning("Attaching tag %d to %d failed (%s), retrying alternate body", tag_id, contact_id, exc)
            self.gateway.call(path, "POST", json={"tag_id": tag_id})
