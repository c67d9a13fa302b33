"""
Composite context text for leads, contacts and deals.

The composed text is what gets embedded into an entity's ``embedding``
column: the record's own fields followed by its related deals and
activities, newest first.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from ..storage import StorageBackend

LEAD_ACTIVITY_LIMIT = 15
CONVERTED_CONTACT_ACTIVITY_LIMIT = 10
CONTACT_DEAL_LIMIT = 10
CONTACT_ACTIVITY_LIMIT = 15
DEAL_ACTIVITY_LIMIT = 20

COMPOSITE_ENTITY_TYPES: tuple[str, ...] = ("lead", "contact", "deal")


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value:
        return default
    return _plain(value)


def _plain(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _present(value: Any) -> bool:
    return value is not None and str(value) != ""


def _day(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        return "unknown"
    return str(value)[:10]


def format_activity_line(activity: dict[str, Any]) -> str:
    """One ``- [date] type: summary`` line with optional notes, outcome and status."""
    summary = activity.get("subject") or activity.get("description") or "No description"
    line = f"- [{_day(activity.get('created_at'))}] {activity.get('type') or 'Activity'}: {summary}"
    for key, label in (("notes", "Notes"), ("outcome", "Outcome"), ("status", "Status")):
        if _present(activity.get(key)):
            line += f" | {label}: {activity[key]}"
    return line


def _activity_block(heading: str, activities: list[dict[str, Any]]) -> str:
    if not activities:
        return ""
    lines = [format_activity_line(activity) for activity in activities]
    return f"\n{heading}:\n" + "\n".join(lines) + "\n"


def compose_lead_context(
    lead: dict[str, Any],
    activities: list[dict[str, Any]],
    *,
    converted_activities: list[dict[str, Any]] | None = None,
) -> str:
    lines = [
        "LEAD INFORMATION:",
        f"Name: {_text(lead.get('name'), 'No name')}",
        f"Company: {_text(lead.get('company'), 'No company')}",
        f"Email: {_text(lead.get('email'), 'No email')}",
        f"Phone: {_text(lead.get('phone'), 'No phone')}",
    ]
    if _present(lead.get("title")):
        lines.append(f"Title: {lead['title']}")
    lines.extend(
        [
            f"Status: {_text(lead.get('status'), 'Unknown')}",
            f"Source: {_text(lead.get('source'), 'Unknown source')}",
            f"Score: {_text(lead.get('score'), '0')}",
        ]
    )
    for key, label in (
        ("notes", "Notes"),
        ("lead_magnet", "Lead Magnet"),
        ("utm_source", "UTM Source"),
        ("utm_campaign", "UTM Campaign"),
    ):
        if _present(lead.get(key)):
            lines.append(f"{label}: {lead[key]}")

    text = "\n".join(lines) + "\n"
    if activities:
        return text + _activity_block("RELATED ACTIVITIES", activities)
    return text + _activity_block(
        "RELATED ACTIVITIES (from converted contact)", converted_activities or []
    )


def _contact_lines(contact: dict[str, Any], *, with_company: bool) -> list[str]:
    lines = [
        "CONTACT INFORMATION:",
        f"Name: {_text(contact.get('name'), 'No name')}",
    ]
    if with_company:
        lines.append(f"Company: {_text(contact.get('company'), 'No company')}")
    lines.extend(
        [
            f"Email: {_text(contact.get('email'), 'No email')}",
            f"Phone: {_text(contact.get('phone'), 'No phone')}",
            f"Title: {_text(contact.get('title'), 'No title')}",
            f"Status: {_text(contact.get('status'), 'Unknown')}",
            f"Persona: {_text(contact.get('persona'), 'No persona defined')}",
            f"Notes: {_text(contact.get('notes'), 'No notes')}",
        ]
    )
    return lines


def _deal_line(deal: dict[str, Any]) -> str:
    line = (
        f"- {_text(deal.get('title'), 'Untitled Deal')}"
        f" ({_text(deal.get('company'), 'No company')})"
        f" - Stage: {_text(deal.get('stage'), 'Unknown')}"
        f" - Value: ${_text(deal.get('value'), '0')}"
        f" - Priority: {_text(deal.get('priority'), 'Medium')}"
    )
    if deal.get("expected_close_date") is not None:
        line += f" - Expected Close: {_plain(deal['expected_close_date'])}"
    return line


def compose_contact_context(
    contact: dict[str, Any],
    deals: list[dict[str, Any]],
    activities: list[dict[str, Any]],
) -> str:
    text = "\n".join(_contact_lines(contact, with_company=True)) + "\n"
    if deals:
        text += "\nRELATED DEALS:\n" + "\n".join(_deal_line(deal) for deal in deals) + "\n"
    return text + _activity_block("RELATED ACTIVITIES", activities)


def compose_deal_context(
    deal: dict[str, Any],
    contact: dict[str, Any] | None,
    activities: list[dict[str, Any]],
) -> str:
    lines = [
        "DEAL INFORMATION:",
        f"Title: {_text(deal.get('title'), 'No title')}",
        f"Company: {_text(deal.get('company'), 'No company')}",
        f"Value: ${_text(deal.get('value'), '0')}",
        f"Stage: {_text(deal.get('stage'), 'Unknown')}",
        f"Priority: {_text(deal.get('priority'), 'Medium')}",
        f"Close Probability: {_text(deal.get('close_probability'), '0')}%",
        f"Expected Close Date: {_text(deal.get('expected_close_date'), 'Not set')}",
        f"Next Step: {_text(deal.get('next_step'), 'No next step defined')}",
        f"Description: {_text(deal.get('description'), 'No description')}",
        f"Outcome: {_text(deal.get('outcome'), 'Pending')}",
    ]
    text = "\n".join(lines) + "\n"
    if contact is not None:
        text += "\n" + "\n".join(_contact_lines(contact, with_company=False)) + "\n"
    return text + _activity_block("RELATED ACTIVITIES", activities)


class ContextBuilder:
    """Load an entity with its related rows and compose its context text."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    def build(self, entity_type: str, entity_id: str, user_id: str) -> str:
        """Return the composed text, or ``""`` when the user has no such entity."""
        if entity_type == "lead":
            return self._lead(entity_id, user_id)
        if entity_type == "contact":
            return self._contact(entity_id, user_id)
        if entity_type == "deal":
            return self._deal(entity_id, user_id)
        raise ValueError(
            f"Unsupported entity type {entity_type!r}. "
            f"Expected one of: {', '.join(COMPOSITE_ENTITY_TYPES)}"
        )

    def _lead(self, lead_id: str, user_id: str) -> str:
        lead = self.storage.get_record("leads", record_id=lead_id, user_id=user_id)
        if lead is None:
            return ""
        activities = self.storage.list_related(
            "activities", column="lead_id", value=lead_id, limit=LEAD_ACTIVITY_LIMIT
        )
        converted: list[dict[str, Any]] = []
        if not activities:
            converted = self._converted_contact_activities(lead, user_id)
        return compose_lead_context(lead, activities, converted_activities=converted)

    def _converted_contact_activities(
        self, lead: dict[str, Any], user_id: str
    ) -> list[dict[str, Any]]:
        contacts = self.storage.find_contacts(
            user_id=user_id,
            email=lead.get("email"),
            phone=lead.get("phone"),
        )
        collected: list[dict[str, Any]] = []
        for contact in contacts:
            collected.extend(
                self.storage.list_related(
                    "activities",
                    column="contact_id",
                    value=contact["id"],
                    limit=CONVERTED_CONTACT_ACTIVITY_LIMIT,
                )
            )
        collected.sort(key=lambda row: _day_sort_key(row.get("created_at")), reverse=True)
        return collected[:CONVERTED_CONTACT_ACTIVITY_LIMIT]

    def _contact(self, contact_id: str, user_id: str) -> str:
        contact = self.storage.get_record("contacts", record_id=contact_id, user_id=user_id)
        if contact is None:
            return ""
        deals = self.storage.list_related(
            "deals", column="contact_id", value=contact_id, limit=CONTACT_DEAL_LIMIT
        )
        activities = self.storage.list_related(
            "activities", column="contact_id", value=contact_id, limit=CONTACT_ACTIVITY_LIMIT
        )
        return compose_contact_context(contact, deals, activities)

    def _deal(self, deal_id: str, user_id: str) -> str:
        deal = self.storage.get_record("deals", record_id=deal_id, user_id=user_id)
        if deal is None:
            return ""
        contact = None
        if deal.get("contact_id"):
            contact = self.storage.get_record(
                "contacts", record_id=deal["contact_id"], user_id=user_id
            )
        activities = self.storage.list_related(
            "activities", column="deal_id", value=deal_id, limit=DEAL_ACTIVITY_LIMIT
        )
        return compose_deal_context(deal, contact, activities)


def _day_sort_key(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value or "")
