"""
Notification message templates.

This module provides the email and browser templates for every event type,
plus the section templates used to assemble digest emails. Templates support
variable substitution using Python's string formatting.

Design decisions:
- Templates are stored as simple strings with {variable} placeholders
- Every email has an HTML body and a plain-text fallback
- Values are HTML-escaped before they are substituted into HTML bodies
- Digest sections always appear in the order requests, messages, reviews
- Digest excerpts are cut to 100 characters
"""

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from shared.models import BrowserNotification, EventType, ServiceProvider

BRAND = "Carvizio"
EXCERPT_LENGTH = 100

# Fixed section order inside a digest
DIGEST_ORDER: tuple[EventType, ...] = (
    EventType.REQUEST_CREATED,
    EventType.MESSAGE_RECEIVED,
    EventType.REVIEW_CREATED,
)


# =============================================================================
# Value formatting
# =============================================================================

def truncate(text: str, length: int = EXCERPT_LENGTH) -> str:
    """Cut text to `length` characters, appending '...' when shortened."""
    if len(text) <= length:
        return text
    return text[:length] + "..."


def format_stars(rating: int) -> str:
    """Render a 1-5 rating as filled and empty stars, e.g. ★★★★☆."""
    rating = max(0, min(5, rating))
    return "★" * rating + "☆" * (5 - rating)


def format_price(price: float) -> str:
    return f"{price:,.2f} RON"


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d.%m.%Y")


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d.%m.%Y %H:%M")


def template_values(event_type: EventType, context: dict[str, Any]) -> dict[str, str]:
    """
    Flatten a render context (domain records) into template variables.

    Raises:
        KeyError: If the context lacks a record the event type needs.
    """
    event_type = EventType(event_type)
    if event_type == EventType.REQUEST_CREATED:
        request = context["request"]
        return {
            "request_title": request.title,
            "request_description": request.description,
            "excerpt": truncate(request.description),
            "location": ", ".join(part for part in [request.county, ", ".join(request.cities)] if part),
            "preferred_date": format_date(request.preferred_date),
        }
    if event_type == EventType.OFFER_ACCEPTED:
        offer = context["offer"]
        request = context["request"]
        return {
            "offer_title": offer.title,
            "price": format_price(offer.price),
            "request_title": request.title,
            "client_name": context.get("client_name") or "Client",
        }
    if event_type == EventType.MESSAGE_RECEIVED:
        message = context["message"]
        request = context["request"]
        return {
            "sender_name": context.get("sender_name") or "Client",
            "request_title": request.title,
            "message_content": message.content,
            "excerpt": truncate(message.content),
            "sent_at": format_timestamp(message.created_at),
        }
    review = context["review"]
    return {
        "client_name": context.get("client_name") or "Client",
        "stars": format_stars(review.rating),
        "rating": str(review.rating),
        "review_comment": review.comment,
        "excerpt": truncate(review.comment),
        "reviewed_on": format_date(review.created_at),
    }


def _escaped(values: dict[str, str]) -> dict[str, str]:
    return {key: html.escape(value) for key, value in values.items()}


# =============================================================================
# Instant templates
# =============================================================================

@dataclass
class NotificationTemplate:
    """
    A notification template with email and browser variants.

    The email body placeholders are filled with HTML-escaped values, the text
    body and browser variants with raw values.
    """
    event_type: EventType
    email_subject: str
    email_html: str
    email_text: str
    browser_title: str
    browser_body: str
    path: str

    def link(self, dashboard_url: str) -> str:
        return f"{dashboard_url.rstrip('/')}/{self.path}"

    def render_email(self, provider: ServiceProvider, dashboard_url: str, values: dict[str, str]) -> tuple[str, str, str]:
        """
        Render the email template with provided variables.

        Returns:
            Tuple of (subject, html_body, text_body)
        """
        link = self.link(dashboard_url)
        settings_link = f"{dashboard_url.rstrip('/')}/setari"
        html_body = EMAIL_LAYOUT.format(
            heading=html.escape(self.email_subject),
            name=html.escape(provider.representative_name),
            content=self.email_html.format(**_escaped(values)),
            link=html.escape(link),
            settings_link=html.escape(settings_link),
        )
        text_body = TEXT_LAYOUT.format(
            heading=self.email_subject,
            name=provider.representative_name,
            content=self.email_text.format(**values),
            link=link,
            settings_link=settings_link,
        )
        return self.email_subject, html_body, text_body

    def render_browser(self, values: dict[str, str]) -> tuple[str, str]:
        """Render the browser variant as (title, body)."""
        return self.browser_title.format(**values), self.browser_body.format(**values)


EMAIL_LAYOUT = """<div style="font-family: Arial, sans-serif; padding: 20px; color: #333;">
  <h2 style="color: #0080ff;">{heading}</h2>
  <p>Hello {name},</p>
  {content}
  <p style="margin-top: 25px;"><a href="{link}" style="color: #0080ff;">Open in dashboard</a></p>
  <p style="margin-top: 20px; color: #666; font-size: 14px;">
    To manage your notification preferences, visit the <a href="{settings_link}">settings page</a>.
  </p>
</div>"""

TEXT_LAYOUT = """{heading}

Hello {name},

{content}

Open in dashboard: {link}

To manage your notification preferences, visit: {settings_link}
"""


TEMPLATES: dict[EventType, NotificationTemplate] = {

    EventType.REQUEST_CREATED: NotificationTemplate(
        event_type=EventType.REQUEST_CREATED,
        email_subject=f"New request on {BRAND}",
        email_html="""<p>You have received a new request:</p>
  <div style="padding: 15px; background-color: #f7f7f7; border-radius: 5px;">
    <p><strong>Title:</strong> {request_title}</p>
    <p><strong>Description:</strong> {request_description}</p>
    <p><strong>Location:</strong> {location}</p>
    <p><strong>Preferred date:</strong> {preferred_date}</p>
  </div>""",
        email_text="""You have received a new request:

Title: {request_title}
Description: {request_description}
Location: {location}
Preferred date: {preferred_date}""",
        browser_title="New request",
        browser_body="{request_title} ({location})",
        path="cereri",
    ),

    EventType.OFFER_ACCEPTED: NotificationTemplate(
        event_type=EventType.OFFER_ACCEPTED,
        email_subject=f"Offer accepted on {BRAND}",
        email_html="""<p><strong>{client_name}</strong> has just accepted your offer for the request "{request_title}"!</p>
  <div style="padding: 15px; background-color: #f7f7f7; border-radius: 5px;">
    <p><strong>Offer:</strong> {offer_title}</p>
    <p><strong>Price:</strong> {price}</p>
    <p><strong>Request:</strong> {request_title}</p>
    <p><strong>Client:</strong> {client_name}</p>
  </div>
  <p>Please contact the client as soon as possible to arrange the details.</p>""",
        email_text="""{client_name} has just accepted your offer for the request "{request_title}"!

Offer: {offer_title}
Price: {price}
Request: {request_title}
Client: {client_name}

Please contact the client as soon as possible to arrange the details.""",
        browser_title="Offer accepted",
        browser_body="{client_name} accepted your offer \"{offer_title}\" ({price})",
        path="oferte-acceptate",
    ),

    EventType.MESSAGE_RECEIVED: NotificationTemplate(
        event_type=EventType.MESSAGE_RECEIVED,
        email_subject=f"New message on {BRAND}",
        email_html="""<p>You have a new message from <strong>{sender_name}</strong> about the request "{request_title}".</p>
  <div style="padding: 15px; background-color: #f7f7f7; border-left: 4px solid #0080ff;">
    <p style="font-style: italic;">{message_content}</p>
    <p style="color: #666; font-size: 14px;">{sent_at}</p>
  </div>""",
        email_text="""You have a new message from {sender_name} about the request "{request_title}".

"{message_content}"

{sent_at}""",
        browser_title="New message from {sender_name}",
        browser_body="{excerpt}",
        path="mesaje",
    ),

    EventType.REVIEW_CREATED: NotificationTemplate(
        event_type=EventType.REVIEW_CREATED,
        email_subject=f"New review on {BRAND}",
        email_html="""<p>You have a new review from <strong>{client_name}</strong>.</p>
  <div style="padding: 15px; background-color: #f7f7f7; border-radius: 5px;">
    <p style="font-size: 18px; color: #ffa500;">{stars}</p>
    <p style="font-style: italic;">{review_comment}</p>
    <p style="color: #666; font-size: 14px;">{reviewed_on}</p>
  </div>""",
        email_text="""You have a new review from {client_name}.

Rating: {rating}/5
Comment: "{review_comment}"

Date: {reviewed_on}""",
        browser_title="New review {stars}",
        browser_body="{client_name}: {excerpt}",
        path="profil",
    ),
}


def get_template(event_type: EventType) -> NotificationTemplate:
    """Get the template for an event type."""
    return TEMPLATES[EventType(event_type)]


def render_instant_email(
    event_type: EventType,
    provider: ServiceProvider,
    dashboard_url: str,
    **context,
) -> tuple[str, str, str]:
    """Render a single-event email as (subject, html_body, text_body)."""
    template = get_template(event_type)
    return template.render_email(provider, dashboard_url, template_values(event_type, context))


def render_browser_notification(
    event_type: EventType,
    key: str,
    dashboard_url: str,
    **context,
) -> BrowserNotification:
    """Render a single-event browser notification keyed by its dedup key."""
    template = get_template(event_type)
    title, body = template.render_browser(template_values(event_type, context))
    return BrowserNotification(
        key=key,
        event_type=template.event_type,
        title=title,
        body=body,
        url=template.link(dashboard_url),
    )


# =============================================================================
# Digest templates
# =============================================================================

@dataclass
class DigestSection:
    """How one event-type group is rendered inside a digest."""
    event_type: EventType
    heading: str
    singular: str
    plural: str
    item_html: str
    item_text: str
    path: str


DIGEST_SECTIONS: dict[EventType, DigestSection] = {
    EventType.REQUEST_CREATED: DigestSection(
        event_type=EventType.REQUEST_CREATED,
        heading="New Requests",
        singular="request",
        plural="requests",
        item_html="""<li style="padding: 10px; margin-bottom: 10px; background-color: #f7f7f7;">
        <p style="margin: 0; font-weight: bold;">{request_title}</p>
        <p style="margin: 5px 0; font-size: 14px;">{excerpt}</p>
        <p style="margin: 5px 0; font-size: 14px;">Location: {location}</p>
      </li>""",
        item_text="- {request_title}: {excerpt} ({location})",
        path="cereri",
    ),
    EventType.MESSAGE_RECEIVED: DigestSection(
        event_type=EventType.MESSAGE_RECEIVED,
        heading="New Messages",
        singular="message",
        plural="messages",
        item_html="""<li style="padding: 10px; margin-bottom: 10px; background-color: #f7f7f7;">
        <p style="margin: 0; font-weight: bold;">From: {sender_name}</p>
        <p style="margin: 5px 0; font-size: 14px;">Request: {request_title}</p>
        <p style="margin: 5px 0; font-size: 14px;">{excerpt}</p>
      </li>""",
        item_text="- From {sender_name} on \"{request_title}\": {excerpt}",
        path="mesaje",
    ),
    EventType.REVIEW_CREATED: DigestSection(
        event_type=EventType.REVIEW_CREATED,
        heading="New Reviews",
        singular="review",
        plural="reviews",
        item_html="""<li style="padding: 10px; margin-bottom: 10px; background-color: #f7f7f7;">
        <p style="margin: 0; font-weight: bold;">From: {client_name}</p>
        <p style="margin: 5px 0; font-size: 14px;">Rating: {stars}</p>
        <p style="margin: 5px 0; font-size: 14px;">{excerpt}</p>
      </li>""",
        item_text="- {client_name} {stars}: {excerpt}",
        path="profil",
    ),
}


def _ordered_groups(groups: dict[EventType, list[dict[str, Any]]]) -> list[tuple[EventType, list[dict[str, Any]]]]:
    normalized = {EventType(t): items for t, items in groups.items()}
    unexpected = [t.value for t in normalized if t not in DIGEST_SECTIONS]
    if unexpected:
        raise ValueError(f"Event types cannot be digested: {unexpected}")
    return [
        (event_type, normalized[event_type])
        for event_type in DIGEST_ORDER
        if normalized.get(event_type)
    ]


def _count_phrase(event_type: EventType, count: int) -> str:
    section = DIGEST_SECTIONS[event_type]
    return f"{count} new {section.singular if count == 1 else section.plural}"


def digest_subject(counts: dict[EventType, int]) -> str:
    """
    Subject line for a digest.

    A digest with one group names that group ("2 new requests on Carvizio");
    a digest with several groups gets "N new notifications on Carvizio".
    """
    present = {EventType(t): n for t, n in counts.items() if n > 0}
    if len(present) == 1:
        event_type, count = next(iter(present.items()))
        return f"{_count_phrase(event_type, count)} on {BRAND}"
    total = sum(present.values())
    noun = "notification" if total == 1 else "notifications"
    return f"{total} new {noun} on {BRAND}"


def render_digest_email(
    provider: ServiceProvider,
    groups: dict[EventType, list[dict[str, Any]]],
    dashboard_url: str,
) -> tuple[str, str, str]:
    """
    Render one combined digest email with a section per non-empty group.

    Args:
        provider: The recipient
        groups: Render contexts keyed by event type
        dashboard_url: Base URL for links

    Returns:
        Tuple of (subject, html_body, text_body)

    Raises:
        ValueError: If groups contain an event type that is never digested,
                    or no group is non-empty
    """
    ordered = _ordered_groups(groups)
    if not ordered:
        raise ValueError("Cannot render an empty digest")

    base = dashboard_url.rstrip("/")
    subject = digest_subject({t: len(items) for t, items in ordered})

    html_sections = []
    text_sections = []
    for event_type, items in ordered:
        section = DIGEST_SECTIONS[event_type]
        values = [template_values(event_type, context) for context in items]
        link = f"{base}/{section.path}"
        html_sections.append(
            f"""<div style="margin-top: 20px; margin-bottom: 20px;">
    <h3 style="color: #0080ff; border-bottom: 1px solid #eee; padding-bottom: 10px;">{section.heading} ({len(items)})</h3>
    <ul style="list-style-type: none; padding-left: 0;">
      """
            + "\n      ".join(section.item_html.format(**_escaped(v)) for v in values)
            + f"""
    </ul>
    <a href="{html.escape(link)}" style="color: #0080ff; text-decoration: none;">View all &rarr;</a>
  </div>"""
        )
        text_sections.append(
            f"{section.heading} ({len(items)})\n"
            + "\n".join(section.item_text.format(**v) for v in values)
            + f"\n{link}"
        )

    settings_link = f"{base}/setari"
    html_body = f"""<div style="font-family: Arial, sans-serif; padding: 20px; color: #333;">
  <h2 style="color: #0080ff;">{html.escape(BRAND)} notifications</h2>
  <p>Hello {html.escape(provider.representative_name)},</p>
  <p>Here is what happened on {html.escape(BRAND)} since your last update:</p>
  {"".join(html_sections)}
  <p style="margin-top: 20px; color: #666; font-size: 14px;">
    To manage your notification preferences, visit the <a href="{html.escape(settings_link)}">settings page</a>.
  </p>
</div>"""
    text_body = (
        f"{BRAND} notifications\n\n"
        f"Hello {provider.representative_name},\n\n"
        f"Here is what happened on {BRAND} since your last update:\n\n"
        + "\n\n".join(text_sections)
        + f"\n\nTo manage your notification preferences, visit: {settings_link}\n"
    )
    return subject, html_body, text_body


def render_browser_digest(
    key: str,
    groups: dict[EventType, list[dict[str, Any]]],
    dashboard_url: str,
) -> BrowserNotification:
    """Render one summary browser notification for a digest."""
    ordered = _ordered_groups(groups)
    if not ordered:
        raise ValueError("Cannot render an empty digest")
    return BrowserNotification(
        key=key,
        event_type=None,
        title=digest_subject({t: len(items) for t, items in ordered}),
        body=", ".join(_count_phrase(t, len(items)) for t, items in ordered),
        url=dashboard_url,
    )
