"""
Jinja2 templates for CRM notification emails.

Each event has a title/subtitle pair and an inner body (table rows only);
``render_notification`` renders both and wraps them in the shared layout.
"""

from typing import Any, Dict, Tuple

from jinja2 import Environment, StrictUndefined, select_autoescape

from .email_base import email_divider, wrap_in_email_layout


_env = Environment(autoescape=select_autoescape(default=True), undefined=StrictUndefined)
# Subjects are plain text
_text_env = Environment(autoescape=False, undefined=StrictUndefined)

_DIVIDER = email_divider()

_PARAGRAPH = (
    '                    <tr>\n'
    '                        <td style="padding: 0 30px 12px 30px; font-family: Arial, Helvetica, sans-serif; '
    'font-size: 15px; color: #333333; line-height: 1.6;">\n'
    '                            {text}\n'
    '                        </td>\n'
    '                    </tr>'
)


def _rows(*lines: str) -> str:
    return "\n".join(_PARAGRAPH.format(text=line) for line in lines)


# =============================================================================
# Template Titles (title, subtitle) and subjects for each event
# =============================================================================

NOTIFICATION_TITLES: Dict[str, Tuple[str, str]] = {
    "contact_created": ("New CRM Contact", "A contact was added to the pipeline"),
    "contact_assigned": ("Contact Assigned", "A contact has been assigned to you"),
    "stage_changed": ("Pipeline Stage Changed", "{{ contact_name }} moved to {{ to_stage }}"),
}

NOTIFICATION_SUBJECTS: Dict[str, str] = {
    "contact_created": "New {{ contact_type }} contact: {{ contact_name }}",
    "contact_assigned": "Contact assigned: {{ contact_name }}",
    "stage_changed": "{{ contact_name }}: {{ from_stage }} -> {{ to_stage }}",
}


# =============================================================================
# Template Bodies (inner rows only, no header/footer)
# =============================================================================

NOTIFICATION_BODIES: Dict[str, str] = {
    "contact_created": _DIVIDER + "\n" + _rows(
        "<strong>{{ contact_name }}</strong> ({{ contact_email }}) was added as a {{ contact_type }}.",
        "Source: {{ source or 'unknown' }}",
        "Contact ID: {{ contact_id }}",
    ),
    "contact_assigned": _DIVIDER + "\n" + _rows(
        "<strong>{{ contact_name }}</strong> is now assigned to preparer {{ preparer_id }}.",
        "Current stage: {{ stage }}",
        "Contact ID: {{ contact_id }}",
    ),
    "stage_changed": _DIVIDER + "\n" + _rows(
        "<strong>{{ contact_name }}</strong> moved from {{ from_stage }} to {{ to_stage }}.",
        "Changed by: {{ changed_by or 'system' }}",
        "{% if reason %}Reason: {{ reason }}{% endif %}",
        "Contact ID: {{ contact_id }}",
    ),
}


def render_notification(event: str, context: Dict[str, Any]) -> Tuple[str, str]:
    """
    Render the subject and full HTML body for a notification event.

    Raises:
        KeyError: unknown event
        jinja2.UndefinedError: context is missing a variable the template uses
    """
    title, subtitle = NOTIFICATION_TITLES[event]
    subject = _text_env.from_string(NOTIFICATION_SUBJECTS[event]).render(**context)
    body = _env.from_string(NOTIFICATION_BODIES[event]).render(**context)

    html = wrap_in_email_layout(
        title=_env.from_string(title).render(**context),
        body_html=body,
        subtitle=_env.from_string(subtitle).render(**context),
    )
    return subject, html
