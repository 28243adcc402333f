"""
============================================================================
SHARED EMAIL BASE: Layout for CRM notification and campaign emails
============================================================================

Single source of truth for email layout: header, body slot and footer.
Notification templates and campaign bodies are wrapped here so that every
message leaving the CRM looks the same.
============================================================================
"""

from typing import Optional

from ..core.config import settings


# =============================================================================
# Brand Constants
# =============================================================================
BRAND_NAME = "Tax Genius Pro"
BRAND_WEBSITE = "taxgeniuspro.tax"
HEADER_BG_COLOR = "#1F3A5F"
FOOTER_TEXT_COLOR = "#999999"


def email_header(title: str, subtitle: Optional[str] = None) -> str:
    """
    Build the header rows with title and optional subtitle.

    Args:
        title: Large white bold text (e.g., "Contact Assigned")
        subtitle: Smaller text below the title (defaults to the brand name)
    """
    if subtitle is None:
        subtitle = BRAND_NAME

    return f"""                    <tr>
                        <td align="center" style="background-color: {HEADER_BG_COLOR}; padding: 24px 30px 6px 30px;">
                            <h1 style="margin: 0; font-family: Arial, Helvetica, sans-serif; font-size: 22px; font-weight: bold; color: #FFFFFF; line-height: 1.3;">
                                {title}
                            </h1>
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="background-color: {HEADER_BG_COLOR}; padding: 0 30px 24px 30px;">
                            <p style="margin: 0; font-family: Arial, Helvetica, sans-serif; font-size: 14px; color: #FFFFFF; line-height: 1.4;">
                                {subtitle}
                            </p>
                        </td>
                    </tr>"""


def email_divider() -> str:
    """Standard horizontal divider."""
    return """                    <tr>
                        <td style="padding: 20px 30px;">
                            <table width="100%" cellpadding="0" cellspacing="0" border="0">
                                <tr><td style="border-top: 1px solid #EEEEEE; font-size: 0; line-height: 0;" height="1">&nbsp;</td></tr>
                            </table>
                        </td>
                    </tr>"""


def email_footer() -> str:
    return f"""                    <tr>
                        <td align="center" style="padding: 24px 30px 24px 30px;">
                            <p style="margin: 0; font-family: Arial, Helvetica, sans-serif; font-size: 12px; color: {FOOTER_TEXT_COLOR}; line-height: 1.4;">
                                {settings.app_name} &middot; <a href="https://{BRAND_WEBSITE}" style="color: {FOOTER_TEXT_COLOR}; text-decoration: none;">{BRAND_WEBSITE}</a>
                            </p>
                        </td>
                    </tr>"""


def wrap_in_email_layout(title: str, body_html: str, subtitle: Optional[str] = None) -> str:
    """
    Wrap body content in the full email layout (header + body + footer).

    Args:
        title: Header title text
        body_html: Inner HTML for the body section (table rows)
        subtitle: Optional subtitle (defaults to the brand name)

    Returns:
        Complete HTML email string
    """
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title} &mdash; {BRAND_NAME}</title>
</head>
<body style="margin: 0; padding: 0; background-color: #F5F5F7;">
    <table width="100%" cellpadding="0" cellspacing="0" border="0" style="background-color: #F5F5F7;">
        <tr>
            <td align="center" style="padding: 30px 20px;">
                <table width="600" cellpadding="0" cellspacing="0" border="0" style="max-width: 600px; width: 100%; background-color: #FFFFFF; border-radius: 8px; overflow: hidden;">

{email_header(title, subtitle)}

{body_html}

{email_footer()}

                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""
