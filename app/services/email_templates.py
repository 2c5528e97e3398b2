"""
Email templates.

Each template renders a subject, an HTML body and a plain text body from
a dict of values. Every body carries an unsubscribe link.
"""

from dataclasses import dataclass
from html import escape
from typing import Any, Callable, Dict, List

SUPPORT_EMAIL = "support@rto-compliance-hub.com"
DIGEST_SECTION_LIMIT = 5


class UnknownTemplateError(ValueError):
    pass


@dataclass(frozen=True)
class EmailTemplate:
    subject: Callable[[Dict[str, Any]], str]
    html: Callable[[Dict[str, Any]], str]
    text: Callable[[Dict[str, Any]], str]


def _e(data: Dict[str, Any], key: str, default: str = "") -> str:
    return escape(str(data.get(key, default) if data.get(key) is not None else default))


def _layout(body: str, data: Dict[str, Any], button_label: str = "", button_key: str = "") -> str:
    button = ""
    if button_key and data.get(button_key):
        button = f'<a href="{_e(data, button_key)}" class="button">{escape(button_label)}</a>'
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <style>
      body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ background-color: #0066cc; color: white; padding: 20px; text-align: center; }}
      .content {{ background-color: #f9f9f9; padding: 30px; border-radius: 5px; margin: 20px 0; }}
      .button {{ display: inline-block; padding: 12px 30px; background-color: #0066cc; color: white; text-decoration: none; border-radius: 5px; }}
      .highlight {{ border-left: 4px solid #0066cc; padding: 15px; margin: 15px 0; background: #fff; }}
      .footer {{ text-align: center; color: #666; font-size: 12px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header"><h1>RTO Compliance Hub</h1></div>
      <div class="content">
        <p>Hello {_e(data, "user_name", "there")},</p>
        {body}
        {button}
      </div>
      <div class="footer">
        <p>RTO Compliance Hub</p>
        <p>If you no longer wish to receive these notifications, <a href="{_e(data, "unsubscribe_url")}">unsubscribe here</a>.</p>
        <p>Need help? Contact us at {_e(data, "support_email", SUPPORT_EMAIL)}</p>
      </div>
    </div>
  </body>
</html>"""


def _text_layout(body: str, data: Dict[str, Any]) -> str:
    return (
        f"Hello {data.get('user_name') or 'there'},\n\n"
        f"{body.strip()}\n\n"
        "---\n"
        "RTO Compliance Hub\n"
        f"Unsubscribe: {data.get('unsubscribe_url', '')}\n"
        f"Support: {data.get('support_email') or SUPPORT_EMAIL}\n"
    )


# =============================================================================
# Individual templates
# =============================================================================

def _policy_review_html(d):
    return _layout(
        f"""<p>This is a friendly reminder that the following policy is due for review:</p>
        <div class="highlight">
          <strong>Policy:</strong> {_e(d, "policy_title")}<br>
          <strong>Review Due:</strong> {_e(d, "review_due_date")}<br>
          <strong>Days Remaining:</strong> {_e(d, "days_remaining")}
        </div>
        <p>Please review and update this policy to ensure continued compliance.</p>""",
        d, "Review Policy", "policy_url",
    )


def _policy_review_text(d):
    return _text_layout(
        f"""This is a friendly reminder that the following policy is due for review:

Policy: {d.get('policy_title')}
Review Due: {d.get('review_due_date')}
Days Remaining: {d.get('days_remaining')}

View Policy: {d.get('policy_url', '')}""",
        d,
    )


def _credential_html(d):
    return _layout(
        f"""<p>Your credential is expiring soon:</p>
        <div class="highlight">
          <strong>Credential:</strong> {_e(d, "credential_name")}<br>
          <strong>Type:</strong> {_e(d, "credential_type")}<br>
          <strong>Expires:</strong> {_e(d, "expiry_date")}<br>
          <strong>Days Remaining:</strong> {_e(d, "days_remaining")}
        </div>
        <p>Please renew this credential to maintain compliance.</p>""",
        d, "View Credential", "credential_url",
    )


def _credential_text(d):
    return _text_layout(
        f"""Your credential is expiring soon:

Credential: {d.get('credential_name')}
Type: {d.get('credential_type')}
Expires: {d.get('expiry_date')}
Days Remaining: {d.get('days_remaining')}""",
        d,
    )


def _pd_html(d):
    extra = ""
    if d.get("pd_category"):
        extra += f"<strong>Category:</strong> {_e(d, 'pd_category')}<br>"
    if d.get("pd_hours"):
        extra += f"<strong>Hours:</strong> {_e(d, 'pd_hours')}<br>"
    return _layout(
        f"""<p>You have professional development activities due:</p>
        <div class="highlight">
          <strong>Activity:</strong> {_e(d, "pd_title")}<br>
          {extra}
          <strong>Due Date:</strong> {_e(d, "due_date")}<br>
          <strong>Days Remaining:</strong> {_e(d, "days_remaining")}
        </div>""",
        d, "View Activity", "pd_url",
    )


def _pd_text(d):
    return _text_layout(
        f"""You have professional development activities due:

Activity: {d.get('pd_title')}
Due Date: {d.get('due_date')}
Days Remaining: {d.get('days_remaining')}""",
        d,
    )


def _complaint_html(d):
    return _layout(
        f"""<p>A new complaint has been submitted and requires attention:</p>
        <div class="highlight">
          <strong>Complaint #:</strong> {_e(d, "complaint_id")}<br>
          <strong>Source:</strong> {_e(d, "source")}<br>
          <strong>Submitted:</strong> {_e(d, "submitted_at")}<br>
          <strong>Description:</strong> {_e(d, "description")}
        </div>
        <p>Complaints must be acknowledged within 2 business days.</p>""",
        d, "View Complaint", "complaint_url",
    )


def _complaint_text(d):
    return _text_layout(
        f"""A new complaint has been submitted and requires attention:

Complaint #: {d.get('complaint_id')}
Source: {d.get('source')}
Submitted: {d.get('submitted_at')}
Description: {d.get('description')}

Complaints must be acknowledged within 2 business days.""",
        d,
    )


def _welcome_html(d):
    return _layout(
        f"""<p>Welcome to {_e(d, "organisation", "the team")}! Your account has been created.</p>
        <div class="highlight">
          <strong>Email:</strong> {_e(d, "email")}<br>
          <strong>Department:</strong> {_e(d, "department")}<br>
          <strong>Onboarding tasks:</strong> {_e(d, "task_count", "0")}
        </div>
        <p>Please sign in and work through your onboarding checklist.</p>""",
        d, "Get Started", "login_url",
    )


def _welcome_text(d):
    return _text_layout(
        f"""Welcome! Your account has been created.

Email: {d.get('email')}
Department: {d.get('department')}
Onboarding tasks: {d.get('task_count', 0)}

Sign in: {d.get('login_url', '')}""",
        d,
    )


def _onboarding_reminder_html(d):
    return _layout(
        f"""<p>Your onboarding is not finished yet:</p>
        <div class="highlight">
          <strong>Workflow:</strong> {_e(d, "workflow_name")}<br>
          <strong>Progress:</strong> {_e(d, "progress", "0")}%<br>
          <strong>Tasks remaining:</strong> {_e(d, "remaining_tasks", "0")}
        </div>""",
        d, "Continue Onboarding", "onboarding_url",
    )


def _onboarding_reminder_text(d):
    return _text_layout(
        f"""Your onboarding is not finished yet:

Workflow: {d.get('workflow_name')}
Progress: {d.get('progress', 0)}%
Tasks remaining: {d.get('remaining_tasks', 0)}""",
        d,
    )


def _password_reset_html(d):
    return _layout(
        f"""<p>We received a request to reset your password. The link below is valid for
        {_e(d, "expires_minutes", "60")} minutes.</p>
        <p>If you did not request this, you can ignore this email.</p>""",
        d, "Reset Password", "reset_url",
    )


def _password_reset_text(d):
    return _text_layout(
        f"""We received a request to reset your password. This link is valid for {d.get('expires_minutes', 60)} minutes:

{d.get('reset_url', '')}

If you did not request this, you can ignore this email.""",
        d,
    )


DIGEST_SECTIONS = (
    ("policies", "Policy reviews due"),
    ("credentials", "Credentials expiring"),
    ("pd_items", "Professional development due"),
    ("complaints", "Open complaints"),
)


def _digest_items(d: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    return list(d.get(key) or [])[:DIGEST_SECTION_LIMIT]


def _digest_html(d):
    sections = []
    for key, heading in DIGEST_SECTIONS:
        items = _digest_items(d, key)
        if not items:
            continue
        rows = "".join(
            f"<li><strong>{escape(str(i.get('title', '')))}</strong> {escape(str(i.get('detail', '')))}</li>"
            for i in items
        )
        sections.append(f"<h3>{escape(heading)}</h3><ul>{rows}</ul>")
    body = "".join(sections) or "<p>No urgent items. You're all caught up.</p>"
    return _layout(f"<p>Here is your daily compliance summary:</p>{body}", d, "Open Dashboard", "dashboard_url")


def _digest_text(d):
    lines = ["Here is your daily compliance summary:", ""]
    empty = True
    for key, heading in DIGEST_SECTIONS:
        items = _digest_items(d, key)
        if not items:
            continue
        empty = False
        lines.append(f"{heading}:")
        lines.extend(f"  - {i.get('title', '')} {i.get('detail', '')}".rstrip() for i in items)
        lines.append("")
    if empty:
        lines.append("No urgent items. You're all caught up.")
    return _text_layout("\n".join(lines), d)


TEMPLATES: Dict[str, EmailTemplate] = {
    "policy-review-reminder": EmailTemplate(
        subject=lambda d: "Policy Review Due Soon",
        html=_policy_review_html,
        text=_policy_review_text,
    ),
    "credential-expiry-alert": EmailTemplate(
        subject=lambda d: "Credential Expiring Soon",
        html=_credential_html,
        text=_credential_text,
    ),
    "pd-due-reminder": EmailTemplate(
        subject=lambda d: "Professional Development Due",
        html=_pd_html,
        text=_pd_text,
    ),
    "complaint-notification": EmailTemplate(
        subject=lambda d: f"New Complaint Submitted (#{d.get('complaint_id', '')})",
        html=_complaint_html,
        text=_complaint_text,
    ),
    "welcome-onboarding": EmailTemplate(
        subject=lambda d: "Welcome to RTO Compliance Hub",
        html=_welcome_html,
        text=_welcome_text,
    ),
    "onboarding-reminder": EmailTemplate(
        subject=lambda d: "Reminder: Complete Your Onboarding",
        html=_onboarding_reminder_html,
        text=_onboarding_reminder_text,
    ),
    "password-reset": EmailTemplate(
        subject=lambda d: "Password Reset Request",
        html=_password_reset_html,
        text=_password_reset_text,
    ),
    "digest-summary": EmailTemplate(
        subject=lambda d: "Your Daily Compliance Digest",
        html=_digest_html,
        text=_digest_text,
    ),
}


def render_template(name: str, data: Dict[str, Any]) -> tuple[str, str, str]:
    """Return (subject, html, text) for a named template."""
    template = TEMPLATES.get(name)
    if template is None:
        raise UnknownTemplateError(f"Unknown email template: {name}")
    return template.subject(data), template.html(data), template.text(data)
