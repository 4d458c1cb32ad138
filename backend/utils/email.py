"""Email service using Brevo API for Dividee"""

import os
import logging
import requests
import html
from typing import Optional

# Configure logging
logger = logging.getLogger(__name__)

# Environment configuration
BREVO_API_KEY = os.getenv("BREVO_API_KEY")  # Your Brevo API key
FROM_EMAIL = os.getenv("FROM_EMAIL")  # Verified sender email in Brevo
FROM_NAME = os.getenv("FROM_NAME", "Dividee")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Brevo API endpoint
BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


def is_email_configured() -> bool:
    """Check if email service is properly configured"""
    return bool(BREVO_API_KEY and FROM_EMAIL)


def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: str
) -> bool:
    """
    Send an email via Brevo API

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML version of email body
        text_content: Plain text version of email body

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    if not is_email_configured():
        logger.error("Email service not configured: BREVO_API_KEY and FROM_EMAIL required")
        return False

    try:
        headers = {
            "accept": "application/json",
            "api-key": BREVO_API_KEY,
            "content-type": "application/json"
        }

        payload = {
            "sender": {
                "name": FROM_NAME,
                "email": FROM_EMAIL
            },
            "to": [
                {
                    "email": to_email
                }
            ],
            "subject": subject,
            "htmlContent": html_content,
            "textContent": text_content
        }

        response = requests.post(
            BREVO_API_URL,
            json=payload,
            headers=headers,
            timeout=10
        )

        if response.status_code == 201:
            try:
                message_id = response.json().get("messageId")
            except ValueError:
                message_id = None
            logger.info(f"Email sent successfully to {to_email} (Message ID: {message_id})")
            return True
        else:
            logger.error(f"Brevo API error ({response.status_code}): {response.text}")
            return False

    except requests.exceptions.Timeout:
        logger.error("Brevo API request timed out")
        return False
    except requests.exceptions.RequestException as e:
        logger.error(f"Brevo API request failed: {e}")
        return False


def send_group_invite_email(
    to_email: str,
    to_name: Optional[str],
    from_name: str,
    group_name: str,
    invite_code: str,
    group_id: int,
    message: Optional[str] = None
) -> bool:
    """
    Send a group invitation with a join link carrying the invite code

    Args:
        to_email: Email address of the invited user
        to_name: Full name of the invited user, if known
        from_name: Full name of the user sending the invitation
        group_name: Name of the group
        invite_code: The group's invite code
        group_id: ID of the group, used to build the join link
        message: Optional personal note from the inviter

    Returns:
        bool: True if email sent successfully
    """
    join_link = f"{FRONTEND_URL}/groups/{group_id}/join?code={invite_code}"

    safe_to_name = html.escape(to_name or to_email)
    safe_from_name = html.escape(from_name)
    safe_group_name = html.escape(group_name)
    note_html = f'<div class="info"><p>{html.escape(message)}</p></div>' if message else ""
    note_text = f"\n{message}\n" if message else ""

    subject = f"{from_name} invited you to join {group_name} on Dividee"

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background-color: #4F46E5; color: white; padding: 20px; text-align: center; }}
            .content {{ padding: 20px; background-color: #f9f9f9; }}
            .button {{ display: inline-block; padding: 12px 24px; background-color: #4F46E5; color: white; text-decoration: none; border-radius: 5px; margin: 20px 0; }}
            .info {{ background-color: #EFF6FF; border-left: 4px solid #4F46E5; padding: 10px; margin: 20px 0; }}
            .code {{ font-family: monospace; font-size: 18px; letter-spacing: 2px; }}
            .footer {{ padding: 20px; text-align: center; font-size: 12px; color: #666; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>Group Invitation</h1>
            </div>
            <div class="content">
                <p>Hi {safe_to_name},</p>
                <p><strong>{safe_from_name}</strong> invited you to share subscriptions in the group <strong>{safe_group_name}</strong>.</p>
                {note_html}
                <p>Your invite code is <span class="code">{invite_code}</span>.</p>
                <p style="text-align: center;">
                    <a href="{join_link}" class="button">Join Group</a>
                </p>
            </div>
            <div class="footer">
                <p>This is an automated message from Dividee. Please do not reply to this email.</p>
            </div>
        </div>
    </body>
    </html>
    """

    text_content = f"""
Hi {to_name or to_email},

{from_name} invited you to share subscriptions in the group {group_name}.
{note_text}
Your invite code is {invite_code}.

Join the group here:
{join_link}

---
This is an automated message from Dividee.
    """

    return send_email(to_email, subject, html_content, text_content)
