import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from html import escape

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@example.com")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "FOPD Signing")

def format_sender_name(requester_name: str | None = None) -> str:
    base_label = (DEFAULT_SENDER_NAME or "FOPD Signing").strip() or "FOPD Signing"
    if requester_name:
        plain = requester_name.strip()
        if plain:
            return f"{plain} via {base_label}"
    return base_label

def send_email(
    to: str,
    subject: str,
    body: str,
    html_body: str | None = None,
    attachments: list | None = None,
    sender_name: str | None = None,
    reply_to: str | None = None,
):
    attachments = attachments or []
    display_name = (sender_name or DEFAULT_SENDER_NAME).strip()
    from_value = formataddr((display_name, DEFAULT_SENDER)) if display_name else DEFAULT_SENDER
    if SMTP_USER and SMTP_PASSWORD:
        msg = EmailMessage()
        msg["From"] = from_value
        if reply_to:
            msg["Reply-To"] = reply_to
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body or "")
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        for attachment in attachments:
            if not attachment:
                continue
            filename = attachment.get("filename") or "attachment"
            content = attachment.get("content")
            maintype = attachment.get("maintype", "application")
            subtype = attachment.get("subtype", "octet-stream")
            if content is None:
                continue
            msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as smtp:
            smtp.starttls()
            smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    else:
        print(f"""
--- EMAIL (stub) ---
From: {from_value}
Reply-To: {reply_to or "(not set)"}
To: {to}
Subject: {subject}

{body}

HTML:
{html_body or "(none)"}

Attachments: {len(attachments)} file(s)
--------------------
""")

def send_otp_email(to: str, code: str, document_name: str, ttl_minutes: int):
    subject = f"Your signing code for {document_name}"
    body = (
        f"Use the code below to confirm your signature on {document_name}.\n\n"
        f"    {code}\n\n"
        f"The code expires in {ttl_minutes} minutes and can be used once. "
        "If you did not request it, ignore this message."
    )
    html_body = f"""
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px;">
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">Confirm your signature</h2>
      <p style="font-size: 14px; color: #1e293b;">Use this code to sign <strong>{escape(document_name)}</strong>:</p>
      <p style="font-size: 28px; letter-spacing: 6px; font-weight: 700; color: #0f172a;">{escape(code)}</p>
      <p style="font-size: 12px; color: #64748b;">Expires in {ttl_minutes} minutes. Single use.</p>
    </div>
  </body>
</html>
"""
    send_email(to, subject, body, html_body=html_body)

def send_invitation_email(to: str, inviter_name: str, property_title: str, invitation_token: str, expires_at):
    subject = f"{inviter_name} invited you to co-own {property_title}"
    body = (
        f"{inviter_name} has reserved a co-ownership slot for you in {property_title}.\n\n"
        f"Invitation code: {invitation_token}\n\n"
        f"The invitation expires on {expires_at:%Y-%m-%d}."
    )
    send_email(to, subject, body, sender_name=format_sender_name(inviter_name))
