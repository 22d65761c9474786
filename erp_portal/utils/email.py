# erp_portal/utils/email.py
import logging
import smtplib

from flask import current_app
from flask_mail import Message
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from erp_portal.utils.errors import MailDeliveryError

logger = logging.getLogger(__name__)

RESET_SALT = "password-reset-salt"
RESET_MAX_AGE = 3600


def _sender(display_name):
    address = current_app.config.get("MAIL_DEFAULT_SENDER") or current_app.config.get("MAIL_USERNAME")
    return (display_name, address) if address else None


def send_password_reset_email(mail, to_email, reset_link):
    """
    Mail a password reset link.

    Does nothing (with a warning) when there is no recipient. Any SMTP failure
    is raised as MailDeliveryError; the caller turns that into a 500.
    """
    if not to_email:
        logger.warning("⚠️ Skipping password reset email: recipient address is missing.")
        return False

    msg = Message(
        "Action Required: Password Reset for School ERP Account",
        sender=_sender("School ERP Admin"),
        recipients=[to_email],
    )
    msg.html = f"""
        <p>Hello,</p>
        <p>We received a request to reset the password for your School ERP account.
           If you made this request, please click the secure link below:</p>
        <a href="{reset_link}" style="background-color:#005A9C;color:white;padding:10px 15px;
           text-decoration:none;border-radius:5px;display:inline-block;margin:15px 0;font-weight:bold;">
            Reset Your Password
        </a>
        <p style="font-size:12px;color:#555;">This secure link is valid for <strong>60 minutes</strong>.</p>
        <p>If you did not request a password reset, you can safely ignore this email.</p>
        <p>Regards,<br>School ERP System Administrator</p>
    """

    try:
        mail.send(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("🚨 Failed to send password reset email to %s: %s", to_email, e)
        raise MailDeliveryError(
            "Failed to send notification email. Please check server logs for SMTP errors."
        ) from e

    logger.info("📧 Password reset email sent to %s", to_email)
    return True


def send_payment_email(mail, to, student_name, amount, txn_id):
    """Fee payment confirmation. Returns False instead of raising when SMTP fails."""
    msg = Message(
        "Payment Confirmation - Fee Received",
        sender=_sender("School ERP Finance"),
        recipients=[to],
    )
    msg.html = f"""
        <div style="font-family:Arial,sans-serif;padding:20px;border:1px solid #eee;border-radius:10px;max-width:600px;">
            <h2 style="color:#22c55e;">Payment Successful!</h2>
            <p>Dear <b>{student_name}</b>,</p>
            <p>We have successfully received your fee payment of <b>₹{amount}</b>.</p>
            <p><b>Transaction ID:</b> <span style="color:#4f46e5;">{txn_id}</span></p>
            <p>Your student account has been updated. You can view or download your official
               receipt from your student portal.</p>
            <hr style="border:0;border-top:1px solid #eee;margin:20px 0;">
            <p style="font-size:12px;color:#666;">Regards,<br><b>Accounts Department</b><br>School ERP System</p>
        </div>
    """

    try:
        mail.send(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("❌ Payment email to %s failed: %s", to, e)
        return False

    logger.info("✅ Payment email sent to %s", to)
    return True


def generate_reset_token(secret_key, email, backend_token):
    serializer = URLSafeTimedSerializer(secret_key)
    return serializer.dumps({"email": email, "token": backend_token}, salt=RESET_SALT)


def verify_reset_token(token, max_age=RESET_MAX_AGE):
    """Return the signed {email, token} payload, or None when expired or tampered with."""
    serializer = URLSafeTimedSerializer(current_app.config["SECRET_KEY"])
    try:
        return serializer.loads(token, salt=RESET_SALT, max_age=max_age)
    except (SignatureExpired, BadSignature):
        return None
