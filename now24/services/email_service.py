"""
Email service for order notifications.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Keeps dev and test environments from trying to reach an SMTP server.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def send_order_email(to_email: str, title: str, body: str, order_number: str = '') -> bool:
    """
    Send an order status e-mail.

    Returns:
        True if sent (or mail disabled), False on SMTP failure
    """
    try:
        if not mail_enabled():
            logger.warning(f"[MAIL DISABLED] Order email '{title}' skipped for {to_email}")
            return True

        html_body = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="font-family: Arial, sans-serif; color: #333;">
            <div style="max-width: 600px; margin: auto; padding: 20px;">
                <h2 style="color: #e4002b;">{title}</h2>
                <p>{body}</p>
                <p style="font-size: 13px; color: #666;">Pedido {order_number}</p>
            </div>
        </body>
        </html>
        """

        msg = Message(
            subject=f"{title} {order_number}".strip(),
            recipients=[to_email],
            body=body,
            html=html_body,
        )
        mail.send(msg)
        logger.info(f"[EMAIL] Order email '{title}' sent to {to_email}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] Error sending order email: {e}")
        return False
