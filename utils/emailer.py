import smtplib
from email.message import EmailMessage

from flask import current_app


def send_email(to_email: str, subject: str, body: str):
    """Returns (sent, error)."""
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    use_tls = current_app.config.get("SMTP_USE_TLS", True)

    if not host or not from_email:
        return False, "Email not configured"
    if not to_email:
        return False, "No recipient"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)


def booking_event_email(event):
    """Builds (to, subject, body) for an outbox event."""
    booking = event.booking
    base_url = current_app.config.get("FRONTEND_BASE_URL", "").rstrip("/")
    if booking is None:
        user = event.user
        lines = [
            f"Hi {user.name or 'there'},",
            "",
            event.message,
            "",
            f"Open your messages: {base_url}/dashboard/contact",
            "",
            "Thank you",
        ]
        return user.email, event.message, "\n".join(lines)

    lines = [f"Hi {booking.name},", "", event.message]
    if event.event_type == "booking.confirmed":
        lines += [
            "",
            f"Booking reference: {booking.id}",
            f"Payment status: {booking.payment_status.replace('_', ' ')}",
        ]
    if booking.meeting_link:
        lines += ["", f"Meeting link: {booking.meeting_link}"]
    lines += ["", f"Manage your bookings: {base_url}/dashboard/bookings", "", "Thank you"]
    return booking.email, event.message, "\n".join(lines)
