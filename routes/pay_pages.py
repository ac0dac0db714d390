from flask import Blueprint, current_app

pay_pages_bp = Blueprint("pay_pages", __name__)

@pay_pages_bp.get("/pay/success")
def pay_success():
    # Simple page Stripe redirects to after payment
    base_url = current_app.config.get("FRONTEND_BASE_URL", "").rstrip("/")
    bookings_url = f"{base_url}/dashboard/bookings"
    return """
    <html>
      <head><title>Payment Received</title></head>
      <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
        <h1>Payment Received</h1>
        <p>Thank you. Your session is confirmed as soon as the payment provider notifies us, usually within a minute.</p>
        <p>You can follow the status under <b>My Bookings</b>.</p>
        <a href=\"""" + bookings_url + """\" style="display: inline-block; padding: 12px 18px; background: #1e3a8a; color: white; text-decoration: none; border-radius: 8px; font-weight: 600;">Go to My Bookings</a>
      </body>
    </html>
    """, 200

@pay_pages_bp.get("/pay/cancel")
def pay_cancel():
    base_url = current_app.config.get("FRONTEND_BASE_URL", "").rstrip("/")
    return """
    <html>
      <head><title>Payment Cancelled</title></head>
      <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
        <h1>Payment Cancelled</h1>
        <p>No payment was taken. Your slot stays reserved until the reservation expires, so you can retry the payment or choose to pay later.</p>
        <a href=\"""" + base_url + """/book\">Back to booking</a>
      </body>
    </html>
    """, 200
