"""
HTML bodies for customer emails
"""
from datetime import datetime
from html import escape
from typing import Dict, List, Optional

_WRAPPER = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f7fafc;">
  <table role="presentation" style="width: 100%; max-width: 600px; margin: 0 auto; background-color: white;">
    <tr>
      <td style="background-color: #4c51bf; padding: 30px; text-align: center;">
        <h1 style="color: white; margin: 0; font-size: 24px;">{title}</h1>
      </td>
    </tr>
    <tr>
      <td style="padding: 40px 30px;">
{body}
      </td>
    </tr>
  </table>
</body>
</html>"""

_PARAGRAPH = '        <p style="color: #2d3748; font-size: 16px; line-height: 1.6; margin: 0 0 20px 0;">{}</p>'


def format_tour_date(value: Optional[str]) -> str:
    """'2025-06-12' -> 'June 12, 2025'; anything unparseable is returned as is"""
    if not value:
        return ""
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return value
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def _details_box(location: str, tour_date: str, tour_time: str) -> str:
    rows = []
    if location:
        rows.append(f"<p style=\"margin: 0 0 10px 0;\"><strong>Location:</strong> {escape(location)}</p>")
    if tour_date:
        rows.append(f"<p style=\"margin: 0;\"><strong>Date:</strong> {escape(tour_date)} {escape(tour_time or '')}</p>")
    if not rows:
        return ""
    return (
        '        <table role="presentation" style="width: 100%; background-color: #edf2f7; '
        'border-radius: 8px; padding: 20px; margin-bottom: 30px;"><tr><td>'
        + "".join(rows)
        + "</td></tr></table>"
    )


def ticket_email_html(
    customer_name: str,
    tour_name: str,
    tour_date: str,
    tour_time: str,
    location: str = "",
    recommended_tours: Optional[List[Dict[str, str]]] = None,
    download_link: Optional[str] = None,
) -> str:
    parts = [
        _PARAGRAPH.format(f"Hello {escape(customer_name.strip() or 'there')},"),
        _PARAGRAPH.format(f"Your tickets for <strong>{escape(tour_name)}</strong> are attached to this email."),
        _details_box(location, format_tour_date(tour_date), tour_time),
        _PARAGRAPH.format("Please show the tickets on your phone or printed at the entrance."),
    ]
    if download_link:
        parts.append(_PARAGRAPH.format(
            f'You can also <a href="{escape(download_link, quote=True)}">download your tickets here</a>.'
        ))

    if recommended_tours:
        links = "".join(
            f'<li><a href="{escape(tour["url"], quote=True)}">{escape(tour["name"])}</a></li>'
            for tour in recommended_tours
        )
        parts.append(_PARAGRAPH.format("You might also like these tours:"))
        parts.append(f'        <ul style="color: #2d3748; font-size: 16px;">{links}</ul>')

    return _WRAPPER.format(title=f"Your {escape(tour_name)} Tickets", body="\n".join(p for p in parts if p))


def reserved_email_html(customer_name: str, tour_date: str, tour_time: str, location: str = "") -> str:
    parts = [
        _PARAGRAPH.format(f"Hello {escape(customer_name.strip() or 'there')},"),
        _PARAGRAPH.format("Thank you for booking your tour with us!"),
        _PARAGRAPH.format(
            "Your ticket(s) are reserved. Because your tour is still far in advance, tickets "
            "have not been released yet (usually 15 to 30 days before the visit)."
        ),
        _PARAGRAPH.format("You don't need to take any further action. We'll make sure they arrive on time."),
        _details_box(location, format_tour_date(tour_date), tour_time),
    ]
    return _WRAPPER.format(title="We've Reserved Your Spot(s)", body="\n".join(p for p in parts if p))


def booking_receipt_html(
    tour_name: str,
    order_id: str,
    tour_date: str,
    tour_time: str,
    currency: str,
    total: float,
    tickets: List[Dict],
) -> str:
    rows = "".join(
        f"<tr><td style=\"padding: 10px;\"><strong>{escape(str(t.get('type', '')))}</strong></td>"
        f"<td style=\"padding: 10px; text-align: center;\">x{int(t.get('quantity') or 0)}</td>"
        f"<td style=\"padding: 10px; text-align: right;\">"
        f"{escape(currency)} {float(t.get('price') or 0) * int(t.get('quantity') or 0):.2f}</td></tr>"
        for t in tickets
    )
    parts = [
        _PARAGRAPH.format(
            "This is your receipt. Your final confirmation and tickets will be emailed to you shortly."
        ),
        _PARAGRAPH.format(f"<strong>Order:</strong> {escape(order_id)}"),
        _details_box("", format_tour_date(tour_date), tour_time),
        f'        <table role="presentation" style="width: 100%; color: #2d3748;">{rows}'
        f'<tr><td style="padding: 10px;" colspan="2"><strong>Total</strong></td>'
        f'<td style="padding: 10px; text-align: right;"><strong>{escape(currency)} {total:.2f}</strong></td></tr>'
        f"</table>",
    ]
    return _WRAPPER.format(title=escape(tour_name), body="\n".join(p for p in parts if p))
