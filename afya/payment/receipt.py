from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas


def render_receipt(payment, appointment):
    """Render a PDF receipt for a completed payment and return the buffer."""
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    # Header
    c.setFillColor(colors.HexColor('#0f766e'))
    c.rect(0, height-40, width, 40, fill=1, stroke=0)
    c.setFillColor(colors.white)
    c.setFont('Helvetica-Bold', 16)
    c.drawString(20*mm, height-28, 'AFYA CONNECT - Session Payment Receipt')

    y = height - 60
    c.setFillColor(colors.black)
    c.setFont('Helvetica-Bold', 12)
    c.drawString(20*mm, y, 'M-Pesa Receipt:')
    c.setFont('Helvetica', 12)
    c.drawString(65*mm, y, payment.mpesa_receipt or '')
    y -= 10*mm

    # Payment
    c.setFont('Helvetica-Bold', 12)
    c.drawString(20*mm, y, 'Payment')
    y -= 6*mm
    c.setFont('Helvetica', 11)
    c.drawString(22*mm, y, f"Amount Paid: KES {payment.amount:,.2f}")
    y -= 5*mm
    c.drawString(22*mm, y, f"Phone: {payment.phone}")
    y -= 5*mm
    if payment.transaction_date:
        c.drawString(22*mm, y, f"Date: {payment.transaction_date.strftime('%Y-%m-%d %H:%M')}")
        y -= 5*mm
    c.drawString(22*mm, y, f"Reference: {payment.id}")
    y -= 8*mm

    # Session
    c.setFont('Helvetica-Bold', 12)
    c.drawString(20*mm, y, 'Session')
    y -= 6*mm
    c.setFont('Helvetica', 11)
    therapist = appointment.therapist
    if therapist is not None and therapist.user is not None:
        c.drawString(22*mm, y, f"Therapist: {therapist.user.full_name}")
        y -= 5*mm
    c.drawString(22*mm, y, f"Scheduled: {appointment.scheduled_at.strftime('%Y-%m-%d %H:%M')}")
    y -= 5*mm
    c.drawString(22*mm, y, f"Duration: {appointment.duration} min  Type: {appointment.session_type.title()}")
    y -= 5*mm
    c.drawString(22*mm, y, f"Status: {appointment.status.replace('_', ' ').title()}")

    # Footer
    c.setFont('Helvetica-Oblique', 9)
    c.setFillColor(colors.grey)
    c.drawString(20*mm, 15*mm, 'Join your session from your dashboard a few minutes before the scheduled time.')
    c.drawString(20*mm, 10*mm, 'Thank you for choosing Afya Connect.')

    c.showPage()
    c.save()
    buffer.seek(0)
    return buffer
