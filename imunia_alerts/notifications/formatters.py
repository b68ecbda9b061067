"""
Formatters turning lots and appointments into notification content.

Messages are written in French for the deployed audience. The text body is
WhatsApp-friendly (``*bold*`` markup) and doubles as the plain-text email
part; the HTML body is used by email only.
"""

from html import escape
from typing import Optional
from datetime import datetime

import pytz

from imunia_alerts.models.domain import StockLot, Appointment
from imunia_alerts.notifications.models import NotificationTemplate


FRENCH_MONTHS = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre"
]

FRENCH_DAYS = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]

OWNER_LABELS = {
    "NATIONAL": "Niveau national",
    "REGIONAL": "Région",
    "DISTRICT": "District",
    "HEALTHCENTER": "Centre de santé",
}

SIGNATURE = "Imunia"


def format_french_date(moment: datetime, timezone: str = "Africa/Dakar", with_time: bool = True) -> str:
    """
    Format a datetime as e.g. ``lundi 20 octobre 2026 à 09:30``.

    Args:
        moment: Aware datetime
        timezone: Display timezone
        with_time: Append the hour

    Returns:
        Human readable French date
    """
    local = moment.astimezone(pytz.timezone(timezone))
    text = f"{FRENCH_DAYS[local.weekday()]} {local.day} {FRENCH_MONTHS[local.month - 1]} {local.year}"
    if with_time:
        text += f" à {local.strftime('%H:%M')}"
    return text


def _days_phrase(days_left: Optional[float]) -> str:
    if days_left is None or days_left <= 0:
        return "expiré"
    days = max(1, int(round(days_left)))
    return "dans 1 jour" if days == 1 else f"dans {days} jours"


class StockAlertFormatter:
    """Formats stock expiration alerts for lot managers."""

    @staticmethod
    def format_expiration_alert(lot: StockLot, days_left: Optional[float], recipient_name: Optional[str] = None,
                                timezone: str = "Africa/Dakar") -> NotificationTemplate:
        """
        Build the alert for one lot.

        Args:
            lot: Lot close to or past expiration
            days_left: Fractional days until expiration, <= 0 when expired
            recipient_name: Greeting name
            timezone: Display timezone for the expiration date

        Returns:
            NotificationTemplate with subject, text and HTML bodies
        """
        expired = days_left is None or days_left <= 0
        owner = lot.owner_name or OWNER_LABELS.get(lot.owner_type.value, lot.owner_type.value)
        expiration = lot.expiration_at
        expiration_text = format_french_date(expiration, timezone, with_time=False) if expiration else "inconnue"
        delay = _days_phrase(days_left)

        if expired:
            subject = f"Lot expiré : {lot.vaccine_name}"
            headline = "❌ *Lot de vaccins expiré*"
        else:
            subject = f"Alerte péremption : {lot.vaccine_name} ({delay})"
            headline = "⚠️ *Alerte péremption de stock*"

        greeting = f"Bonjour {recipient_name}," if recipient_name else "Bonjour,"

        lines = [
            greeting,
            "",
            headline,
            "",
            f"💉 Vaccin : {lot.vaccine_name}",
            f"📦 Lot : {lot.id}",
            f"🔢 Quantité : {lot.quantity} doses",
            f"🏥 Détenteur : {owner}",
            f"🗓️ Expiration : {expiration_text} ({delay})",
            "",
            "Merci de prendre les dispositions nécessaires.",
            "",
            SIGNATURE,
        ]

        html = f"""<html>
<body style="font-family: Arial, sans-serif; color: #333;">
  <p>{escape(greeting)}</p>
  <h2 style="color: {'#c0392b' if expired else '#e67e22'};">{escape(subject)}</h2>
  <table style="border-collapse: collapse;">
    <tr><td><strong>Vaccin</strong></td><td>{escape(lot.vaccine_name)}</td></tr>
    <tr><td><strong>Lot</strong></td><td>{escape(str(lot.id))}</td></tr>
    <tr><td><strong>Quantité</strong></td><td>{lot.quantity} doses</td></tr>
    <tr><td><strong>Détenteur</strong></td><td>{escape(owner)}</td></tr>
    <tr><td><strong>Expiration</strong></td><td>{escape(expiration_text)} ({escape(delay)})</td></tr>
  </table>
  <p>Merci de prendre les dispositions nécessaires.</p>
  <p>{SIGNATURE}</p>
</body>
</html>"""

        return NotificationTemplate(subject=subject, text_content="\n".join(lines), html_content=html)


class AppointmentReminderFormatter:
    """Formats vaccination reminders for parents."""

    @staticmethod
    def format_reminder(appointment: Appointment, parent_name: Optional[str] = None, overdue: bool = False,
                        timezone: str = "Africa/Dakar") -> NotificationTemplate:
        """
        Build the reminder for one appointment.

        Args:
            appointment: Pending appointment
            parent_name: Greeting name, defaults to the appointment's parent
            overdue: Whether the appointment date has already passed
            timezone: Display timezone for the appointment date

        Returns:
            NotificationTemplate with subject, text and HTML bodies
        """
        name = parent_name or appointment.parent_name
        greeting = f"Bonjour {name}," if name else "Bonjour,"
        scheduled = appointment.scheduled_at
        date_text = format_french_date(scheduled, timezone) if scheduled else "date à confirmer"
        vaccine = appointment.vaccine_name
        if appointment.dose:
            vaccine = f"{vaccine} (dose {appointment.dose})"

        if overdue:
            subject = f"Vaccination manquée : {appointment.child_name}"
            body = [
                f"Le rendez-vous de vaccination de {appointment.child_name} était prévu :",
                f"💉 {vaccine}",
                f"🗓️ {date_text}",
                "",
                "Merci de vous rendre au centre de santé dès que possible.",
            ]
        else:
            subject = f"Rappel : vaccination de {appointment.child_name}"
            body = [
                f"Rappel : vaccination de {appointment.child_name}",
                f"💉 {vaccine}",
                f"🗓️ {date_text}",
            ]
            if appointment.health_center_name:
                body.append(f"🏥 {appointment.health_center_name}")
            body.extend(["", "N'oubliez pas d'apporter le carnet !"])

        lines = [greeting, ""] + body + ["", SIGNATURE]

        html_body = "".join(f"<p>{escape(line)}</p>" for line in body if line)
        html = f"""<html>
<body style="font-family: Arial, sans-serif; color: #333;">
  <p>{escape(greeting)}</p>
  <h2 style="color: #2c7be5;">{escape(subject)}</h2>
  {html_body}
  <p>{SIGNATURE}</p>
</body>
</html>"""

        return NotificationTemplate(subject=subject, text_content="\n".join(lines), html_content=html)
