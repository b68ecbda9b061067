"""
Imunia Alerts - vaccination notification engine.

Scans vaccine stock for lots close to expiration and vaccination
appointments due soon, and notifies staff and parents over WhatsApp or
email on a cron schedule.
"""

__version__ = "1.0.0"
