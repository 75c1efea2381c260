# Overview: Best-effort SMS notifications over the Twilio REST API.

from __future__ import annotations

import httpx
from flask import Flask, current_app


TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class TwilioSmsClient:
    def __init__(self, account_sid: str, auth_token: str, from_number: str, *, timeout_seconds: float = 5.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, to: str, body: str) -> bool:
        """True when the provider accepted the message. Never raises."""
        if not self.enabled or not (to or "").strip():
            return False
        try:
            response = httpx.post(
                TWILIO_MESSAGES_URL.format(sid=self.account_sid),
                data={"To": to, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            current_app.logger.warning("SMS to %s failed: %s", to, exc)
            return False
        return True


def init_sms_client(app: Flask) -> None:
    cfg = app.config
    app.extensions["sms_client"] = TwilioSmsClient(
        cfg.get("TWILIO_ACCOUNT_SID", ""),
        cfg.get("TWILIO_AUTH_TOKEN", ""),
        cfg.get("TWILIO_FROM_NUMBER", ""),
        timeout_seconds=float(cfg.get("SMS_TIMEOUT_SECONDS", 5)),
    )


def get_sms_client():
    return current_app.extensions["sms_client"]
