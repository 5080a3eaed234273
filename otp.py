"""
OTP ledger

One live record per email. Issuing deletes older records before inserting
the new one. A record verifies once, and only within the expiry window;
expiry is computed on verification, the TTL index only cleans up.
"""

import logging
import secrets
from datetime import timedelta

from context import AppContext
from database import as_utc
from errors import Internal, InvalidOtp, OtpExpired
from mailer import build_otp_message
from schemas import OtpRecord

logger = logging.getLogger(__name__)


def normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class OtpLedger:
    def __init__(self, context: AppContext):
        self.db = context.db
        self.mailer = context.mailer
        self.clock = context.clock
        self.expiry_minutes = context.settings.otp_expiry_minutes

    @property
    def records(self):
        return self.db["otp"]

    def issue(self, email: str) -> OtpRecord:
        email = normalize_email(email)
        self.records.delete_many({"email": email})

        record = OtpRecord(email=email, code=generate_code(), created_at=self.clock())
        result = self.records.insert_one(record.model_dump(exclude={"id", "verified_at"}))
        record.id = str(result.inserted_id)

        # The record stays live even if delivery fails
        try:
            self.mailer.send_email(build_otp_message(email, record.code, self.expiry_minutes))
        except Exception as e:
            logger.error("OTP dispatch failed for %s: %s", email, e)
            raise Internal("Failed to send OTP email", error=str(e)) from e

        logger.info("OTP issued for %s", email)
        return record

    def verify(self, email: str, code: str) -> OtpRecord:
        email = normalize_email(email)
        doc = self.records.find_one({"email": email, "code": str(code).strip(), "verified": False})
        if not doc:
            raise InvalidOtp()

        now = self.clock()
        age = now - as_utc(doc["created_at"])
        if age > timedelta(minutes=self.expiry_minutes):
            self.records.delete_one({"_id": doc["_id"]})
            logger.info("Expired OTP for %s discarded", email)
            raise OtpExpired()

        result = self.records.update_one(
            {"_id": doc["_id"], "verified": False},
            {"$set": {"verified": True, "verified_at": now}},
        )
        if result.matched_count == 0:
            raise InvalidOtp()
        self.db["user"].update_one(
            {"email": email},
            {"$set": {"email_verified": True, "updated_at": now}},
        )
        logger.info("OTP verified for %s", email)

        return OtpRecord(
            id=str(doc["_id"]),
            email=email,
            code=doc["code"],
            created_at=as_utc(doc["created_at"]),
            verified=True,
            verified_at=now,
        )
