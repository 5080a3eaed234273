import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "smFurnishing"
    jwt_secret: str = "change-me-in-production-please-32b"
    jwt_expires_days: int = 7
    resend_api_key: str = ""
    email_sender: str = "Info@smfurnishings.com"
    otp_expiry_minutes: int = 10
    cart_max_retries: int = 5
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expires_days=int(os.getenv("JWT_EXPIRES_DAYS", cls.jwt_expires_days)),
            resend_api_key=os.getenv("RESEND_API_KEY", cls.resend_api_key),
            email_sender=os.getenv("EMAIL_SENDER", cls.email_sender),
            otp_expiry_minutes=int(os.getenv("OTP_EXPIRY_MINUTES", cls.otp_expiry_minutes)),
            cart_max_retries=int(os.getenv("CART_MAX_RETRIES", cls.cart_max_retries)),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            port=int(os.getenv("PORT", cls.port)),
        )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
