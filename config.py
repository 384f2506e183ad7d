from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "smart_tech_shop"

    # Auth
    SECRET_KEY: str = "supersecretkeychange"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 8
    ADMIN_EMAIL: str = "admin@smarttech.shop"

    # Razorpay
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    CURRENCY: str = "INR"

    # UPI
    UPI_PAYEE_ID: str = "smarttech@oksbi"
    UPI_PAYEE_NAME: str = "Smart Tech Shop"

    # Mail
    MAIL_HOST: str = "smtp.gmail.com"
    MAIL_PORT: int = 587
    MAIL_USER: str = ""
    MAIL_PASS: str = ""

    UPLOAD_DIR: str = "uploads"
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000


settings = Settings()
