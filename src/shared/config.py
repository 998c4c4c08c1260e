from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Private PKI"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pki.db"

    # Subject template applied to every certificate (CN is set per certificate)
    PKI_SUBJECT_COUNTRY: Optional[str] = None
    PKI_SUBJECT_ORGANIZATION: Optional[str] = "Private PKI"
    PKI_SUBJECT_ORGANIZATIONAL_UNIT: Optional[str] = None

    # Authority
    PKI_CA_VALIDITY_YEARS: int = 10
    PKI_CA_KEY_SIZE: int = 4096
    PKI_BOOTSTRAP_AUTHORITY: bool = True

    # Leaf certificates
    PKI_LEAF_KEY_SIZE: int = 2048
    PKI_LEAF_SAN_IPS: str = "127.0.0.1"  # comma separated, empty disables
    PKI_GROUPS_EXTENSION_OID: str = "1.3.6.1.4.1.59214.1.1"

    # Operator API key (Argon2id hash of a pki_ key)
    OPERATOR_API_KEY_HASH: Optional[str] = None

    @property
    def leaf_san_ips(self) -> list[str]:
        return [ip.strip() for ip in self.PKI_LEAF_SAN_IPS.split(",") if ip.strip()]


settings = Settings()
