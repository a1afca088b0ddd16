from dataclasses import dataclass, field


@dataclass
class AppConfig:
    name: str
    secret_key: str
    public_url: str
    currency: str


@dataclass
class StripeConfig:
    secret_key: str
    webhook_secret: str
    base_fee_price_id: str
    plan_price_ids: dict = field(default_factory=dict)
    webhook_tolerance: int = 300


@dataclass
class ProfilePollingConfig:
    max_attempts: int = 5
    delay_ms: int = 100
