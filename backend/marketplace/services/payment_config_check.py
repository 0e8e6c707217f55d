"""Report whether the payment integrations are ready to take traffic.

Checks provider credentials from ``Settings`` and the order/payment schema
on a live engine. Used by ``scripts/verify_payment_config.py``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import Settings
from .payments.providers import GATEWAYS

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: Dict[str, tuple] = {
    "orders": ("id", "buyer_id", "total_amount", "status", "payment_status", "payment_method"),
    "payments": (
        "id",
        "order_id",
        "payment_method",
        "provider_reference",
        "status",
        "amount",
        "currency",
        "metadata",
    ),
}


@dataclass
class ProviderCheck:
    name: str
    configured: bool
    warnings: List[str] = field(default_factory=list)


@dataclass
class SchemaCheck:
    table: str
    exists: bool
    missing_columns: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exists and not self.missing_columns


@dataclass
class ConfigReport:
    providers: List[ProviderCheck]
    schema: List[SchemaCheck]
    database_error: str = ""

    @property
    def ok(self) -> bool:
        return (
            not self.database_error
            and any(p.configured for p in self.providers)
            and all(s.ok for s in self.schema)
        )

    def lines(self) -> List[str]:
        out = []
        for p in self.providers:
            out.append(f"{p.name}: {'configured' if p.configured else 'not configured'}")
            out.extend(f"  warning: {w}" for w in p.warnings)
        if self.database_error:
            out.append(f"database: {self.database_error}")
        for s in self.schema:
            if not s.exists:
                out.append(f"table {s.table}: missing")
            elif s.missing_columns:
                out.append(f"table {s.table}: missing columns {', '.join(s.missing_columns)}")
            else:
                out.append(f"table {s.table}: ok")
        return out


def check_providers(settings: Settings) -> List[ProviderCheck]:
    checks = []
    for name, gateway_cls in GATEWAYS.items():
        gateway = gateway_cls(settings)
        check = ProviderCheck(name=name, configured=gateway.is_configured())
        if name == "cardlink" and check.configured and not settings.CARDLINK_WEBHOOK_SECRET:
            check.warnings.append("CARDLINK_WEBHOOK_SECRET is empty; webhooks will be rejected")
        if name == "formpay" and check.configured and not settings.FORMPAY_PASSPHRASE:
            check.warnings.append("FORMPAY_PASSPHRASE is empty; signatures are unsalted")
        checks.append(check)
    return checks


def check_schema(engine: Engine) -> List[SchemaCheck]:
    """Raises ``SQLAlchemyError`` if the database cannot be reached."""
    insp = inspect(engine)
    tables = set(insp.get_table_names())
    checks = []
    for table, required in REQUIRED_COLUMNS.items():
        if table not in tables:
            checks.append(SchemaCheck(table=table, exists=False))
            continue
        cols = {c["name"] for c in insp.get_columns(table)}
        checks.append(
            SchemaCheck(table=table, exists=True, missing_columns=[c for c in required if c not in cols])
        )
    return checks


def run_checks(settings: Settings, engine: Engine) -> ConfigReport:
    providers = check_providers(settings)
    try:
        schema = check_schema(engine)
    except SQLAlchemyError as exc:
        logger.error("Payment schema check failed: %s", exc)
        return ConfigReport(providers=providers, schema=[], database_error=str(exc))
    return ConfigReport(providers=providers, schema=schema)


def mask_url(url: str) -> str:
    """Hide the password part of a database URL."""
    return re.sub(r"(://[^:/@]+:)([^@]+)(@)", r"\1****\3", url)
