"""Canonical target fields an import profile may map partner columns onto.

Profiles written by the configuration screens use camelCase keys
(``externalId``) while YAML documents and older profiles use snake_case or the
partner's own vocabulary (``job_id``). Every spelling resolves to one
canonical target through the alias map below.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Tuple

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class TargetField:
    """Metadata describing a mappable candidate-record field."""

    name: str
    aliases: Tuple[str, ...] = ()

    def keys(self) -> Tuple[str, ...]:
        return (self.name, *self.aliases)


PARTNER_EXTERNAL_ID = "partner_external_id"
ORDER_NUMBER = "order_number"
STATUS = "status"
ENGINEER = "engineer"
SCHEDULED_DATE = "scheduled_date"
CLIENT_NAME = "client_name"
CLIENT_EMAIL = "client_email"
CLIENT_PHONE = "client_phone"
JOB_ADDRESS = "job_address"
POSTCODE = "postcode"
SUB_PARTNER = "sub_partner"
TOTAL_AMOUNT = "total_amount"
INSTALLATION_NOTES = "installation_notes"

TARGET_FIELDS: Tuple[TargetField, ...] = (
    # Partner's own job reference; primary matching key.
    TargetField(
        name=PARTNER_EXTERNAL_ID,
        aliases=("external_id", "job_id", "job_ref"),
    ),
    # Internal order number; fallback matching key.
    TargetField(
        name=ORDER_NUMBER,
        aliases=("order_no", "order_ref"),
    ),
    # Partner's free-text job status.
    TargetField(
        name=STATUS,
        aliases=("partner_status", "job_status"),
    ),
    # Partner's engineer identifier, resolved via engineer mapping rules.
    TargetField(
        name=ENGINEER,
        aliases=("engineer_identifier", "assigned_engineer", "assigned_engineers"),
    ),
    # Installation date (DD/MM/YYYY or ISO-8601).
    TargetField(
        name=SCHEDULED_DATE,
        aliases=("scheduled_install_date", "install_date"),
    ),
    # End customer's full name.
    TargetField(
        name=CLIENT_NAME,
        aliases=("customer_name",),
    ),
    # End customer's email; used to link an existing client.
    TargetField(
        name=CLIENT_EMAIL,
        aliases=("customer_email",),
    ),
    # End customer's phone number.
    TargetField(
        name=CLIENT_PHONE,
        aliases=("customer_phone",),
    ),
    # Installation address.
    TargetField(
        name=JOB_ADDRESS,
        aliases=("address", "customer_address", "customer_address_line_1"),
    ),
    # Installation postcode.
    TargetField(
        name=POSTCODE,
        aliases=("post_code", "customer_address_post_code", "customer_postcode"),
    ),
    # Partner sub-account the job belongs to.
    TargetField(
        name=SUB_PARTNER,
        aliases=("partner_account",),
    ),
    # Quoted job value.
    TargetField(
        name=TOTAL_AMOUNT,
        aliases=("quote_amount", "amount"),
    ),
    # Free-text instructions for the installer.
    TargetField(
        name=INSTALLATION_NOTES,
        aliases=("notes", "instruction", "instructions"),
    ),
)


def normalize_key(key: str | None) -> str:
    """Return a snake_case token for a configuration key (``externalId`` -> ``external_id``)."""

    token = _CAMEL_BOUNDARY.sub(r"_\1", (key or "").strip())
    return _NON_ALNUM.sub("_", token.lower()).strip("_")


@lru_cache(maxsize=1)
def get_target_alias_map() -> Dict[str, str]:
    alias_map: Dict[str, str] = {}
    for target in TARGET_FIELDS:
        for key in target.keys():
            alias_map[normalize_key(key)] = target.name
    return alias_map


def resolve_target(key: str | None) -> str | None:
    """Map any accepted spelling of a target field to its canonical name."""

    return get_target_alias_map().get(normalize_key(key))

