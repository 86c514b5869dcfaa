from __future__ import annotations

from ..rates.models import (
    CONVENTIONAL_15,
    CONVENTIONAL_30,
    FHA_30,
    JUMBO_30,
    VA_30,
)

ALERT_KIND = "rate_alert"

# Spam control
COOLDOWN_HOURS = 24

ROLE_OWNER = "owner"
ROLE_CLIENT = "client"
CHANNEL_EMAIL = "email"

# Client loan-type labels as entered in the CRM
LOAN_TYPE_LABELS = {
    "30yr": CONVENTIONAL_30,
    "30yr_fixed": CONVENTIONAL_30,
    "conventional": CONVENTIONAL_30,
    "30yr_conventional": CONVENTIONAL_30,
    "15yr": CONVENTIONAL_15,
    "15yr_fixed": CONVENTIONAL_15,
    "15yr_conventional": CONVENTIONAL_15,
    "fha": FHA_30,
    "30yr_fha": FHA_30,
    "va": VA_30,
    "30yr_va": VA_30,
    "jumbo": JUMBO_30,
    "30yr_jumbo": JUMBO_30,
}

DEFAULT_SERIES = CONVENTIONAL_30
