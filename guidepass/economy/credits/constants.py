from __future__ import annotations

BASE_FREE_ALLOWANCE = 2
UNLIMITED_USAGE_LIMIT = 1_000_000
CREDIT_COST_PER_GUIDE = 1
