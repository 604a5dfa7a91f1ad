from __future__ import annotations

CODE_ISSUE_MAX_ROUNDS = 5
PURCHASE_SOURCES = ("CHECKOUT", "ADMIN_GRANT")
