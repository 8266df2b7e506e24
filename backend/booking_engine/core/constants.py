"""Engine-wide constants for slot arithmetic and ledger limits."""

from __future__ import annotations

# Slot grid: each UTC day is split into 96 fifteen-minute slots
SLOT_MINUTES = 15
SLOTS_PER_DAY = 96
MAX_SLOT_INDEX = SLOTS_PER_DAY - 1
SLOTS_PER_HOUR = 60 // SLOT_MINUTES

# Credit duration classes (minutes)
MIN_DURATION_CLASS = 15
MAX_DURATION_CLASS = 180

# Redis lock namespace
LOCK_NAMESPACE = "booking_engine"
