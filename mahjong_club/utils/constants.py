"""
Constants used across the tournament engine.

Values that operators may want to tune are read from the environment.
"""

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

# Scoring
DEFAULT_STARTING_POINT_VALUE = int(os.getenv("DEFAULT_STARTING_POINT_VALUE", "25000"))
RANK_UMA = {1: 30, 2: 10, 3: -10, 4: -30}  # Rank bonus added on top of the normalized score
VALID_TABLE_TOTALS = (100000, 120000)  # sum(scores) + points left on the table
UMA_QUANTUM = Decimal("0.001")  # Scores are whole points, so UMA is exact in thousandths

# Pairing
TABLE_SIZE = 4
PAIRING_ITERATIONS = int(os.getenv("PAIRING_ITERATIONS", "10000"))
WHEEL_PLAYERS_PER_ROUND = 12  # Wheel is used once active > 12 * (round - 1) + 4
PAIRING_STRATEGY = os.getenv("PAIRING_STRATEGY", "default").lower()

# Registration
WAITLIST_PROMOTION = os.getenv("WAITLIST_PROMOTION", "manual").lower()  # "manual" or "auto"
SIGNUP_RATE_LIMIT = os.getenv("SIGNUP_RATE_LIMIT", "20/minute")

# Listing
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
