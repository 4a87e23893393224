import os
from decimal import Decimal
from dotenv import load_dotenv

# Load .env
load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///compensation.db")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Placement matrix
MATRIX_WIDTH = int(os.getenv("MATRIX_WIDTH", "3"))
MATRIX_SEARCH_LIMIT = int(os.getenv("MATRIX_SEARCH_LIMIT", "1000"))  # Max nodes visited per placement search
PLACEMENT_RETRIES = int(os.getenv("PLACEMENT_RETRIES", "3"))

# Commissions
MAX_COMMISSION_LEVELS = int(os.getenv("MAX_COMMISSION_LEVELS", "7"))

# Payments
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "10"))

# Withdrawals
LOCK_IN_MONTHS = int(os.getenv("LOCK_IN_MONTHS", "12"))
PARTIAL_WITHDRAWAL_PROFIT_SHARE = Decimal(os.getenv("PARTIAL_WITHDRAWAL_PROFIT_SHARE", "0.5"))

# Profit distribution
VOTING_BONUS_RATE = Decimal(os.getenv("VOTING_BONUS_RATE", "0.05"))  # +5% of base community share
MONEY_QUANT = Decimal("0.01")

PERIOD_TYPES = ("monthly", "quarterly", "annual")

# Matrix statistics depth (3 + 9 + 27 positions)
MATRIX_REPORT_LEVELS = int(os.getenv("MATRIX_REPORT_LEVELS", "3"))
