"""Static lookup tables used while normalizing extracted transactions.

All tables are read-only mappings built once at import time. The exchange
rates are approximate and only used for display conversion.
"""
from decimal import Decimal
from types import MappingProxyType

from inbox_ledger.models import Category, TransactionType

CATEGORY_VALUES: frozenset[str] = frozenset(c.value for c in Category)
TRANSACTION_TYPE_VALUES: frozenset[str] = frozenset(t.value for t in TransactionType)

# Value of one unit of each currency expressed in CAD.
EXCHANGE_RATES = MappingProxyType({
    "CAD": Decimal("1.00"),
    "USD": Decimal("1.36"),
    "EUR": Decimal("1.47"),
    "GBP": Decimal("1.72"),
    "AUD": Decimal("0.89"),
    "INR": Decimal("0.016"),
    "JPY": Decimal("0.0091"),
    "MXN": Decimal("0.079"),
    "CHF": Decimal("1.53"),
    "CNY": Decimal("0.19"),
})

# Checked in order; the first matching marker wins, so ambiguous "$" is last.
CURRENCY_SYMBOLS: tuple[tuple[str, str], ...] = (
    ("C$", "CAD"),
    ("CA$", "CAD"),
    ("CAD", "CAD"),
    ("US$", "USD"),
    ("USD", "USD"),
    ("A$", "AUD"),
    ("€", "EUR"),
    ("EUR", "EUR"),
    ("£", "GBP"),
    ("GBP", "GBP"),
    ("₹", "INR"),
    ("INR", "INR"),
    ("Rs.", "INR"),
    ("¥", "JPY"),
)

# Keyword (lower-case) -> institution display name. Keywords marked with a
# leading "=" must match a whole word.
INSTITUTION_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("cibc", "CIBC"),
    ("=td", "TD"),
    ("tdcanadatrust", "TD"),
    ("td bank", "TD"),
    ("rbc", "RBC"),
    ("royal bank", "RBC"),
    ("scotiabank", "Scotiabank"),
    ("bmo", "BMO"),
    ("bank of montreal", "BMO"),
    ("tangerine", "Tangerine"),
    ("simplii", "Simplii"),
    ("desjardins", "Desjardins"),
    ("americanexpress", "Amex"),
    ("american express", "Amex"),
    ("amex", "Amex"),
    ("chase", "Chase"),
    ("capital one", "Capital One"),
    ("capitalone", "Capital One"),
    ("wells fargo", "Wells Fargo"),
    ("citi", "Citi"),
    ("hsbc", "HSBC"),
    ("wealthsimple", "Wealthsimple"),
    ("paypal", "PayPal"),
    ("interac", "Interac"),
    ("remitly", "Remitly"),
    ("wise.com", "Wise"),
)

# Cleaned merchant (lower-case) -> canonical brand name.
MERCHANT_ALIASES = MappingProxyType({
    "amzn": "Amazon",
    "amzn mktp": "Amazon",
    "amzn mktp ca": "Amazon",
    "amzn mktp us": "Amazon",
    "amazon.ca": "Amazon",
    "amazon.com": "Amazon",
    "amazon mktplace": "Amazon",
    "amazon marketplace": "Amazon",
    "tim hortons": "Tim Hortons",
    "tims": "Tim Hortons",
    "mcdonald's": "McDonald's",
    "mcdonalds": "McDonald's",
    "uber eats": "Uber Eats",
    "ubereats": "Uber Eats",
    "uber trip": "Uber",
    "uber *trip": "Uber",
    "netflix.com": "Netflix",
    "spotify ab": "Spotify",
    "spotify usa": "Spotify",
    "apple.com/bill": "Apple",
    "google *youtube": "YouTube",
    "paypal *": "PayPal",
    "wal-mart": "Walmart",
    "walmart supercenter": "Walmart",
    "costco wholesale": "Costco",
    "shoppers drug mart": "Shoppers Drug Mart",
    "lcbo/rao": "LCBO",
})

# Payment processor prefixes stripped from merchant names ("SQ *BLUE BOTTLE").
MERCHANT_PREFIXES: tuple[str, ...] = ("sq *", "sq*", "tst* ", "tst*", "sp * ", "sp *", "pp*", "paypal *")

# Province / state codes seen as trailing location tokens on card descriptors.
REGION_CODES: frozenset[str] = frozenset({
    "AB", "BC", "MB", "NB", "NL", "NS", "NT", "NU", "ON", "PE", "QC", "SK", "YT",
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL",
    "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT",
    "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI",
    "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
})
