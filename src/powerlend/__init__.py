"""powerlend — fixed-point engine for a stake / rent / return rental protocol.

Stakers pool an enterprise asset into a shared reserve. Renters rent a
derivative power token against that reserve for a period and pay a fee
priced on a utilization bonding curve. Rental income streams into the
reserve over a half-life so late depositors cannot front-run it.

All arithmetic is integer fixed point. No floats in finance.
"""

__version__ = "0.4.0"
