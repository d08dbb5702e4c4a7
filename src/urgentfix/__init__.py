"""
UrgentFix - bid lifecycle core for a home-services marketplace

Contractors bid on a customer's service request; the customer accepts one.
Acceptance assigns the request, rejects every competing bid and tells each
contractor the outcome - safely under concurrent decisions and partial
store failures.

Fun fact: The plumber's trade takes its name from "plumbum", Latin for lead,
which is why the chemical symbol for lead is Pb!
"""

from urgentfix.marketplace import Marketplace

__version__ = "0.1.0"
__all__ = ["Marketplace", "__version__"]
