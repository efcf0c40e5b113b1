"""
AdGovernor - Rate-limited, retrying, paginating access to the ads Graph API.

Keeps many ad accounts under the remote service's throughput budget,
classifies and retries the failures it produces, and walks cursor-paged
result sets on the caller's behalf.
"""

__version__ = "0.1.0"
__app_name__ = "adgovernor"
