"""Provider Gateway

Spreads OpenAI and Anthropic compatible traffic across a user's linked
provider accounts (OAuth and API-key based).
"""

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("provider-gateway")
except PackageNotFoundError:
    # Source checkout without an installed distribution
    __version__ = "0.1.0"
__author__ = "Provider Gateway"
