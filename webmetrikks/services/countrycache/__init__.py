"""Country enrichment - concurrent GeoIP lookups for visitor addresses."""
from .service import CountryLookup, EnrichmentSetupError, create_reader

__all__ = ["CountryLookup", "EnrichmentSetupError", "create_reader"]
