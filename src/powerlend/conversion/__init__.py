"""Payment-asset conversion."""

from powerlend.conversion.converter import Converter, DefaultConverter, FixedRateConverter

__all__ = ["Converter", "DefaultConverter", "FixedRateConverter"]
