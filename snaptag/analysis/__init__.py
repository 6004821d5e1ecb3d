"""
Analysis of recognized text, model output and EXIF metadata.
"""

from .exif_tags import ExifTagger, NominatimGeocoder, ReverseGeocoder, read_photo_metadata
from .quality_gate import QualityVerdict, assess_text, is_text_usable
from .response_parser import parse_model_response, parse_plain_text, parse_with_fallback
from .tag_normalizer import TagNormalizer
from .tag_taxonomy import TagCategory, TagDefinition, TagTaxonomy
from .text_extractors import KeywordExtractor, extract_hashtags

__all__ = [
    "ExifTagger",
    "KeywordExtractor",
    "NominatimGeocoder",
    "QualityVerdict",
    "ReverseGeocoder",
    "TagCategory",
    "TagDefinition",
    "TagNormalizer",
    "TagTaxonomy",
    "assess_text",
    "extract_hashtags",
    "is_text_usable",
    "parse_model_response",
    "parse_plain_text",
    "parse_with_fallback",
    "read_photo_metadata",
]
