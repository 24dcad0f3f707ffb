"""Cassette recording engine.

The workflow for one capture run is:

1. A browser driver publishes RequestStarted / ResponseReceived events onto an
   EventStream while the page renders.
2. InteractionCorrelator consumes the stream, pairs each response with its
   pending request, normalizes both bodies and appends the Interaction to a
   FixtureBuilder (completion order).
3. FixtureBuilder.finalize() snapshots a FixtureDocument, which
   write_cassette() persists at cassette_path(url, library_dir).
"""

from .builder import FixtureBuilder
from .correlator import CorrelationStats, InteractionCorrelator
from .events import EventStream, RequestStarted, ResponseReceived
from .models import CapturedRequest, CapturedResponse, FixtureDocument, Interaction, NormalizedBody
from .naming import cassette_name, cassette_path, validate_capture_url
from .normalizer import decode_body, normalize_body
from .serializer import dump_cassette, load_cassette, read_cassette, write_cassette, write_cassette_async

__all__ = [
    # Models
    "CapturedRequest",
    "CapturedResponse",
    "NormalizedBody",
    "Interaction",
    "FixtureDocument",
    # Events
    "EventStream",
    "RequestStarted",
    "ResponseReceived",
    # Components
    "FixtureBuilder",
    "InteractionCorrelator",
    "CorrelationStats",
    "normalize_body",
    "decode_body",
    "dump_cassette",
    "load_cassette",
    "read_cassette",
    "write_cassette",
    "write_cassette_async",
    "cassette_name",
    "cassette_path",
    "validate_capture_url",
]
