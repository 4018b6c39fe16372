"""
Persistence collaborators

The core hands over opaque bytes under a key; these stores only have to
give the same bytes back. State is encoded as JSON with Django's encoder.
"""

import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)

KEY_PREFIX = 'radiopharmacy'


def context_key(isotope_id):
    return f"{KEY_PREFIX}:{isotope_id}"


def dumps(state):
    return json.dumps(state, cls=DjangoJSONEncoder, sort_keys=True).encode('utf-8')


def loads(payload):
    return json.loads(payload.decode('utf-8'))


class MemoryStore:

    def __init__(self):
        self._data = {}

    def load(self, key):
        return self._data.get(key)

    def save(self, key, payload):
        self._data[key] = bytes(payload)

    def keys(self):
        return list(self._data)


class DatabaseStore:
    """Stores each key as one StoredRecord row"""

    def load(self, key):
        from .models import StoredRecord

        record = StoredRecord.objects.filter(key=key).first()
        if record is None:
            return None
        return bytes(record.payload)

    def save(self, key, payload):
        from .models import StoredRecord

        StoredRecord.objects.update_or_create(key=key, defaults={'payload': bytes(payload)})
        logger.debug(f"Saved {len(payload)} bytes under {key}")
