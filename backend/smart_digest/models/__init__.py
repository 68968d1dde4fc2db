from smart_digest.models.digest_preference import Cadence, DigestPreference
from smart_digest.models.digest_history import DigestHistory, DigestStatus
