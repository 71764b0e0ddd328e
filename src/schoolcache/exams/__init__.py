"""
Offline exam distribution.

- ExamStore: encrypted exam records kept for offline use
- DeviceKeyring: this device's RSA key pair and identity
- crypto: AES-GCM content encryption with RSA-OAEP key wrapping
"""

from schoolcache.exams.crypto import open_exam, seal_exam
from schoolcache.exams.device import DeviceKeyring
from schoolcache.exams.store import ExamStore

__all__ = ["DeviceKeyring", "ExamStore", "open_exam", "seal_exam"]
