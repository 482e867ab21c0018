# -*- coding: utf-8 -*-

import base64
import datetime
import json
import logging

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError, TransportError
from google.cloud import storage
from requests.exceptions import RequestException

from services.errors import TransientInfrastructureError

logger = logging.getLogger("api.gcs")


# =========================================================
# CLIENT
# =========================================================
def build_storage_client(credentials_b64: str | None = None):
    if credentials_b64:
        creds = json.loads(base64.b64decode(credentials_b64))
        return storage.Client.from_service_account_info(creds)
    return storage.Client()


class GcsBlobStore:
    """
    Blob store facade over one GCS bucket.

    Upload and download handles are V4 signed URLs; nothing about them is
    persisted, callers mint a fresh one whenever they need it.
    """

    def __init__(self, bucket_name: str, *, client=None, credentials_b64: str | None = None):
        if not bucket_name:
            raise RuntimeError("GCS_BUCKET_NAME not set")
        self.bucket_name = bucket_name
        self._client = client
        self._credentials_b64 = credentials_b64

    # lazy so API processes that never touch storage do not need credentials at import
    def _bucket(self):
        if self._client is None:
            self._client = build_storage_client(self._credentials_b64)
        return self._client.bucket(self.bucket_name)

    # =========================================================
    # SIGNED URLS
    # =========================================================
    def issue_upload_handle(self, key: str, content_type: str, ttl_sec: int) -> str:
        blob = self._bucket().blob(key)
        try:
            return blob.generate_signed_url(
                version="v4",
                expiration=datetime.timedelta(seconds=int(ttl_sec)),
                method="PUT",
                content_type=content_type,
            )
        except (GoogleAPIError, GoogleAuthError) as exc:
            logger.error("gcs_sign_failed method=PUT key=%s error=%s", key, exc.__class__.__name__)
            raise TransientInfrastructureError("blob store", exc.__class__.__name__) from exc

    def issue_download_handle(self, key: str, ttl_sec: int) -> str:
        blob = self._bucket().blob(key)
        try:
            return blob.generate_signed_url(
                version="v4",
                expiration=datetime.timedelta(seconds=int(ttl_sec)),
                method="GET",
            )
        except (GoogleAPIError, GoogleAuthError) as exc:
            logger.error("gcs_sign_failed method=GET key=%s error=%s", key, exc.__class__.__name__)
            raise TransientInfrastructureError("blob store", exc.__class__.__name__) from exc

    # =========================================================
    # OBJECT IO (WORKER)
    # =========================================================
    def get(self, key: str) -> bytes:
        blob = self._bucket().blob(key)
        try:
            return blob.download_as_bytes()
        except (GoogleAPIError, TransportError, RequestException) as exc:
            logger.error("gcs_download_failed key=%s error=%s", key, exc.__class__.__name__)
            raise TransientInfrastructureError("blob store", f"{exc.__class__.__name__} for {key}") from exc

    def put(self, key: str, data: bytes, content_type: str) -> None:
        blob = self._bucket().blob(key)
        try:
            blob.upload_from_string(data, content_type=content_type)
        except (GoogleAPIError, TransportError, RequestException) as exc:
            logger.error("gcs_upload_failed key=%s error=%s", key, exc.__class__.__name__)
            raise TransientInfrastructureError("blob store", f"{exc.__class__.__name__} for {key}") from exc
