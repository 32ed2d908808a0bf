from __future__ import annotations

import hashlib
import os
from datetime import timedelta
from typing import Any
from urllib.parse import unquote, urlparse

import requests

from radio.errors import TransportError, ValidationError

SIGNED_URL_LIFETIME = timedelta(days=365 * 100)

_bucket: Any | None = None


def _bucket_name() -> str:
    name = os.environ.get("STORAGE_BUCKET", "").strip()
    if not name:
        raise RuntimeError("STORAGE_BUCKET is not set.")
    return name


def get_bucket() -> Any:
    global _bucket
    if _bucket is None:
        from google.cloud import storage  # type: ignore

        project_id = os.environ.get("FIRESTORE_PROJECT_ID") or None
        _bucket = storage.Client(project=project_id).bucket(_bucket_name())
    return _bucket


def download_dir() -> str:
    configured = os.environ.get("DOWNLOAD_DIR", "downloads").strip() or "downloads"
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    path = configured if os.path.isabs(configured) else os.path.join(backend_dir, configured)
    os.makedirs(path, exist_ok=True)
    return path


def local_name(reference: str, filename: str) -> str:
    """Download filename unique per reference, so same-named files in different folders never collide."""
    digest = hashlib.sha1(reference.encode("utf-8")).hexdigest()[:10]
    return f"{digest}_{filename}"


def is_remote(reference: str) -> bool:
    return urlparse(reference).scheme in {"http", "https", "gs"}


def extract_blob_path(url: str, bucket_name: str | None = None) -> str | None:
    """Blob path for a Firebase/GCS URL, or None when the URL is not bucket-hosted."""
    parsed = urlparse(url)
    if parsed.scheme == "gs":
        return unquote(parsed.path.lstrip("/"))
    if parsed.hostname == "firebasestorage.googleapis.com":
        _, _, blob = parsed.path.partition("/o/")
        return unquote(blob) if blob else None
    if parsed.hostname == "storage.googleapis.com":
        bucket = bucket_name or parsed.path.lstrip("/").split("/", 1)[0]
        _, _, blob = parsed.path.partition(f"/{bucket}/")
        return unquote(blob) if blob else None
    return None


def upload_file(local_path: str, folder: str) -> str:
    blob = get_bucket().blob(f"{folder.strip('/')}/{os.path.basename(local_path)}")
    blob.upload_from_filename(local_path)
    url = blob.generate_signed_url(version="v2", expiration=SIGNED_URL_LIFETIME, method="GET")
    print(f"[storage] uploaded path={local_path} blob={blob.name}")
    return str(url)


def download_file(reference: str, dest_dir: str | None = None) -> str:
    if not is_remote(reference):
        if not os.path.exists(reference):
            raise ValidationError(f"File not found: {reference}")
        return reference

    target_dir = dest_dir or download_dir()
    os.makedirs(target_dir, exist_ok=True)
    blob_path = extract_blob_path(reference)
    if blob_path:
        destination = os.path.join(target_dir, local_name(reference, os.path.basename(blob_path)))
        get_bucket().blob(blob_path).download_to_filename(destination)
        print(f"[storage] downloaded blob={blob_path} path={destination}")
        return destination

    filename = os.path.basename(unquote(urlparse(reference).path)) or "download"
    destination = os.path.join(target_dir, local_name(reference, filename))
    try:
        with requests.get(reference, stream=True, timeout=(10, 120)) as response:
            if response.status_code >= 400:
                raise TransportError(
                    f"Download HTTP {response.status_code}: {reference}",
                    status=response.status_code,
                )
            with open(destination, "wb") as fh:
                for chunk in response.iter_content(chunk_size=1 << 16):
                    if chunk:
                        fh.write(chunk)
    except requests.RequestException as exc:
        raise TransportError(f"Download failed: {reference}: {exc}") from exc
    print(f"[storage] downloaded url={reference} path={destination}")
    return destination
