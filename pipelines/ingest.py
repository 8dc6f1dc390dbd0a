"""Document download and text extraction.

Each discovered document is fetched once, hashed, classified and reduced to
plain text so it can be fed to the challenge extractor.
"""

import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy.orm import Session

from config.settings import Settings, get_settings
from observability.logging import log_performance
from observability.prometheus_metrics import record_ingest_metrics
from services.shared import repository
from services.shared.errors import IngestError, NotFoundError
from services.shared.models import DocumentStatus
from .extract import classify_content, extract_text
from .security import SSRFError, check_url_ssrf

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class IngestResult:
    """Outcome of one successful download."""
    content_type: Optional[str]
    byte_size: int
    sha256_bytes: str
    extracted_chars: int
    content_kind: str
    duplicate_of: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _fail(db: Session, document, message: str) -> IngestError:
    repository.update_document(db, document, status=DocumentStatus.FAILED.value, error_message=message)
    record_ingest_metrics("unknown", 0, error=message)
    logger.warning(f"Document {document.id} failed: {message}")
    return IngestError(message)


def _read_limited(response: requests.Response, max_bytes: int) -> bytes:
    """Read a streamed body, refusing anything larger than ``max_bytes``."""
    declared = response.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise IngestError(f"Download failed: body of {declared} bytes exceeds limit of {max_bytes}")

    buf = bytearray()
    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
        if not chunk:
            continue
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise IngestError(f"Download failed: body exceeds limit of {max_bytes} bytes")
    return bytes(buf)


@log_performance(threshold_ms=10000.0)
def download_and_extract_document(db: Session,
                                  document_id: int,
                                  session: Optional[requests.Session] = None,
                                  settings: Optional[Settings] = None) -> IngestResult:
    """Download one document and store its hash, size and extracted text.

    Args:
        db: Database session
        document_id: Document to fetch
        session: HTTP session (a new one is created if omitted)
        settings: Limits and user agent

    Returns:
        IngestResult describing the download

    Raises:
        NotFoundError: If the document does not exist
        IngestError: If the download fails; the document is marked failed
    """
    settings = settings or get_settings()
    session = session or requests.Session()

    document = repository.get_document(db, document_id)
    if document is None:
        raise NotFoundError(f"Document not found: {document_id}")

    if settings.block_private_urls:
        try:
            check_url_ssrf(document.url)
        except SSRFError as e:
            raise _fail(db, document, f"Download failed: {e}")

    logger.info(f"Downloading document {document_id}: {document.url}")
    try:
        response = session.get(
            document.url,
            headers={"User-Agent": settings.download_user_agent},
            timeout=settings.request_timeout,
            stream=True,
            allow_redirects=True,
        )
    except requests.RequestException as e:
        raise _fail(db, document, f"Download failed: {e}")

    try:
        if settings.block_private_urls and response.url != document.url:
            try:
                check_url_ssrf(response.url)
            except SSRFError as e:
                raise _fail(db, document, f"Download failed: redirect to {response.url} refused: {e}")
        if not response.ok:
            raise _fail(db, document, f"Download failed: {response.status_code} {response.reason}")
        content_type = response.headers.get("content-type")
        try:
            body = _read_limited(response, settings.max_download_bytes)
        except IngestError as e:
            raise _fail(db, document, str(e))
        except requests.RequestException as e:
            raise _fail(db, document, f"Download failed: {e}")
    finally:
        response.close()

    sha256_bytes = hashlib.sha256(body).hexdigest()
    kind = classify_content(content_type, document.url, body)
    try:
        text = extract_text(kind, body)
    except Exception as e:
        logger.exception(f"Text extraction crashed for document {document_id}")
        raise _fail(db, document, f"Extraction failed: {type(e).__name__}: {e}")

    now = datetime.utcnow()
    fields = {
        'content_type': content_type,
        'byte_size': len(body),
        'sha256_bytes': sha256_bytes,
        'fetched_at': now,
        'error_message': None,
    }
    if text:
        fields.update(status=DocumentStatus.EXTRACTED.value, extracted_text=text, extracted_at=now)
    else:
        # Keep whatever an earlier download extracted
        fields['status'] = DocumentStatus.DOWNLOADED.value
    repository.update_document(db, document, **fields)

    duplicate = repository.find_document_by_sha256(db, sha256_bytes, exclude_id=document.id)
    if duplicate is not None:
        logger.info(f"Document {document_id} has the same content as document {duplicate.id}")

    record_ingest_metrics(kind, len(body))
    logger.info(f"Document {document_id} stored: {kind}, {len(body)} bytes, {len(text)} chars extracted")

    return IngestResult(
        content_type=content_type,
        byte_size=len(body),
        sha256_bytes=sha256_bytes,
        extracted_chars=len(text),
        content_kind=kind,
        duplicate_of=duplicate.id if duplicate is not None else None,
    )


def ingest_pending_documents(db: Session,
                             source_id: Optional[int] = None,
                             limit: int = 10,
                             session: Optional[requests.Session] = None,
                             settings: Optional[Settings] = None) -> List[Dict[str, Any]]:
    """Download discovered documents one at a time, oldest first.

    A failure is recorded for its document and the batch carries on.
    """
    session = session or requests.Session()
    outcomes = []
    for document in repository.list_pending_documents(db, source_id=source_id, limit=limit):
        try:
            result = download_and_extract_document(db, document.id, session=session, settings=settings)
        except IngestError as e:
            outcomes.append({'document_id': document.id, 'url': document.url, 'ok': False, 'error': str(e)})
            continue
        outcomes.append({'document_id': document.id, 'url': document.url, 'ok': True, **result.to_dict()})

    ok = sum(1 for outcome in outcomes if outcome['ok'])
    logger.info(f"Ingested {ok}/{len(outcomes)} pending documents")
    return outcomes
