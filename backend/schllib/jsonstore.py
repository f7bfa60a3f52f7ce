"""
JSON collection storage for the SCHL portal.

Each collection lives in one ``<name>.json`` file holding a list of
documents (dicts with an integer ``id``).

Implements:
  read_collection(filepath)                     – load every document
  delete_document(filepath, doc_id)             – remove one document
  locked_collection(filepath)                   – read-modify-write block

Write safety:
  • Exclusive fcntl.flock() on a ``<name>.json.lock`` sidecar around every write.
  • The new content goes to a temp file in the same directory and is moved
    into place with os.replace(), so readers never see a half-written file.
"""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional


# ─── file locking ─────────────────────────────────────────────────────────────

@contextmanager
def _exclusive_lock(filepath: str):
    """Hold an exclusive POSIX lock on the sidecar lock file of *filepath*."""
    os.makedirs(os.path.dirname(filepath) or '.', exist_ok=True)
    with open(filepath + '.lock', 'a') as f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def _load(filepath: str) -> List[Dict[str, Any]]:
    if not os.path.exists(filepath):
        return []
    with open(filepath, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"INVALID:COLLECTION:{os.path.basename(filepath)}")
    return data


def _dump(filepath: str, documents: List[Dict[str, Any]]) -> None:
    directory = os.path.dirname(filepath) or '.'
    fd, tmp_path = tempfile.mkstemp(prefix='.tmp-', suffix='.json', dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(documents, f, ensure_ascii=False, indent=1)
        os.replace(tmp_path, filepath)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


# ─── public API ───────────────────────────────────────────────────────────────

def read_collection(filepath: str) -> List[Dict[str, Any]]:
    """Return every document stored in *filepath* (empty list if missing)."""
    return _load(filepath)


@contextmanager
def locked_collection(filepath: str) -> Iterator[List[Dict[str, Any]]]:
    """
    Yield the document list of *filepath* under the exclusive lock.

    Mutate the list in place; it is written back when the block exits
    without an exception. Raising inside the block leaves the file untouched.
    """
    with _exclusive_lock(filepath):
        documents = _load(filepath)
        yield documents
        _dump(filepath, documents)


def delete_document(filepath: str, doc_id: int) -> Optional[Dict[str, Any]]:
    """Remove the document with ``id == doc_id`` and return it (None if absent)."""
    with locked_collection(filepath) as documents:
        for idx, doc in enumerate(documents):
            if doc.get('id') == doc_id:
                return documents.pop(idx)
    return None

