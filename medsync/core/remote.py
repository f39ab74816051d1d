# medsync/core/remote.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import aiohttp

from medsync.core.errors import NetworkError, UploadError, ValidationError
from medsync.core.logging_utils import kv
from medsync.core.models import MedicationRecord, decode_dataset, encode_dataset


@dataclass(frozen=True)
class UploadAck:
    success: bool
    message: str
    timestamp: Optional[str] = None


def validate_upload_body(body: Any) -> None:
    """Reject payloads the remote store would answer with 400."""
    if not isinstance(body, dict) or not isinstance(body.get("medications"), list):
        raise ValidationError("upload body must be an object with a 'medications' array")
    for m in body["medications"]:
        if not isinstance(m, dict):
            raise ValidationError("each medication must be an object")
        for key in ("id", "name", "timeToTake"):
            if m.get(key) is None:
                raise ValidationError(f"medication is missing required field '{key}'")


class RemoteStoreClient:
    """
    Authenticated fetch / full replace of the remote medication dataset.
    No retries here; callers decide when to try again.
    """

    def __init__(
        self,
        base_url: str,
        dataset_path: str,
        upload_path: str,
        *,
        token: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.dataset_url = self.base_url + dataset_path.lstrip("/")
        self.upload_url = self.base_url + upload_path.lstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None
        self.log = logging.getLogger("medsync.remote")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            if self.timeout_s:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout_s)
                )
            else:
                self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "RemoteStoreClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # -- fetch ----------------------------------------------------------
    async def fetch(self) -> List[MedicationRecord]:
        """GET the dataset. Any failure surfaces as NetworkError."""
        self.log.debug("remote.fetch.start " + kv(url=self.dataset_url))
        try:
            async with self._get_session().get(self.dataset_url) as resp:
                if resp.status != 200:
                    raise NetworkError(f"GET {self.dataset_url} -> HTTP {resp.status}")
                body = await resp.json(content_type=None)
            records = decode_dataset(body)
        except NetworkError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"GET {self.dataset_url} failed: {e!r}") from e
        except ValueError as e:
            raise NetworkError(f"GET {self.dataset_url}: undecodable dataset: {e}") from e
        self.log.info("remote.fetch.ok " + kv(count=len(records)))
        return records

    # -- upload ---------------------------------------------------------
    async def upload(
        self, records: Iterable[MedicationRecord], token: Optional[str] = None
    ) -> UploadAck:
        """POST the entire record set. Anything but a well-formed 2xx ack is UploadError."""
        token = token or self.token
        if not token:
            raise UploadError("no upload token configured")
        body = encode_dataset(records)
        validate_upload_body(body)

        headers = {"Authorization": f"Bearer {token}"}
        status: Optional[int] = None
        try:
            async with self._get_session().post(
                self.upload_url, json=body, headers=headers
            ) as resp:
                status = resp.status
                text = await resp.text()
                if not 200 <= status < 300:
                    self.log.warning(
                        "remote.upload.rejected " + kv(status=status, body=text[:200])
                    )
                    raise UploadError(f"upload rejected: HTTP {status}", status, text)
                try:
                    ack_raw = await resp.json(content_type=None)
                except ValueError:
                    ack_raw = None
        except UploadError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UploadError(f"upload transport failure: {e!r}") from e
        except ValueError as e:
            # e.g. a 2xx body that is not valid text
            raise UploadError(f"undecodable upload response: {e}", status, "") from e

        if (
            not isinstance(ack_raw, dict)
            or ack_raw.get("success") is not True
            or not isinstance(ack_raw.get("message"), str)
        ):
            raise UploadError("malformed upload acknowledgement", status, text)
        ack = UploadAck(
            success=True,
            message=ack_raw["message"],
            timestamp=ack_raw.get("timestamp"),
        )
        self.log.info(
            "remote.upload.ok "
            + kv(count=len(body["medications"]), server_ts=ack.timestamp)
        )
        return ack

    # -- reachability ---------------------------------------------------
    async def probe(self) -> bool:
        """Cheap reachability check used to drive the connectivity monitor."""
        try:
            async with self._get_session().head(self.dataset_url) as resp:
                return resp.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
            return False
