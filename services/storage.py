# services/storage.py
from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests

from errors import TransportFailure
from services.age_gate import AgeGateResult, NextStep
from services.consent import ParentalAttestationRecord
from utils.http_client import HttpClient

logger = logging.getLogger(__name__)


class OnboardingStore(Protocol):
    """
    Persistence contract: one current age-gate result per subject
    (overwritten on resubmission) and an append-only list of attestations.
    """

    def get_age_gate(self, subject_id: str) -> Optional[AgeGateResult]: ...

    def upsert_age_gate(self, result: AgeGateResult) -> None: ...

    def list_attestations(self, subject_id: str) -> List[ParentalAttestationRecord]: ...

    def append_attestation(self, record: ParentalAttestationRecord) -> None: ...


# ---------- (de)serialization ----------

def _parse_timestamp(value: str) -> datetime:
    # offset-less values from storage are UTC
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def age_gate_to_dict(r: AgeGateResult) -> Dict[str, Any]:
    return {
        "subject_id": r.subject_id,
        "birthdate": r.birthdate.isoformat(),
        "country_code": r.country_code,
        "calculated_age": r.calculated_age,
        "threshold": r.threshold,
        "next_step": r.next_step.value,
        "evaluated_at": r.evaluated_at.isoformat(),
    }


def age_gate_from_dict(d: Dict[str, Any]) -> AgeGateResult:
    return AgeGateResult(
        subject_id=d["subject_id"],
        birthdate=date.fromisoformat(d["birthdate"]),
        country_code=d["country_code"],
        calculated_age=int(d["calculated_age"]),
        threshold=int(d["threshold"]),
        next_step=NextStep(d["next_step"]),
        evaluated_at=_parse_timestamp(d["evaluated_at"]),
    )


_RECORD_FIELDS = (
    "consent_id",
    "subject_id",
    "parent_email",
    "parent_full_name",
    "relationship_to_child",
    "policy_version",
    "consent_status",
    "consent_method",
    "attestation_text",
    "ip_address",
    "user_agent",
)


def record_to_dict(r: ParentalAttestationRecord) -> Dict[str, Any]:
    d = {k: getattr(r, k) for k in _RECORD_FIELDS}
    d["issued_at"] = r.issued_at.isoformat()
    d["expires_at"] = r.expires_at.isoformat()
    return d


def record_from_dict(d: Dict[str, Any]) -> ParentalAttestationRecord:
    kwargs = {k: d.get(k) for k in _RECORD_FIELDS}
    return ParentalAttestationRecord(
        issued_at=_parse_timestamp(d["issued_at"]),
        expires_at=_parse_timestamp(d["expires_at"]),
        **kwargs,
    )


# ---------- sqlite ----------

class SqliteOnboardingStore:
    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            self._init_schema(conn)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        cur = conn.cursor()

        cur.execute("""
        CREATE TABLE IF NOT EXISTS age_gates (
            subject_id TEXT PRIMARY KEY,
            birthdate TEXT NOT NULL,          -- ISO YYYY-MM-DD
            country_code TEXT NOT NULL CHECK (length(country_code) = 2),
            calculated_age INTEGER NOT NULL CHECK (calculated_age BETWEEN 0 AND 120),
            threshold INTEGER NOT NULL,
            next_step TEXT NOT NULL,
            evaluated_at TEXT NOT NULL
        )
        """)

        # append-only; never updated
        cur.execute("""
        CREATE TABLE IF NOT EXISTS parental_consents (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            consent_id TEXT NOT NULL UNIQUE,
            subject_id TEXT NOT NULL,
            parent_email TEXT NOT NULL,
            parent_full_name TEXT NOT NULL,
            relationship_to_child TEXT NOT NULL,
            policy_version TEXT NOT NULL,
            consent_status TEXT NOT NULL,
            consent_method TEXT NOT NULL,
            attestation_text TEXT,
            ip_address TEXT,
            user_agent TEXT,
            issued_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
        """)

        cur.execute("""
        CREATE INDEX IF NOT EXISTS parental_consents_subject_idx
            ON parental_consents (subject_id)
        """)

        conn.commit()

    # ---------- Age gates ----------

    def get_age_gate(self, subject_id: str) -> Optional[AgeGateResult]:
        try:
            with closing(self._connect()) as conn, conn:
                row = conn.execute(
                    "SELECT * FROM age_gates WHERE subject_id = ?", (subject_id,)
                ).fetchone()
        except sqlite3.Error as e:
            logger.exception("age_gates read failed for %s", subject_id)
            raise TransportFailure() from e
        if not row:
            return None
        return age_gate_from_dict(dict(row))

    def upsert_age_gate(self, result: AgeGateResult) -> None:
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute("""
                INSERT INTO age_gates (subject_id, birthdate, country_code, calculated_age,
                                       threshold, next_step, evaluated_at)
                VALUES (:subject_id, :birthdate, :country_code, :calculated_age,
                        :threshold, :next_step, :evaluated_at)
                ON CONFLICT(subject_id) DO UPDATE SET
                    birthdate=excluded.birthdate,
                    country_code=excluded.country_code,
                    calculated_age=excluded.calculated_age,
                    threshold=excluded.threshold,
                    next_step=excluded.next_step,
                    evaluated_at=excluded.evaluated_at
                """, age_gate_to_dict(result))
                conn.commit()
        except sqlite3.Error as e:
            logger.exception("age_gates write failed for %s", result.subject_id)
            raise TransportFailure() from e

    # ---------- Parental consents ----------

    def list_attestations(self, subject_id: str) -> List[ParentalAttestationRecord]:
        try:
            with closing(self._connect()) as conn, conn:
                rows = conn.execute("""
                SELECT * FROM parental_consents
                WHERE subject_id = ?
                ORDER BY seq ASC
                """, (subject_id,)).fetchall()
        except sqlite3.Error as e:
            logger.exception("parental_consents read failed for %s", subject_id)
            raise TransportFailure() from e
        return [record_from_dict(dict(r)) for r in rows]

    def append_attestation(self, record: ParentalAttestationRecord) -> None:
        data = record_to_dict(record)
        cols = ", ".join(data)
        marks = ", ".join(f":{k}" for k in data)
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(f"INSERT INTO parental_consents ({cols}) VALUES ({marks})", data)
                conn.commit()
        except sqlite3.Error as e:
            logger.exception("parental_consents insert failed for %s", record.subject_id)
            raise TransportFailure() from e


# ---------- remote storage API ----------

class RemoteOnboardingStore:
    """Storage API client; any transport problem becomes TransportFailure."""

    def __init__(self, client: HttpClient) -> None:
        self.client = client

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            logger.warning("storage API call failed: %s", e)
            raise TransportFailure() from e

    def get_age_gate(self, subject_id: str) -> Optional[AgeGateResult]:
        data = self._call(self.client.get_json, f"/age-gates/{subject_id}")
        if not data:
            return None
        return self._call(age_gate_from_dict, data)

    def upsert_age_gate(self, result: AgeGateResult) -> None:
        self._call(
            self.client.send_json, "PUT", f"/age-gates/{result.subject_id}", age_gate_to_dict(result)
        )

    def list_attestations(self, subject_id: str) -> List[ParentalAttestationRecord]:
        data = self._call(
            self.client.get_json, "/parental-consents", params={"subjectId": subject_id}, default=[]
        )
        items = data.get("items", []) if isinstance(data, dict) else (data or [])
        return self._call(lambda: [record_from_dict(d) for d in items])

    def append_attestation(self, record: ParentalAttestationRecord) -> None:
        self._call(self.client.send_json, "POST", "/parental-consents", record_to_dict(record))


def build_store(s) -> OnboardingStore:
    if s.storage_backend == "remote":
        if not s.storage_api_url:
            raise ValueError("STORAGE_API_URL is required when STORAGE_BACKEND=remote")
        client = HttpClient(
            base_url=s.storage_api_url,
            timeout=s.http_timeout_seconds,
            max_retries=s.http_max_retries,
            api_key=s.storage_api_key,
        )
        return RemoteOnboardingStore(client)
    return SqliteOnboardingStore(s.sqlite_path)
