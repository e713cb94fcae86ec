"""Saved lease scenarios.

A scenario records one calculation run: the request as the user sent it and
the full result (summary, rates, rent table and cash flow). The lease's
method, principal, term and XIRR are also stored as plain columns, so a
user's scenarios can be listed and filtered without decoding every result.
Scenarios belong to a user token and each user keeps at most
``max_per_user`` of them, newest first.

SQLite is used for local development; any SQLAlchemy URL works.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, create_engine, delete, select
from sqlalchemy.orm import declarative_base, sessionmaker

from lease_calc.data_models import LoanParameters, RepaymentMethod

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///lease_scenarios.sqlite3"


class ScenarioModel(Base):
    __tablename__ = "lease_scenarios"

    id = Column(String(32), primary_key=True)
    user_token = Column(String(64), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    method = Column(String(32), nullable=False)
    principal = Column(Float, nullable=False)
    total_periods = Column(Integer, nullable=False)
    xirr = Column(Float)
    request_json = Column(Text, nullable=False)
    result_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def headline(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "method": self.method,
            "principal": self.principal,
            "total_periods": self.total_periods,
            "xirr": self.xirr,
            "created_at": self.created_at.isoformat(),
        }


class ScenarioStore:
    def __init__(self, url: str, *, max_per_user: int = 10) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        self._max_per_user = max_per_user

    def save(
        self, user_token: str, name: str, lease: LoanParameters, request: dict, result: dict
    ) -> Optional[str]:
        """Store a run and return its id, or ``None`` without a user token."""
        if not user_token:
            return None
        scenario_id = uuid4().hex
        xirr = result.get("rates", {}).get("xirr")
        row = ScenarioModel(
            id=scenario_id,
            user_token=user_token,
            name=name,
            method=RepaymentMethod(lease.method).value,
            principal=float(lease.principal),
            total_periods=lease.total_periods,
            xirr=xirr,
            request_json=json.dumps(request),
            result_json=json.dumps(result),
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
        logger.debug("Saved %s scenario %s for user %s", row.method, scenario_id, user_token)
        self._enforce_limit(user_token)
        return scenario_id

    def list_for_user(self, user_token: str, method: Optional[str] = None) -> List[Dict[str, Any]]:
        """Headline columns of a user's scenarios, newest first."""
        if not user_token:
            return []
        query = select(ScenarioModel).where(ScenarioModel.user_token == user_token)
        if method:
            query = query.where(ScenarioModel.method == method)
        with self._session_factory() as session:
            rows = session.execute(query.order_by(ScenarioModel.created_at.desc())).scalars()
            return [row.headline() for row in rows]

    def get(self, user_token: str, scenario_id: str) -> Optional[Dict[str, Any]]:
        """Full scenario, including the stored request and result."""
        with self._session_factory() as session:
            row = self._owned(session, user_token, scenario_id)
            if row is None:
                return None
            scenario = row.headline()
            scenario["request"] = json.loads(row.request_json)
            scenario["result"] = json.loads(row.result_json)
            return scenario

    def delete(self, user_token: str, scenario_id: str) -> bool:
        with self._session_factory() as session:
            row = self._owned(session, user_token, scenario_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
        return True

    def delete_all(self, user_token: str) -> int:
        if not user_token:
            return 0
        with self._session_factory() as session:
            removed = session.execute(delete(ScenarioModel).where(ScenarioModel.user_token == user_token)).rowcount
            session.commit()
        return removed

    @staticmethod
    def _owned(session, user_token: str, scenario_id: str) -> Optional[ScenarioModel]:
        if not user_token:
            return None
        row = session.get(ScenarioModel, scenario_id)
        if row is None or row.user_token != user_token:
            return None
        return row

    def _enforce_limit(self, user_token: str) -> None:
        if self._max_per_user <= 0:
            return
        with self._session_factory() as session:
            stale = session.execute(
                select(ScenarioModel.id)
                .where(ScenarioModel.user_token == user_token)
                .order_by(ScenarioModel.created_at.desc())
                .offset(self._max_per_user)
            ).scalars().all()
            if not stale:
                return
            session.execute(delete(ScenarioModel).where(ScenarioModel.id.in_(stale)))
            session.commit()
        logger.debug("Dropped %d old scenarios for user %s", len(stale), user_token)


def create_store_from_env(url: Optional[str]) -> ScenarioStore:
    return ScenarioStore(url or DEFAULT_DATABASE_URL)
