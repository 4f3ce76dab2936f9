from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.sql.selectable import TextualSelect
from sqlalchemy.types import Date

from .types import UTCDateTime


def bind_params_for(params: Mapping[str, Any]) -> list:
    """
    Return typed bind parameters for values that need dialect processing.

    Sequences become expanding parameters (``IN :name``), datetimes are
    bound as UTC timestamps and dates as dates.
    """
    binds = []
    for name, value in params.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            binds.append(bindparam(name, expanding=True))
        elif isinstance(value, datetime):
            binds.append(bindparam(name, type_=UTCDateTime()))
        elif isinstance(value, date):
            binds.append(bindparam(name, type_=Date()))
    return binds


@dataclass(frozen=True)
class Statement:
    """
    A parameterized SQL statement.

    ``result_types`` maps result column names to SQLAlchemy types so that
    timestamps, dates and booleans are materialized consistently on every
    dialect.
    """

    sql: str
    params: Mapping[str, Any] = field(default_factory=dict)
    result_types: Mapping[str, Any] = field(default_factory=dict)

    def to_clause(self) -> TextClause | TextualSelect:
        clause = text(self.sql)
        binds = bind_params_for(self.params)
        if binds:
            clause = clause.bindparams(*binds)
        if self.result_types:
            clause = clause.columns(**dict(self.result_types))
        return clause

    def execution_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for name, value in self.params.items():
            if isinstance(value, (set, frozenset)):
                value = sorted(value)
            params[name] = value
        return params
