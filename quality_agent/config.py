"""
Pipeline configuration and connection descriptors
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Where the target database lives"""
    db_type: str
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    schema: Optional[str] = None

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ConnectionDescriptor':
        port = config.get('port')
        return cls(
            db_type=str(config.get('db_type', 'postgresql')).lower(),
            database=config['database'],
            host=config.get('host'),
            port=int(port) if port not in (None, '') else None,
            user=config.get('user'),
            password=config.get('password'),
            schema=config.get('schema'),
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Tunables for one pipeline run"""
    max_concurrency: int = 5
    statement_timeout_seconds: float = 60.0
    introspection_timeout_seconds: float = 30.0
    connect_timeout_seconds: int = 10
    implicit_detection_timeout_seconds: float = 30.0
    implicit_candidate_cap: int = 1000
    hop_limit: int = 2
    max_related_tables: int = 8
    focus_sample_size: int = 50
    related_sample_size: int = 30
    max_total_sample_rows: int = 200
    max_relations_sampled: int = 5
    row_limit_cap: int = 10000
    generation_timeout_seconds: float = 90.0
    llm_provider: str = 'gemini'
    proposal_model: str = 'gemini-2.5-flash'
    translation_model: str = 'gemini-2.5-flash'
    llm_base_url: Optional[str] = None

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.statement_timeout_seconds <= 0:
            raise ValueError("statement_timeout_seconds must be positive")
        if self.hop_limit < 1:
            raise ValueError("hop_limit must be at least 1")

    @classmethod
    def from_env(cls) -> 'PipelineConfig':
        """Build a config from DQ_* environment variables (never credentials)"""
        load_dotenv()
        defaults = cls()

        def _int(name: str, default: int) -> int:
            value = os.getenv(name)
            return int(value) if value else default

        def _float(name: str, default: float) -> float:
            value = os.getenv(name)
            return float(value) if value else default

        return cls(
            max_concurrency=_int('DQ_MAX_CONCURRENCY', defaults.max_concurrency),
            statement_timeout_seconds=_float('DQ_STATEMENT_TIMEOUT', defaults.statement_timeout_seconds),
            introspection_timeout_seconds=_float('DQ_INTROSPECTION_TIMEOUT', defaults.introspection_timeout_seconds),
            connect_timeout_seconds=_int('DQ_CONNECT_TIMEOUT', defaults.connect_timeout_seconds),
            implicit_detection_timeout_seconds=_float('DQ_IMPLICIT_TIMEOUT', defaults.implicit_detection_timeout_seconds),
            implicit_candidate_cap=_int('DQ_IMPLICIT_CANDIDATE_CAP', defaults.implicit_candidate_cap),
            hop_limit=_int('DQ_HOP_LIMIT', defaults.hop_limit),
            max_related_tables=_int('DQ_MAX_RELATED_TABLES', defaults.max_related_tables),
            focus_sample_size=_int('DQ_FOCUS_SAMPLE_SIZE', defaults.focus_sample_size),
            related_sample_size=_int('DQ_RELATED_SAMPLE_SIZE', defaults.related_sample_size),
            max_total_sample_rows=_int('DQ_MAX_SAMPLE_ROWS', defaults.max_total_sample_rows),
            max_relations_sampled=_int('DQ_MAX_RELATIONS_SAMPLED', defaults.max_relations_sampled),
            row_limit_cap=_int('DQ_ROW_LIMIT_CAP', defaults.row_limit_cap),
            generation_timeout_seconds=_float('DQ_GENERATION_TIMEOUT', defaults.generation_timeout_seconds),
            llm_provider=os.getenv('DQ_LLM_PROVIDER', defaults.llm_provider),
            proposal_model=os.getenv('DQ_PROPOSAL_MODEL', defaults.proposal_model),
            translation_model=os.getenv('DQ_TRANSLATION_MODEL', defaults.translation_model),
            llm_base_url=os.getenv('DQ_LLM_BASE_URL') or None,
        )


def load_connection_descriptor(db_type: str = 'postgresql') -> ConnectionDescriptor:
    """Read connection settings for a database type from the environment"""
    load_dotenv()
    db_type = db_type.lower()

    db_configs = {
        'postgresql': {
            'db_type': 'postgresql',
            'host': os.getenv('POSTGRES_HOST'),
            'port': os.getenv('POSTGRES_PORT', 5432),
            'user': os.getenv('POSTGRES_USER'),
            'password': os.getenv('POSTGRES_PASSWORD'),
            'database': os.getenv('POSTGRES_DB'),
            'schema': os.getenv('POSTGRES_SCHEMA'),
        },
        'mysql': {
            'db_type': 'mysql',
            'host': os.getenv('MYSQL_HOST'),
            'port': os.getenv('MYSQL_PORT', 3306),
            'user': os.getenv('MYSQL_USER'),
            'password': os.getenv('MYSQL_PASSWORD'),
            'database': os.getenv('MYSQL_DB'),
        },
        'sqlite': {
            'db_type': 'sqlite',
            'database': os.getenv('SQLITE_PATH'),
        },
    }
    if db_type == 'postgres':
        db_type = 'postgresql'
    if db_type not in db_configs:
        raise ValueError(f"Unsupported database type: {db_type}")

    config = db_configs[db_type]
    if not config.get('database'):
        raise ValueError(f"Missing configuration for {db_type}")
    return ConnectionDescriptor.from_dict(config)
